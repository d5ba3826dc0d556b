#!/usr/bin/env python3
"""Dependency Service: the public operations of the dependency engine.

Composes the store collaborators with TraversalEngine, ConflictAnalyzer,
ConflictResolver and BulkMutationCoordinator. Every public method validates
its input with the pydantic request models and fails only with a
DependencyError subclass: untyped collaborator failures are wrapped into
StoreUnavailableError with the original exception as cause.

Write-time rules:
- create: self-dependency, then duplicate, then cycle pre-flight (skipped
  with force=True and for linked edges)
- update: status transition table (force overrides), then duplicate and
  cycle pre-flight for the resulting edge when it is active and changed
- delete: NotFound for unknown ids
- import: per-row cycle pre-flight for active blocking rows (skipped with
  force=True); failures are reported per line
- reads and analysis: NotFound for a root task unknown to the task directory

Usage:
    from taskdeps.dependency_service import DependencyService

    service = DependencyService(store, task_directory, config)
    dep = service.create_dependency("task-b", "task-a")   # b waits for a
    snapshot = service.get_dependency_graph("task-a", depth=2)
"""

from __future__ import annotations

import dataclasses
import functools
import logging
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import ValidationError

from taskdeps.bulk import (
    BulkMutationCoordinator,
    BulkOperationResult,
    CreateOp,
    DeleteOp,
    Operation,
    UpdateOp,
)
from taskdeps.config import EngineConfig
from taskdeps.conflicts import (
    ConflictAnalyzer,
    ConflictReport,
    ConflictResolver,
    ResolutionResult,
)
from taskdeps.cycle_detector import CycleDetector
from taskdeps.dependency_model import (
    Dependency,
    DependencyStatus,
    DependencyType,
    TaskSummary,
    is_transition_allowed,
)
from taskdeps.dependency_store import DependencyStore, TaskDirectory
from taskdeps.errors import (
    CycleWouldBeCreatedError,
    DependencyError,
    DuplicateDependencyError,
    InvalidRequestError,
    InvalidTransitionError,
    NotFoundError,
    SelfDependencyError,
    StoreUnavailableError,
)
from taskdeps.graph_builder import GraphBuilder
from taskdeps.graph_export import export_snapshot, parse_import
from taskdeps.schemas import (
    BulkDependencyRequest,
    ConflictCheckRequest,
    CreateDependencyRequest,
    DeleteDependencyRequest,
    DependencyFilter,
    DependencyGraphOptions,
    ExportRequest,
    ImportRequest,
    TaskCreateItem,
    TaskUpdateItem,
    UpdateDependencyRequest,
    WorkspaceDependencyQuery,
    validate_request,
)
from taskdeps.traversal import DOWNSTREAM, DependencyGraphSnapshot, TraversalEngine

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

PREFLIGHT_EDGE_ID = "preflight"
TOP_TASKS = 5


def _typed_errors(func: F) -> F:
    """Let DependencyError through; wrap anything else as a typed error."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except DependencyError:
            raise
        except ValidationError as e:
            raise InvalidRequestError(
                f"Invalid input for {func.__name__}: {e.error_count()} error(s)",
                errors=[{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()],
            ) from e
        except Exception as e:
            logger.warning("%s failed with %s", func.__name__, type(e).__name__, exc_info=e)
            raise StoreUnavailableError(f"{func.__name__} failed: {e}", cause=e) from e

    return wrapper  # type: ignore[return-value]


@dataclass
class ImportResult:
    imported_dependencies: int = 0
    skipped_dependencies: int = 0
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "imported_dependencies": self.imported_dependencies,
            "skipped_dependencies": self.skipped_dependencies,
            "errors": list(self.errors),
        }


class DependencyService:
    """Public dependency operations over a store and optional task directory.

    Args:
        store: Dependency persistence collaborator
        task_directory: Task-metadata collaborator. When given, dependency
            writes require both tasks to exist and analysis reads task
            status from it.
        config: Engine thresholds; defaults apply when omitted
    """

    def __init__(
        self,
        store: DependencyStore,
        task_directory: TaskDirectory | None = None,
        config: EngineConfig | None = None,
    ):
        self.store = store
        self.task_directory = task_directory
        self.config = config or EngineConfig()
        self.traversal = TraversalEngine(store, task_directory)
        self.analyzer = ConflictAnalyzer(store, task_directory, self.config, self.traversal)
        self.resolver = ConflictResolver(store, self.analyzer)
        self.builder = GraphBuilder()
        self.cycle_detector = CycleDetector()

    # ── Dependency CRUD ──────────────────────────────────────────────

    @_typed_errors
    def create_dependency(
        self,
        task_id: str,
        depends_on: str,
        type: str = "blocking",
        link_id: str | None = None,
        status: str = "active",
        created_by: str | None = None,
        force: bool = False,
    ) -> Dependency:
        """Create a dependency: task_id depends on depends_on.

        Raises:
            SelfDependencyError: task_id == depends_on
            NotFoundError: A task is unknown to the task directory
            DuplicateDependencyError: An active record with the same key exists
            CycleWouldBeCreatedError: The edge closes a blocking cycle (unless force)
        """
        request = validate_request(
            CreateDependencyRequest,
            {
                "task_id": task_id,
                "depends_on": depends_on,
                "type": type,
                "link_id": link_id,
                "status": status,
                "created_by": created_by,
                "force": force,
            },
        )
        return self._create(request)

    def _create(self, request: CreateDependencyRequest) -> Dependency:
        if request.task_id == request.depends_on:
            raise SelfDependencyError(request.task_id)
        self._require_tasks(request.task_id, request.depends_on)

        dep = Dependency(
            id="",
            task_id=request.task_id,
            depends_on=request.depends_on,
            type=DependencyType(request.type),
            status=DependencyStatus(request.status),
            link_id=request.link_id,
            workspace_id=self.config.workspace_id,
            created_by=request.created_by,
        )
        if dep.is_active:
            self._check_duplicate(dep)
            if dep.is_blocking and not request.force:
                self._preflight(dep)
        return self.store.create(dep)

    @_typed_errors
    def get_task_dependencies(
        self,
        task_id: str,
        type: str | None = None,
        status: str | None = None,
        include_resolved: bool = False,
    ) -> list[Dependency]:
        """All records touching task_id, in creation order."""
        if not task_id:
            raise InvalidRequestError("task_id is required")
        self._require_tasks(task_id)
        query = validate_request(
            DependencyFilter,
            {"type": type, "status": status, "include_resolved": include_resolved},
        )
        return self.store.list_for_task(task_id, query)

    @_typed_errors
    def update_dependency(
        self,
        dependency_id: str,
        type: str | None = None,
        status: str | None = None,
        force: bool = False,
    ) -> Dependency:
        """Change a dependency's type and/or status.

        Raises:
            NotFoundError: Unknown dependency_id
            InvalidTransitionError: Disallowed status change without force
            DuplicateDependencyError: Result collides with another active record
            CycleWouldBeCreatedError: Result closes a blocking cycle (unless force)
        """
        request = validate_request(
            UpdateDependencyRequest,
            {"dependency_id": dependency_id, "type": type, "status": status, "force": force},
        )
        return self._update(request)

    def _update(self, request: UpdateDependencyRequest) -> Dependency:
        current = self.store.get(request.dependency_id)
        new_type = DependencyType(request.type) if request.type else current.type
        new_status = DependencyStatus(request.status) if request.status else current.status

        if not request.force and not is_transition_allowed(current.status, new_status):
            raise InvalidTransitionError(current.id, current.status.value, new_status.value)

        candidate = dataclasses.replace(current, type=new_type, status=new_status)
        changed = new_type != current.type or new_status != current.status
        if changed and candidate.is_active:
            self._check_duplicate(candidate, exclude_id=current.id)
            if candidate.is_blocking and not request.force:
                self._preflight(candidate, exclude_id=current.id)

        return self.store.update(current.id, {"type": new_type, "status": new_status})

    @_typed_errors
    def delete_dependency(self, dependency_id: str) -> None:
        request = validate_request(DeleteDependencyRequest, {"dependency_id": dependency_id})
        self.store.delete(request.dependency_id)

    # ── Write-time checks ────────────────────────────────────────────

    def _require_tasks(self, *task_ids: str) -> None:
        if self.task_directory is None:
            return
        for task_id in task_ids:
            if self.task_directory.get_task(task_id) is None:
                raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)

    def _check_duplicate(self, dep: Dependency, exclude_id: str | None = None) -> None:
        active = self.store.list_for_task(dep.task_id, DependencyFilter(status="active"))
        for existing in active:
            if existing.id != exclude_id and existing.key == dep.key:
                raise DuplicateDependencyError(
                    f"Active {dep.type.value} dependency already exists: "
                    f"{dep.task_id} -> {dep.depends_on} ({existing.id})",
                    task_id=dep.task_id,
                    depends_on=dep.depends_on,
                    type=dep.type.value,
                    existing_id=existing.id,
                )

    def _preflight(self, dep: Dependency, exclude_id: str | None = None) -> None:
        """Reject dep if its canonical edge closes a cycle over active edges.

        Walks downstream from the new edge's dependent (bounded by
        preflight_max_depth) looking for a path back to its prerequisite.
        """
        _, target, _ = dep.canonical_edge()

        def accept(record: Dependency) -> bool:
            return record.is_active and record.id != exclude_id

        walk = self.traversal.collect(target, self.config.preflight_max_depth, DOWNSTREAM, accept)
        proposed = dataclasses.replace(dep, id=exclude_id or PREFLIGHT_EDGE_ID)
        graph = self.builder.build([*walk.records, proposed])
        cycles = self.cycle_detector.preflight(graph, [graph.edge(proposed.id)])
        if cycles:
            logger.info("Rejected %s -> %s: %s", dep.task_id, dep.depends_on, cycles[0].description)
            raise CycleWouldBeCreatedError(cycles[0].task_ids, dependency_id=exclude_id)

    # ── Graph queries and analysis ───────────────────────────────────

    @_typed_errors
    def get_dependency_graph(
        self,
        task_id: str,
        depth: int = 3,
        direction: str = "both",
        include_resolved: bool = False,
        include_broken: bool = True,
    ) -> DependencyGraphSnapshot:
        options = validate_request(
            DependencyGraphOptions,
            {
                "task_id": task_id,
                "depth": depth,
                "direction": direction,
                "include_resolved": include_resolved,
                "include_broken": include_broken,
            },
        )
        return self.traversal.traverse(
            options.task_id,
            depth=options.depth,
            direction=options.direction,
            include_resolved=options.include_resolved,
            include_broken=options.include_broken,
        )

    @_typed_errors
    def check_dependency_conflicts(
        self,
        task_id: str,
        proposed_dependencies: list[dict[str, Any]] | None = None,
    ) -> ConflictReport:
        """Analyze the task's neighbourhood; never writes."""
        request = validate_request(
            ConflictCheckRequest,
            {"task_id": task_id, "proposed_dependencies": proposed_dependencies or []},
        )
        self._require_tasks(request.task_id)
        return self.analyzer.analyze(request.task_id, request.proposed_dependencies)

    @_typed_errors
    def resolve_dependency_conflicts(
        self, task_id: str, options: dict[str, Any] | None = None
    ) -> ResolutionResult:
        if not task_id:
            raise InvalidRequestError("task_id is required")
        self._require_tasks(task_id)
        return self.resolver.resolve(task_id, options)

    # ── Bulk ─────────────────────────────────────────────────────────

    def _check_batch(self, items: list[Any]) -> None:
        if not isinstance(items, list):
            raise InvalidRequestError("items must be a list")
        if len(items) > self.config.bulk_max_items:
            raise InvalidRequestError(
                f"Batch of {len(items)} items exceeds the limit of {self.config.bulk_max_items}",
                count=len(items),
            )

    @_typed_errors
    def bulk_dependency_operations(
        self,
        operation: str,
        items: list[Any],
        continue_on_error: bool = False,
    ) -> BulkOperationResult:
        """Apply create/update/delete items in order.

        Per-item failures (including invalid items) are reported in the
        result; only a bad operation name or oversized batch raises.
        """
        request = validate_request(
            BulkDependencyRequest,
            {"operation": operation, "continue_on_error": continue_on_error},
        )
        self._check_batch(items)

        ops: list[Operation]
        if request.operation == "create":
            ops = [CreateOp(item, label=_item_field(item, "task_id")) for item in items]
        elif request.operation == "update":
            ops = [UpdateOp(_item_field(item, "dependency_id"), item) for item in items]
        else:
            ops = [
                DeleteOp(item if isinstance(item, str) else _item_field(item, "dependency_id"))
                for item in items
            ]

        coordinator = BulkMutationCoordinator(
            create=lambda item: self._create(validate_request(CreateDependencyRequest, item)),
            update=lambda _, item: self._update(validate_request(UpdateDependencyRequest, item)),
            delete=lambda dep_id: self.store.delete(
                validate_request(DeleteDependencyRequest, {"dependency_id": dep_id}).dependency_id
            ),
        )
        return coordinator.apply(ops, continue_on_error=request.continue_on_error)

    @_typed_errors
    def bulk_create_tasks(
        self, items: list[dict[str, Any]], continue_on_error: bool = False
    ) -> BulkOperationResult:
        directory = self._directory()
        self._check_batch(items)
        coordinator = BulkMutationCoordinator(
            create=lambda item: directory.create_task(
                validate_request(TaskCreateItem, item).model_dump(exclude_none=True)
            ),
        )
        ops = [CreateOp(item, label=_item_field(item, "name")) for item in items]
        return coordinator.apply(ops, continue_on_error=continue_on_error)

    @_typed_errors
    def bulk_update_tasks(
        self, items: list[dict[str, Any]], continue_on_error: bool = False
    ) -> BulkOperationResult:
        directory = self._directory()
        self._check_batch(items)

        def update(_: str | None, item: Any) -> TaskSummary:
            request = validate_request(TaskUpdateItem, item)
            return directory.update_task(
                request.task_id, request.model_dump(exclude_none=True, exclude={"task_id"})
            )

        coordinator = BulkMutationCoordinator(update=update)
        ops = [UpdateOp(_item_field(item, "task_id"), item) for item in items]
        return coordinator.apply(ops, continue_on_error=continue_on_error)

    def _directory(self) -> TaskDirectory:
        if self.task_directory is None:
            raise InvalidRequestError("No task directory is configured")
        return self.task_directory

    # ── Export / import ──────────────────────────────────────────────

    @_typed_errors
    def export_dependency_graph(self, task_id: str, format: str = "json") -> dict[str, str]:
        """Export the graph around task_id, resolved and broken edges included."""
        request = validate_request(ExportRequest, {"task_id": task_id, "format": format})
        snapshot = self.traversal.traverse(
            request.task_id,
            depth=self.config.export_depth,
            include_resolved=True,
            include_broken=True,
        )
        return {"format": request.format, "data": export_snapshot(snapshot, request.format)}

    @_typed_errors
    def import_dependency_graph(
        self,
        data: str | dict[str, Any] | list[Any],
        format: str = "json",
        workspace_id: str | None = None,
        merge_existing: bool = True,
        validate_tasks: bool = False,
        force: bool = False,
    ) -> ImportResult:
        """Create dependencies from exported data.

        Rows are applied in order. An active blocking row that would close a
        cycle over the edges already present is rejected with its line number,
        unless force is set. With merge_existing, rows matching an existing
        active record are skipped; without it they fail as duplicates.
        """
        request = validate_request(
            ImportRequest,
            {
                "format": format,
                "workspace_id": workspace_id,
                "merge_existing": merge_existing,
                "validate_tasks": validate_tasks,
                "force": force,
            },
        )
        workspace = request.workspace_id or self.config.workspace_id
        rows = parse_import(data, request.format)
        result = ImportResult()

        existing = self.store.list_for_workspace(workspace, DependencyFilter(status="active"))
        known_keys = {d.key for d in existing}

        ops: list[Operation] = []
        line_numbers: list[int] = []
        for row in rows:
            if not row.ok:
                result.errors.append({"line_number": row.line_number, "error": row.error})
                continue
            fields = row.fields
            if fields["task_id"] == fields["depends_on"]:
                result.errors.append(
                    {
                        "line_number": row.line_number,
                        "error": SelfDependencyError(fields["task_id"]).message,
                    }
                )
                continue
            if request.validate_tasks:
                directory = self._directory()
                missing = [
                    t
                    for t in (fields["task_id"], fields["depends_on"])
                    if directory.get_task(t) is None
                ]
                if missing:
                    result.errors.append(
                        {"line_number": row.line_number, "error": f"Task not found: {missing[0]}"}
                    )
                    continue
            key = (fields["task_id"], fields["depends_on"], fields["type"])
            if fields["status"] == DependencyStatus.ACTIVE.value:
                if request.merge_existing and key in known_keys:
                    result.skipped_dependencies += 1
                    continue
                known_keys.add(key)
            ops.append(CreateOp(fields, label=f"line {row.line_number}"))
            line_numbers.append(row.line_number)

        def create(f: dict[str, Any]) -> Dependency:
            dep = Dependency(
                id="",
                task_id=f["task_id"],
                depends_on=f["depends_on"],
                type=DependencyType(f["type"]),
                status=DependencyStatus(f["status"]),
                link_id=f.get("link_id"),
                workspace_id=workspace,
            )
            if dep.is_active and dep.is_blocking and not request.force:
                self._preflight(dep)
            return self.store.create(dep)

        coordinator = BulkMutationCoordinator(create=create)
        outcome = coordinator.apply(ops, continue_on_error=True)
        for line_number, item in zip(line_numbers, outcome.results):
            if item.success:
                result.imported_dependencies += 1
            else:
                result.errors.append({"line_number": line_number, "error": item.error})

        logger.info(
            "Imported %d dependencies into %s (%d skipped, %d errors)",
            result.imported_dependencies,
            workspace,
            result.skipped_dependencies,
            len(result.errors),
        )
        return result

    # ── Workspace queries ────────────────────────────────────────────

    @_typed_errors
    def get_workspace_dependencies(
        self,
        workspace_id: str | None = None,
        type: str | None = None,
        status: str | None = None,
        include_resolved: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Dependency]:
        query = validate_request(
            WorkspaceDependencyQuery,
            {
                "workspace_id": workspace_id or self.config.workspace_id,
                "type": type,
                "status": status,
                "include_resolved": include_resolved,
                "limit": limit,
                "offset": offset,
            },
        )
        return self.store.list_for_workspace(
            query.workspace_id,
            DependencyFilter(
                type=query.type, status=query.status, include_resolved=query.include_resolved
            ),
            limit=query.limit,
            offset=query.offset,
        )

    @_typed_errors
    def get_dependency_stats(self, workspace_id: str | None = None) -> dict[str, Any]:
        """Workspace totals by status, active cycle count and busiest tasks."""
        workspace = workspace_id or self.config.workspace_id
        records = self.store.list_for_workspace(
            workspace, DependencyFilter(include_resolved=True)
        )
        by_status = Counter(r.status.value for r in records)
        graph = self.builder.build([r for r in records if r.is_active])
        cycles = self.cycle_detector.audit(graph)

        def top(counts: dict[str, int], label: str) -> list[dict[str, Any]]:
            ranked = sorted(
                ((task, n) for task, n in counts.items() if n > 0),
                key=lambda pair: -pair[1],
            )
            entries = []
            for task, n in ranked[:TOP_TASKS]:
                summary = graph.summary(task)
                entries.append(
                    {"task_id": task, "task_name": summary.name if summary else "", label: n}
                )
            return entries

        nodes = graph.nodes()
        return {
            "workspace_id": workspace,
            "total_dependencies": len(records),
            "active_dependencies": by_status[DependencyStatus.ACTIVE.value],
            "resolved_dependencies": by_status[DependencyStatus.RESOLVED.value],
            "broken_dependencies": by_status[DependencyStatus.BROKEN.value],
            "ignored_dependencies": by_status[DependencyStatus.IGNORED.value],
            "circular_dependencies": len(cycles),
            "most_dependent_tasks": top(
                {n: len(graph.dependencies(n)) for n in nodes}, "dependency_count"
            ),
            "most_blocking_tasks": top(
                {n: len(graph.dependents(n)) for n in nodes}, "blocking_count"
            ),
        }


def _item_field(item: Any, name: str) -> str | None:
    if isinstance(item, dict):
        value = item.get(name)
        return str(value) if value is not None else None
    return None
