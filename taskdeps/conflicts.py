#!/usr/bin/env python3
"""Conflict analysis and automated remediation for dependency graphs.

ConflictAnalyzer classifies defects in the dependencies around a task:
- circular: a cycle over active blocking-equivalent edges (plus proposed ones)
- duplicate: two or more active records sharing (task_id, depends_on, type)
- invalid_status: an active blocking edge whose prerequisite task is closed
  or no longer exists

and adds non-blocking warnings (fan-in/fan-out, long chains, due dates that
run backwards along a chain). Warnings never reject a write.

ConflictResolver applies the suggested fixes through the DependencyStore,
using BulkMutationCoordinator for every write. It never edits graph objects
directly, and it is idempotent: a second run with no intervening edge changes
takes no actions. There is no distributed lock; two resolvers racing on
overlapping edges may both attempt the same delete, and the loser's failure
is reported in ``errors``.

Usage:
    analyzer = ConflictAnalyzer(store, task_directory, config)
    report = analyzer.analyze("task-a", proposed=[{"depends_on": "task-b"}])

    resolver = ConflictResolver(store, analyzer)
    result = resolver.resolve("task-a", ResolutionOptions(break_cycles=True))
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from taskdeps.bulk import BulkMutationCoordinator, DeleteOp, Operation, UpdateOp
from taskdeps.config import EngineConfig
from taskdeps.critical_path import CriticalPathCalculator
from taskdeps.cycle_detector import Cycle, CycleDetector
from taskdeps.dependency_model import (
    Dependency,
    DependencyStatus,
    DependencyType,
    TaskSummary,
    creation_order,
    utcnow,
)
from taskdeps.dependency_store import DependencyStore, TaskDirectory
from taskdeps.graph_builder import DependencyGraph, GraphBuilder
from taskdeps.schemas import ProposedDependency, ResolutionOptions, validate_request
from taskdeps.traversal import BOTH, TraversalEngine, active_only

logger = logging.getLogger(__name__)

CIRCULAR = "circular"
DUPLICATE = "duplicate"
INVALID_STATUS = "invalid_status"

PROPOSED_PREFIX = "proposed-"
MISSING_TASK = "missing"


@dataclass
class Conflict:
    """A structural or semantic defect found by analysis."""

    type: str
    description: str
    affected_tasks: list[str]
    suggested_resolution: str
    dependency_ids: list[str] = field(default_factory=list)
    remove_ids: list[str] = field(default_factory=list)  # Suggested deletions
    status_updates: dict[str, str] = field(default_factory=dict)  # Suggested dep id -> status

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.type,
            "description": self.description,
            "affected_tasks": list(self.affected_tasks),
            "suggested_resolution": self.suggested_resolution,
            "dependency_ids": list(self.dependency_ids),
        }


@dataclass
class DependencyWarning:
    """A non-blocking observation (performance, complexity, timeline)."""

    type: str
    description: str
    affected_tasks: list[str]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "type": self.type,
            "description": self.description,
            "affected_tasks": list(self.affected_tasks),
        }


@dataclass
class ConflictReport:
    conflicts: list[Conflict] = field(default_factory=list)
    warnings: list[DependencyWarning] = field(default_factory=list)
    cycles: list[Cycle] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def of_type(self, conflict_type: str) -> list[Conflict]:
        return [c for c in self.conflicts if c.type == conflict_type]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "has_conflicts": self.has_conflicts,
            "conflicts": [c.to_dict() for c in self.conflicts],
            "warnings": [w.to_dict() for w in self.warnings],
        }


class ConflictAnalyzer:
    """Classifies conflicts and warnings around a task.

    Args:
        store: Source of dependency records.
        task_directory: Task-metadata collaborator for status/due-date checks.
            Without it, the denormalized summaries on records are used.
        config: Thresholds and walk bounds.
    """

    def __init__(
        self,
        store: DependencyStore,
        task_directory: TaskDirectory | None = None,
        config: EngineConfig | None = None,
        traversal: TraversalEngine | None = None,
    ):
        self.store = store
        self.task_directory = task_directory
        self.config = config or EngineConfig()
        self.traversal = traversal or TraversalEngine(store, task_directory)
        self.builder = GraphBuilder()
        self.cycle_detector = CycleDetector()
        self.critical_path_calculator = CriticalPathCalculator()

    def analyze(
        self,
        task_id: str,
        proposed: Iterable[ProposedDependency | dict[str, Any]] | None = None,
    ) -> ConflictReport:
        """Analyze active edges around task_id, plus optional proposed edges.

        Proposed edges are treated as active records created after every
        committed one, with ids "proposed-N". Nothing is written.
        """
        walk = self.traversal.collect(task_id, self.config.analysis_depth, BOTH, active_only)
        records = list(walk.records)
        now = max([utcnow(), *(r.date_created for r in records)])
        for i, item in enumerate(proposed or []):
            p = validate_request(ProposedDependency, item)
            records.append(
                Dependency(
                    id=f"{PROPOSED_PREFIX}{i + 1}",
                    task_id=task_id,
                    depends_on=p.depends_on,
                    type=DependencyType(p.type),
                    status=DependencyStatus.ACTIVE,
                    date_created=now,
                    date_updated=now,
                )
            )

        report = self.analyze_records(records, extra_nodes=[task_id])
        logger.info(
            "Conflict check for %s: %d conflicts, %d warnings over %d edges",
            task_id,
            len(report.conflicts),
            len(report.warnings),
            len(records),
        )
        return report

    def analyze_records(
        self, records: list[Dependency], extra_nodes: Iterable[str] = ()
    ) -> ConflictReport:
        """Analyze an explicit record set (active records only are considered)."""
        active = [r for r in records if r.is_active]
        order = {r.id: i for i, r in enumerate(active)}
        graph = self.builder.build(active, extra_nodes=extra_nodes)
        lookup = _TaskLookup(self.task_directory, graph)

        report = ConflictReport()
        report.cycles = self.cycle_detector.audit(graph)
        report.conflicts.extend(self._circular(graph, report.cycles, order))
        report.conflicts.extend(self._duplicates(active))
        report.conflicts.extend(self._invalid_statuses(active, lookup))
        report.warnings.extend(self._warnings(graph, report.cycles, active, lookup))
        return report

    # ── Conflict classes ─────────────────────────────────────────────

    def _circular(
        self, graph: DependencyGraph, cycles: list[Cycle], order: dict[str, int]
    ) -> list[Conflict]:
        conflicts = []
        for cycle in cycles:
            victim = self._most_recent(graph, cycle.edge_ids, order)
            conflicts.append(
                Conflict(
                    type=CIRCULAR,
                    description=cycle.description,
                    affected_tasks=list(cycle.task_ids),
                    suggested_resolution=(
                        f"Remove dependency {victim} (most recently created edge in the cycle)"
                        if victim
                        else "Remove one dependency from the cycle"
                    ),
                    dependency_ids=list(cycle.edge_ids),
                    remove_ids=[victim] if victim else [],
                )
            )
        return conflicts

    @staticmethod
    def _most_recent(graph: DependencyGraph, edge_ids: list[str], order: dict[str, int]) -> str | None:
        edges = [graph.edge(eid) for eid in edge_ids]
        edges = [e for e in edges if e is not None]
        if not edges:
            return None
        return max(edges, key=lambda e: (e.date_created, order.get(e.id, -1))).id

    @staticmethod
    def _duplicates(active: list[Dependency]) -> list[Conflict]:
        groups: dict[tuple[str, str, str], list[Dependency]] = defaultdict(list)
        for dep in active:
            groups[dep.key].append(dep)

        conflicts = []
        for (task_id, depends_on, dep_type), group in groups.items():
            if len(group) < 2:
                continue
            ordered = creation_order(group)
            keep, extra = ordered[0], ordered[1:]
            extra_ids = [d.id for d in extra]
            if any(d.id.startswith(PROPOSED_PREFIX) for d in extra):
                suggestion = f"Drop the proposed dependency; {keep.id} already covers it"
            else:
                suggestion = f"Keep {keep.id} (earliest) and delete {', '.join(extra_ids)}"
            conflicts.append(
                Conflict(
                    type=DUPLICATE,
                    description=(
                        f"{len(group)} active {dep_type} dependencies from {task_id} "
                        f"on {depends_on}"
                    ),
                    affected_tasks=[task_id, depends_on],
                    suggested_resolution=suggestion,
                    dependency_ids=[d.id for d in ordered],
                    remove_ids=[i for i in extra_ids if not i.startswith(PROPOSED_PREFIX)],
                )
            )
        return conflicts

    def _invalid_statuses(self, active: list[Dependency], lookup: _TaskLookup) -> list[Conflict]:
        conflicts = []
        for dep in active:
            if not dep.is_blocking:
                continue
            prerequisite, dependent, _ = dep.canonical_edge()
            status = lookup.status(prerequisite, dep)
            if status is None:
                continue
            if status == MISSING_TASK:
                conflicts.append(
                    Conflict(
                        type=INVALID_STATUS,
                        description=f"Dependency {dep.id} points at missing task {prerequisite}",
                        affected_tasks=[dependent, prerequisite],
                        suggested_resolution=f"Mark dependency {dep.id} as broken",
                        dependency_ids=[dep.id],
                        status_updates={dep.id: DependencyStatus.BROKEN.value},
                    )
                )
            elif self.config.is_closed_status(status):
                conflicts.append(
                    Conflict(
                        type=INVALID_STATUS,
                        description=(
                            f"Dependency {dep.id} is active but prerequisite "
                            f"{prerequisite} is already '{status}'"
                        ),
                        affected_tasks=[dependent, prerequisite],
                        suggested_resolution=f"Mark dependency {dep.id} as resolved",
                        dependency_ids=[dep.id],
                        status_updates={dep.id: DependencyStatus.RESOLVED.value},
                    )
                )
        return conflicts

    # ── Warnings ─────────────────────────────────────────────────────

    def _warnings(
        self,
        graph: DependencyGraph,
        cycles: list[Cycle],
        active: list[Dependency],
        lookup: _TaskLookup,
    ) -> list[DependencyWarning]:
        warnings = []
        for node in graph.nodes():
            fan_in = len(graph.dependencies(node))
            if fan_in > self.config.max_fan_in:
                warnings.append(
                    DependencyWarning(
                        type="performance",
                        description=(
                            f"{node} waits on {fan_in} tasks "
                            f"(threshold: {self.config.max_fan_in})"
                        ),
                        affected_tasks=[node, *graph.dependencies(node)],
                    )
                )
            fan_out = len(graph.dependents(node))
            if fan_out > self.config.max_fan_out:
                warnings.append(
                    DependencyWarning(
                        type="performance",
                        description=(
                            f"{node} blocks {fan_out} tasks "
                            f"(threshold: {self.config.max_fan_out})"
                        ),
                        affected_tasks=[node, *graph.dependents(node)],
                    )
                )

        if not cycles:
            path = self.critical_path_calculator.calculate(graph)
            if path.hop_count > self.config.max_chain_length:
                warnings.append(
                    DependencyWarning(
                        type="complexity",
                        description=(
                            f"Dependency chain of {path.hop_count} hops "
                            f"(threshold: {self.config.max_chain_length})"
                        ),
                        affected_tasks=list(path.task_ids),
                    )
                )

        for dep in active:
            if not dep.is_blocking:
                continue
            prerequisite, dependent, _ = dep.canonical_edge()
            before = lookup.due_date(prerequisite, dep)
            after = lookup.due_date(dependent, dep)
            if before and after and before > after:
                warnings.append(
                    DependencyWarning(
                        type="timeline",
                        description=(
                            f"{prerequisite} is due {before.date().isoformat()}, after "
                            f"{dependent} which depends on it ({after.date().isoformat()})"
                        ),
                        affected_tasks=[prerequisite, dependent],
                    )
                )
        return warnings


class _TaskLookup:
    """Per-call task metadata lookups (directory first, then record summaries)."""

    def __init__(self, directory: TaskDirectory | None, graph: DependencyGraph):
        self.directory = directory
        self.graph = graph
        self._cache: dict[str, TaskSummary | None] = {}

    def summary(self, task_id: str, dep: Dependency) -> TaskSummary | None:
        if self.directory is not None:
            if task_id not in self._cache:
                self._cache[task_id] = self.directory.get_task(task_id)
            return self._cache[task_id]
        if task_id == dep.depends_on and dep.depends_on_info is not None:
            return dep.depends_on_info
        if task_id == dep.task_id and dep.task_info is not None:
            return dep.task_info
        return self.graph.summary(task_id)

    def status(self, task_id: str, dep: Dependency) -> str | None:
        """Task status, MISSING_TASK when the directory does not know it, None if unknown."""
        summary = self.summary(task_id, dep)
        if summary is None:
            return MISSING_TASK if self.directory is not None else None
        return summary.status or None

    def due_date(self, task_id: str, dep: Dependency):
        summary = self.summary(task_id, dep)
        return summary.due_date if summary else None


@dataclass
class ResolutionAction:
    action: str
    description: str
    affected_dependencies: list[str]

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "action": self.action,
            "description": self.description,
            "affected_dependencies": list(self.affected_dependencies),
        }


@dataclass
class ResolutionResult:
    resolved_conflicts: int = 0
    remaining_conflicts: int = 0
    actions_taken: list[ResolutionAction] = field(default_factory=list)
    errors: list[dict[str, Any]] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "resolved_conflicts": self.resolved_conflicts,
            "remaining_conflicts": self.remaining_conflicts,
            "actions_taken": [a.to_dict() for a in self.actions_taken],
            "errors": list(self.errors),
        }


class ConflictResolver:
    """Idempotent remediation of conflicts, written through the store.

    Order: remove duplicates, update invalid statuses, break cycles. Every
    step re-analyzes from freshly fetched data.
    """

    MAX_CYCLE_ROUNDS = 100

    def __init__(self, store: DependencyStore, analyzer: ConflictAnalyzer):
        self.store = store
        self.analyzer = analyzer
        self.coordinator = BulkMutationCoordinator(
            update=store.update,
            delete=store.delete,
        )

    def resolve(
        self, task_id: str, options: ResolutionOptions | dict[str, Any] | None = None
    ) -> ResolutionResult:
        opts = validate_request(ResolutionOptions, options or {})
        result = ResolutionResult()

        if opts.remove_duplicates:
            for conflict in self.analyzer.analyze(task_id).of_type(DUPLICATE):
                ops = [DeleteOp(dep_id) for dep_id in conflict.remove_ids]
                done = self._apply(ops, result)
                if done:
                    result.actions_taken.append(
                        ResolutionAction(
                            action="remove_duplicate",
                            description=(
                                f"Kept {conflict.dependency_ids[0]}, deleted {', '.join(done)}"
                            ),
                            affected_dependencies=done,
                        )
                    )
                if ops and len(done) == len(ops):
                    result.resolved_conflicts += 1

        if opts.update_invalid_statuses:
            for conflict in self.analyzer.analyze(task_id).of_type(INVALID_STATUS):
                ops = [UpdateOp(dep_id, {"status": s}) for dep_id, s in conflict.status_updates.items()]
                done = self._apply(ops, result)
                for dep_id in done:
                    result.actions_taken.append(
                        ResolutionAction(
                            action="update_status",
                            description=(
                                f"Marked {dep_id} as {conflict.status_updates[dep_id]}: "
                                f"{conflict.description}"
                            ),
                            affected_dependencies=[dep_id],
                        )
                    )
                if ops and len(done) == len(ops):
                    result.resolved_conflicts += 1

        if opts.break_cycles:
            self._break_cycles(task_id, result)

        result.remaining_conflicts = len(self.analyzer.analyze(task_id).conflicts)
        logger.info(
            "Resolved %d conflicts for %s with %d actions; %d remaining, %d errors",
            result.resolved_conflicts,
            task_id,
            len(result.actions_taken),
            result.remaining_conflicts,
            len(result.errors),
        )
        return result

    def _break_cycles(self, task_id: str, result: ResolutionResult) -> None:
        """Delete the newest edge of each cycle until no cycle remains or no progress is made."""
        for _ in range(self.MAX_CYCLE_ROUNDS):
            circular = self.analyzer.analyze(task_id).of_type(CIRCULAR)
            if not circular:
                return

            scheduled: set[str] = set()
            ops: list[Operation] = []
            targets: dict[str, Conflict] = {}
            for conflict in circular:
                if scheduled & set(conflict.dependency_ids) or not conflict.remove_ids:
                    continue
                victim = conflict.remove_ids[0]
                scheduled.add(victim)
                ops.append(DeleteOp(victim))
                targets[victim] = conflict

            done = self._apply(ops, result)
            for dep_id in done:
                result.actions_taken.append(
                    ResolutionAction(
                        action="break_cycle",
                        description=(
                            f"Deleted {dep_id} (most recently created edge) to break "
                            f"{targets[dep_id].description}"
                        ),
                        affected_dependencies=[dep_id],
                    )
                )
                result.resolved_conflicts += 1
            if not done:
                return

    def _apply(self, ops: list[Operation], result: ResolutionResult) -> list[str]:
        """Run ops with continue-on-error; return identifiers that succeeded."""
        if not ops:
            return []
        outcome = self.coordinator.apply(ops, continue_on_error=True)
        for item in outcome.results:
            if not item.success:
                result.errors.append(
                    {
                        "dependency_id": item.identifier,
                        "error": item.error,
                        "error_kind": item.error_kind,
                    }
                )
        return [item.identifier for item in outcome.results if item.success and item.identifier]
