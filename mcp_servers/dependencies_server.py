#!/usr/bin/env python3
"""FastMCP server for task dependency management.

Exposes the dependency engine as MCP tools:
- CRUD (create, get, update, delete dependencies)
- Graph queries (dependency graph snapshot, workspace listing, stats)
- Analysis (conflict check, automated resolution)
- Bulk operations (dependencies, generic task create/update)
- Export/import (json, csv, graphml)

Tools never raise. Failures come back as {"success": False, "error": {...},
"message": ...} where error carries the typed error kind and identifiers.

Data lives under $TASKDEPS_DATA (dependencies.json, tasks.json and the
optional taskdeps.yaml).

Usage:
    # Development
    fastmcp dev mcp_servers/dependencies_server.py

    # Production (stdio)
    uv run python -m mcp_servers.dependencies_server
"""

from __future__ import annotations

import logging
from typing import Any

from fastmcp import FastMCP

from taskdeps.ascii_graph import AsciiGraphRenderer
from taskdeps.config import load_config
from taskdeps.dependency_model import Dependency
from taskdeps.dependency_service import DependencyService
from taskdeps.errors import DependencyError
from taskdeps.file_store import FileDependencyStore, FileTaskDirectory
from taskdeps.paths import get_data_root

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastMCP server
mcp = FastMCP("taskdeps")


def _get_service() -> DependencyService:
    """Get a DependencyService over the file stores in $TASKDEPS_DATA."""
    data_root = get_data_root()
    tasks = FileTaskDirectory(data_root)
    store = FileDependencyStore(data_root, task_directory=tasks)
    return DependencyService(store, tasks, load_config(data_root))


def _failure(action: str, e: Exception, **fields: Any) -> dict[str, Any]:
    """Build the failure response. Must be called from an except block."""
    if isinstance(e, DependencyError):
        logger.warning("%s: %s", action, e.message)
        return {"success": False, **fields, "error": e.to_dict(), "message": e.message}
    logger.exception(f"{action} failed")
    return {
        "success": False,
        **fields,
        "error": {"kind": "store_unavailable", "message": str(e)},
        "message": f"Failed to {action}: {e}",
    }


def _format_dependency_line(dep: Dependency) -> str:
    return f"{dep.id}: {dep.task_id} {dep.type.value} {dep.depends_on} [{dep.status.value}]"


def _format_dependency_list(deps: list[Dependency]) -> str:
    return "\n".join(_format_dependency_line(d) for d in deps)


# =============================================================================
# DEPENDENCY CRUD
# =============================================================================


@mcp.tool()
def create_dependency(
    task_id: str,
    depends_on: str,
    type: str = "blocking",
    link_id: str | None = None,
    created_by: str | None = None,
    force: bool = False,
) -> dict[str, Any]:
    """Create a dependency between two tasks.

    Args:
        task_id: The dependent task
        depends_on: The task it depends on
        type: "blocking" (task_id is blocked by depends_on), "waiting_on"
            (the inverse) or "linked" (related, non-blocking)
        link_id: Optional id grouping edges created together
        created_by: Optional creator name
        force: Create even if the edge closes a dependency cycle

    Returns:
        Dictionary with:
        - success: True if created
        - dependency: The created dependency (or None)
        - message: Status message
        - error: Typed error (kind, message, identifiers) on failure; for
          cycles, error.cycle holds the full path
    """
    try:
        dep = _get_service().create_dependency(
            task_id, depends_on, type=type, link_id=link_id, created_by=created_by, force=force
        )
        return {
            "success": True,
            "dependency": dep.to_dict(),
            "message": f"Created dependency {dep.id}: {_format_dependency_line(dep)}",
        }
    except Exception as e:
        return _failure("create dependency", e, dependency=None)


@mcp.tool()
def get_task_dependencies(
    task_id: str,
    type: str | None = None,
    status: str | None = None,
    include_resolved: bool = False,
) -> dict[str, Any]:
    """List dependencies where the task is either end.

    Args:
        task_id: Task ID
        type: Filter by dependency type
        status: Filter by dependency status
        include_resolved: Include resolved dependencies

    Returns:
        Dictionary with:
        - success: True on success
        - dependencies: Dependency records in creation order
        - count: Number of dependencies
        - formatted: One line per dependency
        - message: Status message
    """
    try:
        deps = _get_service().get_task_dependencies(
            task_id, type=type, status=status, include_resolved=include_resolved
        )
        return {
            "success": True,
            "dependencies": [d.to_dict() for d in deps],
            "count": len(deps),
            "formatted": _format_dependency_list(deps),
            "message": f"Found {len(deps)} dependencies for: {task_id}",
        }
    except Exception as e:
        return _failure("get task dependencies", e, dependencies=[], count=0)


@mcp.tool()
def update_dependency(
    dependency_id: str,
    type: str | None = None,
    status: str | None = None,
    force: bool = False,
) -> dict[str, Any]:
    """Update a dependency's type or status.

    Allowed status changes without force: active -> resolved/broken/ignored,
    broken -> active/resolved/ignored, ignored -> active/resolved/broken.
    Resolved dependencies cannot change status without force.

    Args:
        dependency_id: Dependency ID
        type: New type
        status: New status
        force: Allow any transition and skip the cycle check

    Returns:
        Dictionary with success, dependency, message (and error on failure)
    """
    try:
        dep = _get_service().update_dependency(
            dependency_id, type=type, status=status, force=force
        )
        return {
            "success": True,
            "dependency": dep.to_dict(),
            "message": f"Updated dependency {dep.id}",
        }
    except Exception as e:
        return _failure("update dependency", e, dependency=None)


@mcp.tool()
def delete_dependency(dependency_id: str) -> dict[str, Any]:
    """Delete a dependency.

    Args:
        dependency_id: Dependency ID

    Returns:
        Dictionary with success and message (and error on failure)
    """
    try:
        _get_service().delete_dependency(dependency_id)
        return {"success": True, "message": f"Deleted dependency {dependency_id}"}
    except Exception as e:
        return _failure("delete dependency", e)


# =============================================================================
# GRAPH QUERIES AND ANALYSIS
# =============================================================================


@mcp.tool()
def get_dependency_graph(
    task_id: str,
    depth: int = 3,
    direction: str = "both",
    include_resolved: bool = False,
    include_broken: bool = True,
) -> dict[str, Any]:
    """Get the dependency graph around a task.

    Args:
        task_id: Root task
        depth: Maximum hops from the root (1-10)
        direction: "upstream" (what the task depends on), "downstream"
            (what depends on the task) or "both"
        include_resolved: Include resolved dependencies
        include_broken: Include broken dependencies

    Returns:
        Dictionary with:
        - success: True on success
        - graph: Nodes, edges, cycles, critical_path and truncated edges
        - formatted: ASCII rendering of the graph
        - message: Status message
    """
    try:
        snapshot = _get_service().get_dependency_graph(
            task_id,
            depth=depth,
            direction=direction,
            include_resolved=include_resolved,
            include_broken=include_broken,
        )
        message = f"Graph for {task_id}: {len(snapshot.nodes)} tasks, {len(snapshot.edges)} dependencies"
        if snapshot.cycles:
            message += f", {len(snapshot.cycles)} cycle(s)"
        if snapshot.is_truncated:
            message += f", {len(snapshot.truncated)} edge(s) beyond depth {depth}"
        return {
            "success": True,
            "graph": snapshot.to_dict(),
            "formatted": AsciiGraphRenderer(snapshot).render(),
            "message": message,
        }
    except Exception as e:
        return _failure("get dependency graph", e, graph=None)


@mcp.tool()
def check_dependency_conflicts(
    task_id: str,
    proposed_dependencies: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    """Check a task's dependencies for cycles, duplicates and invalid statuses.

    Args:
        task_id: Task to analyze
        proposed_dependencies: Edges to check before creating them, each
            {"depends_on": ..., "type": ...} with task_id as the dependent

    Returns:
        Dictionary with:
        - success: True if the analysis ran
        - report: has_conflicts, conflicts and warnings
        - message: Status message
    """
    try:
        report = _get_service().check_dependency_conflicts(task_id, proposed_dependencies)
        return {
            "success": True,
            "report": report.to_dict(),
            "message": (
                f"{len(report.conflicts)} conflict(s), {len(report.warnings)} warning(s) "
                f"for {task_id}"
            ),
        }
    except Exception as e:
        return _failure("check dependency conflicts", e, report=None)


@mcp.tool()
def resolve_dependency_conflicts(
    task_id: str,
    break_cycles: bool = True,
    remove_duplicates: bool = True,
    update_invalid_statuses: bool = True,
) -> dict[str, Any]:
    """Automatically fix conflicts around a task.

    Duplicates keep the earliest dependency; invalid statuses are marked
    resolved (closed prerequisite) or broken (missing prerequisite); each
    cycle loses its most recently created dependency. Running it twice
    makes no further changes.

    Returns:
        Dictionary with success, resolution (resolved_conflicts,
        remaining_conflicts, actions_taken, errors) and message
    """
    try:
        result = _get_service().resolve_dependency_conflicts(
            task_id,
            {
                "break_cycles": break_cycles,
                "remove_duplicates": remove_duplicates,
                "update_invalid_statuses": update_invalid_statuses,
            },
        )
        return {
            "success": result.success,
            "resolution": result.to_dict(),
            "message": (
                f"Resolved {result.resolved_conflicts} conflict(s) with "
                f"{len(result.actions_taken)} action(s); {result.remaining_conflicts} remaining"
            ),
        }
    except Exception as e:
        return _failure("resolve dependency conflicts", e, resolution=None)


# =============================================================================
# BULK OPERATIONS
# =============================================================================


@mcp.tool()
def bulk_dependency_operations(
    operation: str,
    items: list[Any],
    continue_on_error: bool = False,
) -> dict[str, Any]:
    """Create, update or delete up to 50 dependencies in order.

    Args:
        operation: "create", "update" or "delete"
        items: create items take create_dependency's fields; update items
            take dependency_id plus update fields; delete items are ids or
            {"dependency_id": ...}
        continue_on_error: Keep going after a failure. When False, items
            after the first failure are reported as skipped.

    Returns:
        Dictionary with success, success_count, error_count, total_count,
        execution_time_ms, results and message
    """
    try:
        outcome = _get_service().bulk_dependency_operations(operation, items, continue_on_error)
        return {
            **outcome.to_dict(),
            "message": (
                f"Bulk {operation}: {outcome.success_count} succeeded, "
                f"{outcome.error_count} failed"
            ),
        }
    except Exception as e:
        return _failure(f"bulk {operation} dependencies", e, results=[])


@mcp.tool()
def bulk_create_tasks(
    items: list[dict[str, Any]], continue_on_error: bool = False
) -> dict[str, Any]:
    """Create up to 50 tasks (name, status, assignees, due_date, url).

    Returns:
        Dictionary with success, counts, per-item results and message
    """
    try:
        outcome = _get_service().bulk_create_tasks(items, continue_on_error)
        return {
            **outcome.to_dict(),
            "message": f"Created {outcome.success_count} of {outcome.total_count} tasks",
        }
    except Exception as e:
        return _failure("bulk create tasks", e, results=[])


@mcp.tool()
def bulk_update_tasks(
    items: list[dict[str, Any]], continue_on_error: bool = False
) -> dict[str, Any]:
    """Update up to 50 tasks; each item needs task_id plus fields to change.

    Returns:
        Dictionary with success, counts, per-item results and message
    """
    try:
        outcome = _get_service().bulk_update_tasks(items, continue_on_error)
        return {
            **outcome.to_dict(),
            "message": f"Updated {outcome.success_count} of {outcome.total_count} tasks",
        }
    except Exception as e:
        return _failure("bulk update tasks", e, results=[])


# =============================================================================
# EXPORT / IMPORT / WORKSPACE
# =============================================================================


@mcp.tool()
def export_dependency_graph(task_id: str, format: str = "json") -> dict[str, Any]:
    """Export the dependency graph around a task.

    Args:
        task_id: Root task
        format: "json", "csv" (source,target,type,status rows) or "graphml"

    Returns:
        Dictionary with success, format, data and message
    """
    try:
        exported = _get_service().export_dependency_graph(task_id, format)
        return {
            "success": True,
            **exported,
            "message": f"Exported dependency graph for {task_id} as {format}",
        }
    except Exception as e:
        return _failure("export dependency graph", e, format=format, data="")


@mcp.tool()
def import_dependency_graph(
    data: str,
    format: str = "json",
    workspace_id: str | None = None,
    merge_existing: bool = True,
    validate_tasks: bool = False,
    force: bool = False,
) -> dict[str, Any]:
    """Import dependencies from json or csv export data.

    Args:
        data: Exported document
        format: "json" or "csv"
        workspace_id: Target workspace (defaults to the configured one)
        merge_existing: Skip rows that match an existing active dependency
        validate_tasks: Reject rows that reference unknown tasks
        force: Import active blocking rows even if they close a dependency
            cycle (otherwise such rows are reported as errors)

    Returns:
        Dictionary with success, imported_dependencies,
        skipped_dependencies, errors and message
    """
    try:
        result = _get_service().import_dependency_graph(
            data,
            format=format,
            workspace_id=workspace_id,
            merge_existing=merge_existing,
            validate_tasks=validate_tasks,
            force=force,
        )
        return {
            **result.to_dict(),
            "message": (
                f"Imported {result.imported_dependencies} dependencies, skipped "
                f"{result.skipped_dependencies}, {len(result.errors)} error(s)"
            ),
        }
    except Exception as e:
        return _failure("import dependency graph", e, imported_dependencies=0)


@mcp.tool()
def get_workspace_dependencies(
    workspace_id: str | None = None,
    type: str | None = None,
    status: str | None = None,
    include_resolved: bool = False,
    limit: int | None = None,
    offset: int = 0,
) -> dict[str, Any]:
    """List dependencies in a workspace, oldest first.

    Returns:
        Dictionary with success, dependencies, count, formatted and message
    """
    try:
        deps = _get_service().get_workspace_dependencies(
            workspace_id,
            type=type,
            status=status,
            include_resolved=include_resolved,
            limit=limit,
            offset=offset,
        )
        return {
            "success": True,
            "dependencies": [d.to_dict() for d in deps],
            "count": len(deps),
            "formatted": _format_dependency_list(deps),
            "message": f"Found {len(deps)} dependencies",
        }
    except Exception as e:
        return _failure("get workspace dependencies", e, dependencies=[], count=0)


@mcp.tool()
def get_dependency_stats(workspace_id: str | None = None) -> dict[str, Any]:
    """Summarize a workspace's dependencies.

    Returns:
        Dictionary with success, stats (totals by status,
        circular_dependencies, most_dependent_tasks, most_blocking_tasks)
        and message
    """
    try:
        stats = _get_service().get_dependency_stats(workspace_id)
        return {
            "success": True,
            "stats": stats,
            "message": (
                f"{stats['total_dependencies']} dependencies, "
                f"{stats['circular_dependencies']} cycle(s)"
            ),
        }
    except Exception as e:
        return _failure("get dependency stats", e, stats=None)


# =============================================================================
# MAIN ENTRY POINT
# =============================================================================


if __name__ == "__main__":
    mcp.run()
