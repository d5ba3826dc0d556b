#!/usr/bin/env python3
"""Traversal Engine: depth- and direction-bounded walks producing graph snapshots.

Directions (canonical edges point prerequisite -> dependent):
- upstream: what the task depends on (follow edges backwards)
- downstream: what depends on the task (follow edges forwards)
- both: union of the two walks

Linked edges are followed in either direction by every walk.

The walk is a BFS from the root. Nodes more than ``depth`` hops away are not
included; an edge that would reach one is recorded as a TruncationMarker so
callers can tell "no further dependencies" from "cut off by depth".

All data is fetched from the store during the call. Per-call fetch results
are reused between the upstream and downstream walks and then discarded.

Usage:
    from taskdeps.traversal import TraversalEngine

    engine = TraversalEngine(store)
    snapshot = engine.traverse("task-a", depth=3, direction="both")
    snapshot.cycles, snapshot.critical_path, snapshot.truncated
"""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from taskdeps.critical_path import CriticalPath, CriticalPathCalculator
from taskdeps.cycle_detector import Cycle, CycleDetector
from taskdeps.dependency_model import (
    Dependency,
    DependencyStatus,
    TaskSummary,
    creation_order,
)
from taskdeps.dependency_store import DependencyStore, TaskDirectory
from taskdeps.errors import NotFoundError
from taskdeps.graph_builder import DependencyGraph, GraphBuilder, GraphEdge
from taskdeps.schemas import DependencyFilter

logger = logging.getLogger(__name__)

DependencyPredicate = Callable[[Dependency], bool]

UPSTREAM = "upstream"
DOWNSTREAM = "downstream"
BOTH = "both"


@dataclass
class TruncationMarker:
    """An edge that crosses the depth boundary."""

    edge_id: str
    from_task: str  # Inside the boundary
    to_task: str  # Outside the boundary
    level: int  # Level of from_task
    direction: str

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "edge_id": self.edge_id,
            "from_task": self.from_task,
            "to_task": self.to_task,
            "level": self.level,
            "direction": self.direction,
        }


@dataclass
class GraphNode:
    """A task in a snapshot, with display fields and resolved edges."""

    task_id: str
    level: int
    name: str = ""
    status: str = ""
    assignees: list[str] = field(default_factory=list)
    due_date: str | None = None
    url: str = ""
    dependencies: list[dict[str, Any]] = field(default_factory=list)  # Incoming edges
    dependents: list[dict[str, Any]] = field(default_factory=list)  # Outgoing edges

    @classmethod
    def from_graph(cls, graph: DependencyGraph, task_id: str, level: int) -> GraphNode:
        summary = graph.summary(task_id)
        return cls(
            task_id=task_id,
            level=level,
            name=summary.name if summary else "",
            status=summary.status if summary else "",
            assignees=list(summary.assignees) if summary else [],
            due_date=summary.due_date.isoformat() if summary and summary.due_date else None,
            url=summary.url if summary else "",
            dependencies=[
                {"id": e.id, "type": e.type, "status": e.status, "source_task_id": e.source}
                for e in graph.in_edges(task_id)
            ],
            dependents=[
                {"id": e.id, "type": e.type, "status": e.status, "target_task_id": e.target}
                for e in graph.out_edges(task_id)
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "task_id": self.task_id,
            "task_name": self.name,
            "task_status": self.status,
            "assignees": list(self.assignees),
            "due_date": self.due_date,
            "task_url": self.url,
            "level": self.level,
            "dependencies": list(self.dependencies),
            "dependents": list(self.dependents),
        }


@dataclass
class DependencyGraphSnapshot:
    """Result of one traversal. Ephemeral: valid for the call that built it."""

    root_task_id: str
    depth: int
    direction: str
    nodes: list[GraphNode]
    edges: list[GraphEdge]
    cycles: list[Cycle] = field(default_factory=list)
    critical_path: CriticalPath | None = None
    truncated: list[TruncationMarker] = field(default_factory=list)
    graph: DependencyGraph | None = field(default=None, repr=False, compare=False)

    @property
    def is_truncated(self) -> bool:
        return bool(self.truncated)

    def node(self, task_id: str) -> GraphNode | None:
        return next((n for n in self.nodes if n.task_id == task_id), None)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "root_task_id": self.root_task_id,
            "depth": self.depth,
            "direction": self.direction,
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
            "cycles": [c.to_dict() for c in self.cycles],
            "critical_path": self.critical_path.to_dict() if self.critical_path else None,
            "truncated": [t.to_dict() for t in self.truncated],
        }


@dataclass
class WalkResult:
    """Raw output of a bounded walk, before graph assembly."""

    levels: dict[str, int]
    records: list[Dependency]
    truncated: list[TruncationMarker]


def status_predicate(include_resolved: bool, include_broken: bool) -> DependencyPredicate:
    """Build the traversal status filter."""

    def accept(dep: Dependency) -> bool:
        if dep.status == DependencyStatus.RESOLVED and not include_resolved:
            return False
        if dep.status == DependencyStatus.BROKEN and not include_broken:
            return False
        return True

    return accept


def active_only(dep: Dependency) -> bool:
    return dep.status == DependencyStatus.ACTIVE


def _step(edge: GraphEdge, node: str, direction: str) -> str | None:
    """The neighbor reached from node over edge in direction, or None."""
    if not edge.is_blocking:
        if edge.source == node:
            return edge.target
        if edge.target == node:
            return edge.source
        return None
    if direction == UPSTREAM and edge.target == node:
        return edge.source
    if direction == DOWNSTREAM and edge.source == node:
        return edge.target
    return None


class TraversalEngine:
    """Walks the dependency graph around a task and builds snapshots.

    Args:
        store: Source of dependency records.
        task_directory: Optional collaborator used to confirm the root task
            exists and to fill in its display fields when no edge carries them.
    """

    def __init__(
        self,
        store: DependencyStore,
        task_directory: TaskDirectory | None = None,
        builder: GraphBuilder | None = None,
        cycle_detector: CycleDetector | None = None,
        critical_path_calculator: CriticalPathCalculator | None = None,
    ):
        self.store = store
        self.task_directory = task_directory
        self.builder = builder or GraphBuilder()
        self.cycle_detector = cycle_detector or CycleDetector()
        self.critical_path_calculator = critical_path_calculator or CriticalPathCalculator()

    def collect(
        self,
        task_id: str,
        depth: int,
        direction: str = BOTH,
        accept: DependencyPredicate = active_only,
    ) -> WalkResult:
        """Walk from task_id and return the records within depth.

        Args:
            task_id: Root task
            depth: Maximum hops from the root
            direction: upstream, downstream or both
            accept: Records failing this predicate are invisible to the walk
        """
        fetched: dict[str, list[Dependency]] = {}

        def fetch(node: str) -> list[Dependency]:
            if node not in fetched:
                fetched[node] = self.store.list_for_task(
                    node, DependencyFilter(include_resolved=True)
                )
            return fetched[node]

        directions = [UPSTREAM, DOWNSTREAM] if direction == BOTH else [direction]
        levels: dict[str, int] = {}
        records: dict[str, Dependency] = {}
        truncated: dict[str, TruncationMarker] = {}

        for walk_direction in directions:
            walk = self._walk(task_id, depth, walk_direction, accept, fetch)
            for node, level in walk.levels.items():
                levels[node] = min(level, levels.get(node, level))
            for dep in walk.records:
                records.setdefault(dep.id, dep)
            for marker in walk.truncated:
                truncated.setdefault(marker.edge_id, marker)

        # The snapshot is the induced subgraph: any accepted edge whose ends
        # were both reached belongs to it, whichever walk reached them.
        for deps in fetched.values():
            for dep in deps:
                if dep.task_id in levels and dep.depends_on in levels and accept(dep):
                    records.setdefault(dep.id, dep)

        return WalkResult(
            levels=levels,
            records=creation_order(list(records.values())),
            truncated=[m for edge_id, m in truncated.items() if edge_id not in records],
        )

    def _walk(
        self,
        root: str,
        depth: int,
        direction: str,
        accept: DependencyPredicate,
        fetch: Callable[[str], list[Dependency]],
    ) -> WalkResult:
        levels = {root: 0}
        records: dict[str, Dependency] = {}
        truncated: dict[str, TruncationMarker] = {}
        queue = deque([root])

        while queue:
            node = queue.popleft()
            level = levels[node]
            for dep in fetch(node):
                if not accept(dep):
                    continue
                edge = GraphEdge.from_dependency(dep)
                neighbor = _step(edge, node, direction)
                if neighbor is None:
                    continue
                if neighbor in levels:
                    records.setdefault(dep.id, dep)
                    continue
                if level >= depth:
                    truncated.setdefault(
                        dep.id,
                        TruncationMarker(
                            edge_id=dep.id,
                            from_task=node,
                            to_task=neighbor,
                            level=level,
                            direction=direction,
                        ),
                    )
                    continue
                levels[neighbor] = level + 1
                records[dep.id] = dep
                queue.append(neighbor)

        return WalkResult(levels=levels, records=list(records.values()), truncated=list(truncated.values()))

    def traverse(
        self,
        task_id: str,
        depth: int = 3,
        direction: str = BOTH,
        include_resolved: bool = False,
        include_broken: bool = True,
    ) -> DependencyGraphSnapshot:
        """Build a snapshot of the graph around task_id.

        Cycles are always reported; the critical path is only computed when
        the traversed subgraph is acyclic.

        Raises:
            NotFoundError: If the root has no edges and the task directory
                does not know it
        """
        walk = self.collect(
            task_id, depth, direction, status_predicate(include_resolved, include_broken)
        )

        root_summary: TaskSummary | None = None
        if self.task_directory is not None:
            root_summary = self.task_directory.get_task(task_id)
            if root_summary is None and not walk.records:
                raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)

        graph = self.builder.build(
            walk.records,
            extra_nodes=[task_id],
            summaries={task_id: root_summary} if root_summary else None,
        )
        ordered = sorted(graph.nodes(), key=lambda n: walk.levels.get(n, depth))
        nodes = [GraphNode.from_graph(graph, n, walk.levels.get(n, depth)) for n in ordered]

        cycles = self.cycle_detector.audit(graph)
        critical_path = None if cycles else self.critical_path_calculator.calculate(graph)

        logger.info(
            "Traversed %s (depth=%d, direction=%s): %d nodes, %d edges, %d cycles, %d truncated",
            task_id,
            depth,
            direction,
            len(nodes),
            graph.edge_count,
            len(cycles),
            len(walk.truncated),
        )
        return DependencyGraphSnapshot(
            root_task_id=task_id,
            depth=depth,
            direction=direction,
            nodes=nodes,
            edges=graph.edges(),
            cycles=cycles,
            critical_path=critical_path,
            truncated=walk.truncated,
            graph=graph,
        )
