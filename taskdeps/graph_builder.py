"""Graph Builder: normalized adjacency over a fetched set of dependency records.

Every record is rewritten to one canonical direction before it enters the
graph (see Dependency.canonical_edge): source is the prerequisite, target is
the dependent. WAITING_ON records are flipped into BLOCKING edges, so cycle
detection, critical path and traversal never branch on the record type.
LINKED edges are kept for traversal results but excluded from the
blocking-equivalent subgraph.

The graph is a derived view built fresh for each call; it is never cached
or written back.

Usage:
    from taskdeps.graph_builder import GraphBuilder

    graph = GraphBuilder().build(store.list_for_task("task-a"))
    graph.dependencies("task-a")   # prerequisites
    graph.dependents("task-a")     # tasks waiting on task-a
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import networkx as nx

from taskdeps.dependency_model import Dependency, DependencyType, TaskSummary

logger = logging.getLogger(__name__)

BLOCKING = DependencyType.BLOCKING.value
LINKED = DependencyType.LINKED.value


@dataclass
class GraphEdge:
    """A dependency in canonical direction (source must complete before target)."""

    id: str
    source: str
    target: str
    kind: str  # "blocking" or "linked" after normalization
    type: str  # Record type as stored
    status: str
    task_id: str
    depends_on: str
    date_created: datetime
    link_id: str | None = None

    @property
    def is_blocking(self) -> bool:
        return self.kind == BLOCKING

    @classmethod
    def from_dependency(cls, dep: Dependency) -> GraphEdge:
        source, target, kind = dep.canonical_edge()
        return cls(
            id=dep.id,
            source=source,
            target=target,
            kind=kind,
            type=dep.type.value,
            status=dep.status.value,
            task_id=dep.task_id,
            depends_on=dep.depends_on,
            date_created=dep.date_created,
            link_id=dep.link_id,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "source": self.source,
            "target": self.target,
            "type": self.type,
            "kind": self.kind,
            "status": self.status,
        }


class DependencyGraph:
    """Directed multigraph of tasks keyed by task id, backed by networkx.

    Parallel edges between the same pair are kept (duplicates, mixed types),
    keyed by dependency id.
    """

    def __init__(self) -> None:
        self._graph: nx.MultiDiGraph = nx.MultiDiGraph()
        self._edges: dict[str, GraphEdge] = {}

    @property
    def graph(self) -> nx.MultiDiGraph:
        """The underlying networkx MultiDiGraph."""
        return self._graph

    @property
    def node_count(self) -> int:
        return self._graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        return len(self._edges)

    # ── Mutation (build time only) ───────────────────────────────────

    def add_node(self, task_id: str, summary: TaskSummary | None = None) -> None:
        """Add a task node, filling display fields from summary when known."""
        if task_id not in self._graph:
            self._graph.add_node(task_id, summary=None)
        if summary is not None and self._graph.nodes[task_id].get("summary") is None:
            self._graph.nodes[task_id]["summary"] = summary

    def add_dependency(self, dep: Dependency) -> GraphEdge:
        """Normalize a record and add it as an edge. Re-adding an id is a no-op."""
        if dep.id in self._edges:
            return self._edges[dep.id]

        edge = GraphEdge.from_dependency(dep)
        self.add_node(dep.task_id, dep.task_info)
        self.add_node(dep.depends_on, dep.depends_on_info)
        self._graph.add_edge(edge.source, edge.target, key=edge.id, edge=edge)
        self._edges[edge.id] = edge
        return edge

    # ── Queries ──────────────────────────────────────────────────────

    def __contains__(self, task_id: object) -> bool:
        return task_id in self._graph

    def nodes(self) -> list[str]:
        """Task ids in insertion order."""
        return list(self._graph.nodes)

    def summary(self, task_id: str) -> TaskSummary | None:
        if task_id not in self._graph:
            return None
        return self._graph.nodes[task_id].get("summary")

    def edges(self) -> list[GraphEdge]:
        """All edges in insertion order."""
        return list(self._edges.values())

    def edge(self, edge_id: str) -> GraphEdge | None:
        return self._edges.get(edge_id)

    def out_edges(self, task_id: str) -> list[GraphEdge]:
        if task_id not in self._graph:
            return []
        return [data["edge"] for _, _, data in self._graph.out_edges(task_id, data=True)]

    def in_edges(self, task_id: str) -> list[GraphEdge]:
        if task_id not in self._graph:
            return []
        return [data["edge"] for _, _, data in self._graph.in_edges(task_id, data=True)]

    def dependencies(self, task_id: str) -> list[str]:
        """Prerequisites of task_id over blocking-equivalent edges."""
        return _unique(e.source for e in self.in_edges(task_id) if e.is_blocking)

    def dependents(self, task_id: str) -> list[str]:
        """Tasks that depend on task_id over blocking-equivalent edges."""
        return _unique(e.target for e in self.out_edges(task_id) if e.is_blocking)

    def linked(self, task_id: str) -> list[str]:
        """Tasks joined to task_id by a linked edge, either direction."""
        ends = [e.target for e in self.out_edges(task_id) if not e.is_blocking]
        ends += [e.source for e in self.in_edges(task_id) if not e.is_blocking]
        return _unique(ends)

    def blocking_edges_between(self, source: str, target: str) -> list[GraphEdge]:
        """Blocking-equivalent edges source -> target (parallel edges included)."""
        if not self._graph.has_edge(source, target):
            return []
        return [
            data["edge"]
            for data in self._graph.get_edge_data(source, target).values()
            if data["edge"].is_blocking
        ]

    def blocking_adjacency(self) -> dict[str, list[str]]:
        """Successor lists of the blocking-equivalent subgraph.

        Every node appears as a key, in insertion order; successors appear in
        first-edge order without repeats.
        """
        return {node: self.dependents(node) for node in self._graph.nodes}


class GraphBuilder:
    """Assembles a DependencyGraph from fetched records."""

    def build(
        self,
        dependencies: Iterable[Dependency],
        extra_nodes: Iterable[str] = (),
        summaries: dict[str, TaskSummary] | None = None,
    ) -> DependencyGraph:
        """Build a graph from records.

        Args:
            dependencies: Records to normalize, in the order they should be
                iterated (creation order from the store).
            extra_nodes: Task ids to include even without edges (e.g. a root).
            summaries: Known task summaries, used for nodes that no record
                carries display fields for.

        Returns:
            New DependencyGraph
        """
        graph = DependencyGraph()
        summaries = summaries or {}
        for task_id in extra_nodes:
            graph.add_node(task_id, summaries.get(task_id))
        for dep in dependencies:
            graph.add_dependency(dep)
        for task_id, summary in summaries.items():
            if task_id in graph:
                graph.add_node(task_id, summary)

        logger.debug("Built dependency graph: %d nodes, %d edges", graph.node_count, graph.edge_count)
        return graph


def _unique(items: Iterable[str]) -> list[str]:
    return list(dict.fromkeys(items))
