"""Cycle Detector: DFS cycle discovery over the blocking-equivalent subgraph.

Two modes:
- audit(graph): every cycle reachable from any node, over committed edges.
  Each unvisited node becomes a DFS root, so disjoint cycles are all found.
- preflight(graph, proposed): cycles that proposed edges would close, for
  write-time validation. Committed cycles that do not pass through a
  proposed edge are not reported here.

A cycle's identity is the set of task ids it visits; two paths over the same
members (e.g. different rotations) count as one cycle.
"""

from __future__ import annotations

import hashlib
import logging
from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from taskdeps.graph_builder import DependencyGraph, GraphEdge

logger = logging.getLogger(__name__)

_EXHAUSTED = object()


@dataclass
class Cycle:
    """An ordered cycle path; the closing hop back to task_ids[0] is implied."""

    task_ids: list[str]
    edge_ids: list[str] = field(default_factory=list)

    @property
    def members(self) -> frozenset[str]:
        return frozenset(self.task_ids)

    @property
    def cycle_id(self) -> str:
        digest = hashlib.sha1("|".join(sorted(self.members)).encode("utf-8")).hexdigest()
        return f"cycle-{digest[:10]}"

    @property
    def description(self) -> str:
        return "Circular dependency: " + " -> ".join([*self.task_ids, self.task_ids[0]])

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "cycle_id": self.cycle_id,
            "task_ids": list(self.task_ids),
            "edge_ids": list(self.edge_ids),
            "description": self.description,
        }


def find_cycles(adjacency: dict[str, list[str]]) -> list[list[str]]:
    """Find cycles with an iterative DFS using a visited set and a recursion stack.

    When the walk reaches a node already on the stack, the path slice from
    that node to the current node is emitted. Cycles with an already-seen
    member set are dropped.

    Args:
        adjacency: Successor lists; every node must appear as a key

    Returns:
        Cycle paths in discovery order
    """
    visited: set[str] = set()
    on_stack: set[str] = set()
    seen: set[frozenset[str]] = set()
    cycles: list[list[str]] = []

    for root in adjacency:
        if root in visited:
            continue

        path = [root]
        visited.add(root)
        on_stack.add(root)
        iterators = [iter(adjacency.get(root, ()))]

        while iterators:
            nxt = next(iterators[-1], _EXHAUSTED)
            if nxt is _EXHAUSTED:
                iterators.pop()
                on_stack.discard(path.pop())
                continue

            if nxt in on_stack:
                cycle = path[path.index(nxt):]
                key = frozenset(cycle)
                if key not in seen:
                    seen.add(key)
                    cycles.append(cycle)
            elif nxt not in visited:
                visited.add(nxt)
                on_stack.add(nxt)
                path.append(nxt)
                iterators.append(iter(adjacency.get(nxt, ())))

    return cycles


def find_path(adjacency: dict[str, list[str]], start: str, goal: str) -> list[str] | None:
    """Shortest path start -> goal by BFS, or None when goal is unreachable."""
    if start == goal:
        return [start]
    parents: dict[str, str | None] = {start: None}
    queue = deque([start])
    while queue:
        node = queue.popleft()
        for nxt in adjacency.get(node, ()):
            if nxt in parents:
                continue
            parents[nxt] = node
            if nxt == goal:
                path = [nxt]
                while (prev := parents[path[-1]]) is not None:
                    path.append(prev)
                return path[::-1]
            queue.append(nxt)
    return None


class CycleDetector:
    """Reports cycles of blocking-equivalent edges in a DependencyGraph."""

    def audit(self, graph: DependencyGraph) -> list[Cycle]:
        """All cycles over the graph's committed blocking edges."""
        cycles = [self._with_edges(graph, path) for path in find_cycles(graph.blocking_adjacency())]
        if cycles:
            logger.info("Cycle audit found %d cycle(s)", len(cycles))
        return cycles

    def preflight(self, graph: DependencyGraph, proposed: Iterable[GraphEdge]) -> list[Cycle]:
        """Cycles the proposed edges would close, given the graph's committed edges.

        The graph must already contain the proposed edges. A proposed edge
        u -> v closes a cycle when v reaches u; the reported path starts at u.
        """
        adjacency = graph.blocking_adjacency()
        cycles: list[Cycle] = []
        seen: set[frozenset[str]] = set()
        for edge in proposed:
            if not edge.is_blocking:
                continue
            back = find_path(adjacency, edge.target, edge.source)
            if back is None:
                continue
            path = [edge.source] if edge.source == edge.target else [edge.source, *back[:-1]]
            cycle = self._with_edges(graph, path)
            if cycle.members not in seen:
                seen.add(cycle.members)
                cycles.append(cycle)
        return cycles

    @staticmethod
    def _with_edges(graph: DependencyGraph, path: list[str]) -> Cycle:
        """Attach the ids of every blocking edge along the cycle's hops."""
        edge_ids: list[str] = []
        for i, source in enumerate(path):
            target = path[(i + 1) % len(path)]
            edge_ids.extend(e.id for e in graph.blocking_edges_between(source, target))
        return Cycle(task_ids=path, edge_ids=edge_ids)
