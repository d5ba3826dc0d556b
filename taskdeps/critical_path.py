"""Critical Path (hop count): longest chain of blocking dependencies.

This is a topology-only schedule-risk proxy: it counts hops and knows
nothing about task durations or dates. A duration-weighted variant would
weight each node by its estimate and is deliberately a separate metric; the
result is tagged ``metric="hop_count"`` so the two are never conflated.

Chains start at root nodes (no incoming blocking edge) and follow canonical
edges forward, i.e. in execution order. Ties go to the first root, then the
first successor, in iteration order.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

from taskdeps.graph_builder import DependencyGraph

logger = logging.getLogger(__name__)

HOP_COUNT_METRIC = "hop_count"


@dataclass
class CriticalPath:
    """Ordered task ids of the longest blocking chain."""

    task_ids: list[str] = field(default_factory=list)
    metric: str = HOP_COUNT_METRIC

    @property
    def hop_count(self) -> int:
        return max(len(self.task_ids) - 1, 0)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "metric": self.metric,
            "hop_count": self.hop_count,
            "task_ids": list(self.task_ids),
        }


def longest_chain(adjacency: dict[str, list[str]]) -> list[str]:
    """Longest simple path by hop count, starting from a root node.

    Each node's best tail is memoized. A successor that is already on the
    current branch (a residual cycle) is skipped, so the walk truncates
    instead of looping; cycles themselves are reported by CycleDetector.
    Under residual cycles the result is a simple path but not guaranteed
    maximal.

    Args:
        adjacency: Successor lists; every node must appear as a key

    Returns:
        Task ids of the chain, or [] when there are no roots
    """
    has_incoming = {t for successors in adjacency.values() for t in successors}
    roots = [n for n in adjacency if n not in has_incoming]

    best: dict[str, list[str]] = {}

    def resolve(start: str) -> list[str]:
        on_branch = {start}
        stack = [(start, iter(adjacency.get(start, ())))]
        while stack:
            node, successors = stack[-1]
            descended = False
            for nxt in successors:
                if nxt in best or nxt in on_branch:
                    continue
                on_branch.add(nxt)
                stack.append((nxt, iter(adjacency.get(nxt, ()))))
                descended = True
                break
            if descended:
                continue

            stack.pop()
            on_branch.discard(node)
            chain = [node]
            for nxt in adjacency.get(node, ()):
                tail = best.get(nxt)
                if tail is not None and node not in tail and len(tail) + 1 > len(chain):
                    chain = [node, *tail]
            best[node] = chain
        return best[start]

    longest: list[str] = []
    for root in roots:
        chain = best.get(root) or resolve(root)
        if len(chain) > len(longest):
            longest = chain
    return longest


class CriticalPathCalculator:
    """Computes the hop-count critical path of a DependencyGraph."""

    def calculate(self, graph: DependencyGraph) -> CriticalPath:
        path = CriticalPath(task_ids=longest_chain(graph.blocking_adjacency()))
        logger.debug("Critical path: %d hops", path.hop_count)
        return path
