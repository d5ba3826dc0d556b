#!/usr/bin/env python3
"""ASCII Graph Renderer: plain-text view of a dependency snapshot.

Renders the prerequisites ("depends on") and dependents ("blocks") of the
snapshot root as two trees. Each task is expanded once per render; a task
reached again (a shared prerequisite or a cycle) is marked with ↺. Output
stays proportional to the number of edges.
Truncated edges are shown as "…".

Usage:
    from taskdeps.ascii_graph import AsciiGraphRenderer

    snapshot = engine.traverse("task-a", depth=3)
    print(AsciiGraphRenderer(snapshot).render())
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from taskdeps.traversal import DependencyGraphSnapshot, GraphNode


class AsciiGraphRenderer:
    """Generates ASCII trees for a DependencyGraphSnapshot."""

    def __init__(self, snapshot: DependencyGraphSnapshot):
        self.snapshot = snapshot
        self.nodes = {n.task_id: n for n in snapshot.nodes}
        graph = snapshot.graph
        self._upstream: dict[str, list[str]] = {}
        self._downstream: dict[str, list[str]] = {}
        if graph is not None:
            for task_id in graph.nodes():
                self._upstream[task_id] = graph.dependencies(task_id)
                self._downstream[task_id] = graph.dependents(task_id)
        self._truncated = {(t.from_task, t.direction) for t in snapshot.truncated}
        self._printed: set[str] = set()

    def render(self) -> str:
        root_id = self.snapshot.root_task_id
        root = self.nodes.get(root_id)
        if root is None:
            return f"(Task not found: {root_id})"

        self._printed = {root_id}
        lines = [f"{self._get_status_symbol(root.status)} {self._format_node_text(root)}"]
        if self.snapshot.direction in ("upstream", "both"):
            self._section("depends on", root_id, self._upstream, "upstream", lines)
        if self.snapshot.direction in ("downstream", "both"):
            self._section("blocks", root_id, self._downstream, "downstream", lines)

        for cycle in self.snapshot.cycles:
            lines.append(f"⚠ {cycle.description}")
        if self.snapshot.critical_path and self.snapshot.critical_path.hop_count:
            lines.append("Critical path: " + " → ".join(self.snapshot.critical_path.task_ids))
        return "\n".join(lines)

    def _section(
        self,
        label: str,
        root_id: str,
        adjacency: dict[str, list[str]],
        direction: str,
        lines: list[str],
    ) -> None:
        children = adjacency.get(root_id, [])
        if not children and (root_id, direction) not in self._truncated:
            return
        lines.append(f"{label}:")
        self._format_children(root_id, adjacency, direction, "", lines)

    def _format_children(
        self,
        parent: str,
        adjacency: dict[str, list[str]],
        direction: str,
        prefix: str,
        lines: list[str],
    ) -> None:
        children = adjacency.get(parent, [])
        truncated = (parent, direction) in self._truncated
        for i, child_id in enumerate(children):
            is_last = i == len(children) - 1 and not truncated
            connector = "└─" if is_last else "├─"
            node = self.nodes.get(child_id)
            status = node.status if node else ""
            text = self._format_node_text(node) if node else child_id
            if child_id in self._printed:
                lines.append(f"{prefix}{connector}↺ {text}")
                continue
            lines.append(f"{prefix}{connector}{self._get_status_symbol(status)} {text}")
            self._printed.add(child_id)
            child_prefix = prefix + ("  " if is_last else "│ ")
            self._format_children(child_id, adjacency, direction, child_prefix, lines)
        if truncated:
            lines.append(f"{prefix}└─…")

    def _format_node_text(self, node: GraphNode) -> str:
        """Format the text part of a node (ID + assignees + name)."""
        parts = [node.task_id]
        for assignee in node.assignees:
            parts.append(f"@{assignee}")
        if node.name:
            parts.append(node.name)
        return " ".join(parts)

    def _get_status_symbol(self, status: str) -> str:
        # ○ Open, ● Closed, ◐ In progress, ⊘ Blocked
        if status in ("done", "complete", "closed", "cancelled"):
            return "●"
        if status == "in_progress":
            return "◐"
        if status == "blocked":
            return "⊘"
        return "○"
