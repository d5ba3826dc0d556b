"""Tests for cycle detection (audit and pre-flight modes)."""

import itertools
import random

import networkx as nx

from taskdeps.cycle_detector import CycleDetector, find_cycles, find_path
from taskdeps.dependency_model import DependencyType
from taskdeps.graph_builder import GraphBuilder


def _is_real_cycle(adjacency: dict[str, list[str]], cycle: list[str]) -> bool:
    return all(
        cycle[(i + 1) % len(cycle)] in adjacency[node] for i, node in enumerate(cycle)
    )


def test_three_node_cycle_reported_once(edge) -> None:
    """A -> B, B -> C, C -> A yields exactly one cycle with members {A, B, C}."""
    graph = GraphBuilder().build(
        [edge("d1", "A", "B"), edge("d2", "B", "C"), edge("d3", "C", "A")]
    )

    cycles = CycleDetector().audit(graph)

    assert len(cycles) == 1
    assert cycles[0].members == frozenset({"A", "B", "C"})
    assert sorted(cycles[0].edge_ids) == ["d1", "d2", "d3"]
    assert cycles[0].description.startswith("Circular dependency: ")


def test_disjoint_cycles_are_all_reported(edge) -> None:
    graph = GraphBuilder().build(
        [
            edge("d1", "A", "B"),
            edge("d2", "B", "A"),
            edge("d3", "C", "D"),
            edge("d4", "D", "C"),
            edge("d5", "B", "C"),
        ]
    )

    members = {c.members for c in CycleDetector().audit(graph)}

    assert members == {frozenset({"A", "B"}), frozenset({"C", "D"})}


def test_linked_edges_never_form_cycles(edge) -> None:
    graph = GraphBuilder().build(
        [edge("d1", "A", "B"), edge("d2", "B", "A", type=DependencyType.LINKED)]
    )

    assert CycleDetector().audit(graph) == []


def test_waiting_on_and_blocking_between_same_pair_form_a_cycle(edge) -> None:
    """blocking (B -> A) plus waiting_on with the same endpoints (A -> B) is a 2-cycle."""
    graph = GraphBuilder().build(
        [edge("d1", "B", "A"), edge("d2", "B", "A", type=DependencyType.WAITING_ON)]
    )

    cycles = CycleDetector().audit(graph)

    assert [c.members for c in cycles] == [frozenset({"A", "B"})]


def test_matches_brute_force_on_all_three_node_graphs() -> None:
    """A cycle is reported iff the graph has a directed cycle, self-loops included."""
    nodes = ["A", "B", "C"]
    pairs = list(itertools.product(nodes, nodes))
    for mask in range(2 ** len(pairs)):
        chosen = [p for i, p in enumerate(pairs) if mask & (1 << i)]
        adjacency = {n: [t for s, t in chosen if s == n] for n in nodes}
        reference = nx.DiGraph()
        reference.add_nodes_from(nodes)
        reference.add_edges_from(chosen)

        cycles = find_cycles(adjacency)

        assert bool(cycles) == (not nx.is_directed_acyclic_graph(reference)), chosen
        assert all(_is_real_cycle(adjacency, c) for c in cycles), chosen


def test_matches_brute_force_on_random_graphs() -> None:
    rng = random.Random(42)
    for _ in range(300):
        size = rng.randint(2, 6)
        nodes = [f"T{i}" for i in range(size)]
        chosen = [
            (s, t) for s in nodes for t in nodes if s != t and rng.random() < 0.25
        ]
        adjacency = {n: [t for s, t in chosen if s == n] for n in nodes}
        reference = nx.DiGraph()
        reference.add_nodes_from(nodes)
        reference.add_edges_from(chosen)

        cycles = find_cycles(adjacency)

        assert bool(cycles) == (not nx.is_directed_acyclic_graph(reference)), chosen
        assert all(_is_real_cycle(adjacency, c) for c in cycles), chosen
        assert len({frozenset(c) for c in cycles}) == len(cycles), "cycles must be unique by member set"


def test_preflight_reports_cycle_closed_by_proposed_edge(edge) -> None:
    proposed = edge("p", "C", "A")
    graph = GraphBuilder().build([edge("d1", "A", "B"), edge("d2", "B", "C"), proposed])

    cycles = CycleDetector().preflight(graph, [graph.edge("p")])

    assert len(cycles) == 1
    assert cycles[0].task_ids == ["C", "A", "B"]
    assert "p" in cycles[0].edge_ids


def test_preflight_ignores_committed_cycles_not_through_proposed_edge(edge) -> None:
    graph = GraphBuilder().build(
        [edge("d1", "A", "B"), edge("d2", "B", "A"), edge("p", "C", "D")]
    )

    assert CycleDetector().preflight(graph, [graph.edge("p")]) == []


def test_find_path() -> None:
    adjacency = {"A": ["B"], "B": ["C"], "C": [], "D": []}

    assert find_path(adjacency, "A", "C") == ["A", "B", "C"]
    assert find_path(adjacency, "A", "D") is None
    assert find_path(adjacency, "D", "D") == ["D"]
