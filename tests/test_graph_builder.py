"""Tests for canonical edge normalization in GraphBuilder."""

from taskdeps.dependency_model import Dependency, DependencyType, TaskSummary
from taskdeps.graph_builder import GraphBuilder


def test_blocking_record_points_from_prerequisite_to_dependent() -> None:
    """A blocking record (task_id=A, depends_on=B) becomes the edge B -> A."""
    graph = GraphBuilder().build([Dependency(id="d1", task_id="A", depends_on="B")])

    edge = graph.edge("d1")
    assert (edge.source, edge.target, edge.kind) == ("B", "A", "blocking")
    assert graph.dependencies("A") == ["B"]
    assert graph.dependents("B") == ["A"]
    assert graph.dependencies("B") == []


def test_waiting_on_is_flipped_into_blocking() -> None:
    """waiting_on is the inverse of blocking: (task_id=A, depends_on=B) becomes A -> B."""
    graph = GraphBuilder().build(
        [Dependency(id="d1", task_id="A", depends_on="B", type=DependencyType.WAITING_ON)]
    )

    edge = graph.edge("d1")
    assert (edge.source, edge.target) == ("A", "B")
    assert edge.kind == "blocking"
    assert edge.type == "waiting_on"
    assert graph.dependents("A") == ["B"]
    assert graph.dependencies("B") == ["A"]


def test_linked_edges_stay_out_of_blocking_adjacency() -> None:
    graph = GraphBuilder().build(
        [Dependency(id="d1", task_id="A", depends_on="B", type=DependencyType.LINKED)]
    )

    assert graph.blocking_adjacency() == {"A": [], "B": []}
    assert graph.linked("A") == ["B"]
    assert graph.linked("B") == ["A"]
    assert graph.edge_count == 1


def test_parallel_records_are_kept_as_separate_edges() -> None:
    """Duplicate records stay visible so conflict analysis can report them."""
    graph = GraphBuilder().build(
        [
            Dependency(id="d1", task_id="A", depends_on="B"),
            Dependency(id="d2", task_id="A", depends_on="B"),
        ]
    )

    assert graph.edge_count == 2
    assert [e.id for e in graph.blocking_edges_between("B", "A")] == ["d1", "d2"]
    assert graph.dependents("B") == ["A"]


def test_extra_nodes_and_summaries() -> None:
    summary = TaskSummary(id="R", name="Root", status="open")
    graph = GraphBuilder().build([], extra_nodes=["R"], summaries={"R": summary})

    assert "R" in graph
    assert graph.summary("R").name == "Root"
    assert graph.blocking_adjacency() == {"R": []}


def test_record_summaries_populate_nodes() -> None:
    dep = Dependency(
        id="d1",
        task_id="A",
        depends_on="B",
        task_info=TaskSummary(id="A", name="Write"),
        depends_on_info=TaskSummary(id="B", name="Research"),
    )
    graph = GraphBuilder().build([dep])

    assert graph.summary("A").name == "Write"
    assert graph.summary("B").name == "Research"
