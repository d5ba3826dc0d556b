"""Tests for bounded traversal and snapshot assembly."""

import pytest

from taskdeps.dependency_model import DependencyStatus, DependencyType
from taskdeps.dependency_store import InMemoryDependencyStore, InMemoryTaskDirectory
from taskdeps.errors import NotFoundError
from taskdeps.traversal import TraversalEngine


@pytest.fixture
def chain(store, edge) -> InMemoryDependencyStore:
    """A -> B -> C -> D."""
    store.load_records([edge("d1", "A", "B"), edge("d2", "B", "C"), edge("d3", "C", "D")])
    return store


def test_downstream_depth_bound_and_truncation(chain) -> None:
    """No node is more than depth hops away; the boundary edge is marked, not dropped."""
    snapshot = TraversalEngine(chain).traverse("A", depth=2, direction="downstream")

    levels = {n.task_id: n.level for n in snapshot.nodes}
    assert levels == {"A": 0, "B": 1, "C": 2}
    assert max(levels.values()) <= 2
    assert [e.id for e in snapshot.edges] == ["d1", "d2"]
    assert snapshot.is_truncated
    marker = snapshot.truncated[0]
    assert (marker.edge_id, marker.from_task, marker.to_task, marker.level) == ("d3", "C", "D", 2)


def test_upstream_walks_prerequisites(chain) -> None:
    snapshot = TraversalEngine(chain).traverse("D", depth=1, direction="upstream")

    assert [n.task_id for n in snapshot.nodes] == ["D", "C"]
    assert [(t.from_task, t.to_task) for t in snapshot.truncated] == [("C", "B")]


def test_both_is_union_of_walks(chain) -> None:
    snapshot = TraversalEngine(chain).traverse("B", depth=1, direction="both")

    assert {n.task_id for n in snapshot.nodes} == {"A", "B", "C"}
    assert {e.id for e in snapshot.edges} == {"d1", "d2"}
    assert [t.edge_id for t in snapshot.truncated] == ["d3"]


def test_unbounded_enough_depth_has_no_truncation(chain) -> None:
    snapshot = TraversalEngine(chain).traverse("A", depth=10, direction="downstream")

    assert len(snapshot.nodes) == 4
    assert not snapshot.is_truncated
    assert snapshot.critical_path.task_ids == ["A", "B", "C", "D"]
    assert snapshot.cycles == []


def test_resolved_and_broken_filters(store, edge) -> None:
    store.load_records(
        [
            edge("d1", "A", "B", status=DependencyStatus.RESOLVED),
            edge("d2", "A", "C", status=DependencyStatus.BROKEN),
            edge("d3", "A", "D"),
        ]
    )
    engine = TraversalEngine(store)

    default = engine.traverse("A", depth=1)
    assert {e.id for e in default.edges} == {"d2", "d3"}

    everything = engine.traverse("A", depth=1, include_resolved=True)
    assert {e.id for e in everything.edges} == {"d1", "d2", "d3"}

    active = engine.traverse("A", depth=1, include_broken=False)
    assert {e.id for e in active.edges} == {"d3"}


def test_linked_edges_followed_both_ways(store, edge) -> None:
    store.load_records([edge("d1", "A", "B", type=DependencyType.LINKED)])
    engine = TraversalEngine(store)

    assert {n.task_id for n in engine.traverse("A", depth=1, direction="upstream").nodes} == {"A", "B"}
    assert {n.task_id for n in engine.traverse("B", depth=1, direction="downstream").nodes} == {"A", "B"}


def test_edges_between_nodes_from_different_walks_are_included(store, edge) -> None:
    """P -> R -> Q plus Q -> P: both ends are reached, so Q -> P is in the snapshot."""
    store.load_records([edge("d1", "P", "R"), edge("d2", "R", "Q"), edge("d3", "Q", "P")])

    snapshot = TraversalEngine(store).traverse("R", depth=1)

    assert {e.id for e in snapshot.edges} == {"d1", "d2", "d3"}
    assert snapshot.truncated == []
    assert [c.members for c in snapshot.cycles] == [frozenset({"P", "Q", "R"})]
    assert snapshot.critical_path is None


def test_node_fields_come_from_task_summaries(linked_store, edge) -> None:
    linked_store.load_records([edge("d1", "A", "B")])

    snapshot = TraversalEngine(linked_store).traverse("A", depth=1)

    node = snapshot.node("B")
    assert node.name == "Task B"
    assert node.status == "open"
    assert node.dependencies == [
        {"id": "d1", "type": "blocking", "status": "active", "source_task_id": "A"}
    ]
    assert snapshot.to_dict()["nodes"][0]["task_name"] == "Task A"


def test_unknown_root_raises_not_found(store) -> None:
    engine = TraversalEngine(store, task_directory=InMemoryTaskDirectory())

    with pytest.raises(NotFoundError) as exc_info:
        engine.traverse("nope", depth=1)

    assert exc_info.value.identifiers["task_id"] == "nope"


def test_root_without_edges_is_a_single_node(store) -> None:
    snapshot = TraversalEngine(store).traverse("lonely", depth=3)

    assert [n.task_id for n in snapshot.nodes] == ["lonely"]
    assert snapshot.edges == []
