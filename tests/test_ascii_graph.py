"""Tests for the plain-text graph rendering."""

from taskdeps.ascii_graph import AsciiGraphRenderer
from taskdeps.traversal import TraversalEngine


def test_shared_prerequisite_is_expanded_once(store, edge) -> None:
    """Diamond A -> B, A -> C, B -> D, C -> D: D is printed in full once."""
    store.load_records(
        [edge("d1", "A", "B"), edge("d2", "A", "C"), edge("d3", "B", "D"), edge("d4", "C", "D")]
    )
    snapshot = TraversalEngine(store).traverse("A", depth=3, direction="downstream")

    lines = AsciiGraphRenderer(snapshot).render().splitlines()

    assert lines[:2] == ["○ A", "blocks:"]
    assert sum(line.endswith("○ D") for line in lines) == 1
    assert sum(line.endswith("↺ D") for line in lines) == 1


def test_layered_graph_output_tracks_edge_count(store, edge) -> None:
    """Ten fully connected layers of three stay one line per edge."""
    records = [edge(f"r{j}", "R", f"L0_{j}") for j in range(3)]
    for layer in range(1, 10):
        for i in range(3):
            for j in range(3):
                records.append(
                    edge(f"e{layer}_{i}_{j}", f"L{layer - 1}_{i}", f"L{layer}_{j}")
                )
    store.load_records(records)
    snapshot = TraversalEngine(store).traverse("R", depth=10, direction="downstream")

    lines = AsciiGraphRenderer(snapshot).render().splitlines()

    assert len(snapshot.edges) == 84
    assert len(lines) <= len(snapshot.edges) + 5
    assert sum("○ L9_0" in line for line in lines) == 1


def test_cycle_is_marked_and_reported(store, edge) -> None:
    store.load_records([edge("d1", "A", "B"), edge("d2", "B", "A")])
    snapshot = TraversalEngine(store).traverse("A", depth=3, direction="downstream")

    text = AsciiGraphRenderer(snapshot).render()

    assert "└─↺ A" in text
    assert "⚠ " in text
    assert "Critical path" not in text
