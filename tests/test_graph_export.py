"""Tests for graph export formats and re-import."""

import json

import networkx as nx
import pytest

from taskdeps.dependency_service import DependencyService
from taskdeps.dependency_store import InMemoryDependencyStore
from taskdeps.errors import InvalidRequestError


def _edge_set(store) -> set[tuple[str, str, str, str]]:
    return {(d.task_id, d.depends_on, d.type.value, d.status.value) for d in store.records()}


@pytest.fixture
def populated(service) -> DependencyService:
    """A -> B -> C -> D (C waiting_on D), B linked to E, resolved A -> D."""
    service.create_dependency("B", "A")
    service.create_dependency("C", "B")
    service.create_dependency("C", "D", type="waiting_on")
    service.create_dependency("E", "B", type="linked", link_id="grp")
    resolved = service.create_dependency("D", "A")
    service.update_dependency(resolved.id, status="resolved")
    return service


@pytest.fixture
def fresh(tasks, clock) -> DependencyService:
    return DependencyService(InMemoryDependencyStore(task_directory=tasks, clock=clock), tasks)


def test_json_export_round_trip(populated, fresh) -> None:
    """Exporting as json and importing into an empty store reproduces the edge set."""
    exported = populated.export_dependency_graph("A", "json")

    result = fresh.import_dependency_graph(exported["data"], format="json")

    assert result.success, result.errors
    assert result.imported_dependencies == 5
    assert _edge_set(fresh.store) == _edge_set(populated.store)
    linked = [d for d in fresh.store.records() if d.type.value == "linked"]
    assert linked[0].link_id == "grp"


def test_json_export_shape(populated) -> None:
    data = json.loads(populated.export_dependency_graph("A", "json")["data"])

    assert data["root_task_id"] == "A"
    assert {n["id"] for n in data["nodes"]} == {"A", "B", "C", "D", "E"}
    assert set(data["edges"][0]) == {"id", "task_id", "depends_on", "type", "status", "link_id"}


def test_csv_rows_are_canonical(populated) -> None:
    exported = populated.export_dependency_graph("A", "csv")
    lines = exported["data"].splitlines()

    assert exported["format"] == "csv"
    assert lines[0] == "id,source,target,type,status"
    rows = {tuple(line.split(",")[1:]) for line in lines[1:]}
    assert ("A", "B", "blocking", "active") in rows
    assert ("C", "D", "waiting_on", "active") in rows
    assert ("A", "D", "blocking", "resolved") in rows
    assert len(rows) == 5


def test_csv_round_trip(populated, fresh) -> None:
    exported = populated.export_dependency_graph("A", "csv")

    result = fresh.import_dependency_graph(exported["data"], format="csv")

    assert result.success, result.errors
    assert _edge_set(fresh.store) == _edge_set(populated.store)


def test_graphml_is_valid_document(populated) -> None:
    exported = populated.export_dependency_graph("A", "graphml")

    parsed = nx.parse_graphml(exported["data"])

    assert set(parsed.nodes) == {"A", "B", "C", "D", "E"}
    assert parsed.nodes["A"]["name"] == "Task A"
    assert parsed.nodes["B"]["level"] == 1
    assert {d["type"] for _, _, d in parsed.edges(data=True)} == {"blocking", "waiting_on", "linked"}


def test_import_reports_bad_rows_with_line_numbers(fresh) -> None:
    data = json.dumps(
        {
            "dependencies": [
                {"task_id": "B", "depends_on": "A"},
                {"task_id": "C", "depends_on": "C"},
                {"task_id": "D", "depends_on": "A", "type": "sometimes"},
                {"task_id": "E"},
            ]
        }
    )

    result = fresh.import_dependency_graph(data)

    assert result.imported_dependencies == 1
    assert [e["line_number"] for e in result.errors] == [2, 3, 4]
    assert not result.success


def test_csv_line_numbers_count_the_header(fresh) -> None:
    data = "id,source,target,type,status\nd1,A,B,blocking,active\nd2,B,B,blocking,active\n"

    result = fresh.import_dependency_graph(data, format="csv")

    assert result.imported_dependencies == 1
    assert result.errors[0]["line_number"] == 3


def test_merge_existing_skips_active_duplicates(service) -> None:
    service.create_dependency("B", "A")
    data = [{"task_id": "B", "depends_on": "A"}, {"task_id": "C", "depends_on": "B"}]

    merged = service.import_dependency_graph(data)
    strict = service.import_dependency_graph(data, merge_existing=False)

    assert (merged.imported_dependencies, merged.skipped_dependencies) == (1, 1)
    assert strict.imported_dependencies == 0
    assert len(strict.errors) == 2


def test_import_rejects_rows_that_close_a_cycle(service) -> None:
    """A -> B -> C exists; importing "A depends on C" would close C -> A."""
    service.create_dependency("B", "A")
    service.create_dependency("C", "B")
    data = [{"task_id": "D", "depends_on": "C"}, {"task_id": "A", "depends_on": "C"}]

    result = service.import_dependency_graph(data)

    assert result.imported_dependencies == 1
    assert result.errors[0]["line_number"] == 2
    assert "cycle" in result.errors[0]["error"]
    assert not service.check_dependency_conflicts("A").has_conflicts


def test_import_force_writes_cycle(service) -> None:
    service.create_dependency("B", "A")

    result = service.import_dependency_graph([{"task_id": "A", "depends_on": "B"}], force=True)

    assert result.success
    assert len(service.get_dependency_graph("A").cycles) == 1


def test_validate_tasks_rejects_unknown_tasks(service) -> None:
    result = service.import_dependency_graph(
        [{"task_id": "B", "depends_on": "ghost"}], validate_tasks=True
    )

    assert result.imported_dependencies == 0
    assert result.errors == [{"line_number": 1, "error": "Task not found: ghost"}]


def test_unsupported_formats(populated) -> None:
    with pytest.raises(InvalidRequestError) as exported:
        populated.export_dependency_graph("A", "xml")
    with pytest.raises(InvalidRequestError) as imported:
        populated.import_dependency_graph("{}", format="yaml")
    with pytest.raises(InvalidRequestError):
        populated.import_dependency_graph("{}", format="graphml")

    assert exported.value.errors[0]["loc"] == ["format"]
    assert imported.value.errors[0]["loc"] == ["format"]
