"""Tests for the dependency graph audit CLI."""

import importlib.util
import json
from pathlib import Path

import pytest

from taskdeps.dependency_model import Dependency, TaskSummary
from taskdeps.file_store import FileDependencyStore, FileTaskDirectory

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "audit_dependency_graph.py"


@pytest.fixture(scope="module")
def audit():
    spec = importlib.util.spec_from_file_location("audit_dependency_graph", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


@pytest.fixture
def data_root(tmp_path, monkeypatch):
    for name in ("TASKDEPS_WORKSPACE", "TASKDEPS_MAX_FAN_IN", "TASKDEPS_MAX_FAN_OUT"):
        monkeypatch.delenv(name, raising=False)
    tasks = FileTaskDirectory(tmp_path)
    for task_id in ("A", "B", "C"):
        tasks.put_task(TaskSummary(id=task_id, name=f"Task {task_id}", status="open"))
    return tmp_path


def _seed(data_root: Path, *records: Dependency) -> None:
    FileDependencyStore(data_root).load_records(records)


def test_clean_graph_exits_zero(audit, data_root, capsys) -> None:
    _seed(data_root, Dependency(id="d1", task_id="B", depends_on="A"))

    code = audit.main(["--data", str(data_root), "--json"])

    report = json.loads(capsys.readouterr().out)
    assert code == 0
    assert report["findings"] == []
    assert report["stats"]["total_dependencies"] == 1


def test_cycle_is_critical(audit, data_root, capsys) -> None:
    _seed(
        data_root,
        Dependency(id="d1", task_id="B", depends_on="A"),
        Dependency(id="d2", task_id="A", depends_on="B"),
    )

    code = audit.main(["--data", str(data_root), "--json"])

    report = json.loads(capsys.readouterr().out)
    assert code == 2
    assert [f["check"] for f in report["findings"]] == ["circular"]
    assert report["findings"][0]["severity"] == "critical"


def test_duplicate_is_warning_and_markdown_report(audit, data_root, capsys) -> None:
    _seed(
        data_root,
        Dependency(id="d1", task_id="B", depends_on="A"),
        Dependency(id="d2", task_id="B", depends_on="A"),
    )

    code = audit.main(["--data", str(data_root)])

    out = capsys.readouterr().out
    assert code == 1
    assert "# Dependency Graph Audit Report" in out
    assert "## Duplicate Dependencies" in out


def test_output_directory_gets_both_reports(audit, data_root, tmp_path) -> None:
    _seed(data_root, Dependency(id="d1", task_id="B", depends_on="A"))
    out_dir = tmp_path / "audits"

    audit.main(["--data", str(data_root), "--output", str(out_dir)])

    assert len(list(out_dir.glob("dependency-audit-*.md"))) == 1
    assert len(list(out_dir.glob("dependency-audit-*.json"))) == 1


def test_missing_data_root_exits_two(audit, monkeypatch, capsys) -> None:
    monkeypatch.delenv("TASKDEPS_DATA", raising=False)

    assert audit.main([]) == 2
    assert "TASKDEPS_DATA" in capsys.readouterr().err


def test_save_writes_under_data_root(audit, data_root) -> None:
    _seed(data_root, Dependency(id="d1", task_id="B", depends_on="A"))

    audit.main(["--data", str(data_root), "--save"])

    assert len(list((data_root / "audits").glob("dependency-audit-*.md"))) == 1
