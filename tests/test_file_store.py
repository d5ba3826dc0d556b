"""Tests for JSON file persistence, config loading and data-root resolution."""

import json

import pytest

from taskdeps.config import load_config
from taskdeps.dependency_model import Dependency, TaskSummary
from taskdeps.errors import InvalidRequestError, NotFoundError, StoreUnavailableError
from taskdeps.file_store import FileDependencyStore, FileTaskDirectory
from taskdeps.paths import get_data_root
from taskdeps.schemas import DependencyFilter


def test_records_persist_across_instances(tmp_path, clock) -> None:
    store = FileDependencyStore(tmp_path, clock=clock)
    created = store.create(Dependency(id="", task_id="B", depends_on="A"))

    reloaded = FileDependencyStore(tmp_path)

    assert reloaded.get(created.id).task_id == "B"
    assert [d.id for d in reloaded.list_for_task("A")] == [created.id]
    document = json.loads((tmp_path / "dependencies.json").read_text())
    assert document["version"] == 1
    assert "task_info" not in document["dependencies"][0]


def test_update_and_delete_are_written(tmp_path, clock) -> None:
    store = FileDependencyStore(tmp_path, clock=clock)
    dep = store.create(Dependency(id="", task_id="B", depends_on="A"))

    store.update(dep.id, {"status": "resolved"})
    assert FileDependencyStore(tmp_path).list_for_task("A", DependencyFilter(status="resolved"))[0].id == dep.id

    store.delete(dep.id)
    with pytest.raises(NotFoundError):
        FileDependencyStore(tmp_path).get(dep.id)


def test_no_temp_files_left_behind(tmp_path, clock) -> None:
    store = FileDependencyStore(tmp_path, clock=clock)
    store.create(Dependency(id="", task_id="B", depends_on="A"))

    assert list(tmp_path.glob("*.tmp")) == []


def test_corrupt_document_is_store_unavailable(tmp_path) -> None:
    (tmp_path / "dependencies.json").write_text("{not json")

    with pytest.raises(StoreUnavailableError) as exc_info:
        FileDependencyStore(tmp_path).list_for_task("A")

    assert exc_info.value.cause is not None


def test_unsupported_version_is_store_unavailable(tmp_path) -> None:
    (tmp_path / "dependencies.json").write_text(json.dumps({"version": 99, "dependencies": []}))

    with pytest.raises(StoreUnavailableError):
        FileDependencyStore(tmp_path).records()


def test_task_directory_persists_and_attaches_summaries(tmp_path, clock) -> None:
    tasks = FileTaskDirectory(tmp_path)
    tasks.put_task(TaskSummary(id="A", name="Research", status="open"))
    created = tasks.create_task({"name": "Write"})
    store = FileDependencyStore(tmp_path, task_directory=tasks, clock=clock)

    dep = store.create(Dependency(id="", task_id=created.id, depends_on="A"))

    assert FileTaskDirectory(tmp_path).get_task(created.id).name == "Write"
    assert dep.depends_on_info.name == "Research"
    updated = tasks.update_task("A", {"status": "done"})
    assert updated.status == "done"
    assert {t.id for t in FileTaskDirectory(tmp_path).all_tasks()} == {"A", created.id}


def test_config_file_and_env_overrides(tmp_path, monkeypatch) -> None:
    (tmp_path / "taskdeps.yaml").write_text("workspace_id: team-42\nmax_fan_out: 15\n")
    monkeypatch.setenv("TASKDEPS_MAX_FAN_OUT", "20")
    monkeypatch.setenv("TASKDEPS_ANALYSIS_DEPTH", "4")

    config = load_config(tmp_path)

    assert config.workspace_id == "team-42"
    assert config.max_fan_out == 20
    assert config.analysis_depth == 4
    assert config.max_fan_in == 10
    assert config.is_closed_status("Done")


def test_invalid_config_is_invalid_request(tmp_path) -> None:
    (tmp_path / "taskdeps.yaml").write_text("max_fan_in: 0\n")

    with pytest.raises(InvalidRequestError):
        load_config(tmp_path)


def test_data_root_requires_env(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("TASKDEPS_DATA", raising=False)
    with pytest.raises(RuntimeError, match="TASKDEPS_DATA"):
        get_data_root()

    monkeypatch.setenv("TASKDEPS_DATA", str(tmp_path / "missing"))
    with pytest.raises(RuntimeError, match="doesn't exist"):
        get_data_root()

    monkeypatch.setenv("TASKDEPS_DATA", str(tmp_path))
    assert get_data_root() == tmp_path.resolve()
