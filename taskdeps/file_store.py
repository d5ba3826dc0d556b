#!/usr/bin/env python3
"""File Store: JSON-file persistence for dependencies and task summaries.

Each operation takes a file lock, reloads the document from disk, applies the
change through the in-memory logic and writes the document back atomically
(temp file + rename). Nothing is cached between calls.

Directory Structure:
    $TASKDEPS_DATA/
    ├── dependencies.json     {"version": 1, "dependencies": [...]}
    ├── dependencies.json.lock
    ├── tasks.json            {"version": 1, "tasks": {"task-id": {...}}}
    ├── tasks.json.lock
    └── taskdeps.yaml         (optional engine config)

Usage:
    from taskdeps.file_store import FileDependencyStore, FileTaskDirectory

    tasks = FileTaskDirectory()
    store = FileDependencyStore(task_directory=tasks)
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any, TypeVar

from filelock import FileLock, Timeout

from taskdeps.dependency_model import Dependency, TaskSummary, utcnow
from taskdeps.dependency_store import (
    Clock,
    InMemoryDependencyStore,
    InMemoryTaskDirectory,
    TaskDirectory,
)
from taskdeps.errors import DependencyError, StoreUnavailableError
from taskdeps.paths import get_data_root, get_dependencies_file, get_tasks_file
from taskdeps.schemas import DependencyFilter

logger = logging.getLogger(__name__)

DOCUMENT_VERSION = 1
LOCK_TIMEOUT_SECONDS = 10

T = TypeVar("T")


class JsonDocument:
    """A versioned JSON document guarded by a sibling .lock file."""

    def __init__(self, path: Path, lock_timeout: float = LOCK_TIMEOUT_SECONDS):
        self.path = path
        self.lock = FileLock(str(path) + ".lock", timeout=lock_timeout)

    def read(self) -> dict[str, Any]:
        """Read the document; a missing file reads as an empty document."""
        if not self.path.exists():
            return {"version": DOCUMENT_VERSION}
        with open(self.path, encoding="utf-8") as f:
            data = json.load(f)
        if data.get("version") != DOCUMENT_VERSION:
            raise ValueError(f"Unsupported document version: {data.get('version')}")
        return data

    def write(self, data: dict[str, Any]) -> None:
        """Write atomically: temp file in the same directory, then rename."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        content = json.dumps({**data, "version": DOCUMENT_VERSION}, indent=2)
        fd, temp_path = tempfile.mkstemp(
            suffix=".tmp",
            prefix=self.path.stem + "_",
            dir=self.path.parent,
        )
        try:
            os.close(fd)
            temp = Path(temp_path)
            temp.write_text(content, encoding="utf-8")
            temp.replace(self.path)
        except Exception:
            Path(temp_path).unlink(missing_ok=True)
            raise

    @contextmanager
    def locked(self) -> Iterator[None]:
        """Hold the lock, translating lock/I/O/parse failures to StoreUnavailableError."""
        try:
            with self.lock:
                yield
        except DependencyError:
            raise
        except Timeout as e:
            raise StoreUnavailableError(
                f"Timed out waiting for lock on {self.path.name}", cause=e, path=str(self.path)
            ) from e
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise StoreUnavailableError(
                f"Failed to access {self.path.name}: {e}", cause=e, path=str(self.path)
            ) from e


class FileTaskDirectory(InMemoryTaskDirectory):
    """Task summaries persisted in tasks.json."""

    def __init__(self, data_root: Path | None = None, lock_timeout: float = LOCK_TIMEOUT_SECONDS):
        super().__init__()
        self.data_root = data_root or get_data_root()
        self.document = JsonDocument(get_tasks_file(self.data_root), lock_timeout)

    def _load(self) -> None:
        data = self.document.read()
        self._tasks = {
            tid: TaskSummary.from_dict({**t, "id": tid}) for tid, t in data.get("tasks", {}).items()
        }

    def _save(self) -> None:
        self.document.write({"tasks": {tid: t.to_dict() for tid, t in self._tasks.items()}})

    def _run(self, op: Callable[[], T], *, write: bool) -> T:
        with self.document.locked():
            self._load()
            result = op()
            if write:
                self._save()
            return result

    def get_task(self, task_id: str) -> TaskSummary | None:
        return self._run(lambda: InMemoryTaskDirectory.get_task(self, task_id), write=False)

    def create_task(self, fields: dict[str, Any]) -> TaskSummary:
        return self._run(lambda: InMemoryTaskDirectory.create_task(self, fields), write=True)

    def update_task(self, task_id: str, fields: dict[str, Any]) -> TaskSummary:
        return self._run(
            lambda: InMemoryTaskDirectory.update_task(self, task_id, fields), write=True
        )

    def put_task(self, task: TaskSummary) -> TaskSummary:
        """Register or replace a task summary on disk."""
        return self._run(lambda: self.add(task), write=True)

    def all_tasks(self) -> list[TaskSummary]:
        return self._run(lambda: InMemoryTaskDirectory.all_tasks(self), write=False)


class FileDependencyStore(InMemoryDependencyStore):
    """Dependency records persisted in dependencies.json.

    Args:
        data_root: Data directory. Defaults to $TASKDEPS_DATA.
        task_directory: Source of denormalized task summaries.
        clock: Timestamp source.
        lock_timeout: Seconds to wait for the file lock.
    """

    def __init__(
        self,
        data_root: Path | None = None,
        task_directory: TaskDirectory | None = None,
        clock: Clock = utcnow,
        lock_timeout: float = LOCK_TIMEOUT_SECONDS,
    ):
        super().__init__(task_directory=task_directory, clock=clock)
        self.data_root = data_root or get_data_root()
        self.document = JsonDocument(get_dependencies_file(self.data_root), lock_timeout)

    def _load(self) -> None:
        data = self.document.read()
        self._records = {}
        for raw in data.get("dependencies", []):
            dep = Dependency.from_dict(raw)
            self._records[dep.id] = dep

    def _save(self) -> None:
        self.document.write(
            {"dependencies": [r.to_dict(include_info=False) for r in self._records.values()]}
        )

    def _run(self, op: Callable[[], T], *, write: bool) -> T:
        with self.document.locked():
            self._load()
            result = op()
            if write:
                self._save()
            return result

    def load_records(self, records) -> None:
        self._run(lambda: InMemoryDependencyStore.load_records(self, records), write=True)

    def records(self) -> list[Dependency]:
        return self._run(lambda: InMemoryDependencyStore.records(self), write=False)

    def get(self, dependency_id: str) -> Dependency:
        return self._run(lambda: InMemoryDependencyStore.get(self, dependency_id), write=False)

    def create(self, record: Dependency) -> Dependency:
        return self._run(lambda: InMemoryDependencyStore.create(self, record), write=True)

    def update(self, dependency_id: str, patch: dict[str, Any]) -> Dependency:
        return self._run(
            lambda: InMemoryDependencyStore.update(self, dependency_id, patch), write=True
        )

    def delete(self, dependency_id: str) -> None:
        self._run(lambda: InMemoryDependencyStore.delete(self, dependency_id), write=True)

    def list_for_task(
        self, task_id: str, filter: DependencyFilter | None = None
    ) -> list[Dependency]:
        return self._run(
            lambda: InMemoryDependencyStore.list_for_task(self, task_id, filter), write=False
        )

    def list_for_workspace(
        self,
        workspace_id: str,
        filter: DependencyFilter | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Dependency]:
        return self._run(
            lambda: InMemoryDependencyStore.list_for_workspace(
                self, workspace_id, filter, limit, offset
            ),
            write=False,
        )
