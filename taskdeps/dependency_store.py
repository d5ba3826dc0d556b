#!/usr/bin/env python3
"""Dependency Store: persistence boundary for dependency records.

The engine talks to persistence only through the DependencyStore and
TaskDirectory protocols. Every read returns fresh copies, so callers can
never mutate stored state except through a write operation.

Consistency note: duplicate detection and cycle freshness are only as strong
as the store's own read-after-write consistency. The in-memory and file
stores are read-after-write consistent for a single process; a shared remote
store offers whatever its API offers. The engine adds no locking of its own.

Usage:
    from taskdeps.dependency_store import InMemoryDependencyStore, InMemoryTaskDirectory

    tasks = InMemoryTaskDirectory()
    store = InMemoryDependencyStore(task_directory=tasks)
    dep = store.create(Dependency(id="", task_id="a", depends_on="b"))
"""

from __future__ import annotations

import dataclasses
import logging
import uuid
from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol, runtime_checkable

from taskdeps.dependency_model import (
    Dependency,
    DependencyStatus,
    DependencyType,
    TaskSummary,
    creation_order,
    generate_dependency_id,
    utcnow,
)
from taskdeps.errors import DuplicateDependencyError, InvalidRequestError, NotFoundError
from taskdeps.schemas import DependencyFilter

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


@runtime_checkable
class DependencyStore(Protocol):
    """Persistence contract for dependency records."""

    def get(self, dependency_id: str) -> Dependency: ...

    def create(self, record: Dependency) -> Dependency: ...

    def update(self, dependency_id: str, patch: dict[str, Any]) -> Dependency: ...

    def delete(self, dependency_id: str) -> None: ...

    def list_for_task(
        self, task_id: str, filter: DependencyFilter | None = None
    ) -> list[Dependency]: ...

    def list_for_workspace(
        self,
        workspace_id: str,
        filter: DependencyFilter | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Dependency]: ...


@runtime_checkable
class TaskDirectory(Protocol):
    """Task-metadata collaborator: summaries plus generic create/update."""

    def get_task(self, task_id: str) -> TaskSummary | None: ...

    def create_task(self, fields: dict[str, Any]) -> TaskSummary: ...

    def update_task(self, task_id: str, fields: dict[str, Any]) -> TaskSummary: ...


def matches_filter(dep: Dependency, filter: DependencyFilter | None) -> bool:
    """Apply a DependencyFilter to one record.

    Resolved records are excluded unless include_resolved is set or the
    filter asks for status "resolved" explicitly.
    """
    if filter is None:
        return dep.status != DependencyStatus.RESOLVED
    if filter.type is not None and dep.type.value != filter.type:
        return False
    if filter.status is not None:
        return dep.status.value == filter.status
    if dep.status == DependencyStatus.RESOLVED and not filter.include_resolved:
        return False
    return True


class InMemoryTaskDirectory:
    """Task summaries held in a dict keyed by task id."""

    def __init__(self, tasks: Iterable[TaskSummary] | None = None):
        self._tasks: dict[str, TaskSummary] = {}
        for task in tasks or []:
            self.add(task)

    def add(self, task: TaskSummary) -> TaskSummary:
        """Register or replace a task summary."""
        self._tasks[task.id] = self._copy(task)
        return self._copy(task)

    @staticmethod
    def _copy(task: TaskSummary) -> TaskSummary:
        return dataclasses.replace(task, assignees=list(task.assignees))

    def get_task(self, task_id: str) -> TaskSummary | None:
        task = self._tasks.get(task_id)
        return self._copy(task) if task is not None else None

    def create_task(self, fields: dict[str, Any]) -> TaskSummary:
        data = dict(fields)
        data.setdefault("id", f"task-{uuid.uuid4().hex[:8]}")
        if data["id"] in self._tasks:
            raise InvalidRequestError(f"Task already exists: {data['id']}", task_id=data["id"])
        task = TaskSummary.from_dict(data)
        logger.info("Created task %s (%s)", task.id, task.name)
        return self.add(task)

    def update_task(self, task_id: str, fields: dict[str, Any]) -> TaskSummary:
        current = self._tasks.get(task_id)
        if current is None:
            raise NotFoundError(f"Task not found: {task_id}", task_id=task_id)
        merged = current.to_dict()
        merged.update({k: v for k, v in fields.items() if v is not None and k != "id"})
        return self.add(TaskSummary.from_dict(merged))

    def all_tasks(self) -> list[TaskSummary]:
        return [self._copy(t) for t in self._tasks.values()]


class InMemoryDependencyStore:
    """Dependency records held in insertion order.

    Args:
        task_directory: When given, reads attach task_info/depends_on_info
            summaries from it.
        clock: Timestamp source for date_created/date_updated.
    """

    def __init__(
        self,
        task_directory: TaskDirectory | None = None,
        clock: Clock = utcnow,
    ):
        self.task_directory = task_directory
        self.clock = clock
        self._records: dict[str, Dependency] = {}

    # ── Loading ──────────────────────────────────────────────────────

    def load_records(self, records: Iterable[Dependency]) -> None:
        """Replace stored records as-is, without write-time validation.

        Used to load existing (possibly inconsistent) data.
        """
        self._records = {r.id: self._strip(r) for r in records}

    def records(self) -> list[Dependency]:
        """All records in creation order, without task summaries."""
        return [self._copy(r) for r in creation_order(list(self._records.values()))]

    # ── DependencyStore ──────────────────────────────────────────────

    def get(self, dependency_id: str) -> Dependency:
        record = self._records.get(dependency_id)
        if record is None:
            raise NotFoundError(
                f"Dependency not found: {dependency_id}", dependency_id=dependency_id
            )
        return self._attach(record)

    def create(self, record: Dependency) -> Dependency:
        if record.status == DependencyStatus.ACTIVE:
            for existing in self._records.values():
                if existing.is_active and existing.key == record.key:
                    raise DuplicateDependencyError(
                        f"Active {record.type.value} dependency already exists: "
                        f"{record.task_id} -> {record.depends_on}",
                        task_id=record.task_id,
                        depends_on=record.depends_on,
                        type=record.type.value,
                        existing_id=existing.id,
                    )

        now = self.clock()
        dep_id = record.id if record.id and record.id not in self._records else generate_dependency_id()
        stored = self._strip(
            dataclasses.replace(record, id=dep_id, date_created=now, date_updated=now)
        )
        self._records[dep_id] = stored
        logger.info(
            "Created dependency %s: %s %s %s",
            dep_id,
            stored.task_id,
            stored.type.value,
            stored.depends_on,
        )
        return self._attach(stored)

    def update(self, dependency_id: str, patch: dict[str, Any]) -> Dependency:
        current = self._records.get(dependency_id)
        if current is None:
            raise NotFoundError(
                f"Dependency not found: {dependency_id}", dependency_id=dependency_id
            )

        changes: dict[str, Any] = {}
        if patch.get("type") is not None:
            changes["type"] = DependencyType(getattr(patch["type"], "value", patch["type"]))
        if patch.get("status") is not None:
            changes["status"] = DependencyStatus(
                getattr(patch["status"], "value", patch["status"])
            )
        updated = dataclasses.replace(current, **changes, date_updated=self.clock())
        self._records[dependency_id] = updated
        logger.info("Updated dependency %s: %s", dependency_id, {k: v.value for k, v in changes.items()})
        return self._attach(updated)

    def delete(self, dependency_id: str) -> None:
        if dependency_id not in self._records:
            raise NotFoundError(
                f"Dependency not found: {dependency_id}", dependency_id=dependency_id
            )
        del self._records[dependency_id]
        logger.info("Deleted dependency %s", dependency_id)

    def list_for_task(
        self, task_id: str, filter: DependencyFilter | None = None
    ) -> list[Dependency]:
        matches = [
            r
            for r in self._records.values()
            if (r.task_id == task_id or r.depends_on == task_id) and matches_filter(r, filter)
        ]
        return [self._attach(r) for r in creation_order(matches)]

    def list_for_workspace(
        self,
        workspace_id: str,
        filter: DependencyFilter | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[Dependency]:
        matches = creation_order(
            [
                r
                for r in self._records.values()
                if r.workspace_id == workspace_id and matches_filter(r, filter)
            ]
        )
        end = None if limit is None else offset + limit
        return [self._attach(r) for r in matches[offset:end]]

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _strip(record: Dependency) -> Dependency:
        return dataclasses.replace(record, task_info=None, depends_on_info=None)

    @staticmethod
    def _copy(record: Dependency) -> Dependency:
        return dataclasses.replace(record)

    def _attach(self, record: Dependency) -> Dependency:
        if self.task_directory is None:
            return self._copy(record)
        return dataclasses.replace(
            record,
            task_info=self.task_directory.get_task(record.task_id),
            depends_on_info=self.task_directory.get_task(record.depends_on),
        )
