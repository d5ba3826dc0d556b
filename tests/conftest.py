"""Shared fixtures for dependency engine tests.

Edges in test names read "X -> Y" in execution order: X must finish before
Y, i.e. the record is Dependency(task_id=Y, depends_on=X).
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime, timedelta
from itertools import count

import pytest

from taskdeps.config import EngineConfig
from taskdeps.dependency_model import (
    Dependency,
    DependencyStatus,
    DependencyType,
    TaskSummary,
)
from taskdeps.dependency_service import DependencyService
from taskdeps.dependency_store import InMemoryDependencyStore, InMemoryTaskDirectory

BASE_TIME = datetime(2026, 1, 1, tzinfo=UTC)


@pytest.fixture
def clock() -> Callable[[], datetime]:
    """Strictly increasing timestamps, one second apart."""
    ticks = count()
    return lambda: BASE_TIME + timedelta(seconds=next(ticks))


@pytest.fixture
def edge() -> Callable[..., Dependency]:
    """Factory: edge("d1", "A", "B") is the record for A -> B (B depends on A)."""
    order = count()

    def make(
        dep_id: str,
        first: str,
        then: str,
        type: DependencyType = DependencyType.BLOCKING,
        status: DependencyStatus = DependencyStatus.ACTIVE,
        created: datetime | None = None,
    ) -> Dependency:
        when = created or BASE_TIME + timedelta(minutes=next(order))
        return Dependency(
            id=dep_id,
            task_id=then,
            depends_on=first,
            type=type,
            status=status,
            date_created=when,
            date_updated=when,
        )

    return make


@pytest.fixture
def tasks() -> InMemoryTaskDirectory:
    return InMemoryTaskDirectory(
        [TaskSummary(id=t, name=f"Task {t}", status="open") for t in ("A", "B", "C", "D", "E")]
    )


@pytest.fixture
def store(clock) -> InMemoryDependencyStore:
    """Store without a task directory (no summaries, no existence checks)."""
    return InMemoryDependencyStore(clock=clock)


@pytest.fixture
def linked_store(tasks, clock) -> InMemoryDependencyStore:
    """Store that attaches summaries from the tasks fixture."""
    return InMemoryDependencyStore(task_directory=tasks, clock=clock)


@pytest.fixture
def service(linked_store, tasks) -> DependencyService:
    return DependencyService(linked_store, tasks, EngineConfig())
