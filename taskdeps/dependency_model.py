#!/usr/bin/env python3
"""Dependency Model: the only persisted entity of the dependency engine.

A Dependency records that one task's progress depends on another task. All
graph structures (adjacency, snapshots, reports) are derived from lists of
these records on each call and never persisted.

Usage:
    from taskdeps.dependency_model import Dependency, DependencyType

    dep = Dependency.from_dict(record)
    edge = dep.canonical_edge()   # (source, target, kind)
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)


class DependencyType(Enum):
    """Relationship kinds between two tasks."""

    BLOCKING = "blocking"  # task_id is blocked by depends_on
    WAITING_ON = "waiting_on"  # Inverse of BLOCKING
    LINKED = "linked"  # Related, non-blocking


class DependencyStatus(Enum):
    """Dependency lifecycle states."""

    ACTIVE = "active"
    RESOLVED = "resolved"
    BROKEN = "broken"
    IGNORED = "ignored"


# Allowed status changes without force. RESOLVED is terminal.
STATUS_TRANSITIONS: dict[DependencyStatus, set[DependencyStatus]] = {
    DependencyStatus.ACTIVE: {
        DependencyStatus.RESOLVED,
        DependencyStatus.BROKEN,
        DependencyStatus.IGNORED,
    },
    DependencyStatus.BROKEN: {
        DependencyStatus.ACTIVE,
        DependencyStatus.RESOLVED,
        DependencyStatus.IGNORED,
    },
    DependencyStatus.IGNORED: {
        DependencyStatus.ACTIVE,
        DependencyStatus.RESOLVED,
        DependencyStatus.BROKEN,
    },
    DependencyStatus.RESOLVED: set(),
}


def is_transition_allowed(from_status: DependencyStatus, to_status: DependencyStatus) -> bool:
    """Check whether a status change is allowed without force."""
    if from_status == to_status:
        return True
    return to_status in STATUS_TRANSITIONS[from_status]


def utcnow() -> datetime:
    return datetime.now(UTC)


def generate_dependency_id() -> str:
    """Generate a new dependency id (dep-<12 hex chars>)."""
    return f"dep-{uuid.uuid4().hex[:12]}"


def _parse_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=UTC)
    if value is None:
        return utcnow()
    parsed = datetime.fromisoformat(str(value))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


@dataclass
class TaskSummary:
    """Denormalized task fields used to populate graph nodes.

    Reported by the task-metadata collaborator so graph queries need no
    second round trip per task.
    """

    id: str
    name: str = ""
    status: str = ""
    assignees: list[str] = field(default_factory=list)
    due_date: datetime | None = None
    url: str = ""

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "id": self.id,
            "name": self.name,
            "status": self.status,
            "assignees": list(self.assignees),
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "url": self.url,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TaskSummary:
        """Create from dictionary."""
        due = data.get("due_date")
        return cls(
            id=data["id"],
            name=data.get("name", ""),
            status=data.get("status", ""),
            assignees=list(data.get("assignees", [])),
            due_date=_parse_datetime(due) if due else None,
            url=data.get("url", ""),
        )


@dataclass
class Dependency:
    """A directed relationship between two tasks.

    Invariant: task_id != depends_on (enforced at write time).
    At most one ACTIVE record per (task_id, depends_on, type); extra matches
    are reported as duplicate conflicts, not rejected on read.
    """

    id: str
    task_id: str  # Dependent task
    depends_on: str  # Target task
    type: DependencyType = DependencyType.BLOCKING
    status: DependencyStatus = DependencyStatus.ACTIVE
    link_id: str | None = None
    workspace_id: str = "default"
    created_by: str | None = None
    date_created: datetime = field(default_factory=utcnow)
    date_updated: datetime = field(default_factory=utcnow)

    # Attached by the store at read time, never persisted
    task_info: TaskSummary | None = None
    depends_on_info: TaskSummary | None = None

    @property
    def key(self) -> tuple[str, str, str]:
        """Duplicate-detection key: (task_id, depends_on, type)."""
        return (self.task_id, self.depends_on, self.type.value)

    @property
    def is_active(self) -> bool:
        return self.status == DependencyStatus.ACTIVE

    @property
    def is_blocking(self) -> bool:
        """True for blocking-equivalent types (blocking, waiting_on)."""
        return self.type != DependencyType.LINKED

    def canonical_edge(self) -> tuple[str, str, str]:
        """Normalize to (source, target, kind).

        source is the prerequisite and target the dependent. WAITING_ON is
        the inverse of BLOCKING, so its endpoints are swapped and its kind
        becomes "blocking". LINKED keeps the blocking orientation and kind
        "linked".
        """
        if self.type == DependencyType.WAITING_ON:
            return self.task_id, self.depends_on, DependencyType.BLOCKING.value
        if self.type == DependencyType.LINKED:
            return self.depends_on, self.task_id, DependencyType.LINKED.value
        return self.depends_on, self.task_id, DependencyType.BLOCKING.value

    def to_dict(self, include_info: bool = True) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "id": self.id,
            "task_id": self.task_id,
            "depends_on": self.depends_on,
            "type": self.type.value,
            "status": self.status.value,
            "link_id": self.link_id,
            "workspace_id": self.workspace_id,
            "created_by": self.created_by,
            "date_created": self.date_created.isoformat(),
            "date_updated": self.date_updated.isoformat(),
        }
        if include_info:
            data["task_info"] = self.task_info.to_dict() if self.task_info else None
            data["depends_on_info"] = (
                self.depends_on_info.to_dict() if self.depends_on_info else None
            )
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Dependency:
        """Create from dictionary.

        Raises:
            KeyError: If task_id or depends_on is missing
            ValueError: If type or status is not a known value
        """
        task_info = data.get("task_info")
        depends_on_info = data.get("depends_on_info")
        return cls(
            id=data.get("id") or generate_dependency_id(),
            task_id=data["task_id"],
            depends_on=data["depends_on"],
            type=DependencyType(data.get("type", DependencyType.BLOCKING.value)),
            status=DependencyStatus(data.get("status", DependencyStatus.ACTIVE.value)),
            link_id=data.get("link_id"),
            workspace_id=data.get("workspace_id", "default"),
            created_by=data.get("created_by"),
            date_created=_parse_datetime(data.get("date_created")),
            date_updated=_parse_datetime(data.get("date_updated") or data.get("date_created")),
            task_info=TaskSummary.from_dict(task_info) if task_info else None,
            depends_on_info=TaskSummary.from_dict(depends_on_info) if depends_on_info else None,
        )


def creation_order(deps: list[Dependency]) -> list[Dependency]:
    """Sort by creation time ascending; input order breaks ties."""
    return [d for _, d in sorted(enumerate(deps), key=lambda p: (p[1].date_created, p[0]))]
