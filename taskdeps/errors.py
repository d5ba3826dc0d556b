"""Error taxonomy for dependency operations.

Every public operation fails with one of these kinds. Each error carries the
offending identifiers so callers can act on them; cycle errors carry the full
cycle path so a caller can decide whether to force the write.

Conflicts found in *existing* data are reported through ConflictReport and are
never raised. Only an attempted write that would create a new problem raises.
"""

from __future__ import annotations

from typing import Any


class DependencyError(Exception):
    """Base class for all typed dependency errors."""

    kind = "dependency_error"

    def __init__(self, message: str, **identifiers: Any):
        super().__init__(message)
        self.message = message
        self.identifiers = {k: v for k, v in identifiers.items() if v is not None}

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {"kind": self.kind, "message": self.message, **self.identifiers}


class NotFoundError(DependencyError):
    """Raised when a dependency or task id cannot be resolved."""

    kind = "not_found"


class DuplicateDependencyError(DependencyError):
    """Raised when a write collides with an existing active edge."""

    kind = "duplicate_dependency"

    def __init__(
        self,
        message: str,
        *,
        task_id: str,
        depends_on: str,
        type: str,
        existing_id: str | None = None,
    ):
        super().__init__(
            message,
            task_id=task_id,
            depends_on=depends_on,
            type=type,
            existing_id=existing_id,
        )
        self.existing_id = existing_id


class SelfDependencyError(DependencyError):
    """Raised when task_id == depends_on."""

    kind = "self_dependency"

    def __init__(self, task_id: str):
        super().__init__(f"Task cannot depend on itself: {task_id}", task_id=task_id)
        self.task_id = task_id


class CycleWouldBeCreatedError(DependencyError):
    """Raised when a create/update would close a cycle of blocking edges."""

    kind = "cycle_would_be_created"

    def __init__(self, cycle: list[str], *, dependency_id: str | None = None):
        path = " -> ".join([*cycle, cycle[0]]) if cycle else ""
        super().__init__(
            f"Dependency would create a cycle: {path}. Pass force=True to override.",
            cycle=list(cycle),
            dependency_id=dependency_id,
        )
        self.cycle = list(cycle)


class InvalidTransitionError(DependencyError):
    """Raised when a dependency status change is not allowed."""

    kind = "invalid_transition"

    def __init__(self, dependency_id: str, from_status: str, to_status: str):
        super().__init__(
            f"Cannot change dependency {dependency_id} from '{from_status}' to "
            f"'{to_status}' without force",
            dependency_id=dependency_id,
            from_status=from_status,
            to_status=to_status,
        )
        self.from_status = from_status
        self.to_status = to_status


class StoreUnavailableError(DependencyError):
    """Raised when the store collaborator fails (I/O, lock timeout, upstream API).

    The upstream exception is kept as both ``cause`` and ``__cause__``.
    """

    kind = "store_unavailable"

    def __init__(self, message: str, *, cause: BaseException | None = None, **identifiers: Any):
        if cause is not None:
            identifiers.setdefault("cause", f"{type(cause).__name__}: {cause}")
        super().__init__(message, **identifiers)
        self.cause = cause
        self.__cause__ = cause


class InvalidRequestError(DependencyError):
    """Raised for malformed input (bad enum value, depth out of range, oversized batch)."""

    kind = "invalid_request"

    def __init__(self, message: str, *, errors: list[dict[str, Any]] | None = None, **identifiers: Any):
        super().__init__(message, errors=errors, **identifiers)
        self.errors = errors or []
