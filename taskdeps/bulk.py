"""Bulk Mutation Coordinator: ordered batch apply with per-item results.

One policy backs every batch in the project (dependency create/update/delete,
generic task create/update, resolver remediation):

- Operations run strictly in array order, one at a time.
- continue_on_error=False: after the first failure at index k, items
  k+1..n are recorded as failed with SKIPPED_REASON and never attempted.
- continue_on_error=True: every item is attempted and keeps its own outcome.
- apply() never raises; every failure is captured on its item.
- execution_time_ms covers the whole batch.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from typing import Any

from taskdeps.errors import DependencyError, InvalidRequestError, StoreUnavailableError

logger = logging.getLogger(__name__)

SKIPPED_REASON = "skipped due to previous error"


@dataclass
class CreateOp:
    payload: Any
    label: str | None = None  # Identifier to report if the create fails


@dataclass
class UpdateOp:
    identifier: str
    patch: dict[str, Any] = field(default_factory=dict)


@dataclass
class DeleteOp:
    identifier: str


Operation = CreateOp | UpdateOp | DeleteOp


@dataclass
class BulkItemResult:
    index: int
    success: bool
    identifier: str | None = None
    error: str | None = None
    error_kind: str | None = None
    result: Any = None

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        data: dict[str, Any] = {
            "index": self.index,
            "success": self.success,
            "identifier": self.identifier,
        }
        if self.error is not None:
            data["error"] = self.error
            data["error_kind"] = self.error_kind
        if self.result is not None:
            data["result"] = self.result.to_dict() if hasattr(self.result, "to_dict") else self.result
        return data


@dataclass
class BulkOperationResult:
    results: list[BulkItemResult] = field(default_factory=list)
    execution_time_ms: int = 0

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def error_count(self) -> int:
        return sum(1 for r in self.results if not r.success)

    @property
    def total_count(self) -> int:
        return len(self.results)

    @property
    def success(self) -> bool:
        return self.error_count == 0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "success_count": self.success_count,
            "error_count": self.error_count,
            "total_count": self.total_count,
            "execution_time_ms": self.execution_time_ms,
            "results": [r.to_dict() for r in self.results],
        }


def _default_identify(result: Any) -> str | None:
    return getattr(result, "id", None)


class BulkMutationCoordinator:
    """Applies create/update/delete batches through caller-supplied callables.

    Args:
        create: payload -> created object
        update: (identifier, patch) -> updated object
        delete: identifier -> None
        identify: Extracts the identifier from a create result
    """

    def __init__(
        self,
        create: Callable[[Any], Any] | None = None,
        update: Callable[[str, dict[str, Any]], Any] | None = None,
        delete: Callable[[str], Any] | None = None,
        identify: Callable[[Any], str | None] = _default_identify,
    ):
        self._create = create
        self._update = update
        self._delete = delete
        self._identify = identify

    def apply(
        self, operations: Sequence[Operation], continue_on_error: bool = False
    ) -> BulkOperationResult:
        started = time.perf_counter()
        results: list[BulkItemResult] = []

        for index, op in enumerate(operations):
            try:
                results.append(self._run(index, op))
            except Exception as e:
                results.append(self._failure(index, op, e))
                if not continue_on_error:
                    for skipped_index in range(index + 1, len(operations)):
                        results.append(
                            BulkItemResult(
                                index=skipped_index,
                                success=False,
                                identifier=_op_identifier(operations[skipped_index]),
                                error=SKIPPED_REASON,
                                error_kind="skipped",
                            )
                        )
                    break

        outcome = BulkOperationResult(
            results=results,
            execution_time_ms=int((time.perf_counter() - started) * 1000),
        )
        logger.info(
            "Bulk apply: %d succeeded, %d failed of %d (%d ms)",
            outcome.success_count,
            outcome.error_count,
            outcome.total_count,
            outcome.execution_time_ms,
        )
        return outcome

    def _run(self, index: int, op: Operation) -> BulkItemResult:
        if isinstance(op, CreateOp):
            if self._create is None:
                raise InvalidRequestError("Create is not supported for this batch")
            created = self._create(op.payload)
            return BulkItemResult(
                index=index,
                success=True,
                identifier=self._identify(created) or op.label,
                result=created,
            )
        if isinstance(op, UpdateOp):
            if self._update is None:
                raise InvalidRequestError("Update is not supported for this batch")
            updated = self._update(op.identifier, op.patch)
            return BulkItemResult(index=index, success=True, identifier=op.identifier, result=updated)
        if isinstance(op, DeleteOp):
            if self._delete is None:
                raise InvalidRequestError("Delete is not supported for this batch")
            self._delete(op.identifier)
            return BulkItemResult(index=index, success=True, identifier=op.identifier)
        raise InvalidRequestError(f"Unknown bulk operation: {type(op).__name__}")

    @staticmethod
    def _failure(index: int, op: Operation, error: Exception) -> BulkItemResult:
        if not isinstance(error, DependencyError):
            logger.warning("Bulk item %d failed with untyped error", index, exc_info=error)
            error = StoreUnavailableError(str(error) or type(error).__name__, cause=error)
        else:
            logger.warning("Bulk item %d failed: %s", index, error.message)
        return BulkItemResult(
            index=index,
            success=False,
            identifier=_op_identifier(op),
            error=error.message,
            error_kind=error.kind,
        )


def _op_identifier(op: Operation) -> str | None:
    if isinstance(op, CreateOp):
        return op.label
    return op.identifier
