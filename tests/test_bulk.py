"""Tests for BulkMutationCoordinator ordering and failure semantics."""

import pytest

from taskdeps.bulk import (
    SKIPPED_REASON,
    BulkMutationCoordinator,
    CreateOp,
    DeleteOp,
    UpdateOp,
)
from taskdeps.errors import InvalidRequestError, NotFoundError


def test_stop_on_error_skips_remaining_items(service) -> None:
    """Item 2 fails, so item 3 is reported as skipped and never attempted."""
    result = service.bulk_dependency_operations(
        "create",
        [
            {"task_id": "B", "depends_on": "A"},
            {"task_id": "C", "depends_on": "C"},
            {"task_id": "D", "depends_on": "C"},
        ],
        continue_on_error=False,
    )

    assert [r.success for r in result.results] == [True, False, False]
    assert result.results[1].error_kind == "self_dependency"
    assert result.results[2].error == SKIPPED_REASON
    assert (result.success_count, result.error_count, result.total_count) == (1, 2, 3)
    assert [d.task_id for d in service.store.records()] == ["B"]


def test_continue_on_error_attempts_every_item(service) -> None:
    result = service.bulk_dependency_operations(
        "create",
        [
            {"task_id": "B", "depends_on": "A"},
            {"task_id": "C", "depends_on": "C"},
            {"task_id": "D", "depends_on": "C"},
        ],
        continue_on_error=True,
    )

    assert [r.success for r in result.results] == [True, False, True]
    assert [r.index for r in result.results] == [0, 1, 2]
    assert len(service.store.records()) == 2


def test_earlier_outcomes_are_kept_after_a_failure() -> None:
    """Items before the failure keep their own results; nothing is rolled back."""
    applied = []

    def delete(identifier: str) -> None:
        if identifier == "bad":
            raise NotFoundError(f"Dependency not found: {identifier}", dependency_id=identifier)
        applied.append(identifier)

    result = BulkMutationCoordinator(delete=delete).apply(
        [DeleteOp("d1"), DeleteOp("d2"), DeleteOp("bad"), DeleteOp("d3")]
    )

    assert applied == ["d1", "d2"]
    assert [r.success for r in result.results] == [True, True, False, False]
    assert result.results[2].error_kind == "not_found"
    assert result.results[3].identifier == "d3"
    assert result.results[3].error == SKIPPED_REASON


def test_untyped_failures_are_captured_as_store_unavailable() -> None:
    def update(identifier: str, patch: dict) -> dict:
        raise ConnectionError("upstream timed out")

    result = BulkMutationCoordinator(update=update).apply([UpdateOp("d1", {"status": "resolved"})])

    assert result.results[0].success is False
    assert result.results[0].error_kind == "store_unavailable"
    assert "upstream timed out" in result.results[0].error
    assert result.execution_time_ms >= 0


def test_unsupported_operation_is_an_item_failure() -> None:
    result = BulkMutationCoordinator(create=lambda payload: payload).apply(
        [CreateOp({"id": "x"}), DeleteOp("d1")], continue_on_error=True
    )

    assert result.results[0].success is True
    assert result.results[1].error_kind == "invalid_request"


def test_to_dict_shape(service) -> None:
    data = service.bulk_dependency_operations(
        "create", [{"task_id": "B", "depends_on": "A"}]
    ).to_dict()

    assert data["success"] is True
    assert data["total_count"] == 1
    assert data["results"][0]["result"]["task_id"] == "B"
    assert "execution_time_ms" in data


def test_bulk_update_and_delete(service) -> None:
    first = service.create_dependency("B", "A")
    second = service.create_dependency("C", "B")

    updated = service.bulk_dependency_operations(
        "update",
        [{"dependency_id": first.id, "status": "resolved"}, {"dependency_id": "missing"}],
        continue_on_error=True,
    )
    deleted = service.bulk_dependency_operations("delete", [second.id, {"dependency_id": first.id}])

    assert [r.success for r in updated.results] == [True, False]
    assert updated.results[1].error_kind == "not_found"
    assert deleted.success_count == 2
    assert service.store.records() == []


def test_invalid_items_fail_individually(service) -> None:
    result = service.bulk_dependency_operations(
        "create", [{"task_id": "B"}, "not-an-object"], continue_on_error=True
    )

    assert [r.error_kind for r in result.results] == ["invalid_request", "invalid_request"]


def test_batch_over_limit_is_rejected(service) -> None:
    items = [{"task_id": "B", "depends_on": "A"}] * 51

    with pytest.raises(InvalidRequestError):
        service.bulk_dependency_operations("create", items)


def test_unknown_operation_is_rejected(service) -> None:
    with pytest.raises(InvalidRequestError) as exc_info:
        service.bulk_dependency_operations("merge", [])

    assert exc_info.value.errors[0]["loc"] == ["operation"]


def test_bulk_task_create_and_update(service, tasks) -> None:
    created = service.bulk_create_tasks(
        [{"name": "Draft"}, {"name": ""}, {"name": "Review"}], continue_on_error=True
    )

    assert [r.success for r in created.results] == [True, False, True]
    new_id = created.results[0].identifier
    assert tasks.get_task(new_id).name == "Draft"

    updated = service.bulk_update_tasks(
        [{"task_id": new_id, "status": "done"}, {"task_id": "ghost", "status": "done"}]
    )

    assert [r.success for r in updated.results] == [True, False]
    assert tasks.get_task(new_id).status == "done"
