"""Request schemas for dependency operations.

Pydantic models validate every caller-supplied payload before it reaches the
engine. Validation failures surface as InvalidRequestError via
``validate_request``.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from taskdeps.errors import InvalidRequestError

DependencyTypeName = Literal["blocking", "waiting_on", "linked"]
DependencyStatusName = Literal["active", "resolved", "broken", "ignored"]
Direction = Literal["upstream", "downstream", "both"]
ExportFormat = Literal["json", "csv", "graphml"]
ImportFormat = Literal["json", "csv"]
BulkOperation = Literal["create", "update", "delete"]

M = TypeVar("M", bound=BaseModel)


class CreateDependencyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    task_id: str = Field(..., min_length=1, description="The task that depends on another.")
    depends_on: str = Field(..., min_length=1, description="The task this task depends on.")
    type: DependencyTypeName = Field(default="blocking")
    link_id: str | None = Field(default=None, description="Groups edges created together.")
    status: DependencyStatusName = Field(default="active")
    created_by: str | None = None
    force: bool = Field(default=False, description="Skip the cycle pre-flight check.")


class UpdateDependencyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    dependency_id: str = Field(..., min_length=1)
    type: DependencyTypeName | None = None
    status: DependencyStatusName | None = None
    force: bool = Field(default=False, description="Allow disallowed transitions and cycles.")


class DeleteDependencyRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    dependency_id: str = Field(..., min_length=1)


class DependencyFilter(BaseModel):
    """Filter for store list operations."""

    type: DependencyTypeName | None = None
    status: DependencyStatusName | None = None
    include_resolved: bool = False


class DependencyGraphOptions(BaseModel):
    task_id: str = Field(..., min_length=1)
    depth: int = Field(default=3, ge=1, le=10, description="Maximum hops from the root.")
    direction: Direction = "both"
    include_resolved: bool = False
    include_broken: bool = True


class ProposedDependency(BaseModel):
    depends_on: str = Field(..., min_length=1)
    type: DependencyTypeName = "blocking"


class ConflictCheckRequest(BaseModel):
    task_id: str = Field(..., min_length=1)
    proposed_dependencies: list[ProposedDependency] = Field(default_factory=list)


class ResolutionOptions(BaseModel):
    break_cycles: bool = True
    remove_duplicates: bool = True
    update_invalid_statuses: bool = True


class BulkDependencyRequest(BaseModel):
    operation: BulkOperation
    continue_on_error: bool = False


class ExportRequest(BaseModel):
    task_id: str = Field(..., min_length=1)
    format: ExportFormat = "json"


class ImportRequest(BaseModel):
    format: ImportFormat = "json"
    workspace_id: str | None = None
    merge_existing: bool = True
    validate_tasks: bool = False
    force: bool = Field(default=False, description="Skip the cycle pre-flight check per row.")


class WorkspaceDependencyQuery(BaseModel):
    workspace_id: str = Field(..., min_length=1)
    type: DependencyTypeName | None = None
    status: DependencyStatusName | None = None
    include_resolved: bool = False
    limit: int | None = Field(default=None, ge=1)
    offset: int = Field(default=0, ge=0)


class TaskCreateItem(BaseModel):
    """Generic task creation payload for bulk task operations."""

    model_config = ConfigDict(extra="allow")

    name: str = Field(..., min_length=1)
    status: str = "open"
    assignees: list[str] = Field(default_factory=list)
    due_date: datetime | None = None
    url: str = ""


class TaskUpdateItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    task_id: str = Field(..., min_length=1)
    name: str | None = None
    status: str | None = None
    assignees: list[str] | None = None
    due_date: datetime | None = None
    url: str | None = None


def validate_request(model: type[M], data: Any) -> M:
    """Validate a payload against a request model.

    Raises:
        InvalidRequestError: With one {loc, msg} entry per validation error
    """
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except ValidationError as e:
        errors = [{"loc": list(err["loc"]), "msg": err["msg"]} for err in e.errors()]
        first = errors[0] if errors else {"loc": [], "msg": "invalid"}
        location = ".".join(str(p) for p in first["loc"]) or model.__name__
        raise InvalidRequestError(
            f"Invalid {model.__name__}: {location}: {first['msg']}",
            errors=errors,
        ) from e
