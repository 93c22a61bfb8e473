from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .enums import TaskStatus

__all__ = [
    "CancelPendingRequest",
    "CancelPendingResponse",
    "GenerationRead",
    "TaskCreate",
    "TaskRead",
    "TaskStatusUpdate",
]

_INITIAL_STATUSES = {TaskStatus.PENDING, TaskStatus.QUEUED}


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class TaskRead(_CamelModel):
    """Task representation returned by the API and pushed to subscribers."""

    id: UUID
    project_id: UUID
    task_type: str
    params: dict[str, Any] = Field(default_factory=dict)
    status: TaskStatus
    dependant_on: list[UUID] = Field(default_factory=list)
    output_location: str | None = None
    status_reason: str | None = None
    created_at: datetime
    updated_at: datetime


class GenerationRead(_CamelModel):
    id: UUID
    project_id: UUID
    location: str
    type: str
    params: dict[str, Any] = Field(default_factory=dict)
    task_id: UUID | None = None
    created_at: datetime


class TaskCreate(BaseModel):
    """Submission payload; field names follow the snake_case client contract."""

    model_config = ConfigDict(extra="ignore")

    project_id: UUID
    task_type: str = Field(min_length=1, max_length=64)
    params: dict[str, Any]
    status: TaskStatus | None = None
    dependant_on: list[UUID] | None = None
    output_location: str | None = Field(default=None, max_length=2048)

    @field_validator("task_type")
    @classmethod
    def _strip_task_type(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("task_type must not be blank")
        return cleaned

    @field_validator("status")
    @classmethod
    def _initial_status_only(cls, value: TaskStatus | None) -> TaskStatus | None:
        if value is not None and value not in _INITIAL_STATUSES:
            raise ValueError("new tasks must start as Pending or Queued")
        return value

    @field_validator("dependant_on")
    @classmethod
    def _dedupe_dependencies(cls, value: list[UUID] | None) -> list[UUID] | None:
        if value is None:
            return None
        return list(dict.fromkeys(value))


class TaskStatusUpdate(BaseModel):
    model_config = ConfigDict(extra="ignore")

    status: TaskStatus
    reason: str | None = Field(default=None, max_length=1024)
    output_location: str | None = Field(default=None, max_length=2048)


class CancelPendingRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    project_id: UUID = Field(alias="projectId")


class CancelPendingResponse(_CamelModel):
    message: str
    cancelled_count: int = Field(ge=0)
