from __future__ import annotations

import datetime as dt
import uuid
from typing import Any

from sqlalchemy import Enum, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from studio.db.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow
from studio.db.types import GUID, JSONType, UTCDateTime

from .enums import TaskStatus

__all__ = ["Generation", "Task", "TaskDependency"]


def _status_values(enum_cls: type[TaskStatus]) -> list[str]:
    return [member.value for member in enum_cls]


class Task(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A unit of asynchronous generation work executed by an external worker."""

    __tablename__ = "tasks"
    __table_args__ = (
        Index("ix_tasks_project_id_created_at", "project_id", "created_at"),
        Index("ix_tasks_status", "status"),
        Index("ix_tasks_external_id", "external_id"),
    )

    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    task_type: Mapped[str] = mapped_column(String(64), nullable=False)
    params: Mapped[dict[str, Any]] = mapped_column(
        JSONType(), default=dict, nullable=False
    )
    external_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[TaskStatus] = mapped_column(
        Enum(
            TaskStatus,
            name="task_status",
            native_enum=False,
            length=32,
            values_callable=_status_values,
        ),
        nullable=False,
        default=TaskStatus.QUEUED,
    )
    dependant_on: Mapped[list[str]] = mapped_column(
        JSONType(), default=list, nullable=False
    )
    output_location: Mapped[str | None] = mapped_column(String(2048), nullable=True)
    status_reason: Mapped[str | None] = mapped_column(String(1024), nullable=True)


class TaskDependency(Base):
    """Edge ``task_id -> depends_on_id``, indexed in reverse for cascades."""

    __tablename__ = "task_dependencies"
    __table_args__ = (
        Index("ix_task_dependencies_depends_on_id", "depends_on_id"),
    )

    task_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    depends_on_id: Mapped[uuid.UUID] = mapped_column(
        GUID(),
        ForeignKey("tasks.id", ondelete="CASCADE"),
        primary_key=True,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Generation(Base, UUIDPrimaryKeyMixin):
    """User-visible media artifact derived from a completed task."""

    __tablename__ = "generations"
    __table_args__ = (
        UniqueConstraint("task_id", "hook", name="uq_generations_task_id_hook"),
        Index("ix_generations_project_id", "project_id"),
    )

    project_id: Mapped[uuid.UUID] = mapped_column(GUID(), nullable=False)
    location: Mapped[str] = mapped_column(String(2048), nullable=False)
    type: Mapped[str] = mapped_column(String(64), nullable=False)
    params: Mapped[dict[str, Any]] = mapped_column(
        JSONType(), default=dict, nullable=False
    )
    task_id: Mapped[uuid.UUID | None] = mapped_column(
        GUID(),
        ForeignKey("tasks.id", ondelete="SET NULL"),
        nullable=True,
    )
    hook: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[dt.datetime] = mapped_column(
        UTCDateTime(), default=utcnow, nullable=False
    )
