from __future__ import annotations

from enum import StrEnum

__all__ = [
    "ACTIVE_STATUSES",
    "CASCADING_STATUSES",
    "TERMINAL_STATUSES",
    "TaskEventType",
    "TaskStatus",
]


class TaskStatus(StrEnum):
    """Lifecycle states tracked for tasks.

    Values are persisted and exchanged verbatim, so they are case-sensitive.
    """

    PENDING = "Pending"
    QUEUED = "Queued"
    IN_PROGRESS = "In Progress"
    COMPLETE = "Complete"
    FAILED = "Failed"
    CANCELLED = "Cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


class TaskEventType(StrEnum):
    """Kinds of lifecycle events pushed to project subscribers."""

    TASK_CREATED = "TASK_CREATED"
    TASK_UPDATED = "TASK_UPDATED"


ACTIVE_STATUSES = frozenset(
    {TaskStatus.PENDING, TaskStatus.QUEUED, TaskStatus.IN_PROGRESS}
)
TERMINAL_STATUSES = frozenset(
    {TaskStatus.COMPLETE, TaskStatus.FAILED, TaskStatus.CANCELLED}
)
CASCADING_STATUSES = frozenset({TaskStatus.FAILED, TaskStatus.CANCELLED})
