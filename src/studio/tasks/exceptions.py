from __future__ import annotations

from uuid import UUID


class TaskError(Exception):
    """Base class for task lifecycle errors."""


class TaskValidationError(TaskError):
    """Raised when a submission or update carries missing or malformed input."""


class TaskNotFoundError(TaskError):
    """Raised when the referenced task does not exist."""

    def __init__(self, task_id: UUID | str) -> None:
        super().__init__(f"Task {task_id} not found")
        self.task_id = task_id


class TaskConflictError(TaskError):
    """Raised when a transition is illegal for the task's current status."""

    def __init__(self, message: str, *, task_id: UUID | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class PostProcessingError(TaskError):
    """Raised when a completion hook cannot build its derived record."""
