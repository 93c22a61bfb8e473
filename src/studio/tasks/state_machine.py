"""Status transitions for a single task.

Non-terminal tasks may move to any status. Terminal tasks only accept the same
terminal status again, which is treated as a no-op, so a cascade and a worker
callback racing to finalise a task cannot overwrite each other.
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from studio.observability.metrics import TASK_TRANSITIONS_TOTAL

from . import repository
from .enums import TaskStatus
from .exceptions import TaskConflictError, TaskNotFoundError
from .models import Task

__all__ = ["TaskStateMachine", "TransitionResult"]

logger = structlog.get_logger(__name__)


@dataclass(slots=True)
class TransitionResult:
    task: Task
    changed: bool
    previous_status: TaskStatus


class TaskStateMachine:
    """Validate and apply status transitions with a compare-and-set write."""

    def __init__(self, *, max_attempts: int = 3) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._max_attempts = max_attempts

    @staticmethod
    def ensure_transition(
        current: TaskStatus, requested: TaskStatus, *, task_id: UUID | None = None
    ) -> bool:
        """Return whether a write is needed; raise on an illegal transition."""

        if not current.is_terminal:
            return True
        if requested == current:
            return False
        raise TaskConflictError(
            f"Task is already {current.value} and cannot move to {requested.value}",
            task_id=task_id,
        )

    async def apply(
        self,
        session: AsyncSession,
        task_id: UUID,
        new_status: TaskStatus,
        *,
        reason: str | None = None,
        output_location: str | None = None,
    ) -> TransitionResult:
        """Transition ``task_id`` to ``new_status`` and commit.

        Raises ``TaskNotFoundError`` for unknown tasks and ``TaskConflictError``
        for illegal transitions or after losing the compare-and-set race
        ``max_attempts`` times.
        """

        for attempt in range(1, self._max_attempts + 1):
            task = await repository.get_task_by_id(session, task_id)
            if task is None:
                raise TaskNotFoundError(task_id)

            current = task.status
            if not self.ensure_transition(current, new_status, task_id=task_id):
                return TransitionResult(
                    task=task, changed=False, previous_status=current
                )

            written = await repository.compare_and_set_status(
                session,
                task_id,
                expected=current,
                status=new_status,
                reason=reason,
                output_location=output_location,
            )
            if written:
                await session.commit()
                updated = await repository.get_task_by_id(session, task_id)
                if updated is None:  # pragma: no cover - deleted externally
                    raise TaskNotFoundError(task_id)
                TASK_TRANSITIONS_TOTAL.labels(
                    from_status=current.value, to_status=new_status.value
                ).inc()
                logger.info(
                    "task_status_transitioned",
                    task_id=str(task_id),
                    project_id=str(updated.project_id),
                    from_status=current.value,
                    to_status=new_status.value,
                    reason=reason,
                )
                return TransitionResult(
                    task=updated, changed=True, previous_status=current
                )

            await session.rollback()
            logger.info(
                "task_status_cas_lost",
                task_id=str(task_id),
                expected=current.value,
                requested=new_status.value,
                attempt=attempt,
            )

        raise TaskConflictError(
            f"Task status changed concurrently while moving to {new_status.value}",
            task_id=task_id,
        )
