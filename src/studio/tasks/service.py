from __future__ import annotations

from collections.abc import Iterable
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from studio.observability.metrics import TASKS_CREATED_TOTAL

from . import repository
from .broadcaster import TaskEventBroadcaster
from .cascade import DependencyCascadeEngine
from .enums import ACTIVE_STATUSES, CASCADING_STATUSES, TaskStatus
from .exceptions import TaskConflictError, TaskNotFoundError, TaskValidationError
from .models import Task
from .postprocessing import CompletionPostProcessor
from .runner import BackgroundTaskRunner
from .schemas import TaskCreate
from .state_machine import TaskStateMachine, TransitionResult

__all__ = [
    "BULK_CANCEL_REASON",
    "USER_CANCEL_REASON",
    "TaskService",
    "default_update_reason",
]

logger = structlog.get_logger(__name__)

USER_CANCEL_REASON = "Task cancelled by user via API"
BULK_CANCEL_REASON = "Bulk cancelled via /cancel-pending"


def default_update_reason(status: TaskStatus) -> str:
    return (
        f"Task status updated to {status.value} via API without a specific reason."
    )


class TaskService:
    """Entry point for every task mutation made on behalf of a client.

    Writes happen on the caller's session. Follow-up work (the dependant
    cascade and completion post-processing) is handed to the background
    runner after the triggering transition has been committed, so the
    response never waits for it.
    """

    def __init__(
        self,
        *,
        state_machine: TaskStateMachine,
        broadcaster: TaskEventBroadcaster,
        runner: BackgroundTaskRunner,
        cascade: DependencyCascadeEngine,
        post_processor: CompletionPostProcessor,
        default_status: TaskStatus = TaskStatus.QUEUED,
    ) -> None:
        self._state_machine = state_machine
        self._broadcaster = broadcaster
        self._runner = runner
        self._cascade = cascade
        self._post_processor = post_processor
        self._default_status = default_status

    async def create_task(self, session: AsyncSession, payload: TaskCreate) -> Task:
        dependant_on = list(payload.dependant_on or [])
        if dependant_on:
            existing = await repository.find_existing_task_ids(session, dependant_on)
            missing = [str(value) for value in dependant_on if value not in existing]
            if missing:
                raise TaskValidationError(
                    f"Unknown dependency task ids: {', '.join(missing)}"
                )

        task = await repository.create_task(
            session,
            project_id=payload.project_id,
            task_type=payload.task_type,
            params=payload.params,
            status=payload.status or self._default_status,
            dependant_on=dependant_on,
            output_location=payload.output_location,
        )
        await session.commit()

        TASKS_CREATED_TOTAL.labels(task_type=task.task_type).inc()
        logger.info(
            "task_created",
            task_id=str(task.id),
            project_id=str(task.project_id),
            task_type=task.task_type,
            status=task.status.value,
            dependencies=len(dependant_on),
        )
        await self._broadcaster.task_created(task)
        return task

    async def list_tasks(
        self,
        session: AsyncSession,
        project_id: UUID,
        *,
        statuses: Iterable[TaskStatus] | None = None,
    ) -> list[Task]:
        return await repository.list_tasks_for_project(
            session, project_id, statuses=statuses
        )

    async def get_task(self, session: AsyncSession, task_id: UUID) -> Task:
        task = await repository.get_task_by_id(session, task_id)
        if task is None:
            raise TaskNotFoundError(task_id)
        return task

    async def get_task_by_external_id(
        self, session: AsyncSession, external_id: str
    ) -> Task:
        task = await repository.get_task_by_external_id(session, external_id)
        if task is None:
            raise TaskNotFoundError(external_id)
        return task

    async def update_status(
        self,
        session: AsyncSession,
        task_id: UUID,
        status: TaskStatus,
        *,
        reason: str | None = None,
        output_location: str | None = None,
    ) -> Task:
        if reason is None and status in CASCADING_STATUSES:
            reason = default_update_reason(status)

        result = await self._state_machine.apply(
            session,
            task_id,
            status,
            reason=reason,
            output_location=output_location,
        )
        await self._after_transition(result, reason)
        return result.task

    async def cancel_task(self, session: AsyncSession, task_id: UUID) -> Task:
        result = await self._state_machine.apply(
            session, task_id, TaskStatus.CANCELLED, reason=USER_CANCEL_REASON
        )
        await self._after_transition(result, USER_CANCEL_REASON)
        return result.task

    async def cancel_all_pending(self, session: AsyncSession, project_id: UUID) -> int:
        candidates = [
            task.id
            for task in await repository.list_tasks_for_project(
                session, project_id, statuses=ACTIVE_STATUSES
            )
        ]

        cancelled = 0
        for task_id in candidates:
            try:
                result = await self._state_machine.apply(
                    session, task_id, TaskStatus.CANCELLED, reason=BULK_CANCEL_REASON
                )
            except (TaskConflictError, TaskNotFoundError) as exc:
                logger.info(
                    "bulk_cancel_skipped",
                    task_id=str(task_id),
                    project_id=str(project_id),
                    error=str(exc),
                )
                continue

            if not result.changed:
                continue
            cancelled += 1
            await self._after_transition(result, BULK_CANCEL_REASON)

        logger.info(
            "bulk_cancel_finished",
            project_id=str(project_id),
            candidates=len(candidates),
            cancelled=cancelled,
        )
        return cancelled

    async def _after_transition(
        self, result: TransitionResult, reason: str | None
    ) -> None:
        task = result.task
        if result.changed:
            await self._broadcaster.task_updated(task)

        # Idempotent repeats are dispatched too; both jobs tolerate reruns.
        if task.status is TaskStatus.COMPLETE:
            self._runner.spawn(
                self._post_processor.process(task.id),
                kind="postprocessing",
                task_id=str(task.id),
            )
        elif task.status in CASCADING_STATUSES:
            cascade_reason = task.status_reason or reason
            if cascade_reason is None:
                cascade_reason = default_update_reason(task.status)
            self._runner.spawn(
                self._cascade.cascade(task.id, task.status, cascade_reason),
                kind="cascade",
                task_id=str(task.id),
                status=task.status.value,
            )
