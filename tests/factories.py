from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from itertools import count
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.ext.asyncio import AsyncSession

from studio.db.base import utcnow
from studio.tasks import repository
from studio.tasks.enums import TaskEventType, TaskStatus
from studio.tasks.models import Task

_counter = count(1)


async def make_task(
    session: AsyncSession,
    *,
    project_id: UUID | None = None,
    task_type: str = "single_image",
    status: TaskStatus = TaskStatus.QUEUED,
    params: dict[str, Any] | None = None,
    dependant_on: Sequence[UUID] = (),
    output_location: str | None = None,
) -> Task:
    task = await repository.create_task(
        session,
        project_id=project_id or uuid4(),
        task_type=task_type,
        params=params if params is not None else {"seq": next(_counter)},
        status=status,
        dependant_on=dependant_on,
        output_location=output_location,
    )
    await session.commit()
    return task


def build_task(**overrides: Any) -> Task:
    """Build an unsaved task with every serialised field populated."""

    now = utcnow()
    values: dict[str, Any] = {
        "id": uuid4(),
        "project_id": uuid4(),
        "task_type": "single_image",
        "params": {"task_id": f"job-{next(_counter)}"},
        "external_id": None,
        "status": TaskStatus.QUEUED,
        "dependant_on": [],
        "output_location": None,
        "status_reason": None,
        "created_at": now,
        "updated_at": now,
    }
    values.update(overrides)
    return Task(**values)


def task_payload(project_id: UUID, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "project_id": str(project_id),
        "task_type": "single_image",
        "params": {
            "task_id": f"job-{next(_counter)}",
            "orchestrator_details": {"prompt": "a lighthouse at dusk", "seed": 7},
        },
    }
    payload.update(overrides)
    return payload


@dataclass
class RecordedEvent:
    event: TaskEventType
    task_id: UUID
    status: TaskStatus
    reason: str | None


@dataclass
class RecordingBroadcaster:
    """In-memory stand-in for the Redis broadcaster."""

    events: list[RecordedEvent] = field(default_factory=list)

    async def task_created(self, task: Task) -> bool:
        return await self.publish(TaskEventType.TASK_CREATED, task)

    async def task_updated(self, task: Task) -> bool:
        return await self.publish(TaskEventType.TASK_UPDATED, task)

    async def publish(self, event: TaskEventType, task: Task) -> bool:
        self.events.append(
            RecordedEvent(
                event=event,
                task_id=task.id,
                status=task.status,
                reason=task.status_reason,
            )
        )
        return True

    def updated_ids(self) -> list[UUID]:
        return [
            item.task_id
            for item in self.events
            if item.event is TaskEventType.TASK_UPDATED
        ]
