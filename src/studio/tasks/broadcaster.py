from __future__ import annotations

import json
from typing import Any
from uuid import UUID

import structlog
from redis.asyncio import Redis

from studio.observability.metrics import BROADCAST_FAILURES_TOTAL

from .enums import TaskEventType
from .models import Task
from .schemas import TaskRead

__all__ = ["TaskEventBroadcaster"]

logger = structlog.get_logger(__name__)


class TaskEventBroadcaster:
    """Publish task lifecycle events to project subscribers over Redis pub/sub.

    Delivery is best-effort and at-most-once: there is no replay buffer and no
    ordering guarantee across tasks. Subscribers should treat events as hints
    to re-fetch authoritative state.
    """

    def __init__(self, redis: Redis) -> None:
        self._redis = redis

    async def task_created(self, task: Task) -> bool:
        return await self.publish(TaskEventType.TASK_CREATED, task)

    async def task_updated(self, task: Task) -> bool:
        return await self.publish(TaskEventType.TASK_UPDATED, task)

    async def publish(self, event: TaskEventType, task: Task) -> bool:
        """Publish ``event`` for ``task``; returns ``False`` if delivery failed."""

        channel = self.channel_name(task.project_id)
        try:
            message = self.build_message(event, task)
            await self._redis.publish(channel, json.dumps(message))
        except Exception as exc:
            BROADCAST_FAILURES_TOTAL.labels(event=event.value).inc()
            logger.warning(
                "task_event_broadcast_failed",
                event_type=event.value,
                task_id=str(task.id),
                channel=channel,
                error=str(exc),
            )
            return False

        logger.debug(
            "task_event_published",
            event_type=event.value,
            task_id=str(task.id),
            channel=channel,
            status=task.status.value,
        )
        return True

    @staticmethod
    def build_message(event: TaskEventType, task: Task) -> dict[str, Any]:
        serialised = TaskRead.model_validate(task).model_dump(
            mode="json", by_alias=True
        )
        return {
            "type": event.value,
            "payload": {"projectId": str(task.project_id), "task": serialised},
        }

    @staticmethod
    def channel_name(project_id: UUID | str) -> str:
        return f"projects:{project_id}:tasks"
