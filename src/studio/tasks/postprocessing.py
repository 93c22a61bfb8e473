"""Turn completed tasks into user-visible generations.

Hooks are looked up by ``task_type``. Each hook maps a completed task to a
``GenerationDraft``; the processor persists it at most once per
``(task, hook)`` pair, relying on a unique constraint when two completions
race.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio.observability.metrics import POSTPROCESSING_TOTAL

from . import repository
from .enums import TaskStatus
from .exceptions import PostProcessingError
from .models import Generation, Task

__all__ = [
    "CompletionPostProcessor",
    "GenerationDraft",
    "HookRegistry",
    "PostProcessingHook",
    "default_registry",
    "register_hook",
]

logger = structlog.get_logger(__name__)

ORCHESTRATOR_DETAILS_KEY = "orchestrator_details"
_IMAGE_PARAM_KEYS = ("prompt", "negative_prompt", "seed", "resolution", "model")


@dataclass(slots=True)
class GenerationDraft:
    location: str
    type: str
    params: dict[str, Any] = field(default_factory=dict)


PostProcessingHook = Callable[[Task], GenerationDraft]


class HookRegistry:
    """Mapping of ``task_type`` to the hook that materialises its output."""

    def __init__(self) -> None:
        self._hooks: dict[str, PostProcessingHook] = {}

    def register(
        self, task_type: str
    ) -> Callable[[PostProcessingHook], PostProcessingHook]:
        def decorator(hook: PostProcessingHook) -> PostProcessingHook:
            if task_type in self._hooks:
                raise ValueError(f"hook already registered for {task_type!r}")
            self._hooks[task_type] = hook
            return hook

        return decorator

    def get(self, task_type: str) -> PostProcessingHook | None:
        return self._hooks.get(task_type)

    def __contains__(self, task_type: object) -> bool:
        return task_type in self._hooks

    @property
    def task_types(self) -> frozenset[str]:
        return frozenset(self._hooks)


default_registry = HookRegistry()
register_hook = default_registry.register


def _orchestrator_details(task: Task) -> dict[str, Any]:
    details = (task.params or {}).get(ORCHESTRATOR_DETAILS_KEY)
    return details if isinstance(details, dict) else {}


def _require_location(task: Task) -> str:
    if not task.output_location:
        raise PostProcessingError(
            f"Task {task.id} completed without an output location"
        )
    return task.output_location


@register_hook("single_image")
def single_image_generation(task: Task) -> GenerationDraft:
    location = _require_location(task)
    details = _orchestrator_details(task)
    params: dict[str, Any] = {
        key: details[key] for key in _IMAGE_PARAM_KEYS if key in details
    }
    params["source"] = "single_image_task"
    params["task_id"] = str(task.id)
    return GenerationDraft(location=location, type="image", params=params)


@register_hook("travel_stitch")
def travel_stitch_generation(task: Task) -> GenerationDraft:
    location = _require_location(task)
    params: dict[str, Any] = {
        "source": "travel_stitch_task",
        "task_id": str(task.id),
    }
    shot_id = (task.params or {}).get("shot_id")
    if shot_id is None:
        shot_id = _orchestrator_details(task).get("shot_id")
    if shot_id is not None:
        params["shot_id"] = shot_id
    return GenerationDraft(
        location=location, type="video_travel_output", params=params
    )


class CompletionPostProcessor:
    """Create the generation for a completed task, once."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: HookRegistry | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._registry = registry or default_registry

    async def process(self, task_id: UUID) -> Generation | None:
        async with self._session_factory() as session:
            task = await repository.get_task_by_id(session, task_id)
            if task is None:
                logger.warning("postprocessing_task_missing", task_id=str(task_id))
                return None
            if task.status is not TaskStatus.COMPLETE:
                logger.debug(
                    "postprocessing_not_complete",
                    task_id=str(task_id),
                    status=task.status.value,
                )
                return None

            hook = self._registry.get(task.task_type)
            if hook is None:
                return None
            hook_name = task.task_type

            existing = await repository.get_generation_for_task(
                session, task.id, hook_name
            )
            if existing is not None:
                POSTPROCESSING_TOTAL.labels(hook=hook_name, outcome="existing").inc()
                return existing

            try:
                draft = hook(task)
            except PostProcessingError:
                POSTPROCESSING_TOTAL.labels(hook=hook_name, outcome="failed").inc()
                raise

            try:
                generation = await repository.create_generation(
                    session,
                    project_id=task.project_id,
                    location=draft.location,
                    type=draft.type,
                    params=draft.params,
                    task_id=task.id,
                    hook=hook_name,
                )
                await session.commit()
            except IntegrityError:
                await session.rollback()
                winner = await repository.get_generation_for_task(
                    session, task_id, hook_name
                )
                if winner is None:
                    POSTPROCESSING_TOTAL.labels(
                        hook=hook_name, outcome="failed"
                    ).inc()
                    raise
                POSTPROCESSING_TOTAL.labels(hook=hook_name, outcome="existing").inc()
                logger.info(
                    "postprocessing_lost_race",
                    task_id=str(task_id),
                    generation_id=str(winner.id),
                )
                return winner

        POSTPROCESSING_TOTAL.labels(hook=hook_name, outcome="created").inc()
        logger.info(
            "generation_created",
            task_id=str(task_id),
            project_id=str(generation.project_id),
            generation_id=str(generation.id),
            hook=hook_name,
            type=generation.type,
        )
        return generation
