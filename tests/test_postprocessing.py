from __future__ import annotations

import asyncio

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio.tasks import repository
from studio.tasks.enums import TaskStatus
from studio.tasks.exceptions import PostProcessingError
from studio.tasks.models import Generation, Task
from studio.tasks.postprocessing import (
    CompletionPostProcessor,
    GenerationDraft,
    HookRegistry,
    default_registry,
)

from tests.factories import make_task


@pytest.fixture
def processor(
    session_factory: async_sessionmaker[AsyncSession],
) -> CompletionPostProcessor:
    return CompletionPostProcessor(session_factory)


async def _generation_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(Generation))
    return int(result.scalar_one())


def test_builtin_hooks_are_registered() -> None:
    assert {"single_image", "travel_stitch"} <= default_registry.task_types


def test_registering_a_task_type_twice_fails() -> None:
    registry = HookRegistry()

    @registry.register("upscale")
    def first(task: Task) -> GenerationDraft:
        return GenerationDraft(location="x", type="image")

    with pytest.raises(ValueError):
        registry.register("upscale")(first)


@pytest.mark.asyncio()
async def test_single_image_completion_creates_image_generation(
    session: AsyncSession, processor: CompletionPostProcessor
) -> None:
    task = await make_task(
        session,
        task_type="single_image",
        status=TaskStatus.COMPLETE,
        output_location="https://cdn.example.com/out.png",
        params={
            "task_id": "job-1",
            "orchestrator_details": {
                "prompt": "a lighthouse at dusk",
                "negative_prompt": "blurry",
                "seed": 42,
                "resolution": "1024x1024",
                "model": "flux-dev",
                "steps": 30,
            },
        },
    )

    generation = await processor.process(task.id)

    assert generation is not None
    assert generation.type == "image"
    assert generation.location == "https://cdn.example.com/out.png"
    assert generation.project_id == task.project_id
    assert generation.task_id == task.id
    assert generation.hook == "single_image"
    assert generation.params == {
        "prompt": "a lighthouse at dusk",
        "negative_prompt": "blurry",
        "seed": 42,
        "resolution": "1024x1024",
        "model": "flux-dev",
        "source": "single_image_task",
        "task_id": str(task.id),
    }


@pytest.mark.asyncio()
async def test_travel_stitch_takes_shot_id_from_orchestrator_details(
    session: AsyncSession, processor: CompletionPostProcessor
) -> None:
    task = await make_task(
        session,
        task_type="travel_stitch",
        status=TaskStatus.COMPLETE,
        output_location="https://cdn.example.com/travel.mp4",
        params={"orchestrator_details": {"shot_id": "shot-9"}},
    )

    generation = await processor.process(task.id)

    assert generation is not None
    assert generation.type == "video_travel_output"
    assert generation.params == {
        "source": "travel_stitch_task",
        "task_id": str(task.id),
        "shot_id": "shot-9",
    }


@pytest.mark.asyncio()
async def test_top_level_shot_id_wins(
    session: AsyncSession, processor: CompletionPostProcessor
) -> None:
    task = await make_task(
        session,
        task_type="travel_stitch",
        status=TaskStatus.COMPLETE,
        output_location="https://cdn.example.com/travel.mp4",
        params={"shot_id": "shot-1", "orchestrator_details": {"shot_id": "shot-2"}},
    )

    generation = await processor.process(task.id)

    assert generation is not None
    assert generation.params["shot_id"] == "shot-1"


@pytest.mark.asyncio()
async def test_incomplete_and_unknown_tasks_are_ignored(
    session: AsyncSession, processor: CompletionPostProcessor
) -> None:
    running = await make_task(
        session,
        status=TaskStatus.IN_PROGRESS,
        output_location="https://cdn.example.com/out.png",
    )
    other_type = await make_task(
        session,
        task_type="caption",
        status=TaskStatus.COMPLETE,
        output_location="https://cdn.example.com/out.txt",
    )

    assert await processor.process(running.id) is None
    assert await processor.process(other_type.id) is None
    assert await _generation_count(session) == 0


@pytest.mark.asyncio()
async def test_missing_output_location_raises(
    session: AsyncSession, processor: CompletionPostProcessor
) -> None:
    task = await make_task(session, status=TaskStatus.COMPLETE)

    with pytest.raises(PostProcessingError):
        await processor.process(task.id)
    assert await _generation_count(session) == 0


@pytest.mark.asyncio()
async def test_processing_twice_returns_the_same_generation(
    session: AsyncSession, processor: CompletionPostProcessor
) -> None:
    task = await make_task(
        session,
        status=TaskStatus.COMPLETE,
        output_location="https://cdn.example.com/out.png",
    )

    first = await processor.process(task.id)
    second = await processor.process(task.id)

    assert first is not None and second is not None
    assert first.id == second.id
    assert await _generation_count(session) == 1


@pytest.mark.asyncio()
async def test_concurrent_processing_creates_one_generation(
    session: AsyncSession, processor: CompletionPostProcessor
) -> None:
    task = await make_task(
        session,
        status=TaskStatus.COMPLETE,
        output_location="https://cdn.example.com/out.png",
    )

    results = await asyncio.gather(
        processor.process(task.id), processor.process(task.id)
    )

    ids = {generation.id for generation in results if generation is not None}
    assert len(ids) == 1
    generations = await repository.list_generations_for_task(session, task.id)
    assert [generation.id for generation in generations] == list(ids)
