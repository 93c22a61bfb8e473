from __future__ import annotations

from typing import Any
from uuid import UUID, uuid4

import pytest
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio.tasks import repository
from studio.tasks.enums import TaskStatus
from studio.tasks.exceptions import TaskConflictError, TaskNotFoundError
from studio.tasks.models import Task
from studio.tasks.state_machine import TaskStateMachine

from tests.factories import make_task

NON_TERMINAL = [TaskStatus.PENDING, TaskStatus.QUEUED, TaskStatus.IN_PROGRESS]
TERMINAL = [TaskStatus.COMPLETE, TaskStatus.FAILED, TaskStatus.CANCELLED]


@pytest.mark.parametrize("current", NON_TERMINAL)
@pytest.mark.parametrize("requested", list(TaskStatus))
def test_non_terminal_tasks_accept_any_status(
    current: TaskStatus, requested: TaskStatus
) -> None:
    assert TaskStateMachine.ensure_transition(current, requested) is True


@pytest.mark.parametrize("current", TERMINAL)
def test_terminal_status_repeat_is_a_no_op(current: TaskStatus) -> None:
    assert TaskStateMachine.ensure_transition(current, current) is False


@pytest.mark.parametrize(
    ("current", "requested"),
    [
        (current, requested)
        for current in TERMINAL
        for requested in TaskStatus
        if requested != current
    ],
)
def test_terminal_tasks_reject_other_statuses(
    current: TaskStatus, requested: TaskStatus
) -> None:
    with pytest.raises(TaskConflictError):
        TaskStateMachine.ensure_transition(current, requested)


def test_max_attempts_must_be_positive() -> None:
    with pytest.raises(ValueError):
        TaskStateMachine(max_attempts=0)


@pytest.mark.asyncio()
async def test_apply_writes_status_reason_and_location(
    session: AsyncSession, state_machine: TaskStateMachine
) -> None:
    task = await make_task(session, status=TaskStatus.IN_PROGRESS)
    before = task.updated_at

    result = await state_machine.apply(
        session,
        task.id,
        TaskStatus.COMPLETE,
        reason="rendered",
        output_location="s3://bucket/out.png",
    )

    assert result.changed is True
    assert result.previous_status is TaskStatus.IN_PROGRESS
    assert result.task.status is TaskStatus.COMPLETE
    assert result.task.status_reason == "rendered"
    assert result.task.output_location == "s3://bucket/out.png"
    assert result.task.updated_at >= before


@pytest.mark.asyncio()
async def test_apply_unknown_task_raises_not_found(
    session: AsyncSession, state_machine: TaskStateMachine
) -> None:
    with pytest.raises(TaskNotFoundError):
        await state_machine.apply(session, uuid4(), TaskStatus.FAILED)


@pytest.mark.asyncio()
async def test_apply_refuses_to_leave_terminal_status(
    session: AsyncSession, state_machine: TaskStateMachine
) -> None:
    task = await make_task(session, status=TaskStatus.COMPLETE)

    with pytest.raises(TaskConflictError):
        await state_machine.apply(session, task.id, TaskStatus.FAILED, reason="late")

    stored = await repository.get_task_by_id(session, task.id)
    assert stored is not None
    assert stored.status is TaskStatus.COMPLETE
    assert stored.status_reason is None


@pytest.mark.asyncio()
async def test_apply_same_terminal_status_is_idempotent(
    session: AsyncSession, state_machine: TaskStateMachine
) -> None:
    task = await make_task(session, status=TaskStatus.IN_PROGRESS)
    await state_machine.apply(session, task.id, TaskStatus.FAILED, reason="first")

    again = await state_machine.apply(
        session, task.id, TaskStatus.FAILED, reason="second"
    )

    assert again.changed is False
    assert again.previous_status is TaskStatus.FAILED
    assert again.task.status_reason == "first"


@pytest.mark.asyncio()
async def test_apply_same_non_terminal_status_is_written(
    session: AsyncSession, state_machine: TaskStateMachine
) -> None:
    task = await make_task(session, status=TaskStatus.IN_PROGRESS)

    result = await state_machine.apply(
        session, task.id, TaskStatus.IN_PROGRESS, reason="heartbeat"
    )

    assert result.changed is True
    assert result.task.status_reason == "heartbeat"


@pytest.mark.asyncio()
async def test_apply_retries_after_losing_compare_and_set(
    session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    state_machine: TaskStateMachine,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    task = await make_task(session, status=TaskStatus.QUEUED)
    real_cas = repository.compare_and_set_status
    calls: list[TaskStatus] = []

    async def racing_cas(db: AsyncSession, task_id: UUID, **kwargs: Any) -> bool:
        calls.append(kwargs["expected"])
        if len(calls) == 1:
            # Another writer moves the task before our write lands.
            async with session_factory() as other:
                await other.execute(
                    update(Task)
                    .where(Task.id == task_id)
                    .values(status=TaskStatus.IN_PROGRESS)
                )
                await other.commit()
            return False
        return await real_cas(db, task_id, **kwargs)

    monkeypatch.setattr(repository, "compare_and_set_status", racing_cas)

    result = await state_machine.apply(
        session, task.id, TaskStatus.FAILED, reason="worker crashed"
    )

    assert calls == [TaskStatus.QUEUED, TaskStatus.IN_PROGRESS]
    assert result.changed is True
    assert result.previous_status is TaskStatus.IN_PROGRESS
    assert result.task.status is TaskStatus.FAILED


@pytest.mark.asyncio()
async def test_apply_gives_up_after_max_attempts(
    session: AsyncSession, monkeypatch: pytest.MonkeyPatch
) -> None:
    task = await make_task(session, status=TaskStatus.QUEUED)
    attempts = 0

    async def always_lose(db: AsyncSession, task_id: UUID, **kwargs: Any) -> bool:
        nonlocal attempts
        attempts += 1
        return False

    monkeypatch.setattr(repository, "compare_and_set_status", always_lose)

    with pytest.raises(TaskConflictError):
        await TaskStateMachine(max_attempts=4).apply(
            session, task.id, TaskStatus.CANCELLED
        )
    assert attempts == 4


@pytest.mark.asyncio()
async def test_long_reasons_are_clipped_to_column_size(
    session: AsyncSession, state_machine: TaskStateMachine
) -> None:
    task = await make_task(session, status=TaskStatus.QUEUED)
    reason = "upstream " * 300

    result = await state_machine.apply(
        session, task.id, TaskStatus.FAILED, reason=reason
    )

    stored = result.task.status_reason
    assert stored is not None
    assert len(stored) == repository.STATUS_REASON_MAX_LENGTH
    assert stored.startswith("upstream upstream")
    assert "..." in stored


def test_clip_reason_keeps_short_reasons() -> None:
    assert repository.clip_reason("boom") == "boom"
