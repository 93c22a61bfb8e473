from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from studio.db.base import utcnow

from .enums import TaskStatus
from .models import Generation, Task, TaskDependency

__all__ = [
    "clip_reason",
    "compare_and_set_status",
    "create_generation",
    "create_task",
    "extract_external_id",
    "find_existing_task_ids",
    "get_generation_for_task",
    "get_task_by_external_id",
    "get_task_by_id",
    "list_dependants",
    "list_generations_for_task",
    "list_tasks_for_project",
]

EXTERNAL_ID_PARAM = "task_id"
STATUS_REASON_MAX_LENGTH = 1024
_ELLIPSIS = "..."


def _ensure_dict(payload: dict[str, Any] | None) -> dict[str, Any]:
    return dict(payload or {})


def clip_reason(reason: str, limit: int = STATUS_REASON_MAX_LENGTH) -> str:
    """Fit ``reason`` into the column, keeping both ends of long cascade chains."""

    if len(reason) <= limit:
        return reason
    keep = limit - len(_ELLIPSIS)
    head = keep // 2
    tail = keep - head
    return f"{reason[:head]}{_ELLIPSIS}{reason[-tail:]}"


def extract_external_id(params: dict[str, Any]) -> str | None:
    """Return the worker job id embedded in ``params``, if any."""

    value = params.get(EXTERNAL_ID_PARAM)
    if isinstance(value, (str, int)) and not isinstance(value, bool):
        text = str(value).strip()
        return text or None
    return None


async def create_task(
    session: AsyncSession,
    *,
    project_id: UUID,
    task_type: str,
    params: dict[str, Any],
    status: TaskStatus,
    dependant_on: Sequence[UUID] = (),
    output_location: str | None = None,
    task_id: UUID | None = None,
) -> Task:
    payload = _ensure_dict(params)
    task = Task(
        id=task_id,
        project_id=project_id,
        task_type=task_type,
        params=payload,
        external_id=extract_external_id(payload),
        status=status,
        dependant_on=[str(value) for value in dependant_on],
        output_location=output_location,
    )
    session.add(task)
    await session.flush()

    for position, depends_on_id in enumerate(dependant_on):
        session.add(
            TaskDependency(
                task_id=task.id, depends_on_id=depends_on_id, position=position
            )
        )
    await session.flush()
    await session.refresh(task)
    return task


async def get_task_by_id(session: AsyncSession, task_id: UUID) -> Task | None:
    stmt = (
        select(Task)
        .where(Task.id == task_id)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_task_by_external_id(
    session: AsyncSession, external_id: str
) -> Task | None:
    stmt = (
        select(Task)
        .where(Task.external_id == external_id)
        .order_by(Task.created_at.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_tasks_for_project(
    session: AsyncSession,
    project_id: UUID,
    *,
    statuses: Iterable[TaskStatus] | None = None,
) -> list[Task]:
    stmt = select(Task).where(Task.project_id == project_id)
    status_filter = list(statuses or [])
    if status_filter:
        stmt = stmt.where(Task.status.in_(status_filter))
    stmt = stmt.order_by(Task.created_at.desc())
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def find_existing_task_ids(
    session: AsyncSession, task_ids: Iterable[UUID]
) -> set[UUID]:
    candidates = list(task_ids)
    if not candidates:
        return set()
    stmt = select(Task.id).where(Task.id.in_(candidates))
    result = await session.execute(stmt)
    return set(result.scalars().all())


async def list_dependants(session: AsyncSession, task_id: UUID) -> list[Task]:
    """Return every task whose ``dependant_on`` set contains ``task_id``."""

    stmt = (
        select(Task)
        .join(TaskDependency, TaskDependency.task_id == Task.id)
        .where(TaskDependency.depends_on_id == task_id)
        .order_by(Task.created_at)
        .execution_options(populate_existing=True)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def compare_and_set_status(
    session: AsyncSession,
    task_id: UUID,
    *,
    expected: TaskStatus,
    status: TaskStatus,
    reason: str | None = None,
    output_location: str | None = None,
) -> bool:
    """Write ``status`` only if the stored status still equals ``expected``.

    Returns ``False`` when another writer got there first. The caller owns the
    transaction.
    """

    values: dict[str, Any] = {"status": status, "updated_at": utcnow()}
    if reason is not None:
        values["status_reason"] = clip_reason(reason)
    if output_location is not None:
        values["output_location"] = output_location

    stmt = (
        update(Task)
        .where(Task.id == task_id, Task.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    result = await session.execute(stmt)
    return bool(result.rowcount == 1)


async def get_generation_for_task(
    session: AsyncSession, task_id: UUID, hook: str
) -> Generation | None:
    stmt = select(Generation).where(
        Generation.task_id == task_id, Generation.hook == hook
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def list_generations_for_task(
    session: AsyncSession, task_id: UUID
) -> list[Generation]:
    stmt = (
        select(Generation)
        .where(Generation.task_id == task_id)
        .order_by(Generation.created_at)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_generation(
    session: AsyncSession,
    *,
    project_id: UUID,
    location: str,
    type: str,
    params: dict[str, Any] | None,
    task_id: UUID | None,
    hook: str | None,
) -> Generation:
    generation = Generation(
        project_id=project_id,
        location=location,
        type=type,
        params=_ensure_dict(params),
        task_id=task_id,
        hook=hook,
    )
    session.add(generation)
    await session.flush()
    await session.refresh(generation)
    return generation
