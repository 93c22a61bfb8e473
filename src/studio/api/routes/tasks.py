from __future__ import annotations

from typing import Any
from uuid import UUID

import structlog
from fastapi import APIRouter, Body, Depends, HTTPException, Query, status
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from studio.api.dependencies.tasks import get_task_service
from studio.db.dependencies import get_db_session
from studio.tasks.enums import TaskStatus
from studio.tasks.exceptions import (
    TaskConflictError,
    TaskError,
    TaskNotFoundError,
    TaskValidationError,
)
from studio.tasks.models import Task
from studio.tasks.schemas import (
    CancelPendingRequest,
    CancelPendingResponse,
    TaskCreate,
    TaskRead,
    TaskStatusUpdate,
)
from studio.tasks.service import TaskService

router = APIRouter(prefix="/api/tasks", tags=["tasks"])
logger = structlog.get_logger(__name__)

_STATUS_CODES: dict[type[TaskError], int] = {
    TaskValidationError: status.HTTP_400_BAD_REQUEST,
    TaskNotFoundError: status.HTTP_404_NOT_FOUND,
    TaskConflictError: status.HTTP_409_CONFLICT,
}


def _http_error(exc: TaskError) -> HTTPException:
    for error_type, status_code in _STATUS_CODES.items():
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)
    )


def _store_error(event: str, **context: Any) -> HTTPException:
    logger.exception(event, **context)
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Internal server error",
    )


def _validation_detail(exc: ValidationError) -> str:
    parts = []
    for error in exc.errors():
        location = ".".join(str(item) for item in error.get("loc", ()))
        parts.append(f"{location}: {error.get('msg')}" if location else error["msg"])
    return "; ".join(parts) or "Invalid request body"


def _parse_status_filter(raw: list[str] | None) -> list[TaskStatus]:
    statuses: list[TaskStatus] = []
    for value in raw or []:
        try:
            statuses.append(TaskStatus(value))
        except ValueError:
            logger.debug("task_list_status_ignored", status=value)
    return statuses


def _serialise(task: Task) -> TaskRead:
    return TaskRead.model_validate(task)


@router.post(
    "",
    status_code=status.HTTP_201_CREATED,
    response_model=TaskRead,
    summary="Submit a task",
)
async def create_task(
    body: dict[str, Any] = Body(...),
    session: AsyncSession = Depends(get_db_session),
    service: TaskService = Depends(get_task_service),
) -> TaskRead:
    try:
        payload = TaskCreate.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail=_validation_detail(exc)
        ) from exc

    try:
        task = await service.create_task(session, payload)
    except TaskError as exc:
        raise _http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise _store_error(
            "task_create_failed", project_id=str(payload.project_id)
        ) from exc
    return _serialise(task)


@router.get("", response_model=list[TaskRead], summary="List tasks of a project")
async def list_tasks(
    project_id: str | None = Query(None, alias="projectId"),
    status_filter: list[str] | None = Query(None, alias="status"),
    status_filter_brackets: list[str] | None = Query(None, alias="status[]"),
    session: AsyncSession = Depends(get_db_session),
    service: TaskService = Depends(get_task_service),
) -> list[TaskRead]:
    if not project_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required query parameter: projectId",
        )
    try:
        project_uuid = UUID(project_id)
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="projectId must be a UUID",
        ) from exc

    statuses = _parse_status_filter(
        [*(status_filter or []), *(status_filter_brackets or [])]
    )
    try:
        tasks = await service.list_tasks(session, project_uuid, statuses=statuses)
    except SQLAlchemyError as exc:
        raise _store_error("task_list_failed", project_id=project_id) from exc
    return [_serialise(task) for task in tasks]


@router.post(
    "/cancel-pending",
    response_model=CancelPendingResponse,
    summary="Cancel every active task of a project",
)
async def cancel_pending_tasks(
    body: dict[str, Any] = Body(...),
    session: AsyncSession = Depends(get_db_session),
    service: TaskService = Depends(get_task_service),
) -> CancelPendingResponse:
    try:
        payload = CancelPendingRequest.model_validate(body)
    except ValidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required body parameter: projectId",
        ) from exc

    try:
        cancelled = await service.cancel_all_pending(session, payload.project_id)
    except SQLAlchemyError as exc:
        raise _store_error(
            "task_bulk_cancel_failed", project_id=str(payload.project_id)
        ) from exc

    if cancelled == 0:
        message = "No active tasks found for this project to cancel."
    else:
        message = f"Successfully cancelled {cancelled} tasks."
    return CancelPendingResponse(message=message, cancelled_count=cancelled)


@router.get(
    "/by-task-id/{external_id}",
    response_model=TaskRead,
    summary="Look a task up by its worker job id",
)
async def get_task_by_external_id(
    external_id: str,
    session: AsyncSession = Depends(get_db_session),
    service: TaskService = Depends(get_task_service),
) -> TaskRead:
    try:
        task = await service.get_task_by_external_id(session, external_id)
    except TaskError as exc:
        raise _http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise _store_error("task_lookup_failed", external_id=external_id) from exc
    return _serialise(task)


@router.get("/{task_id}", response_model=TaskRead, summary="Fetch a task")
async def get_task(
    task_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    service: TaskService = Depends(get_task_service),
) -> TaskRead:
    try:
        task = await service.get_task(session, task_id)
    except TaskError as exc:
        raise _http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise _store_error("task_lookup_failed", task_id=str(task_id)) from exc
    return _serialise(task)


@router.patch(
    "/{task_id}/status",
    response_model=TaskRead,
    summary="Report a task status change",
)
async def update_task_status(
    task_id: UUID,
    body: dict[str, Any] = Body(...),
    session: AsyncSession = Depends(get_db_session),
    service: TaskService = Depends(get_task_service),
) -> TaskRead:
    if not body.get("status"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required body parameter: status",
        )
    try:
        payload = TaskStatusUpdate.model_validate(body)
    except ValidationError as exc:
        allowed = ", ".join(member.value for member in TaskStatus)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid status update: {_validation_detail(exc)}. "
            f"Status must be one of {allowed}",
        ) from exc

    try:
        task = await service.update_status(
            session,
            task_id,
            payload.status,
            reason=payload.reason,
            output_location=payload.output_location,
        )
    except TaskError as exc:
        raise _http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise _store_error("task_status_update_failed", task_id=str(task_id)) from exc
    return _serialise(task)


@router.patch("/{task_id}/cancel", response_model=TaskRead, summary="Cancel a task")
async def cancel_task(
    task_id: UUID,
    session: AsyncSession = Depends(get_db_session),
    service: TaskService = Depends(get_task_service),
) -> TaskRead:
    try:
        task = await service.cancel_task(session, task_id)
    except TaskError as exc:
        raise _http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise _store_error("task_cancel_failed", task_id=str(task_id)) from exc
    return _serialise(task)
