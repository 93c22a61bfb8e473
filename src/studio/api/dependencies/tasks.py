from __future__ import annotations

from typing import cast

from fastapi import HTTPException, Request, status

from studio.tasks.service import TaskService


def get_task_service(request: Request) -> TaskService:
    service = cast(
        TaskService | None, getattr(request.app.state, "task_service", None)
    )
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Task service unavailable",
        )
    return service
