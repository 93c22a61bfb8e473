from __future__ import annotations

from datetime import UTC, datetime
from typing import Literal

import structlog
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, ConfigDict
from redis.asyncio import Redis
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from studio.core.config import Settings, get_settings
from studio.db.dependencies import get_db_session

router = APIRouter(prefix="/health", tags=["health"])
logger = structlog.get_logger(__name__)


class DependencyStatus(BaseModel):
    """Health status for a downstream dependency."""

    status: Literal["ok", "error"]
    error: str | None = None

    model_config = ConfigDict(extra="ignore")


class HealthResponse(BaseModel):
    """Health check response schema."""

    status: Literal["ok", "error"]
    service: str
    version: str
    timestamp: datetime
    environment: str
    metrics_enabled: bool = False
    metrics_endpoint: str | None = None
    background_jobs: int | None = None

    model_config = ConfigDict(extra="ignore")


class DetailedHealthResponse(HealthResponse):
    """Detailed health check payload including dependency information."""

    redis: DependencyStatus | None = None
    database: DependencyStatus | None = None


def _build_health_response(settings: Settings, request: Request) -> HealthResponse:
    runner = getattr(request.app.state, "task_runner", None)
    return HealthResponse(
        status="ok",
        service=settings.project_name,
        version=settings.project_version,
        timestamp=datetime.now(UTC),
        environment=settings.environment.value,
        metrics_enabled=settings.prometheus.enabled,
        metrics_endpoint=(
            settings.prometheus.metrics_path if settings.prometheus.enabled else None
        ),
        background_jobs=runner.pending if runner is not None else None,
    )


@router.get("", summary="Service health check", response_model=HealthResponse)
async def health(
    request: Request, settings: Settings = Depends(get_settings)
) -> HealthResponse:
    """Return a lightweight health payload for liveness probes."""

    return _build_health_response(settings, request)


@router.get(
    "/detailed",
    summary="Detailed health check with dependencies",
    response_model=DetailedHealthResponse,
)
async def detailed_health(
    request: Request,
    settings: Settings = Depends(get_settings),
    session: AsyncSession = Depends(get_db_session),
) -> DetailedHealthResponse:
    """Return health status including Redis and database checks."""

    base = _build_health_response(settings, request)
    payload = DetailedHealthResponse(**base.model_dump())

    redis: Redis | None = getattr(request.app.state, "redis", None)
    if redis is None:
        payload.redis = DependencyStatus(status="error", error="not initialised")
    else:
        try:
            await redis.ping()
            payload.redis = DependencyStatus(status="ok")
        except Exception as exc:
            payload.redis = DependencyStatus(status="error", error=str(exc))
            logger.error("redis_health_check_failed", error=str(exc))

    try:
        await session.execute(text("SELECT 1"))
        payload.database = DependencyStatus(status="ok")
    except Exception as exc:
        payload.database = DependencyStatus(status="error", error=str(exc))
        logger.error("database_health_check_failed", error=str(exc))

    if "error" in {payload.redis.status, payload.database.status}:
        payload.status = "error"
    return payload
