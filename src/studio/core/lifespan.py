from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from starlette.types import Lifespan

from studio.core.config import Settings
from studio.core.redis import close_redis, init_redis
from studio.db.session import dispose_engine, get_engine, get_session_factory
from studio.tasks.broadcaster import TaskEventBroadcaster
from studio.tasks.cascade import DependencyCascadeEngine
from studio.tasks.enums import TaskStatus
from studio.tasks.postprocessing import CompletionPostProcessor
from studio.tasks.runner import BackgroundTaskRunner
from studio.tasks.service import TaskService
from studio.tasks.state_machine import TaskStateMachine

_RUNNER_SHUTDOWN_TIMEOUT = 10.0


def create_lifespan(settings: Settings) -> Lifespan[FastAPI]:
    logger = structlog.get_logger(__name__).bind(environment=settings.environment)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info("application_startup")
        # Initialise pooled resources so they can be reused across requests.
        get_engine(settings)
        session_factory = get_session_factory(settings)
        redis = await init_redis(settings)

        broadcaster = TaskEventBroadcaster(redis)
        runner = BackgroundTaskRunner()
        state_machine = TaskStateMachine(max_attempts=settings.tasks.cas_max_attempts)
        cascade = DependencyCascadeEngine(session_factory, state_machine, broadcaster)
        post_processor = CompletionPostProcessor(session_factory)

        app.state.redis = redis
        app.state.task_broadcaster = broadcaster
        app.state.task_runner = runner
        app.state.task_service = TaskService(
            state_machine=state_machine,
            broadcaster=broadcaster,
            runner=runner,
            cascade=cascade,
            post_processor=post_processor,
            default_status=TaskStatus(settings.tasks.default_status),
        )

        try:
            yield
        finally:
            try:
                await runner.shutdown(_RUNNER_SHUTDOWN_TIMEOUT)
            except Exception:
                logger.exception("task_runner_shutdown_failed")

            app.state.task_service = None
            app.state.task_broadcaster = None
            app.state.redis = None
            await close_redis()
            await dispose_engine()
            logger.info("application_shutdown")

    return lifespan
