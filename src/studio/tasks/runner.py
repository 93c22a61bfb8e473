from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from functools import partial
from typing import Any

import structlog

from studio.observability.metrics import BACKGROUND_JOBS_TOTAL
from studio.observability.sentry import capture_exception

__all__ = ["BackgroundTaskRunner"]

logger = structlog.get_logger(__name__)


class BackgroundTaskRunner:
    """Run detached jobs without blocking the request that scheduled them.

    Spawned tasks are strongly referenced until they finish; failures are
    logged, counted and reported to Sentry instead of vanishing with the task.
    """

    def __init__(self) -> None:
        self._tasks: set[asyncio.Task[Any]] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(
        self,
        coro: Coroutine[Any, Any, Any],
        *,
        kind: str,
        **context: Any,
    ) -> asyncio.Task[Any]:
        if self._closed:
            coro.close()
            raise RuntimeError("background runner is shut down")

        task = asyncio.create_task(coro, name=kind)
        self._tasks.add(task)
        task.add_done_callback(partial(self._on_done, kind, context))
        logger.debug("background_job_spawned", kind=kind, **context)
        return task

    def _on_done(
        self, kind: str, context: dict[str, Any], task: asyncio.Task[Any]
    ) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            BACKGROUND_JOBS_TOTAL.labels(kind=kind, outcome="cancelled").inc()
            logger.warning("background_job_cancelled", kind=kind, **context)
            return

        exc = task.exception()
        if exc is None:
            BACKGROUND_JOBS_TOTAL.labels(kind=kind, outcome="succeeded").inc()
            return

        BACKGROUND_JOBS_TOTAL.labels(kind=kind, outcome="failed").inc()
        logger.error(
            "background_job_failed",
            kind=kind,
            error=str(exc),
            exc_info=exc,
            **context,
        )
        capture_exception(exc, background_job=kind, **context)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for in-flight jobs, including any they spawn, to finish."""

        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout
        while self._tasks:
            remaining = None if deadline is None else deadline - loop.time()
            if remaining is not None and remaining <= 0:
                break
            await asyncio.wait(set(self._tasks), timeout=remaining)

    async def shutdown(self, timeout: float = 10.0) -> None:
        self._closed = True
        await self.drain(timeout)
        leftovers = list(self._tasks)
        for task in leftovers:
            task.cancel()
        if leftovers:
            await asyncio.gather(*leftovers, return_exceptions=True)
            logger.warning("background_jobs_abandoned", count=len(leftovers))
