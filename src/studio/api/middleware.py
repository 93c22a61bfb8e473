from __future__ import annotations

import time
import uuid
from collections.abc import Iterable

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from studio.core.constants import REQUEST_ID_HEADER
from studio.core.logging import bind_request_context, clear_request_context

Logger = structlog.stdlib.BoundLogger

_QUIET_PATHS: frozenset[str] = frozenset({"/health", "/metrics"})


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    """Tag every request, its log lines and its response with a request id."""

    def __init__(self, app: ASGIApp, header_name: str = REQUEST_ID_HEADER) -> None:
        super().__init__(app)
        self._header_name = header_name

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        request_id = request.headers.get(self._header_name) or uuid.uuid4().hex
        bind_request_context(
            request_id=request_id, method=request.method, path=request.url.path
        )
        request.state.request_id = request_id

        try:
            response = await call_next(request)
        finally:
            clear_request_context()

        response.headers[self._header_name] = request_id
        return response


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Log one ``request_completed`` event per API call.

    Probe endpoints are only logged when they fail.
    """

    def __init__(
        self, app: ASGIApp, quiet_paths: Iterable[str] = _QUIET_PATHS
    ) -> None:
        super().__init__(app)
        self._logger: Logger = structlog.get_logger("studio.request")
        self._quiet_paths = frozenset(quiet_paths)

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        start = time.perf_counter()
        path = request.url.path

        try:
            response = await call_next(request)
        except Exception:
            self._logger.exception(
                "request_failed",
                method=request.method,
                path=path,
                request_id=getattr(request.state, "request_id", None),
                duration_ms=_elapsed_ms(start),
            )
            raise

        status_code = response.status_code
        if path in self._quiet_paths and status_code < 500:
            return response

        log = self._logger.warning if status_code >= 500 else self._logger.info
        log(
            "request_completed",
            method=request.method,
            path=path,
            request_id=getattr(request.state, "request_id", None),
            status_code=status_code,
            duration_ms=_elapsed_ms(start),
        )
        return response


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)
