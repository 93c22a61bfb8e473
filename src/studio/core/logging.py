"""structlog setup shared by the API process and its background jobs."""

from __future__ import annotations

import logging
import logging.config
from threading import Lock
from typing import Any

import structlog
import structlog.contextvars
import structlog.stdlib
from structlog.types import Processor

from studio.core.config import Settings
from studio.core.constants import REQUEST_ID_CTX_KEY, SERVICE_NAME

_configured = False
_lock = Lock()

# Third-party loggers routed through our handler instead of their own.
_OWNED_LOGGERS = ("uvicorn", "uvicorn.error", "uvicorn.access")
_QUIET_LOGGERS = ("sqlalchemy.engine", "asyncio")


def _level_for(name: str) -> int:
    level = logging.getLevelName(name.upper())
    return level if isinstance(level, int) else logging.INFO


def _shared_processors() -> list[Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
    ]


def _logging_config(level: int) -> dict[str, Any]:
    loggers: dict[str, Any] = {
        "": {"handlers": ["json"], "level": level, "propagate": True},
    }
    for name in _OWNED_LOGGERS:
        loggers[name] = {"handlers": ["json"], "level": level, "propagate": False}
    for name in _QUIET_LOGGERS:
        loggers[name] = {"level": max(level, logging.WARNING)}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "json": {
                "()": structlog.stdlib.ProcessorFormatter,
                "foreign_pre_chain": _shared_processors(),
                "processors": [
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.dict_tracebacks,
                    structlog.processors.JSONRenderer(),
                ],
            }
        },
        "handlers": {
            "json": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "level": level,
            }
        },
        "loggers": loggers,
    }


def configure_logging(settings: Settings) -> None:
    """Route structlog and stdlib records through one JSON handler.

    Safe to call repeatedly; only the first call has an effect.
    """

    global _configured
    with _lock:
        if _configured:
            return

        logging.config.dictConfig(_logging_config(_level_for(settings.log_level)))
        structlog.configure(
            processors=[
                *_shared_processors(),
                structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
            ],
            logger_factory=structlog.stdlib.LoggerFactory(),
            wrapper_class=structlog.stdlib.BoundLogger,
            cache_logger_on_first_use=True,
        )
        structlog.contextvars.bind_contextvars(
            service=SERVICE_NAME, environment=settings.environment.value
        )
        _configured = True


def bind_request_context(request_id: str, **extra: Any) -> None:
    structlog.contextvars.bind_contextvars(**{REQUEST_ID_CTX_KEY: request_id}, **extra)


def clear_request_context() -> None:
    # Only drop per-request keys; service/environment stay bound.
    structlog.contextvars.unbind_contextvars(REQUEST_ID_CTX_KEY, "path", "method")
