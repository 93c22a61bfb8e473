"""Sentry error tracking integration."""

from __future__ import annotations

import logging
import os
from typing import Any

import sentry_sdk
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.redis import RedisIntegration
from sentry_sdk.integrations.sqlalchemy import SqlalchemyIntegration

from studio.core.config import SentrySettings

logger = logging.getLogger(__name__)


def configure_sentry(settings: SentrySettings) -> bool:
    """Initialise the Sentry SDK; returns whether it was enabled."""
    if not settings.enabled or settings.dsn is None:
        return False

    sentry_sdk.init(
        dsn=settings.dsn.get_secret_value(),
        environment=settings.environment or os.getenv("ENVIRONMENT", "development"),
        release=settings.release or os.getenv("APP_VERSION", "unknown"),
        sample_rate=settings.sample_rate,
        traces_sample_rate=settings.traces_sample_rate,
        send_default_pii=settings.send_default_pii,
        integrations=[
            FastApiIntegration(),
            SqlalchemyIntegration(),
            RedisIntegration(),
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        before_send=_before_send,
    )
    return True


def _before_send(
    event: dict[str, Any],
    hint: dict[str, Any] | None,
) -> dict[str, Any] | None:
    # Health probes are noise.
    if event.get("request", {}).get("url", "").endswith("/health"):
        return None
    return event


def capture_exception(exception: BaseException, **extra_context: Any) -> None:
    """Capture exception with additional context.

    A no-op when the SDK has not been initialised.
    """
    if not sentry_sdk.is_initialized():
        return
    with sentry_sdk.new_scope() as scope:
        for key, value in extra_context.items():
            scope.set_extra(key, value)
        sentry_sdk.capture_exception(exception)
