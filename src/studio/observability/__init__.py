"""Observability stack for monitoring and error tracking."""

from .metrics import MetricsService, metrics_service
from .sentry import capture_exception, configure_sentry

__all__ = [
    "MetricsService",
    "capture_exception",
    "configure_sentry",
    "metrics_service",
]
