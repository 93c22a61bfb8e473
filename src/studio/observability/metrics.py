"""Prometheus metrics collection and configuration."""

from __future__ import annotations

from typing import TYPE_CHECKING

from prometheus_client import Counter
from prometheus_fastapi_instrumentator import Instrumentator

if TYPE_CHECKING:
    from fastapi import FastAPI

    from studio.core.config import PrometheusSettings

TASKS_CREATED_TOTAL = Counter(
    "studio_tasks_created_total",
    "Total number of tasks accepted by the submission gateway",
    ["task_type"],
)

TASK_TRANSITIONS_TOTAL = Counter(
    "studio_task_transitions_total",
    "Total number of applied task status transitions",
    ["from_status", "to_status"],
)

CASCADE_TRANSITIONS_TOTAL = Counter(
    "studio_cascade_transitions_total",
    "Dependant tasks visited by the failure cascade, by outcome",
    ["status", "outcome"],  # outcome: transitioned, skipped, failed
)

POSTPROCESSING_TOTAL = Counter(
    "studio_postprocessing_total",
    "Completion post-processing runs, by hook and outcome",
    ["hook", "outcome"],  # outcome: created, existing, failed
)

BROADCAST_FAILURES_TOTAL = Counter(
    "studio_broadcast_failures_total",
    "Task lifecycle events that could not be published",
    ["event"],
)

BACKGROUND_JOBS_TOTAL = Counter(
    "studio_background_jobs_total",
    "Detached background jobs, by kind and outcome",
    ["kind", "outcome"],  # outcome: succeeded, failed, cancelled
)


class MetricsService:
    """Wires HTTP instrumentation into the FastAPI application."""

    def __init__(self) -> None:
        self._instrumentator: Instrumentator | None = None

    def create_instrumentator(self, settings: PrometheusSettings) -> Instrumentator:
        return Instrumentator(
            should_group_status_codes=settings.should_group_status_codes,
            should_ignore_untemplated=settings.should_ignore_untemplated,
            should_group_untemplated=settings.should_group_untemplated,
            should_round_latency_decimals=settings.should_round_latency_decimals,
            should_respect_env_var=settings.should_respect_env_var,
            excluded_handlers=settings.excluded_handlers,
            env_var_name="ENABLE_METRICS",
            round_latency_decimals=4,
        )

    def instrument_app(self, app: FastAPI, settings: PrometheusSettings) -> None:
        """Instrument FastAPI application with metrics."""
        if not settings.enabled:
            return

        self._instrumentator = self.create_instrumentator(settings)
        self._instrumentator.instrument(app)
        self._instrumentator.expose(
            app,
            should_gzip=True,
            endpoint=settings.metrics_path,
            include_in_schema=False,
        )


metrics_service: MetricsService = MetricsService()
