from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from studio.observability.metrics import CASCADE_TRANSITIONS_TOTAL

from . import repository
from .broadcaster import TaskEventBroadcaster
from .enums import CASCADING_STATUSES, TaskStatus
from .exceptions import TaskConflictError
from .state_machine import TaskStateMachine

__all__ = ["CascadeReport", "DependencyCascadeEngine", "upstream_reason"]

logger = structlog.get_logger(__name__)


def upstream_reason(parent_id: UUID, status: TaskStatus, reason: str) -> str:
    return f"upstream task {parent_id} {status.value}: {reason}"


@dataclass(slots=True)
class CascadeReport:
    root_id: UUID
    status: TaskStatus
    transitioned: list[UUID] = field(default_factory=list)
    skipped: list[UUID] = field(default_factory=list)
    failed: list[UUID] = field(default_factory=list)


class DependencyCascadeEngine:
    """Propagate ``Failed``/``Cancelled`` to every transitive dependant.

    The dependency graph lives in the store and may contain cycles, so the walk
    uses an explicit stack and a visited set scoped to a single invocation.
    Each node is handled independently: an error on one dependant is logged and
    the walk carries on with the rest.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        state_machine: TaskStateMachine,
        broadcaster: TaskEventBroadcaster,
    ) -> None:
        self._session_factory = session_factory
        self._state_machine = state_machine
        self._broadcaster = broadcaster

    async def cascade(
        self, task_id: UUID, terminal_status: TaskStatus, reason: str
    ) -> CascadeReport:
        report = CascadeReport(root_id=task_id, status=terminal_status)
        if terminal_status not in CASCADING_STATUSES:
            logger.debug(
                "cascade_ignored_status",
                task_id=str(task_id),
                status=terminal_status.value,
            )
            return report

        log = logger.bind(root_task_id=str(task_id), status=terminal_status.value)
        visited: set[UUID] = {task_id}
        stack: list[tuple[UUID, str]] = [(task_id, reason)]

        async with self._session_factory() as session:
            while stack:
                parent_id, parent_reason = stack.pop()
                # Snapshot first: a rollback below expires loaded instances.
                try:
                    dependants = [
                        (dependant.id, dependant.status)
                        for dependant in await repository.list_dependants(
                            session, parent_id
                        )
                    ]
                except Exception:
                    log.exception(
                        "cascade_dependants_lookup_failed", task_id=str(parent_id)
                    )
                    await session.rollback()
                    continue

                for dependant_id, dependant_status in dependants:
                    if dependant_id in visited:
                        continue
                    visited.add(dependant_id)

                    if dependant_status == terminal_status:
                        self._record(
                            report.skipped, dependant_id, terminal_status, "skipped"
                        )
                        continue

                    derived = upstream_reason(
                        parent_id, terminal_status, parent_reason
                    )
                    descend = await self._transition(
                        session, dependant_id, derived, report, log
                    )
                    if descend:
                        stack.append((dependant_id, derived))

        log.info(
            "cascade_finished",
            transitioned=len(report.transitioned),
            skipped=len(report.skipped),
            failed=len(report.failed),
        )
        return report

    async def _transition(
        self,
        session: AsyncSession,
        task_id: UUID,
        reason: str,
        report: CascadeReport,
        log: structlog.stdlib.BoundLogger,
    ) -> bool:
        """Move one dependant; returns whether the walk should descend into it."""

        status = report.status
        try:
            result = await self._state_machine.apply(
                session, task_id, status, reason=reason
            )
        except TaskConflictError as exc:
            log.info(
                "cascade_dependant_conflict", task_id=str(task_id), error=str(exc)
            )
            self._record(report.skipped, task_id, status, "skipped")
            return False
        except Exception:
            log.exception("cascade_dependant_failed", task_id=str(task_id))
            await session.rollback()
            self._record(report.failed, task_id, status, "failed")
            return False

        if not result.changed:
            # Reached the same status through another writer; its cascade owns
            # the subtree.
            self._record(report.skipped, task_id, status, "skipped")
            return False

        self._record(report.transitioned, task_id, status, "transitioned")
        try:
            await self._broadcaster.task_updated(result.task)
        except Exception:
            # The transition is committed; only the notification was lost.
            log.exception("cascade_broadcast_failed", task_id=str(task_id))
        return True

    @staticmethod
    def _record(
        bucket: list[UUID], task_id: UUID, status: TaskStatus, outcome: str
    ) -> None:
        bucket.append(task_id)
        CASCADE_TRANSITIONS_TOTAL.labels(status=status.value, outcome=outcome).inc()
