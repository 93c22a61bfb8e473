"""Process-wide async engine and session factory.

Background jobs outlive the request that spawned them, so they open sessions
from the shared factory rather than borrowing the request session.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from studio.core.config import DatabaseSettings, Settings, get_settings

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(database: DatabaseSettings) -> dict[str, Any]:
    options: dict[str, Any] = {"echo": database.echo, "pool_pre_ping": True}
    if not database.is_sqlite:
        options.update(
            pool_size=database.pool_size,
            max_overflow=database.max_overflow,
            pool_timeout=database.pool_timeout_seconds,
        )
    return options


def get_engine(settings: Settings | None = None) -> AsyncEngine:
    global _engine
    if _engine is None:
        database = (settings or get_settings()).database
        _engine = create_async_engine(database.dsn, **_engine_options(database))
    return _engine


def get_session_factory(
    settings: Settings | None = None,
) -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        # Instances stay readable after commit; the service returns them
        # to the route for serialisation.
        _session_factory = async_sessionmaker(
            get_engine(settings), expire_on_commit=False, autoflush=False
        )
    return _session_factory


async def dispose_engine() -> None:
    global _engine, _session_factory
    _session_factory = None
    engine, _engine = _engine, None
    if engine is not None:
        await engine.dispose()
