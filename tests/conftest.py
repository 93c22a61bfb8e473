"""Shared fixtures for the task service tests."""

from __future__ import annotations

from collections.abc import AsyncIterator, Iterator
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis import FakeAsyncRedis
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

import studio.tasks.models  # noqa: F401 - register task tables with the metadata
from studio.app import create_app
from studio.core.config import get_settings
from studio.db import session as db_session
from studio.db.base import Base
from studio.db.dependencies import get_db_session
from studio.db.session import dispose_engine
from studio.tasks.state_machine import TaskStateMachine

from tests.factories import RecordingBroadcaster


@pytest.fixture(autouse=True)
def configure_settings(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path
) -> Iterator[None]:
    monkeypatch.setenv("ENVIRONMENT", "test")
    monkeypatch.setenv("LOG_LEVEL", "WARNING")
    monkeypatch.setenv("DATABASE__URL", f"sqlite+aiosqlite:///{tmp_path}/app.db")
    monkeypatch.setenv("REDIS__URL", "fakeredis://")
    monkeypatch.setenv("SENTRY__ENABLED", "false")
    monkeypatch.setenv("WEBSOCKET__HEARTBEAT_INTERVAL_SECONDS", "0.05")
    monkeypatch.setenv("WEBSOCKET__INACTIVITY_TIMEOUT_SECONDS", "5")

    get_settings.cache_clear()
    try:
        yield
    finally:
        get_settings.cache_clear()


@pytest_asyncio.fixture
async def session_factory(
    tmp_path: Path,
    configure_settings: None,
) -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    db_path = tmp_path / "studio-tests.db"
    engine = create_async_engine(f"sqlite+aiosqlite:///{db_path}")

    async with engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    factory = async_sessionmaker(engine, expire_on_commit=False, autoflush=False)
    db_session._engine = engine
    db_session._session_factory = factory

    try:
        yield factory
    finally:
        await dispose_engine()
        await engine.dispose()


@pytest_asyncio.fixture
async def session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    async with session_factory() as db:
        yield db


@pytest_asyncio.fixture
async def redis() -> AsyncIterator[FakeAsyncRedis]:
    client = FakeAsyncRedis(decode_responses=True)
    try:
        yield client
    finally:
        await client.flushall()
        await client.aclose()


@pytest.fixture
def broadcaster() -> RecordingBroadcaster:
    return RecordingBroadcaster()


@pytest.fixture
def state_machine() -> TaskStateMachine:
    return TaskStateMachine(max_attempts=3)


@pytest_asyncio.fixture()
async def app(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[FastAPI]:
    application = create_app()

    async def override_get_db_session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as db:
            try:
                yield db
            finally:
                transaction = db.get_transaction()
                if transaction is not None and transaction.is_active:
                    await db.rollback()

    application.dependency_overrides[get_db_session] = override_get_db_session

    try:
        async with application.router.lifespan_context(application):
            yield application
    finally:
        application.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def async_client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    transport = ASGITransport(app=app)
    async with AsyncClient(
        transport=transport, base_url="http://testserver"
    ) as http_client:
        redis_client = getattr(app.state, "redis", None)
        try:
            yield http_client
        finally:
            await app.state.task_runner.drain(timeout=5)
            if redis_client is not None:
                await redis_client.flushdb()
