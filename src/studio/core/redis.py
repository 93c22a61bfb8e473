from __future__ import annotations

from urllib.parse import urlparse

from redis.asyncio import Redis

from studio.core.config import Settings, get_settings

FakeRedisFactory: type[Redis] | None = None

try:  # pragma: no cover - optional dependency in production
    from fakeredis import FakeAsyncRedis as _FakeRedis

    FakeRedisFactory = _FakeRedis
except ModuleNotFoundError:  # pragma: no cover - fakeredis is only needed for tests
    pass


_REDIS: Redis | None = None


async def init_redis(settings: Settings | None = None) -> Redis:
    """Initialise and cache the Redis client."""

    global _REDIS
    if _REDIS is not None:
        return _REDIS

    settings = settings or get_settings()
    url = settings.redis.url
    scheme = (urlparse(url).scheme or "").lower()

    if scheme in {"fakeredis", "memory"}:
        factory = FakeRedisFactory
        if factory is None:
            raise RuntimeError("fakeredis requested but fakeredis is not installed.")
        _REDIS = factory(decode_responses=True)
    else:
        _REDIS = Redis.from_url(url, encoding="utf-8", decode_responses=True)

    await _REDIS.ping()
    return _REDIS


async def close_redis() -> None:
    global _REDIS
    if _REDIS is None:
        return

    await _REDIS.aclose()
    _REDIS = None
