"""Redis client for locks and the event stream."""

from collections.abc import AsyncGenerator

import redis.asyncio as redis
from redis.asyncio import ConnectionPool, Redis

from bracket.config import get_settings

# Global Redis connection pool and client instance
redis_pool: ConnectionPool | None = None
redis_client: Redis | None = None


def create_redis(url: str | None = None) -> Redis:
    """Create a standalone client (used by Celery tasks, one per run)."""
    settings = get_settings()
    return redis.from_url(
        url or settings.redis_url,
        socket_timeout=settings.redis_socket_timeout,
        decode_responses=True,
    )


async def init_redis() -> Redis:
    """Initialize the shared Redis connection pool."""
    global redis_pool, redis_client

    settings = get_settings()
    redis_pool = ConnectionPool.from_url(
        settings.redis_url,
        max_connections=settings.redis_max_connections,
        socket_timeout=settings.redis_socket_timeout,
        retry_on_timeout=True,
        encoding="utf-8",
        decode_responses=True,
    )
    redis_client = Redis(connection_pool=redis_pool)

    await redis_client.ping()
    return redis_client


async def close_redis() -> None:
    """Close Redis connection and pool."""
    global redis_pool, redis_client
    if redis_client:
        await redis_client.aclose()
        redis_client = None
    if redis_pool:
        await redis_pool.disconnect()
        redis_pool = None


async def get_redis() -> AsyncGenerator[Redis, None]:
    """Dependency for getting Redis client."""
    if redis_client is None:
        await init_redis()
    yield redis_client  # type: ignore
