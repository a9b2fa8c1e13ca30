"""Redis client used for notification delivery."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from redis.asyncio import ConnectionPool, Redis

from tourney.config import get_settings

settings = get_settings()

# Global Redis connection pool and client instance
redis_pool: ConnectionPool | None = None
redis_client: Redis | None = None


async def init_redis() -> Redis:
    """Initialize Redis connection with a shared connection pool."""
    global redis_pool, redis_client

    redis_pool = ConnectionPool.from_url(
        settings.redis_url,
        max_connections=50,
        socket_timeout=5.0,
        socket_connect_timeout=5.0,
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


@asynccontextmanager
async def get_redis_context() -> AsyncGenerator[Redis, None]:
    """Context manager for getting Redis client.

    Usage:
        async with get_redis_context() as redis:
            await redis.publish("channel", "payload")
    """
    if redis_client is None:
        await init_redis()
    yield redis_client  # type: ignore
