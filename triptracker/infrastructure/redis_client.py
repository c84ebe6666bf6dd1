"""
Redis connection pool shared by the realtime notifier and the worker lock.

One pool per process.  Each open pub/sub ``Subscription`` holds a
dedicated connection from it until cancelled.
"""

import redis.asyncio as aioredis

from triptracker.config import settings

_pool = aioredis.ConnectionPool.from_url(
    settings.redis_url,
    decode_responses=True,
    socket_connect_timeout=settings.redis_connect_timeout_s,
    health_check_interval=30,
)


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    return aioredis.Redis(connection_pool=_pool)


async def close_redis() -> None:
    """Drop pooled connections on application shutdown."""
    await _pool.disconnect()
