"""Redis async connection pool and lock-manager wiring."""

import redis.asyncio as aioredis

from ridepool.config import settings
from ridepool.infrastructure.locks import (
    LocalLockManager,
    LockManager,
    RedisLockManager,
)

_pool = aioredis.ConnectionPool.from_url(
    settings.redis_url, decode_responses=True
)


async def get_redis() -> aioredis.Redis:
    """Return a Redis client backed by the shared connection pool."""
    return aioredis.Redis(connection_pool=_pool)


_lock_manager: LockManager | None = None


async def get_lock_manager() -> LockManager:
    """Process-wide lock manager selected by ``settings.lock_backend``."""
    global _lock_manager
    if _lock_manager is None:
        if settings.lock_backend == "local":
            _lock_manager = LocalLockManager(wait_seconds=settings.lock_wait_seconds)
        else:
            _lock_manager = RedisLockManager(
                await get_redis(),
                ttl_seconds=settings.lock_ttl_seconds,
                wait_seconds=settings.lock_wait_seconds,
            )
    return _lock_manager
