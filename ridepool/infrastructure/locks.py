"""
Short-lived mutual exclusion for pools and vehicles.

* ``DistributedLock`` -- Redis ``SET NX EX`` acquire and a Lua
  compare-and-delete release.  Used across API processes and by the
  retention worker to elect a single runner.
* ``LocalLock`` -- asyncio lock registry for single-process deployments
  and tests.

Both wait at most ``wait_seconds`` when entered as a context manager and
then raise ``ConcurrencyConflict``: a caller that cannot get a pool
should move on to the next-ranked candidate rather than queue.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
import weakref
from abc import ABC, abstractmethod
from typing import AsyncContextManager

import redis.asyncio as aioredis

from ridepool.domain.exceptions import ConcurrencyConflict

logger = logging.getLogger(__name__)

_RETRY_INTERVAL_SECONDS = 0.05


class DistributedLock:
    def __init__(
        self,
        client: aioredis.Redis,
        key: str,
        ttl_seconds: int = 30,
        wait_seconds: float = 0.0,
    ):
        self.redis = client
        self.key = f"lock:{key}"
        self.ttl = ttl_seconds
        self.wait_seconds = wait_seconds
        self.token = str(uuid.uuid4())

    async def acquire(self) -> bool:
        """Try to acquire once. Returns True on success."""
        return bool(
            await self.redis.set(self.key, self.token, nx=True, ex=self.ttl)
        )

    async def acquire_within(self, wait_seconds: float) -> bool:
        """Retry acquisition until *wait_seconds* have elapsed."""
        deadline = time.monotonic() + wait_seconds
        while True:
            if await self.acquire():
                return True
            if time.monotonic() >= deadline:
                return False
            await asyncio.sleep(_RETRY_INTERVAL_SECONDS)

    async def release(self) -> None:
        """Release only if we still own the lock (atomic via Lua)."""
        lua = """
        if redis.call("get", KEYS[1]) == ARGV[1] then
            return redis.call("del", KEYS[1])
        else
            return 0
        end
        """
        await self.redis.eval(lua, 1, self.key, self.token)

    # context-manager support
    async def __aenter__(self):
        acquired = await self.acquire_within(self.wait_seconds)
        if not acquired:
            logger.info("Lock contention on %s", self.key)
            raise ConcurrencyConflict(f"Could not acquire lock: {self.key}")
        return self

    async def __aexit__(self, *args):
        await self.release()


class LocalLock:
    def __init__(self, lock: asyncio.Lock, key: str, wait_seconds: float):
        self._lock = lock
        self.key = f"lock:{key}"
        self.wait_seconds = wait_seconds

    async def __aenter__(self):
        try:
            await asyncio.wait_for(self._lock.acquire(), timeout=self.wait_seconds)
        except asyncio.TimeoutError:
            logger.info("Lock contention on %s", self.key)
            raise ConcurrencyConflict(f"Could not acquire lock: {self.key}") from None
        return self

    async def __aexit__(self, *args):
        self._lock.release()


class LockManager(ABC):
    """Hands out per-resource locks (``pool:<id>``, ``vehicle:<id>``,
    ``driver:<id>``)."""

    @abstractmethod
    def lock(self, key: str) -> AsyncContextManager: ...

    def pool(self, pool_id: int) -> AsyncContextManager:
        return self.lock(f"pool:{pool_id}")

    def vehicle(self, vehicle_id: int) -> AsyncContextManager:
        return self.lock(f"vehicle:{vehicle_id}")

    def driver(self, driver_id: int) -> AsyncContextManager:
        return self.lock(f"driver:{driver_id}")


class RedisLockManager(LockManager):
    def __init__(
        self, client: aioredis.Redis, ttl_seconds: int = 30, wait_seconds: float = 2.0
    ):
        self.client = client
        self.ttl_seconds = ttl_seconds
        self.wait_seconds = wait_seconds

    def lock(self, key: str) -> DistributedLock:
        return DistributedLock(
            self.client, key, ttl_seconds=self.ttl_seconds, wait_seconds=self.wait_seconds
        )


class LocalLockManager(LockManager):
    def __init__(self, wait_seconds: float = 2.0):
        self.wait_seconds = wait_seconds
        # An entry lives only while some LocalLock still references it
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    def lock(self, key: str) -> LocalLock:
        inner = self._locks.setdefault(key, asyncio.Lock())
        return LocalLock(inner, key, self.wait_seconds)
