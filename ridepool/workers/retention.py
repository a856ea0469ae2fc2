"""
Location History Retention Worker
=================================

Runs every ``RETENTION_INTERVAL_SECONDS`` (default 300 s).

Only the most recent active sample per vehicle is authoritative; the
superseded ones are kept for ``LOCATION_RETENTION_HOURS`` and then
purged here.

Concurrency safety
------------------
A Redis distributed lock elects a single runner per cycle across API
processes; a process that loses the election skips the cycle.  With
``LOCK_BACKEND=local`` there is one process and an in-process lock only
keeps cycles from overlapping.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta

from ridepool.config import settings
from ridepool.domain.entities import utcnow
from ridepool.infrastructure.database import async_session_factory
from ridepool.domain.exceptions import ConcurrencyConflict
from ridepool.infrastructure.locks import DistributedLock, LocalLockManager
from ridepool.infrastructure.redis_client import get_redis
from ridepool.infrastructure.repositories import VehicleLocationRepository

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None
_local_locks = LocalLockManager(wait_seconds=0.1)


# ── Public API ────────────────────────────────────────────────────────


async def start_retention_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Retention worker started (interval=%ds)", settings.retention_interval_seconds
    )


async def stop_retention_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Retention worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_retention_cycle()
        except Exception:
            logger.exception("Unhandled error in retention cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.retention_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass


async def _election_lock():
    if settings.lock_backend == "local":
        return _local_locks.lock("location_retention")
    redis = await get_redis()
    return DistributedLock(redis, "location_retention", ttl_seconds=60)


async def run_retention_cycle(session_factory=async_session_factory) -> int:
    """Purge superseded samples past retention.  Returns rows deleted."""
    lock = await _election_lock()
    try:
        async with lock:
            return await _purge(session_factory)
    except ConcurrencyConflict:
        logger.debug("Lock held by another worker - skipping cycle")
        return 0


async def _purge(session_factory) -> int:
    cutoff = utcnow() - timedelta(hours=settings.location_retention_hours)
    async with session_factory() as session:
        async with session.begin():
            purged = await VehicleLocationRepository(session).purge_history(cutoff)
    if purged:
        logger.info("Retention cycle: purged %d location samples", purged)
    return purged
