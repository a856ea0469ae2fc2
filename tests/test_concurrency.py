"""
Concurrency safety tests.

Demonstrates:
1. Two riders racing for a pool's last seat: exactly one gets it.
2. Two drivers racing for one pool: exactly one is assigned.
3. One driver racing for two pools: exactly one claim sticks.
4. Distributed and local locks give up with ``ConcurrencyConflict``
   instead of queueing forever.
"""

from __future__ import annotations

import asyncio
import gc
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from ridepool.domain.entities import Location
from ridepool.domain.enums import VehicleType
from ridepool.domain.exceptions import CapacityError, ConcurrencyConflict
from ridepool.infrastructure.locks import DistributedLock, LocalLockManager, RedisLockManager
from ridepool.infrastructure.models import PoolMembershipModel, PoolModel
from ridepool.services.membership import JoinResult

PICKUP = Location(23.7808, 90.4167)
DROPOFF = Location(23.8103, 90.4125)


class TestLastSeatRace:
    @pytest.mark.asyncio
    async def test_exactly_one_rider_gets_the_last_seat(
        self, coordinator, formed_pool, make_user, make_ride, session_factory
    ):
        pool, _, _ = await formed_pool(riders=3)
        racers = [await make_user() for _ in range(2)]
        rides = [await make_ride(u) for u in racers]

        results = await asyncio.gather(
            *(coordinator.join(u.id, r.id, pool.id) for u, r in zip(racers, rides)),
            return_exceptions=True,
        )

        accepted = [r for r in results if isinstance(r, JoinResult) and r.accepted]
        lost = [r for r in results if isinstance(r, (CapacityError, ConcurrencyConflict))]
        assert len(accepted) == 1
        assert len(lost) == 1

        async with session_factory() as session:
            stored = await session.get(PoolModel, pool.id)
            members = (
                await session.execute(
                    select(func.count())
                    .select_from(PoolMembershipModel)
                    .where(
                        PoolMembershipModel.pool_id == pool.id,
                        PoolMembershipModel.left_at.is_(None),
                    )
                )
            ).scalar()
        assert stored.current_passengers == 4
        assert members == 4

    @pytest.mark.asyncio
    async def test_racing_drivers_one_assignment(
        self, coordinator, formed_pool, make_user, make_vehicle
    ):
        pool, _, _ = await formed_pool(riders=2)
        drivers = [await make_user(is_driver=True) for _ in range(2)]
        cars = [await make_vehicle(d, VehicleType.CAR, at=PICKUP) for d in drivers]

        results = await asyncio.gather(
            *(
                coordinator.assign_driver(d.id, pool.id, d.id, c.id)
                for d, c in zip(drivers, cars)
            ),
            return_exceptions=True,
        )

        assigned = [r for r in results if isinstance(r, PoolModel)]
        assert len(assigned) == 1
        assert sum(isinstance(r, ConcurrencyConflict) for r in results) == 1


class TestDriverDoubleClaim:
    @pytest.mark.asyncio
    async def test_one_driver_two_pools_one_assignment(
        self, coordinator, formed_pool, make_user, make_vehicle, session_factory
    ):
        first, _, _ = await formed_pool(riders=2)
        second, _, _ = await formed_pool(riders=2)
        driver = await make_user(is_driver=True)
        car = await make_vehicle(driver, VehicleType.CAR, at=PICKUP)

        results = await asyncio.gather(
            *(
                coordinator.assign_driver(driver.id, p.id, driver.id, car.id)
                for p in (first, second)
            ),
            return_exceptions=True,
        )

        assert sum(isinstance(r, PoolModel) for r in results) == 1
        assert sum(isinstance(r, CapacityError) for r in results) == 1
        async with session_factory() as session:
            drivers = [
                (await session.get(PoolModel, p.id)).driver_id for p in (first, second)
            ]
        assert drivers.count(driver.id) == 1
        assert drivers.count(None) == 1

    @pytest.mark.asyncio
    async def test_store_rejects_second_open_pool_for_driver(
        self, formed_pool, make_user, session_factory
    ):
        first, _, _ = await formed_pool(riders=2)
        second, _, _ = await formed_pool(riders=2)
        driver = await make_user(is_driver=True)

        async with session_factory() as session:
            for pool_id in (first.id, second.id):
                (await session.get(PoolModel, pool_id)).driver_id = driver.id
            with pytest.raises(IntegrityError):
                await session.commit()


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "pool:1", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:pool:1", lock.token, nx=True, ex=10
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=None)

        lock = DistributedLock(mock_redis, "pool:1", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_calls_eval(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "pool:1", ttl_seconds=10)
        await lock.acquire()
        await lock.release()

        mock_redis.eval.assert_called_once()
        assert mock_redis.eval.call_args.args[-1] == lock.token

    @pytest.mark.asyncio
    async def test_acquire_within_retries_until_free(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(side_effect=[False, False, True])

        lock = DistributedLock(mock_redis, "pool:1", ttl_seconds=10)
        assert await lock.acquire_within(1.0) is True
        assert mock_redis.set.await_count == 3

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "pool:1", ttl_seconds=10, wait_seconds=0.1)
        with pytest.raises(ConcurrencyConflict, match="Could not acquire lock"):
            async with lock:
                pass
        mock_redis.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_context_manager_releases_on_error(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        with pytest.raises(ValueError):
            async with DistributedLock(mock_redis, "pool:1"):
                raise ValueError("boom")
        mock_redis.eval.assert_awaited_once()

    def test_manager_keys(self):
        manager = RedisLockManager(AsyncMock(), ttl_seconds=5, wait_seconds=0.5)
        assert manager.pool(7).key == "lock:pool:7"
        assert manager.vehicle(3).key == "lock:vehicle:3"
        assert manager.pool(7).ttl == 5


class TestLocalLock:
    @pytest.mark.asyncio
    async def test_times_out_with_conflict(self):
        manager = LocalLockManager(wait_seconds=0.05)
        async with manager.pool(1):
            with pytest.raises(ConcurrencyConflict):
                async with manager.pool(1):
                    pass

    @pytest.mark.asyncio
    async def test_different_pools_do_not_block(self):
        manager = LocalLockManager(wait_seconds=0.05)
        async with manager.pool(1):
            async with manager.pool(2):
                pass

    @pytest.mark.asyncio
    async def test_released_after_exit(self):
        manager = LocalLockManager(wait_seconds=0.05)
        async with manager.vehicle(1):
            pass
        async with manager.vehicle(1):
            pass

    @pytest.mark.asyncio
    async def test_released_lock_is_dropped(self):
        manager = LocalLockManager(wait_seconds=0.05)
        async with manager.pool(1):
            assert "pool:1" in manager._locks
        gc.collect()
        assert "pool:1" not in manager._locks
