"""Tests for the location-history retention worker (mocked Redis)."""

from __future__ import annotations

from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import select, update

from ridepool.config import settings
from ridepool.domain.entities import Location, utcnow
from ridepool.infrastructure.models import VehicleLocationModel
from ridepool.workers.retention import run_retention_cycle

PICKUP = Location(23.7808, 90.4167)


def _redis(acquired: bool) -> AsyncMock:
    mock_redis = AsyncMock()
    mock_redis.set = AsyncMock(return_value=acquired)
    mock_redis.eval = AsyncMock(return_value=1)
    return mock_redis


async def _vehicle_with_history(tracker, make_user, make_vehicle, session_factory):
    driver = await make_user(is_driver=True)
    car = await make_vehicle(driver, at=PICKUP)
    await tracker.record_location(driver.id, car.id, driver.id, Location(23.7820, 90.4160))
    await tracker.record_location(driver.id, car.id, driver.id, Location(23.7830, 90.4150))
    async with session_factory() as session:
        await session.execute(
            update(VehicleLocationModel)
            .where(VehicleLocationModel.is_active.is_(False))
            .values(recorded_at=utcnow() - timedelta(days=2))
        )
        await session.commit()
    return car


class TestRetentionCycle:
    @pytest.mark.asyncio
    async def test_purges_superseded_samples(
        self, tracker, make_user, make_vehicle, session_factory
    ):
        car = await _vehicle_with_history(tracker, make_user, make_vehicle, session_factory)
        mock_redis = _redis(acquired=True)

        with patch("ridepool.workers.retention.get_redis", AsyncMock(return_value=mock_redis)):
            purged = await run_retention_cycle(session_factory)

        assert purged == 2
        mock_redis.eval.assert_awaited_once()
        async with session_factory() as session:
            remaining = (
                await session.execute(
                    select(VehicleLocationModel).where(
                        VehicleLocationModel.vehicle_id == car.id
                    )
                )
            ).scalars().all()
        assert len(remaining) == 1
        assert remaining[0].is_active

    @pytest.mark.asyncio
    async def test_recent_history_is_kept(
        self, tracker, make_user, make_vehicle, session_factory
    ):
        driver = await make_user(is_driver=True)
        car = await make_vehicle(driver, at=PICKUP)
        await tracker.record_location(driver.id, car.id, driver.id, Location(23.7820, 90.4160))

        with patch(
            "ridepool.workers.retention.get_redis",
            AsyncMock(return_value=_redis(acquired=True)),
        ):
            assert await run_retention_cycle(session_factory) == 0

    @pytest.mark.asyncio
    async def test_skips_when_another_worker_holds_lock(
        self, tracker, make_user, make_vehicle, session_factory
    ):
        await _vehicle_with_history(tracker, make_user, make_vehicle, session_factory)
        mock_redis = _redis(acquired=False)

        with patch("ridepool.workers.retention.get_redis", AsyncMock(return_value=mock_redis)):
            assert await run_retention_cycle(session_factory) == 0

        mock_redis.eval.assert_not_called()

    @pytest.mark.asyncio
    async def test_local_backend_runs_without_redis(
        self, tracker, make_user, make_vehicle, session_factory
    ):
        await _vehicle_with_history(tracker, make_user, make_vehicle, session_factory)
        unreachable = AsyncMock(side_effect=ConnectionError("redis is down"))

        with patch.object(settings, "lock_backend", "local"), patch(
            "ridepool.workers.retention.get_redis", unreachable
        ):
            assert await run_retention_cycle(session_factory) == 2

        unreachable.assert_not_awaited()
