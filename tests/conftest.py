"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) built from the
production models, so tests run without Docker / PostgreSQL / Redis.
Points carry plain lat/lng columns plus an H3 cell, so every query the
services issue runs unchanged on SQLite.  Pool and vehicle locks come
from the in-process ``LocalLockManager``.
"""

import itertools
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from ridepool.config import Settings
from ridepool.domain.entities import Location, utcnow
from ridepool.domain.enums import Gender, VehicleType
from ridepool.domain.matching import region_cell
from ridepool.infrastructure.database import Base
from ridepool.infrastructure.locks import LocalLockManager
from ridepool.infrastructure.models import (
    ScoringConfigModel,
    UserModel,
    VehicleLocationModel,
    VehicleModel,
)
from ridepool.services.membership import MembershipCoordinator
from ridepool.services.tracking import LocationTracker

# Dhaka: Gulshan 1 -> Banani -> Mohakhali
PICKUP = Location(23.7808, 90.4167)
DROPOFF = Location(23.8103, 90.4125)


# ── Database ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


# ── Services ──────────────────────────────────────────────────────────


@pytest.fixture
def test_settings() -> Settings:
    return Settings(lock_backend="local", lock_wait_seconds=2.0)


@pytest.fixture
def locks() -> LocalLockManager:
    return LocalLockManager(wait_seconds=2.0)


@pytest.fixture
def coordinator(session_factory, locks, test_settings, scoring_config):
    return MembershipCoordinator(session_factory, locks, settings=test_settings)


@pytest.fixture
def tracker(session_factory, locks):
    return LocationTracker(session_factory, locks)


# ── Seed data ─────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def scoring_config(session_factory) -> ScoringConfigModel:
    async with session_factory() as session:
        row = ScoringConfigModel(config_name="default", version=1, is_active=True)
        session.add(row)
        await session.commit()
    return row


@pytest.fixture
def make_user(session_factory):
    counter = itertools.count(1)

    async def _make(
        gender: Gender = Gender.MALE,
        is_driver: bool = False,
        priority: Location | None = None,
    ) -> UserModel:
        n = next(counter)
        async with session_factory() as session:
            user = UserModel(
                name=f"User {n}",
                email=f"user{n}@example.com",
                gender=gender,
                is_driver=is_driver,
                priority_destination_lat=priority.latitude if priority else None,
                priority_destination_lng=priority.longitude if priority else None,
            )
            session.add(user)
            await session.commit()
        return user

    return _make


@pytest.fixture
def make_vehicle(session_factory):
    counter = itertools.count(1)

    async def _make(
        driver: UserModel,
        vehicle_type: VehicleType = VehicleType.CAR,
        max_passengers: int = 4,
        at: Location | None = None,
        is_active: bool = True,
    ) -> VehicleModel:
        async with session_factory() as session:
            vehicle = VehicleModel(
                driver_id=driver.id,
                vehicle_type=vehicle_type,
                vehicle_number=f"DHA-T-{next(counter):04d}",
                max_passengers=max_passengers,
                is_active=is_active,
            )
            session.add(vehicle)
            await session.flush()
            if at is not None:
                session.add(
                    VehicleLocationModel(
                        vehicle_id=vehicle.id,
                        driver_id=driver.id,
                        lat=at.latitude,
                        lng=at.longitude,
                        cell=region_cell(at.latitude, at.longitude),
                        is_active=True,
                        is_available=True,
                        recorded_at=utcnow(),
                    )
                )
            await session.commit()
        return vehicle

    return _make


@pytest.fixture
def make_ride(coordinator):
    """Create a CREATING_POOL request for *user* (defaults: PICKUP -> DROPOFF)."""

    async def _make(user: UserModel, pickup=PICKUP, dropoff=DROPOFF, **kwargs):
        return await coordinator.create_ride_request(user.id, pickup, dropoff, **kwargs)

    return _make


@pytest.fixture
def formed_pool(coordinator, make_user, make_ride):
    """A pool with *riders* identical requests; returns ``(pool, riders, rides)``."""

    async def _make(riders: int = 2, **ride_kwargs):
        users = [await make_user() for _ in range(riders)]
        rides = [await make_ride(u, **ride_kwargs) for u in users]
        pool = await coordinator.create_pool(users[0].id, rides[0].id)
        for user, ride in zip(users[1:], rides[1:]):
            result = await coordinator.join(user.id, ride.id, pool.id)
            assert result.accepted
        return pool, users, rides

    return _make
