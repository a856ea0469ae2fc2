"""FastAPI dependency injection helpers."""

from typing import Callable

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.config import settings
from ridepool.infrastructure.database import async_session_factory
from ridepool.infrastructure.locks import LockManager
from ridepool.infrastructure.redis_client import get_lock_manager
from ridepool.services.matching import MatchingQueryService
from ridepool.services.membership import MembershipCoordinator
from ridepool.services.tracking import LocationTracker


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> Callable[[], AsyncSession]:
    """Factory for services that open their own transactions."""
    return async_session_factory


async def get_caller_id(x_user_id: int = Header(..., alias="X-User-Id")) -> int:
    """Authenticated caller identity, injected by the upstream gateway."""
    return x_user_id


async def get_locks() -> LockManager:
    return await get_lock_manager()


def get_coordinator(
    session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),
    locks: LockManager = Depends(get_locks),
) -> MembershipCoordinator:
    return MembershipCoordinator(session_factory, locks, settings=settings)


def get_tracker(
    session_factory: Callable[[], AsyncSession] = Depends(get_session_factory),
    locks: LockManager = Depends(get_locks),
) -> LocationTracker:
    return LocationTracker(session_factory, locks, h3_resolution=settings.h3_resolution)


def get_queries(db: AsyncSession = Depends(get_db)) -> MatchingQueryService:
    return MatchingQueryService(db, h3_resolution=settings.h3_resolution)
