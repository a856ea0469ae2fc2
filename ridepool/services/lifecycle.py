"""
Pool lifecycle bookkeeping shared by every mutating operation.

Callers hold the pool's lock and run inside a transaction; nothing here
commits.  Two entry points:

* ``recompute`` -- re-derives ``current_passengers``, the open status and
  fares from the active membership set.  Runs after every membership or
  driver change.
* ``cancel``    -- moves a pool into ``CANCELLED`` and cascades to every
  active member.  Only the transition into ``CANCELLED`` cascades; a pool
  that is already cancelled is left alone.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.domain.entities import ScoringConfig, ensure_ride_transition, utcnow
from ridepool.domain.enums import (
    TERMINAL_RIDE_STATUSES,
    NotificationType,
    PoolStatus,
    RideStatus,
)
from ridepool.domain.pool_state import derive_status, ensure_can_cancel
from ridepool.domain.pricing import PricingEngine
from ridepool.infrastructure.models import PoolModel
from ridepool.infrastructure.repositories import (
    MembershipRepository,
    MemberRow,
    VehicleLocationRepository,
)
from ridepool.services.notifications import Notifier

logger = logging.getLogger(__name__)


class PoolLifecycle:
    def __init__(self, pricing: PricingEngine, notifier: Notifier):
        self.pricing = pricing
        self.notifier = notifier

    async def recompute(
        self, session: AsyncSession, pool: PoolModel, config: ScoringConfig
    ) -> PoolStatus:
        """Sync count, status and fares with the active members."""
        members = await MembershipRepository(session).active_for_pool(
            pool.id, front_route_only=config.front_route_only
        )
        pool.current_passengers = len(members)
        pool.status = derive_status(
            pool.status,
            pool.current_passengers,
            pool.min_passengers_to_start,
            pool.driver_id is not None,
        )
        if members:
            self._refresh_fares(pool, members)
        await session.flush()
        logger.debug(
            "Pool %d recomputed: %d riders, %s",
            pool.id,
            pool.current_passengers,
            pool.status,
        )
        return PoolStatus(pool.status)

    def _refresh_fares(self, pool: PoolModel, members: list[MemberRow]) -> None:
        count = len(members)
        anchor = members[0][1]
        pool.fare_per_person = self.pricing.fare_per_person(
            anchor.pickup.distance_km(pool.destination), pool.vehicle_type, count
        )
        for _, ride in members:
            if RideStatus(ride.status) in TERMINAL_RIDE_STATUSES:
                continue
            if ride.distance_km is None:
                ride.distance_km = ride.pickup.distance_km(ride.dropoff)
            ride.fare = self.pricing.fare_per_person(
                ride.distance_km, pool.vehicle_type, count
            )

    async def cancel(
        self,
        session: AsyncSession,
        pool: PoolModel,
        reason: str,
        score: Optional[float] = None,
    ) -> list[int]:
        """Cancel *pool* and every active member.  Returns notified user ids."""
        if PoolStatus(pool.status) == PoolStatus.CANCELLED:
            return []
        ensure_can_cancel(pool.status)

        now = utcnow()
        members = await MembershipRepository(session).active_for_pool(pool.id)
        pool.status = PoolStatus.CANCELLED
        pool.deleted_at = now
        pool.current_passengers = 0

        affected: list[int] = []
        for membership, ride in members:
            membership.left_at = now
            if RideStatus(ride.status) not in TERMINAL_RIDE_STATUSES:
                ensure_ride_transition(ride.status, RideStatus.CANCELLED)
                ride.status = RideStatus.CANCELLED
                ride.cancelled_reason = reason
            affected.append(ride.user_id)

        if pool.vehicle_id is not None:
            sample = await VehicleLocationRepository(session).get_active_for_vehicle(
                pool.vehicle_id
            )
            if sample is not None and sample.pool_id == pool.id:
                sample.pool_id = None
                sample.is_available = True

        if score is None:
            title, message = "Pool Cancelled", f"Pool cancelled: {reason}"
        else:
            title = "Pool Formation Failed"
            message = f"Pool cancelled: {reason} (Score: {score:.1f}/100)"
        for user_id in affected:
            await self.notifier.notify(
                session,
                user_id,
                title,
                message,
                NotificationType.POOL_CANCELLED,
                {"pool_id": pool.id, "reason": reason, "score": score},
            )

        await session.flush()
        logger.info(
            "Pool %d cancelled (%s); %d riders notified", pool.id, reason, len(affected)
        )
        return affected
