"""
Membership Coordinator
======================

The transactional boundary for every commitment a rider or driver makes.
Each public operation runs as::

    pool lock (Redis / asyncio)  ->  new session  ->  BEGIN
        -> SELECT ... FOR UPDATE on the pool
        -> validate, score, write
        -> PoolLifecycle.recompute / cancel
    COMMIT (or rollback on any exception)

so "check capacity, then insert" is atomic per pool.  A lock that cannot
be acquired within ``lock_wait_seconds``, or a unique / capacity
constraint tripping at flush time, surfaces as ``ConcurrencyConflict``;
the caller should move on to its next candidate.

Join flow
---------
1. Reject closed, full or incompatible pools with ``CapacityError``.
2. No eligible member yet: auto-accept with score 100.
3. Otherwise score against the anchor (earliest eligible member; for a
   pool already on the road, the vehicle's live position heading to the
   anchor's dropoff).
4. Viable: insert the membership and recompute.
5. Not viable and this was the pool's second rider: formation failed, so
   the pool is cancelled and both riders are notified.  Later joiners are
   simply rejected.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Callable, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.config import Settings, settings as default_settings
from ridepool.domain.entities import (
    Location,
    Ride,
    ScoringConfig,
    ensure_ride_transition,
    utcnow,
)
from ridepool.domain.enums import (
    OPEN_POOL_STATUSES,
    TERMINAL_POOL_STATUSES,
    Gender,
    GenderRestriction,
    JoinType,
    NotificationType,
    PoolStatus,
    RideStatus,
    VehicleType,
    genders_compatible,
)
from ridepool.domain.exceptions import (
    CapacityError,
    ConcurrencyConflict,
    InvalidStateTransition,
    NotFound,
    PermissionDenied,
    ValidationError,
)
from ridepool.domain.matching import front_route_deviation_km, region_cell
from ridepool.domain.pool_state import ensure_can_cancel, ensure_can_complete, ensure_can_start
from ridepool.domain.pricing import PricingEngine
from ridepool.domain.scoring import ScoreResult, score_pair
from ridepool.infrastructure.locks import LockManager
from ridepool.infrastructure.models import (
    PoolMembershipModel,
    PoolModel,
    RideModel,
    ScoringConfigModel,
    UserModel,
)
from ridepool.infrastructure.repositories import (
    MembershipRepository,
    MemberRow,
    PoolRepository,
    RideRepository,
    UserRepository,
    VehicleLocationRepository,
    VehicleRepository,
)
from ridepool.services.authorization import Authorizer
from ridepool.services.configs import active_config, load_config, publish_config
from ridepool.services.lifecycle import PoolLifecycle
from ridepool.services.matching import MatchingQueryService
from ridepool.services.notifications import Notifier

logger = logging.getLogger(__name__)

LEFT_POOL_REASON = "Rider left the pool"


@dataclass
class JoinResult:
    pool_id: int
    ride_id: int
    accepted: bool
    score: float
    breakdown: dict = field(default_factory=dict)
    rejection_reason: Optional[str] = None
    join_type: Optional[JoinType] = None
    pool_cancelled: bool = False


@dataclass
class RideOutcome:
    """What ``request_ride`` did with a new request."""

    ride: RideModel
    pool_id: Optional[int]
    join: Optional[JoinResult]
    created_pool: bool = False


@dataclass
class _Assessment:
    result: ScoreResult
    members: list[MemberRow]
    on_front_route: bool
    deviation_km: float
    join_type: JoinType

    @property
    def is_formation(self) -> bool:
        return len(self.members) == 1 and self.join_type == JoinType.INITIAL


class MembershipCoordinator:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        locks: LockManager,
        settings: Optional[Settings] = None,
        notifier: Optional[Notifier] = None,
        authorizer: Optional[Authorizer] = None,
        pricing: Optional[PricingEngine] = None,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.settings = settings or default_settings
        self.notifier = notifier or Notifier()
        self.authorizer = authorizer or Authorizer()
        self.pricing = pricing or PricingEngine(
            car_base_fare=self.settings.car_base_fare,
            cng_base_fare=self.settings.cng_base_fare,
            rate_per_km=self.settings.rate_per_km,
        )
        self.lifecycle = PoolLifecycle(self.pricing, self.notifier)

    def _capacity_for(self, vehicle_type: VehicleType) -> int:
        if VehicleType(vehicle_type) == VehicleType.CNG:
            return self.settings.cng_max_passengers
        return self.settings.car_max_passengers

    # ── Ride requests ─────────────────────────────────────────────────

    async def create_ride_request(
        self,
        caller_id: int,
        pickup: Location,
        dropoff: Location,
        vehicle_type: VehicleType = VehicleType.CAR,
        gender_preference: GenderRestriction = GenderRestriction.ANY,
        idempotency_key: Optional[str] = None,
    ) -> RideModel:
        if pickup == dropoff:
            raise ValidationError("Pickup and dropoff must differ")

        async with self.session_factory() as session:
            async with session.begin():
                rides = RideRepository(session)
                if idempotency_key:
                    existing = await rides.get_by_idempotency_key(idempotency_key)
                    if existing is not None:
                        self.authorizer.ensure_owner(
                            caller_id, existing.user_id, "reuse this idempotency key"
                        )
                        return existing

                user = await self._require_user(session, caller_id)
                if (
                    GenderRestriction(gender_preference) == GenderRestriction.FEMALE_ONLY
                    and user.gender != Gender.FEMALE
                ):
                    raise ValidationError(
                        "Only female riders may request a female-only pool"
                    )

                ride = await rides.create(
                    RideModel(
                        user_id=caller_id,
                        pickup_lat=pickup.latitude,
                        pickup_lng=pickup.longitude,
                        pickup_cell=region_cell(
                            pickup.latitude, pickup.longitude, self.settings.h3_resolution
                        ),
                        dropoff_lat=dropoff.latitude,
                        dropoff_lng=dropoff.longitude,
                        vehicle_type=vehicle_type,
                        gender_preference=gender_preference,
                        status=RideStatus.CREATING_POOL,
                        distance_km=pickup.distance_km(dropoff),
                        idempotency_key=idempotency_key,
                    )
                )
        logger.info("Ride %d requested by user %d", ride.id, caller_id)
        return ride

    async def request_ride(
        self,
        caller_id: int,
        pickup: Location,
        dropoff: Location,
        vehicle_type: VehicleType = VehicleType.CAR,
        gender_preference: GenderRestriction = GenderRestriction.ANY,
        idempotency_key: Optional[str] = None,
    ) -> RideOutcome:
        """Create a request, join the best viable pool or start a new one."""
        ride = await self.create_ride_request(
            caller_id, pickup, dropoff, vehicle_type, gender_preference, idempotency_key
        )
        if RideStatus(ride.status) != RideStatus.CREATING_POOL:
            return RideOutcome(ride=ride, pool_id=ride.pool_id, join=None)

        async with self.session_factory() as session:
            candidates = await MatchingQueryService(
                session, self.settings.h3_resolution
            ).find_pools_for_rider(
                pickup,
                dropoff,
                vehicle_type,
                gender_preference,
                self.settings.destination_radius_km,
                self.settings.pickup_radius_km,
            )

        for candidate in candidates:
            try:
                preview = await self.evaluate_join(caller_id, ride.id, candidate.pool_id)
                if not preview.accepted:
                    continue
                result = await self.join(caller_id, ride.id, candidate.pool_id)
            except (CapacityError, ConcurrencyConflict) as exc:
                logger.info(
                    "Skipping pool %d for ride %d: %s", candidate.pool_id, ride.id, exc
                )
                continue
            if result.accepted or result.pool_cancelled:
                return RideOutcome(
                    ride=await self._reload_ride(ride.id),
                    pool_id=candidate.pool_id,
                    join=result,
                )

        pool = await self.create_pool(caller_id, ride.id)
        return RideOutcome(
            ride=await self._reload_ride(ride.id),
            pool_id=pool.id,
            join=JoinResult(
                pool_id=pool.id,
                ride_id=ride.id,
                accepted=True,
                score=100.0,
                join_type=JoinType.INITIAL,
            ),
            created_pool=True,
        )

    async def _reload_ride(self, ride_id: int) -> RideModel:
        async with self.session_factory() as session:
            ride = await RideRepository(session).get_by_id(ride_id)
        return ride

    # ── Pool creation ─────────────────────────────────────────────────

    async def create_pool(
        self, caller_id: int, ride_id: int, config_name: Optional[str] = None
    ) -> PoolModel:
        """Open a new pool around *ride_id*; its rider becomes the anchor."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    ride = await self._require_ride(session, ride_id, for_update=True)
                    self.authorizer.ensure_owner(caller_id, ride.user_id, "pool this ride")
                    if RideStatus(ride.status) != RideStatus.CREATING_POOL:
                        raise InvalidStateTransition(
                            f"Ride {ride_id} is {RideStatus(ride.status).value}, "
                            "not looking for a pool"
                        )
                    config_row = await active_config(
                        session, config_name or self.settings.default_scoring_config
                    )
                    pool = await self._new_pool(session, ride, config_row)
                    config = config_row.to_entity()
                    await self._admit(
                        session,
                        pool,
                        ride,
                        _Assessment(
                            result=ScoreResult.first_member(),
                            members=[],
                            on_front_route=True,
                            deviation_km=0.0,
                            join_type=JoinType.INITIAL,
                        ),
                        config,
                    )
        except IntegrityError as exc:
            raise ConcurrencyConflict(f"Ride {ride_id} was pooled concurrently") from exc
        logger.info("Pool %d created for ride %d", pool.id, ride_id)
        return pool

    async def _new_pool(
        self, session: AsyncSession, ride: RideModel, config_row: ScoringConfigModel
    ) -> PoolModel:
        max_passengers = self._capacity_for(ride.vehicle_type)
        return await PoolRepository(session).create(
            PoolModel(
                creator_user_id=ride.user_id,
                status=PoolStatus.WAITING_FOR_RIDERS,
                destination_lat=ride.dropoff_lat,
                destination_lng=ride.dropoff_lng,
                hexagon_region_id=region_cell(
                    ride.dropoff_lat, ride.dropoff_lng, self.settings.h3_resolution
                ),
                vehicle_type=ride.vehicle_type,
                gender_restriction=ride.gender_preference,
                current_passengers=0,
                max_passengers=max_passengers,
                min_passengers_to_start=min(
                    self.settings.min_passengers_to_start, max_passengers
                ),
                scoring_config_id=config_row.id,
            )
        )

    # ── Join ──────────────────────────────────────────────────────────

    async def evaluate_join(
        self, caller_id: int, ride_id: int, pool_id: int
    ) -> JoinResult:
        """Score *ride_id* against *pool_id* without writing anything."""
        async with self.session_factory() as session:
            ride = await self._require_ride(session, ride_id)
            self.authorizer.ensure_owner(caller_id, ride.user_id, "evaluate this ride")
            pool = await self._require_pool(session, pool_id)
            config = await load_config(session, pool.scoring_config_id)
            assessment = await self._assess(session, pool, ride, config)
        return self._result(pool, ride, assessment)

    async def join(self, caller_id: int, ride_id: int, pool_id: int) -> JoinResult:
        try:
            async with self.locks.pool(pool_id):
                async with self.session_factory() as session:
                    async with session.begin():
                        return await self._join_locked(session, caller_id, ride_id, pool_id)
        except IntegrityError as exc:
            raise ConcurrencyConflict(
                f"Ride {ride_id} lost a race joining pool {pool_id}"
            ) from exc

    async def _join_locked(
        self, session: AsyncSession, caller_id: int, ride_id: int, pool_id: int
    ) -> JoinResult:
        ride = await self._require_ride(session, ride_id, for_update=True)
        self.authorizer.ensure_owner(caller_id, ride.user_id, "join with this ride")
        pool = await self._require_pool(session, pool_id, for_update=True)
        config = await load_config(session, pool.scoring_config_id)
        assessment = await self._assess(session, pool, ride, config)
        result = assessment.result

        if result.is_viable:
            await self._admit(session, pool, ride, assessment, config)
            logger.info(
                "Ride %d joined pool %d (score %.2f)", ride.id, pool.id, result.total_score
            )
            return self._result(pool, ride, assessment)

        if not assessment.is_formation:
            logger.info(
                "Ride %d rejected by pool %d: %s", ride.id, pool.id, result.rejection_reason
            )
            return self._result(pool, ride, assessment)

        # Formation failed: both riders are in, then the pool is torn down.
        await self._admit(session, pool, ride, assessment, config, notify=False)
        await self.lifecycle.cancel(
            session, pool, result.rejection_reason or "", score=result.total_score
        )
        logger.info(
            "Pool %d formation failed with ride %d (score %.2f)",
            pool.id,
            ride.id,
            result.total_score,
        )
        outcome = self._result(pool, ride, assessment)
        outcome.pool_cancelled = True
        return outcome

    async def _assess(
        self,
        session: AsyncSession,
        pool: PoolModel,
        ride: RideModel,
        config: ScoringConfig,
    ) -> _Assessment:
        await self._check_admissible(session, pool, ride)

        join_type = (
            JoinType.DYNAMIC
            if PoolStatus(pool.status) == PoolStatus.STARTED
            else JoinType.INITIAL
        )
        members = await MembershipRepository(session).active_for_pool(
            pool.id, front_route_only=config.front_route_only
        )
        if not members:
            return _Assessment(ScoreResult.first_member(), members, True, 0.0, join_type)

        anchor = members[0][1].to_entity()
        if join_type == JoinType.DYNAMIC:
            anchor = await self._live_anchor(session, pool, anchor)

        deviation = front_route_deviation_km(anchor.pickup, ride.pickup, pool.destination)
        on_front = (
            deviation <= config.max_off_route_distance_km
            if config.front_route_only
            else True
        )
        candidate = replace(ride.to_entity(), is_on_front_route=on_front)
        result = score_pair(config, anchor, candidate)
        return _Assessment(result, members, on_front, deviation, join_type)

    async def _live_anchor(
        self, session: AsyncSession, pool: PoolModel, anchor: Ride
    ) -> Ride:
        """The vehicle's current position, heading for the anchor's dropoff."""
        if pool.vehicle_id is None:
            return anchor
        sample = await VehicleLocationRepository(session).get_active_for_vehicle(
            pool.vehicle_id
        )
        if sample is None:
            return anchor
        return replace(anchor, pickup=sample.location, created_at=utcnow())

    async def _check_admissible(
        self, session: AsyncSession, pool: PoolModel, ride: RideModel
    ) -> None:
        status = PoolStatus(pool.status)
        if status in TERMINAL_POOL_STATUSES or pool.deleted_at is not None:
            raise CapacityError(f"Pool {pool.id} is {status.value}")
        if pool.current_passengers >= pool.max_passengers:
            raise CapacityError(f"Pool {pool.id} is full")
        if VehicleType(ride.vehicle_type) != VehicleType(pool.vehicle_type):
            raise CapacityError(
                f"Pool {pool.id} is a {VehicleType(pool.vehicle_type).value} pool"
            )
        if not genders_compatible(pool.gender_restriction, ride.gender_preference):
            raise CapacityError(f"Pool {pool.id} gender restriction is incompatible")
        if GenderRestriction(pool.gender_restriction) == GenderRestriction.FEMALE_ONLY:
            user = await self._require_user(session, ride.user_id)
            if user.gender != Gender.FEMALE:
                raise CapacityError(f"Pool {pool.id} is female-only")
        if await MembershipRepository(session).user_in_pool(pool.id, ride.user_id):
            raise CapacityError(f"User {ride.user_id} is already in pool {pool.id}")
        if RideStatus(ride.status) != RideStatus.CREATING_POOL:
            raise InvalidStateTransition(
                f"Ride {ride.id} is {RideStatus(ride.status).value}, not looking for a pool"
            )

    async def _admit(
        self,
        session: AsyncSession,
        pool: PoolModel,
        ride: RideModel,
        assessment: _Assessment,
        config: ScoringConfig,
        notify: bool = True,
    ) -> None:
        result = assessment.result
        now = utcnow()
        await MembershipRepository(session).create(
            PoolMembershipModel(
                pool_id=pool.id,
                user_id=ride.user_id,
                ride_id=ride.id,
                join_type=assessment.join_type,
                join_score=result.total_score,
                join_score_breakdown=result.breakdown,
                is_front_route_passenger=assessment.on_front_route,
                joined_at=now,
            )
        )

        if assessment.join_type == JoinType.DYNAMIC:
            new_status = RideStatus.STARTED
            ride.started_at = now
        elif pool.driver_id is not None:
            new_status = RideStatus.DRIVER_ASSIGNED
        else:
            new_status = RideStatus.IN_POOL
        ensure_ride_transition(ride.status, new_status)
        ride.status = new_status
        ride.pool_id = pool.id
        ride.is_on_front_route = assessment.on_front_route
        ride.route_deviation_km = round(assessment.deviation_km, 3)

        if assessment.is_formation:
            pool.viability_score = result.total_score
            pool.score_breakdown = result.breakdown

        await self.lifecycle.recompute(session, pool, config)

        if notify:
            await self.notifier.notify(
                session,
                ride.user_id,
                "Joined Pool",
                f"You joined pool {pool.id} (Score: {result.total_score:.1f}/100)",
                NotificationType.POOL_JOINED,
                {"pool_id": pool.id, "ride_id": ride.id, "score": result.total_score},
            )

    @staticmethod
    def _result(pool: PoolModel, ride: RideModel, assessment: _Assessment) -> JoinResult:
        result = assessment.result
        return JoinResult(
            pool_id=pool.id,
            ride_id=ride.id,
            accepted=result.is_viable,
            score=result.total_score,
            breakdown=result.breakdown,
            rejection_reason=result.rejection_reason,
            join_type=assessment.join_type,
        )

    # ── Leave ─────────────────────────────────────────────────────────

    async def leave(self, caller_id: int, ride_id: int) -> PoolModel:
        """Withdraw *ride_id* from its pool.  The pool is never auto-cancelled."""
        async with self.session_factory() as session:
            ride = await self._require_ride(session, ride_id)
            self.authorizer.ensure_owner(caller_id, ride.user_id, "leave with this ride")
            membership = await MembershipRepository(session).get_active_for_ride(ride_id)
            if membership is None:
                raise InvalidStateTransition(f"Ride {ride_id} is not in a pool")
            pool_id = membership.pool_id

        async with self.locks.pool(pool_id):
            async with self.session_factory() as session:
                async with session.begin():
                    pool = await self._require_pool(session, pool_id, for_update=True)
                    if PoolStatus(pool.status) in (PoolStatus.STARTED, PoolStatus.COMPLETED):
                        raise InvalidStateTransition(
                            f"Cannot leave a pool that is {PoolStatus(pool.status).value}"
                        )
                    ride = await self._require_ride(session, ride_id, for_update=True)
                    membership = await MembershipRepository(session).get_active_for_ride(
                        ride_id
                    )
                    if membership is None or membership.pool_id != pool_id:
                        raise ConcurrencyConflict(
                            f"Ride {ride_id} membership changed concurrently"
                        )

                    membership.left_at = utcnow()
                    ensure_ride_transition(ride.status, RideStatus.CANCELLED)
                    ride.status = RideStatus.CANCELLED
                    ride.cancelled_reason = LEFT_POOL_REASON
                    config = await load_config(session, pool.scoring_config_id)
                    await self.lifecycle.recompute(session, pool, config)
        logger.info("Ride %d left pool %d", ride_id, pool_id)
        return pool

    # ── Driver ────────────────────────────────────────────────────────

    async def assign_driver(
        self, caller_id: int, pool_id: int, driver_id: int, vehicle_id: int
    ) -> PoolModel:
        self.authorizer.ensure_owner(caller_id, driver_id, "claim pools for this driver")
        # Lock order: driver, vehicle, pool
        try:
            async with self.locks.driver(driver_id), self.locks.vehicle(vehicle_id):
                async with self.locks.pool(pool_id):
                    async with self.session_factory() as session:
                        async with session.begin():
                            pool = await self._assign_locked(
                                session, pool_id, driver_id, vehicle_id
                            )
        except IntegrityError as exc:
            raise ConcurrencyConflict(
                f"Driver assignment for pool {pool_id} raced"
            ) from exc
        logger.info("Driver %d assigned to pool %d", driver_id, pool_id)
        return pool

    async def _assign_locked(
        self, session: AsyncSession, pool_id: int, driver_id: int, vehicle_id: int
    ) -> PoolModel:
        pool = await self._require_pool(session, pool_id, for_update=True)
        driver = await self._require_user(session, driver_id)
        if not driver.is_driver:
            raise ValidationError(f"User {driver_id} is not a driver")
        vehicle = await VehicleRepository(session).get_by_id(vehicle_id)
        if vehicle is None or vehicle.deleted_at is not None:
            raise NotFound(f"Vehicle {vehicle_id} not found")
        if vehicle.driver_id != driver_id:
            raise PermissionDenied(
                f"Vehicle {vehicle_id} is not registered to driver {driver_id}"
            )
        if not vehicle.is_active:
            raise ValidationError(f"Vehicle {vehicle_id} is not active")

        if pool.driver_id is not None:
            raise ConcurrencyConflict(f"Pool {pool_id} already has a driver")
        if PoolStatus(pool.status) not in OPEN_POOL_STATUSES:
            raise InvalidStateTransition(
                f"Cannot assign a driver to a pool that is {PoolStatus(pool.status).value}"
            )
        if VehicleType(vehicle.vehicle_type) != VehicleType(pool.vehicle_type):
            raise CapacityError(
                f"Vehicle {vehicle_id} is not a {VehicleType(pool.vehicle_type).value}"
            )
        if vehicle.max_passengers < pool.current_passengers:
            raise CapacityError(
                f"Vehicle {vehicle_id} seats {vehicle.max_passengers}, "
                f"pool has {pool.current_passengers} riders"
            )
        if pool.current_passengers < pool.min_passengers_to_start:
            raise InvalidStateTransition(
                f"Pool {pool_id} needs {pool.min_passengers_to_start} riders "
                f"(has {pool.current_passengers})"
            )
        if await PoolRepository(session).driver_has_active_pool(driver_id):
            raise CapacityError(f"Driver {driver_id} is already serving a pool")

        pool.driver_id = driver_id
        pool.vehicle_id = vehicle_id
        pool.max_passengers = min(pool.max_passengers, vehicle.max_passengers)
        config = await load_config(session, pool.scoring_config_id)
        await self.lifecycle.recompute(session, pool, config)

        members = await MembershipRepository(session).active_for_pool(pool.id)
        for _, ride in members:
            if RideStatus(ride.status) == RideStatus.IN_POOL:
                ride.status = RideStatus.DRIVER_ASSIGNED
            await self.notifier.notify(
                session,
                ride.user_id,
                "Driver Assigned",
                f"A driver is on the way for pool {pool.id}",
                NotificationType.DRIVER_ASSIGNED,
                {"pool_id": pool.id, "driver_id": driver_id, "vehicle_id": vehicle_id},
            )

        sample = await VehicleLocationRepository(session).get_active_for_vehicle(
            vehicle_id
        )
        if sample is not None:
            sample.pool_id = pool.id
            sample.is_available = False
        await session.flush()
        return pool

    # ── Trip ──────────────────────────────────────────────────────────

    async def start_trip(self, caller_id: int, pool_id: int) -> PoolModel:
        async with self.locks.pool(pool_id):
            async with self.session_factory() as session:
                async with session.begin():
                    pool = await self._require_pool(session, pool_id, for_update=True)
                    self.authorizer.ensure_any(caller_id, [pool.driver_id], "start this trip")
                    ensure_can_start(pool.status, pool.driver_id is not None)

                    now = utcnow()
                    members = await MembershipRepository(session).active_for_pool(pool.id)
                    pool.route_stops = [
                        list(ride.pickup.as_tuple()) for _, ride in members
                    ] + [list(pool.destination.as_tuple())]
                    pool.status = PoolStatus.STARTED
                    pool.started_at = now
                    for _, ride in members:
                        ensure_ride_transition(ride.status, RideStatus.STARTED)
                        ride.status = RideStatus.STARTED
                        ride.started_at = now
                        await self.notifier.notify(
                            session,
                            ride.user_id,
                            "Trip Started",
                            f"Pool {pool.id} is on its way",
                            NotificationType.TRIP_STARTED,
                            {"pool_id": pool.id},
                        )
        logger.info("Pool %d started with %d riders", pool_id, pool.current_passengers)
        return pool

    async def complete_trip(self, caller_id: int, pool_id: int) -> PoolModel:
        async with self.locks.pool(pool_id):
            async with self.session_factory() as session:
                async with session.begin():
                    pool = await self._require_pool(session, pool_id, for_update=True)
                    self.authorizer.ensure_any(
                        caller_id, [pool.driver_id], "complete this trip"
                    )
                    ensure_can_complete(pool.status)

                    now = utcnow()
                    if pool.started_at is not None and now <= pool.started_at:
                        now = pool.started_at + timedelta(microseconds=1)
                    pool.status = PoolStatus.COMPLETED
                    pool.completed_at = now
                    members = await MembershipRepository(session).active_for_pool(pool.id)
                    for _, ride in members:
                        ensure_ride_transition(ride.status, RideStatus.COMPLETED)
                        ride.status = RideStatus.COMPLETED
                        ride.completed_at = now
                        await self.notifier.notify(
                            session,
                            ride.user_id,
                            "Trip Completed",
                            f"Pool {pool.id} has arrived",
                            NotificationType.TRIP_COMPLETED,
                            {"pool_id": pool.id, "fare": ride.fare},
                        )

                    if pool.vehicle_id is not None:
                        sample = await VehicleLocationRepository(
                            session
                        ).get_active_for_vehicle(pool.vehicle_id)
                        if sample is not None:
                            sample.pool_id = None
                            sample.is_available = True
        logger.info("Pool %d completed", pool_id)
        return pool

    async def cancel_pool(self, caller_id: int, pool_id: int, reason: str) -> PoolModel:
        async with self.locks.pool(pool_id):
            async with self.session_factory() as session:
                async with session.begin():
                    pool = await self._require_pool(session, pool_id, for_update=True)
                    self.authorizer.ensure_any(
                        caller_id, [pool.creator_user_id, pool.driver_id], "cancel this pool"
                    )
                    ensure_can_cancel(pool.status)
                    await self.lifecycle.cancel(session, pool, reason)
        return pool

    # ── Configuration ─────────────────────────────────────────────────

    async def create_scoring_config(self, config: ScoringConfig) -> ScoringConfigModel:
        async with self.session_factory() as session:
            async with session.begin():
                return await publish_config(session, config)

    # ── Lookups ───────────────────────────────────────────────────────

    @staticmethod
    async def _require_user(session: AsyncSession, user_id: int) -> UserModel:
        user = await UserRepository(session).get_by_id(user_id)
        if user is None or user.deleted_at is not None:
            raise NotFound(f"User {user_id} not found")
        return user

    @staticmethod
    async def _require_ride(
        session: AsyncSession, ride_id: int, for_update: bool = False
    ) -> RideModel:
        repo = RideRepository(session)
        ride = await (repo.get_for_update(ride_id) if for_update else repo.get_by_id(ride_id))
        if ride is None:
            raise NotFound(f"Ride {ride_id} not found")
        return ride

    @staticmethod
    async def _require_pool(
        session: AsyncSession, pool_id: int, for_update: bool = False
    ) -> PoolModel:
        repo = PoolRepository(session)
        pool = await (repo.get_for_update(pool_id) if for_update else repo.get_by_id(pool_id))
        if pool is None:
            raise NotFound(f"Pool {pool_id} not found")
        return pool
