"""
Read-only matching queries
==========================

* ``find_pools_for_rider``   -- open pools a new request could join.
* ``find_pools_for_driver``  -- formed pools a driver could pick up.
* ``find_dynamic_pools``     -- moving pools with a seat near the rider.
* ``find_nearest_available_drivers``

Every query runs as: H3 cell pre-filter in SQL, exact Haversine filter in
Python, then a deterministic sort.  Queries never write and see whatever
the session's snapshot shows.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.domain.distance import distance_to_route_km
from ridepool.domain.entities import Location, utcnow
from ridepool.domain.enums import GenderRestriction, VehicleType, genders_compatible
from ridepool.domain.exceptions import NotFound, ValidationError
from ridepool.domain.matching import (
    driver_match_score,
    priority_bonus,
    region_cells_within,
)
from ridepool.infrastructure.models import PoolModel, RideModel
from ridepool.infrastructure.repositories import (
    MembershipRepository,
    MemberRow,
    PoolRepository,
    RideRepository,
    UserRepository,
    VehicleLocationRepository,
)


@dataclass
class PoolMatch:
    pool_id: int
    status: str
    current_passengers: int
    max_passengers: int
    destination_distance_km: float
    pickup_distance_km: Optional[float]
    viability_score: Optional[float]


@dataclass
class DriverPoolMatch:
    pool_id: int
    status: str
    current_passengers: int
    max_passengers: int
    pickup_distance_km: float
    match_score: float
    priority_bonus: float
    is_priority_destination: bool
    is_on_route: bool
    distance_from_priority_km: Optional[float]
    viability_score: Optional[float]


@dataclass
class DynamicPoolMatch:
    pool_id: int
    vehicle_id: int
    available_seats: int
    walking_distance_m: float
    vehicle_distance_m: float
    route_distance_m: Optional[float]
    destination_distance_km: float


@dataclass
class NearbyDriver:
    driver_id: int
    vehicle_id: int
    vehicle_type: str
    distance_km: float
    latitude: float
    longitude: float
    recorded_at: datetime


@dataclass
class PoolState:
    pool: PoolModel
    members: list[MemberRow]


def _viability_desc(score: Optional[float]) -> tuple[bool, float]:
    """Sort key: higher scores first, unscored pools last."""
    return (score is None, -(score or 0.0))


class MatchingQueryService:
    def __init__(self, session: AsyncSession, h3_resolution: int = 7):
        self.session = session
        self.h3_resolution = h3_resolution
        self.pools = PoolRepository(session)
        self.memberships = MembershipRepository(session)
        self.locations = VehicleLocationRepository(session)

    def _cover(self, point: Location, radius_km: float) -> Optional[set[str]]:
        return region_cells_within(
            point.latitude, point.longitude, radius_km, self.h3_resolution
        )

    # ── Riders ────────────────────────────────────────────────────────

    async def find_pools_for_rider(
        self,
        pickup: Location,
        destination: Location,
        vehicle_type: VehicleType,
        gender_preference: GenderRestriction = GenderRestriction.ANY,
        destination_radius_km: float = 2.0,
        pickup_radius_km: float = 5.0,
    ) -> list[PoolMatch]:
        """Open pools with a free seat whose destination is within range.

        Ordered by viability score (unscored last), then destination
        distance, then fullest first.
        """
        candidates = await self.pools.find_open_with_seats(
            vehicle_type, self._cover(destination, destination_radius_km)
        )
        candidates = [
            p
            for p in candidates
            if genders_compatible(p.gender_restriction, gender_preference)
        ]
        members = await self.memberships.active_for_pools(p.id for p in candidates)

        matches: list[PoolMatch] = []
        for pool in candidates:
            dest_km = pool.destination.distance_km(destination)
            if dest_km > destination_radius_km:
                continue
            rows = members.get(pool.id)
            pickup_km = rows[0][1].pickup.distance_km(pickup) if rows else None
            if pickup_km is not None and pickup_km > pickup_radius_km:
                continue
            matches.append(
                PoolMatch(
                    pool_id=pool.id,
                    status=pool.status,
                    current_passengers=pool.current_passengers,
                    max_passengers=pool.max_passengers,
                    destination_distance_km=dest_km,
                    pickup_distance_km=pickup_km,
                    viability_score=pool.viability_score,
                )
            )

        matches.sort(
            key=lambda m: (
                *_viability_desc(m.viability_score),
                m.destination_distance_km,
                -m.current_passengers,
            )
        )
        return matches

    # ── Drivers ───────────────────────────────────────────────────────

    async def find_pools_for_driver(
        self,
        driver_id: int,
        current_location: Location,
        max_pickup_distance_km: float = 5.0,
        vehicle_type: Optional[VehicleType] = None,
        now: Optional[datetime] = None,
    ) -> list[DriverPoolMatch]:
        driver = await UserRepository(self.session).get_by_id(driver_id)
        if driver is None or driver.deleted_at is not None:
            raise NotFound(f"User {driver_id} not found")
        if not driver.is_driver:
            raise ValidationError(f"User {driver_id} is not a driver")

        now = now or utcnow()
        priority = driver.priority_destination
        candidates = await self.pools.find_awaiting_driver(vehicle_type)
        front = await self.memberships.active_for_pools(
            (p.id for p in candidates), front_route_only=True
        )

        matches: list[DriverPoolMatch] = []
        for pool in candidates:
            rows = front.get(pool.id)
            if not rows:
                continue
            distances = [current_location.distance_km(r.pickup) for _, r in rows]
            if min(distances) > max_pickup_distance_km:
                continue

            pickup_km = distances[0]
            bonus, is_priority, on_route, from_priority = priority_bonus(
                current_location, pool.destination, priority
            )
            age_minutes = (now - pool.created_at).total_seconds() / 60
            score = driver_match_score(
                pickup_km,
                bonus,
                pool.current_passengers,
                pool.max_passengers,
                age_minutes,
            )
            matches.append(
                DriverPoolMatch(
                    pool_id=pool.id,
                    status=pool.status,
                    current_passengers=pool.current_passengers,
                    max_passengers=pool.max_passengers,
                    pickup_distance_km=pickup_km,
                    match_score=round(score, 2),
                    priority_bonus=bonus,
                    is_priority_destination=is_priority,
                    is_on_route=on_route,
                    distance_from_priority_km=from_priority,
                    viability_score=pool.viability_score,
                )
            )

        matches.sort(
            key=lambda m: (
                -m.match_score,
                *_viability_desc(m.viability_score),
                m.pickup_distance_km,
                -m.current_passengers,
            )
        )
        return matches

    async def find_nearest_available_drivers(
        self,
        pickup: Location,
        vehicle_type: Optional[VehicleType] = None,
        max_distance_km: float = 10.0,
        limit: int = 10,
    ) -> list[NearbyDriver]:
        rows = await self.locations.find_available(
            self._cover(pickup, max_distance_km), vehicle_type
        )

        # One entry per vehicle: its most recent sample
        latest: dict[int, tuple] = {}
        for sample, vehicle in rows:
            seen = latest.get(vehicle.id)
            if seen is None or (sample.recorded_at, sample.id) > (
                seen[0].recorded_at,
                seen[0].id,
            ):
                latest[vehicle.id] = (sample, vehicle)

        drivers: list[NearbyDriver] = []
        for sample, vehicle in latest.values():
            km = pickup.distance_km(sample.location)
            if km > max_distance_km:
                continue
            drivers.append(
                NearbyDriver(
                    driver_id=sample.driver_id,
                    vehicle_id=vehicle.id,
                    vehicle_type=vehicle.vehicle_type,
                    distance_km=km,
                    latitude=sample.lat,
                    longitude=sample.lng,
                    recorded_at=sample.recorded_at,
                )
            )
        drivers.sort(key=lambda d: (d.distance_km, d.vehicle_id))
        return drivers[:limit]

    # ── Pools already on the road ─────────────────────────────────────

    async def find_dynamic_pools(
        self,
        pickup: Location,
        destination: Location,
        vehicle_type: VehicleType,
        gender_preference: GenderRestriction = GenderRestriction.ANY,
        route_radius_m: float = 500.0,
        max_walk_m: float = 300.0,
        destination_radius_km: float = 2.0,
    ) -> list[DynamicPoolMatch]:
        """Started pools a rider can walk to and board.

        Walking distance is the shorter of the distance to the vehicle and
        to the pool's route; deviation is the route distance when the pool
        has a route, else the vehicle distance.
        """
        candidates = [
            p
            for p in await self.pools.find_started_with_seats(vehicle_type)
            if genders_compatible(p.gender_restriction, gender_preference)
        ]
        samples = await self.locations.active_for_pools(p.id for p in candidates)

        matches: list[DynamicPoolMatch] = []
        for pool in candidates:
            sample = samples.get(pool.id)
            if sample is None:
                continue
            vehicle_m = pickup.distance_km(sample.location) * 1000
            route_m: Optional[float] = None
            if pool.has_route:
                stops = [tuple(s) for s in pool.route_stops]
                route_m = distance_to_route_km(pickup.as_tuple(), stops) * 1000
            walking_m = min(vehicle_m, route_m) if route_m is not None else vehicle_m
            deviation_m = route_m if route_m is not None else vehicle_m
            dest_km = pool.destination.distance_km(destination)

            if (
                walking_m > max_walk_m
                or deviation_m > route_radius_m
                or dest_km > destination_radius_km
            ):
                continue
            matches.append(
                DynamicPoolMatch(
                    pool_id=pool.id,
                    vehicle_id=sample.vehicle_id,
                    available_seats=pool.available_seats,
                    walking_distance_m=walking_m,
                    vehicle_distance_m=vehicle_m,
                    route_distance_m=route_m,
                    destination_distance_km=dest_km,
                )
            )

        matches.sort(
            key=lambda m: (
                m.walking_distance_m,
                -m.available_seats,
                m.destination_distance_km,
            )
        )
        return matches

    # ── Display accessors ─────────────────────────────────────────────

    async def get_pool_state(self, pool_id: int) -> PoolState:
        pool = await self.pools.get_by_id(pool_id)
        if pool is None:
            raise NotFound(f"Pool {pool_id} not found")
        return PoolState(pool, await self.memberships.active_for_pool(pool_id))

    async def get_active_ride(self, user_id: int) -> Optional[RideModel]:
        return await RideRepository(self.session).get_active_for_user(user_id)

    async def get_ride(self, ride_id: int) -> RideModel:
        ride = await RideRepository(self.session).get_by_id(ride_id)
        if ride is None:
            raise NotFound(f"Ride {ride_id} not found")
        return ride

    async def active_pools(self) -> list[PoolModel]:
        return await self.pools.get_active_pools()
