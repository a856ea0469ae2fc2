"""Driver location ingestion: one active sample per vehicle."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ridepool.domain.entities import Location
from ridepool.domain.exceptions import NotFound, PermissionDenied, ValidationError
from ridepool.domain.matching import region_cell
from ridepool.infrastructure.locks import LockManager
from ridepool.infrastructure.models import VehicleLocationModel
from ridepool.infrastructure.repositories import (
    PoolRepository,
    UserRepository,
    VehicleLocationRepository,
    VehicleRepository,
)
from ridepool.services.authorization import Authorizer

logger = logging.getLogger(__name__)


class LocationTracker:
    def __init__(
        self,
        session_factory: Callable[[], AsyncSession],
        locks: LockManager,
        authorizer: Optional[Authorizer] = None,
        h3_resolution: int = 7,
    ):
        self.session_factory = session_factory
        self.locks = locks
        self.authorizer = authorizer or Authorizer()
        self.h3_resolution = h3_resolution

    async def record_location(
        self,
        caller_id: int,
        vehicle_id: int,
        driver_id: int,
        point: Location,
        heading: Optional[float] = None,
        speed_kmh: Optional[float] = None,
        pool_id: Optional[int] = None,
    ) -> VehicleLocationModel:
        """Supersede the vehicle's active sample with a new one.

        The sample is available for dispatch only when it is not tied to a
        pool.  Serialised per vehicle so exactly one sample stays active.
        """
        self.authorizer.ensure_owner(caller_id, driver_id, "report this location")
        if heading is not None and not 0 <= heading < 360:
            raise ValidationError(f"Heading must be in [0, 360): {heading}")
        if speed_kmh is not None and speed_kmh < 0:
            raise ValidationError(f"Speed must be non-negative: {speed_kmh}")

        async with self.locks.vehicle(vehicle_id):
            async with self.session_factory() as session:
                async with session.begin():
                    driver = await UserRepository(session).get_by_id(driver_id)
                    if driver is None or not driver.is_driver:
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
                    if pool_id is not None:
                        await self._check_serving(session, pool_id, driver_id, vehicle_id)

                    repo = VehicleLocationRepository(session)
                    await repo.supersede_active(vehicle_id)
                    sample = await repo.create(
                        VehicleLocationModel(
                            vehicle_id=vehicle_id,
                            driver_id=driver_id,
                            pool_id=pool_id,
                            lat=point.latitude,
                            lng=point.longitude,
                            cell=region_cell(
                                point.latitude, point.longitude, self.h3_resolution
                            ),
                            heading=heading,
                            speed_kmh=speed_kmh,
                            is_active=True,
                            is_available=pool_id is None,
                        )
                    )
        logger.debug("Vehicle %d at (%f, %f)", vehicle_id, point.latitude, point.longitude)
        return sample

    async def _check_serving(
        self, session: AsyncSession, pool_id: int, driver_id: int, vehicle_id: int
    ) -> None:
        pool = await PoolRepository(session).get_by_id(pool_id)
        if pool is None:
            raise NotFound(f"Pool {pool_id} not found")
        if pool.driver_id != driver_id or pool.vehicle_id != vehicle_id:
            raise PermissionDenied(
                f"Vehicle {vehicle_id} is not serving pool {pool_id}"
            )
