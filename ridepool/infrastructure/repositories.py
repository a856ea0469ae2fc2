"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Radius queries take the set of H3 cells
covering the radius (``None`` = no cell pre-filter); exact distance
filtering happens in the service layer.
"""

from __future__ import annotations

from collections import defaultdict
from datetime import datetime
from typing import Iterable, Optional

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    NotificationModel,
    PoolMembershipModel,
    PoolModel,
    RideModel,
    ScoringConfigModel,
    UserModel,
    VehicleLocationModel,
    VehicleModel,
)
from ridepool.domain.enums import (
    OPEN_POOL_STATUSES,
    TERMINAL_POOL_STATUSES,
    TERMINAL_RIDE_STATUSES,
    PoolStatus,
    VehicleType,
)

MemberRow = tuple[PoolMembershipModel, RideModel]


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: int) -> Optional[UserModel]:
        return await self.session.get(UserModel, user_id)


class VehicleRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, vehicle_id: int) -> Optional[VehicleModel]:
        return await self.session.get(VehicleModel, vehicle_id)


class ScoringConfigRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, config_id: int) -> Optional[ScoringConfigModel]:
        return await self.session.get(ScoringConfigModel, config_id)

    async def get_active(self, name: str) -> Optional[ScoringConfigModel]:
        result = await self.session.execute(
            select(ScoringConfigModel)
            .where(
                ScoringConfigModel.config_name == name,
                ScoringConfigModel.is_active.is_(True),
            )
            .order_by(ScoringConfigModel.version.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def latest_version(self, name: str) -> int:
        result = await self.session.execute(
            select(func.max(ScoringConfigModel.version)).where(
                ScoringConfigModel.config_name == name
            )
        )
        return result.scalar() or 0

    async def deactivate(self, name: str) -> None:
        await self.session.execute(
            update(ScoringConfigModel)
            .where(
                ScoringConfigModel.config_name == name,
                ScoringConfigModel.is_active.is_(True),
            )
            .values(is_active=False)
        )

    async def create(self, config: ScoringConfigModel) -> ScoringConfigModel:
        self.session.add(config)
        await self.session.flush()
        return config


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: int) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def get_for_update(self, ride_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel).where(RideModel.id == ride_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def get_by_idempotency_key(self, key: str) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel).where(RideModel.idempotency_key == key)
        )
        return result.scalar_one_or_none()

    async def get_active_for_user(self, user_id: int) -> Optional[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(
                RideModel.user_id == user_id,
                RideModel.status.not_in(list(TERMINAL_RIDE_STATUSES)),
            )
            .order_by(RideModel.created_at.desc(), RideModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()


class PoolRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, pool: PoolModel) -> PoolModel:
        self.session.add(pool)
        await self.session.flush()
        return pool

    async def get_by_id(self, pool_id: int) -> Optional[PoolModel]:
        return await self.session.get(PoolModel, pool_id)

    async def get_for_update(self, pool_id: int) -> Optional[PoolModel]:
        """SELECT ... FOR UPDATE to prevent concurrent modifications."""
        result = await self.session.execute(
            select(PoolModel).where(PoolModel.id == pool_id).with_for_update()
        )
        return result.scalar_one_or_none()

    async def find_open_with_seats(
        self, vehicle_type: VehicleType, cells: Optional[set[str]]
    ) -> list[PoolModel]:
        query = select(PoolModel).where(
            PoolModel.deleted_at.is_(None),
            PoolModel.status.in_(list(OPEN_POOL_STATUSES)),
            PoolModel.current_passengers < PoolModel.max_passengers,
            PoolModel.vehicle_type == vehicle_type,
        )
        if cells is not None:
            query = query.where(PoolModel.hexagon_region_id.in_(sorted(cells)))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def find_awaiting_driver(
        self, vehicle_type: Optional[VehicleType] = None
    ) -> list[PoolModel]:
        query = select(PoolModel).where(
            PoolModel.deleted_at.is_(None),
            PoolModel.driver_id.is_(None),
            PoolModel.status.in_(
                [PoolStatus.WAITING_FOR_DRIVER, PoolStatus.READY_TO_START]
            ),
            PoolModel.current_passengers >= PoolModel.min_passengers_to_start,
        )
        if vehicle_type is not None:
            query = query.where(PoolModel.vehicle_type == vehicle_type)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def find_started_with_seats(
        self, vehicle_type: VehicleType
    ) -> list[PoolModel]:
        result = await self.session.execute(
            select(PoolModel).where(
                PoolModel.deleted_at.is_(None),
                PoolModel.status == PoolStatus.STARTED,
                PoolModel.current_passengers < PoolModel.max_passengers,
                PoolModel.vehicle_type == vehicle_type,
            )
        )
        return list(result.scalars().all())

    async def get_active_pools(self) -> list[PoolModel]:
        result = await self.session.execute(
            select(PoolModel)
            .where(
                PoolModel.deleted_at.is_(None),
                PoolModel.status.not_in(list(TERMINAL_POOL_STATUSES)),
            )
            .order_by(PoolModel.created_at)
        )
        return list(result.scalars().all())

    async def driver_has_active_pool(self, driver_id: int) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(PoolModel)
            .where(
                PoolModel.driver_id == driver_id,
                PoolModel.status.not_in(list(TERMINAL_POOL_STATUSES)),
            )
        )
        return (result.scalar() or 0) > 0


class MembershipRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, membership: PoolMembershipModel) -> PoolMembershipModel:
        self.session.add(membership)
        await self.session.flush()
        return membership

    async def active_for_pool(
        self, pool_id: int, front_route_only: bool = False
    ) -> list[MemberRow]:
        """Active members in join order; the first row is the anchor."""
        query = (
            select(PoolMembershipModel, RideModel)
            .join(RideModel, RideModel.id == PoolMembershipModel.ride_id)
            .where(
                PoolMembershipModel.pool_id == pool_id,
                PoolMembershipModel.left_at.is_(None),
            )
            .order_by(PoolMembershipModel.joined_at, PoolMembershipModel.id)
        )
        if front_route_only:
            query = query.where(PoolMembershipModel.is_front_route_passenger.is_(True))
        result = await self.session.execute(query)
        return [(m, r) for m, r in result.all()]

    async def active_for_pools(
        self, pool_ids: Iterable[int], front_route_only: bool = False
    ) -> dict[int, list[MemberRow]]:
        ids = list(pool_ids)
        if not ids:
            return {}
        query = (
            select(PoolMembershipModel, RideModel)
            .join(RideModel, RideModel.id == PoolMembershipModel.ride_id)
            .where(
                PoolMembershipModel.pool_id.in_(ids),
                PoolMembershipModel.left_at.is_(None),
            )
            .order_by(PoolMembershipModel.joined_at, PoolMembershipModel.id)
        )
        if front_route_only:
            query = query.where(PoolMembershipModel.is_front_route_passenger.is_(True))
        result = await self.session.execute(query)
        grouped: dict[int, list[MemberRow]] = defaultdict(list)
        for membership, ride in result.all():
            grouped[membership.pool_id].append((membership, ride))
        return grouped

    async def get_active_for_ride(self, ride_id: int) -> Optional[PoolMembershipModel]:
        result = await self.session.execute(
            select(PoolMembershipModel).where(
                PoolMembershipModel.ride_id == ride_id,
                PoolMembershipModel.left_at.is_(None),
            )
        )
        return result.scalar_one_or_none()

    async def user_in_pool(self, pool_id: int, user_id: int) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(PoolMembershipModel)
            .where(
                PoolMembershipModel.pool_id == pool_id,
                PoolMembershipModel.user_id == user_id,
            )
        )
        return (result.scalar() or 0) > 0


class VehicleLocationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, sample: VehicleLocationModel) -> VehicleLocationModel:
        self.session.add(sample)
        await self.session.flush()
        return sample

    async def supersede_active(self, vehicle_id: int) -> None:
        await self.session.execute(
            update(VehicleLocationModel)
            .where(
                VehicleLocationModel.vehicle_id == vehicle_id,
                VehicleLocationModel.is_active.is_(True),
            )
            .values(is_active=False)
        )

    async def get_active_for_vehicle(
        self, vehicle_id: int
    ) -> Optional[VehicleLocationModel]:
        result = await self.session.execute(
            select(VehicleLocationModel)
            .where(
                VehicleLocationModel.vehicle_id == vehicle_id,
                VehicleLocationModel.is_active.is_(True),
            )
            .order_by(
                VehicleLocationModel.recorded_at.desc(),
                VehicleLocationModel.id.desc(),
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def find_available(
        self, cells: Optional[set[str]], vehicle_type: Optional[VehicleType] = None
    ) -> list[tuple[VehicleLocationModel, VehicleModel]]:
        """Active + available samples of active vehicles driven by drivers."""
        query = (
            select(VehicleLocationModel, VehicleModel)
            .join(VehicleModel, VehicleModel.id == VehicleLocationModel.vehicle_id)
            .join(UserModel, UserModel.id == VehicleLocationModel.driver_id)
            .where(
                VehicleLocationModel.is_active.is_(True),
                VehicleLocationModel.is_available.is_(True),
                VehicleModel.is_active.is_(True),
                VehicleModel.deleted_at.is_(None),
                UserModel.is_driver.is_(True),
                UserModel.deleted_at.is_(None),
            )
        )
        if cells is not None:
            query = query.where(VehicleLocationModel.cell.in_(sorted(cells)))
        if vehicle_type is not None:
            query = query.where(VehicleModel.vehicle_type == vehicle_type)
        result = await self.session.execute(query)
        return [(loc, veh) for loc, veh in result.all()]

    async def active_for_pools(
        self, pool_ids: Iterable[int]
    ) -> dict[int, VehicleLocationModel]:
        """Most recent active sample per pool."""
        ids = list(pool_ids)
        if not ids:
            return {}
        result = await self.session.execute(
            select(VehicleLocationModel)
            .where(
                VehicleLocationModel.pool_id.in_(ids),
                VehicleLocationModel.is_active.is_(True),
            )
            .order_by(
                VehicleLocationModel.recorded_at.desc(),
                VehicleLocationModel.id.desc(),
            )
        )
        latest: dict[int, VehicleLocationModel] = {}
        for sample in result.scalars().all():
            latest.setdefault(sample.pool_id, sample)
        return latest

    async def purge_history(self, before: datetime) -> int:
        """Delete superseded samples recorded before *before*."""
        result = await self.session.execute(
            delete(VehicleLocationModel).where(
                VehicleLocationModel.is_active.is_(False),
                VehicleLocationModel.recorded_at < before,
            )
        )
        return result.rowcount or 0


class NotificationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, notification: NotificationModel) -> NotificationModel:
        self.session.add(notification)
        await self.session.flush()
        return notification

    async def list_for_user(self, user_id: int) -> list[NotificationModel]:
        result = await self.session.execute(
            select(NotificationModel)
            .where(NotificationModel.user_id == user_id)
            .order_by(NotificationModel.created_at, NotificationModel.id)
        )
        return list(result.scalars().all())
