"""
SQLAlchemy ORM models.

Tables
------
* ``users``             -- riders and drivers (identity mirror)
* ``vehicles``          -- vehicle registry (class, capacity, active)
* ``vehicle_locations`` -- location samples; one active sample per vehicle
* ``scoring_configs``   -- versioned viability weights and thresholds
* ``pools``             -- shared trips
* ``rides``             -- individual ride requests
* ``pool_members``      -- ride <-> pool membership
* ``notifications``     -- outbox of rider-facing events

Spatial columns
---------------
Points are stored as ``*_lat`` / ``*_lng`` floats plus an H3 ``*_cell``
column.  B-Tree indexes on the cell columns back the radius pre-filter
(see ``ridepool.domain.matching``).

Invariants enforced by the store
--------------------------------
* ``current_passengers <= max_passengers`` and
  ``min_passengers_to_start <= max_passengers``
* a ``STARTED`` / ``COMPLETED`` pool has a driver
* ``started_at >= created_at`` and ``completed_at > started_at``
* one membership per (pool, rider) and per ride
* a driver serves at most one non-terminal pool
"""

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)

from .database import Base
from ridepool.domain.entities import Location, Ride, ScoringConfig, utcnow
from ridepool.domain.enums import (
    Gender,
    GenderRestriction,
    JoinType,
    PoolStatus,
    RideStatus,
    VehicleType,
)


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(120), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    gender = Column(Enum(Gender), nullable=True)
    is_driver = Column(Boolean, default=False, nullable=False)
    priority_destination_lat = Column(Float, nullable=True)
    priority_destination_lng = Column(Float, nullable=True)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    @property
    def priority_destination(self) -> Location | None:
        if self.priority_destination_lat is None or self.priority_destination_lng is None:
            return None
        return Location(self.priority_destination_lat, self.priority_destination_lng)


class VehicleModel(Base):
    __tablename__ = "vehicles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    vehicle_type = Column(Enum(VehicleType), default=VehicleType.CAR, nullable=False)
    vehicle_number = Column(String(20), unique=True, nullable=False)
    max_passengers = Column(Integer, default=4, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        CheckConstraint(
            "max_passengers > 0 AND max_passengers <= 8", name="ck_vehicle_capacity"
        ),
        Index("idx_vehicles_driver", "driver_id"),
    )


class VehicleLocationModel(Base):
    __tablename__ = "vehicle_locations"

    id = Column(Integer, primary_key=True, autoincrement=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    pool_id = Column(Integer, ForeignKey("pools.id"), nullable=True)

    lat = Column(Float, nullable=False)
    lng = Column(Float, nullable=False)
    cell = Column(String(20), nullable=False)

    heading = Column(Float, nullable=True)  # degrees, [0, 360)
    speed_kmh = Column(Float, nullable=True)

    is_active = Column(Boolean, default=True, nullable=False)
    is_available = Column(Boolean, default=True, nullable=False)
    recorded_at = Column(DateTime, default=utcnow, nullable=False)

    __table_args__ = (
        CheckConstraint(
            "heading IS NULL OR (heading >= 0 AND heading < 360)",
            name="ck_location_heading",
        ),
        CheckConstraint("speed_kmh IS NULL OR speed_kmh >= 0", name="ck_location_speed"),
        Index("idx_vehicle_locations_active", "vehicle_id", "is_active"),
        Index("idx_vehicle_locations_cell", "cell", "is_active", "is_available"),
        Index("idx_vehicle_locations_pool", "pool_id"),
    )

    @property
    def location(self) -> Location:
        return Location(self.lat, self.lng)


class ScoringConfigModel(Base):
    __tablename__ = "scoring_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    config_name = Column(String(100), nullable=False)
    version = Column(Integer, default=1, nullable=False)
    min_viable_score = Column(Float, default=60.0, nullable=False)

    destination_proximity_weight = Column(Float, default=30.0, nullable=False)
    pickup_proximity_weight = Column(Float, default=25.0, nullable=False)
    route_overlap_weight = Column(Float, default=20.0, nullable=False)
    time_alignment_weight = Column(Float, default=15.0, nullable=False)
    detour_penalty_weight = Column(Float, default=10.0, nullable=False)

    max_destination_distance_km = Column(Float, default=2.0, nullable=False)
    max_pickup_distance_km = Column(Float, default=5.0, nullable=False)
    min_route_overlap_percent = Column(Float, default=40.0, nullable=False)
    max_detour_percent = Column(Float, default=30.0, nullable=False)
    max_time_difference_minutes = Column(Integer, default=10, nullable=False)

    front_route_only = Column(Boolean, default=True, nullable=False)
    max_off_route_distance_km = Column(Float, default=0.5, nullable=False)

    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        UniqueConstraint("config_name", "version", name="uq_scoring_config_version"),
    )

    def to_entity(self) -> ScoringConfig:
        return ScoringConfig(
            id=self.id,
            name=self.config_name,
            version=self.version,
            min_viable_score=self.min_viable_score,
            destination_proximity_weight=self.destination_proximity_weight,
            pickup_proximity_weight=self.pickup_proximity_weight,
            route_overlap_weight=self.route_overlap_weight,
            time_alignment_weight=self.time_alignment_weight,
            detour_penalty_weight=self.detour_penalty_weight,
            max_destination_distance_km=self.max_destination_distance_km,
            max_pickup_distance_km=self.max_pickup_distance_km,
            min_route_overlap_percent=self.min_route_overlap_percent,
            max_detour_percent=self.max_detour_percent,
            max_time_difference_minutes=self.max_time_difference_minutes,
            front_route_only=self.front_route_only,
            max_off_route_distance_km=self.max_off_route_distance_km,
        )


# A driver may hold only one pool that is not yet finished
_DRIVER_BUSY = "driver_id IS NOT NULL AND status NOT IN ('COMPLETED', 'CANCELLED')"


class PoolModel(Base):
    __tablename__ = "pools"

    id = Column(Integer, primary_key=True, autoincrement=True)
    creator_user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    vehicle_id = Column(Integer, ForeignKey("vehicles.id"), nullable=True)
    status = Column(
        Enum(PoolStatus), default=PoolStatus.WAITING_FOR_RIDERS, nullable=False
    )

    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    hexagon_region_id = Column(String(20), nullable=False)
    vehicle_type = Column(Enum(VehicleType), nullable=False)
    gender_restriction = Column(
        Enum(GenderRestriction), default=GenderRestriction.ANY, nullable=False
    )

    current_passengers = Column(Integer, default=0, nullable=False)
    max_passengers = Column(Integer, default=4, nullable=False)
    min_passengers_to_start = Column(Integer, default=2, nullable=False)

    # Ordered [[lat, lng], ...] stop points; set when the trip starts
    route_stops = Column(JSON, nullable=True)

    viability_score = Column(Float, nullable=True)
    score_breakdown = Column(JSON, nullable=True)
    scoring_config_id = Column(
        Integer, ForeignKey("scoring_configs.id"), nullable=False
    )
    fare_per_person = Column(Float, nullable=True)

    deleted_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        CheckConstraint("current_passengers >= 0", name="ck_pool_nonnegative"),
        CheckConstraint(
            "current_passengers <= max_passengers", name="ck_pool_capacity"
        ),
        CheckConstraint(
            "min_passengers_to_start >= 1 AND min_passengers_to_start <= max_passengers",
            name="ck_pool_min_capacity",
        ),
        CheckConstraint(
            "status NOT IN ('STARTED', 'COMPLETED') OR driver_id IS NOT NULL",
            name="ck_pool_driver_when_started",
        ),
        CheckConstraint(
            "started_at IS NULL OR started_at >= created_at", name="ck_pool_started"
        ),
        CheckConstraint(
            "completed_at IS NULL OR started_at IS NULL OR completed_at > started_at",
            name="ck_pool_completed",
        ),
        Index("idx_pools_region_status", "hexagon_region_id", "status"),
        Index("idx_pools_status", "status"),
        Index("idx_pools_driver", "driver_id"),
        Index(
            "uq_pools_active_driver",
            "driver_id",
            unique=True,
            postgresql_where=text(_DRIVER_BUSY),
            sqlite_where=text(_DRIVER_BUSY),
        ),
        Index("idx_pools_search", "vehicle_type", "status", "gender_restriction"),
    )

    @property
    def destination(self) -> Location:
        return Location(self.destination_lat, self.destination_lng)

    @property
    def has_route(self) -> bool:
        return bool(self.route_stops) and len(self.route_stops) >= 2

    @property
    def available_seats(self) -> int:
        return self.max_passengers - self.current_passengers


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    pool_id = Column(Integer, ForeignKey("pools.id"), nullable=True)

    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    pickup_cell = Column(String(20), nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)

    vehicle_type = Column(Enum(VehicleType), nullable=False)
    gender_preference = Column(
        Enum(GenderRestriction), default=GenderRestriction.ANY, nullable=False
    )

    status = Column(
        Enum(RideStatus), default=RideStatus.CREATING_POOL, nullable=False
    )
    fare = Column(Float, nullable=True)
    distance_km = Column(Float, nullable=True)
    is_on_front_route = Column(Boolean, default=True, nullable=False)
    route_deviation_km = Column(Float, nullable=True)
    cancelled_reason = Column(Text, nullable=True)
    idempotency_key = Column(String(64), unique=True, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        Index("idx_rides_user_status", "user_id", "status"),
        Index("idx_rides_pool", "pool_id"),
        Index("idx_rides_pickup_cell", "pickup_cell"),
    )

    @property
    def pickup(self) -> Location:
        return Location(self.pickup_lat, self.pickup_lng)

    @property
    def dropoff(self) -> Location:
        return Location(self.dropoff_lat, self.dropoff_lng)

    def to_entity(self) -> Ride:
        return Ride(
            id=self.id,
            user_id=self.user_id,
            pickup=self.pickup,
            dropoff=self.dropoff,
            vehicle_type=VehicleType(self.vehicle_type),
            gender_preference=GenderRestriction(self.gender_preference),
            status=RideStatus(self.status),
            is_on_front_route=bool(self.is_on_front_route),
            created_at=self.created_at,
        )


class PoolMembershipModel(Base):
    __tablename__ = "pool_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    pool_id = Column(Integer, ForeignKey("pools.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    join_type = Column(Enum(JoinType), default=JoinType.INITIAL, nullable=False)
    join_score = Column(Float, nullable=True)
    join_score_breakdown = Column(JSON, nullable=True)
    is_front_route_passenger = Column(Boolean, default=True, nullable=False)
    joined_at = Column(DateTime, default=utcnow, nullable=False)
    left_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint("pool_id", "user_id", name="uq_pool_member_user"),
        UniqueConstraint("ride_id", name="uq_pool_member_ride"),
        Index("idx_pool_members_pool_active", "pool_id", "left_at"),
    )


class NotificationModel(Base):
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)
    type = Column(String(50), nullable=False)
    # "metadata" is reserved on declarative classes
    payload = Column("metadata", JSON, nullable=True)
    is_read = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (Index("idx_notifications_user", "user_id", "is_read"),)
