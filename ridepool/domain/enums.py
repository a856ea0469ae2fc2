"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    CREATING_POOL = "CREATING_POOL"
    IN_POOL = "IN_POOL"
    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# State machine: maps current status -> set of valid next statuses
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.CREATING_POOL: {
        RideStatus.IN_POOL,
        RideStatus.DRIVER_ASSIGNED,
        RideStatus.STARTED,  # dynamic join into a moving pool
        RideStatus.CANCELLED,
    },
    RideStatus.IN_POOL: {RideStatus.DRIVER_ASSIGNED, RideStatus.CANCELLED},
    RideStatus.DRIVER_ASSIGNED: {RideStatus.STARTED, RideStatus.CANCELLED},
    RideStatus.STARTED: {RideStatus.COMPLETED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

TERMINAL_RIDE_STATUSES = frozenset({RideStatus.COMPLETED, RideStatus.CANCELLED})


class PoolStatus(str, enum.Enum):
    WAITING_FOR_RIDERS = "WAITING_FOR_RIDERS"
    WAITING_FOR_DRIVER = "WAITING_FOR_DRIVER"
    READY_TO_START = "READY_TO_START"
    STARTED = "STARTED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Recompute never moves a pool out of these.
STICKY_POOL_STATUSES = frozenset(
    {PoolStatus.STARTED, PoolStatus.COMPLETED, PoolStatus.CANCELLED}
)
TERMINAL_POOL_STATUSES = frozenset({PoolStatus.COMPLETED, PoolStatus.CANCELLED})
OPEN_POOL_STATUSES = frozenset(
    {
        PoolStatus.WAITING_FOR_RIDERS,
        PoolStatus.WAITING_FOR_DRIVER,
        PoolStatus.READY_TO_START,
    }
)


class VehicleType(str, enum.Enum):
    CAR = "CAR"
    CNG = "CNG"


class Gender(str, enum.Enum):
    MALE = "MALE"
    FEMALE = "FEMALE"


class GenderRestriction(str, enum.Enum):
    FEMALE_ONLY = "FEMALE_ONLY"
    ANY = "ANY"


class JoinType(str, enum.Enum):
    INITIAL = "INITIAL"
    DYNAMIC = "DYNAMIC"


class NotificationType(str, enum.Enum):
    POOL_JOINED = "POOL_JOINED"
    POOL_CANCELLED = "POOL_CANCELLED"
    DRIVER_ASSIGNED = "DRIVER_ASSIGNED"
    TRIP_STARTED = "TRIP_STARTED"
    TRIP_COMPLETED = "TRIP_COMPLETED"


def genders_compatible(
    pool_restriction: GenderRestriction, preference: GenderRestriction
) -> bool:
    """``ANY`` on either side is compatible with anything."""
    return (
        pool_restriction == GenderRestriction.ANY
        or preference == GenderRestriction.ANY
        or pool_restriction == preference
    )
