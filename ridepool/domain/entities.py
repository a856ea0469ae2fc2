"""
Domain entities with business logic.

Patterns used
-------------
- **Value Object** ``Location``: validated on construction, so malformed
  coordinates never reach the store.
- **State Pattern** on ``Ride``: enforces valid request lifecycle
  transitions (CREATING_POOL -> IN_POOL -> DRIVER_ASSIGNED -> STARTED ->
  COMPLETED | CANCELLED).
- ``ScoringConfig`` is an immutable, versioned weight/threshold set.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from .distance import haversine_km
from .enums import RIDE_TRANSITIONS, GenderRestriction, RideStatus, VehicleType
from .exceptions import ConfigError, InvalidStateTransition, ValidationError


def utcnow() -> datetime:
    """Naive UTC timestamp; every stored datetime uses this convention."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ensure_ride_transition(current: RideStatus, new: RideStatus) -> None:
    allowed = RIDE_TRANSITIONS.get(RideStatus(current), set())
    if new not in allowed:
        raise InvalidStateTransition(
            f"Cannot transition ride from {RideStatus(current).value} "
            f"to {new.value}"
        )


# ── Value Object ──────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float

    def __post_init__(self) -> None:
        for value in (self.latitude, self.longitude):
            if not isinstance(value, (int, float)) or not math.isfinite(value):
                raise ValidationError(f"Invalid coordinate: {value!r}")
        if not -90 <= self.latitude <= 90:
            raise ValidationError(f"Latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValidationError(f"Longitude out of range: {self.longitude}")

    def as_tuple(self) -> tuple[float, float]:
        return (self.latitude, self.longitude)

    def distance_km(self, other: Location) -> float:
        return haversine_km(
            self.latitude, self.longitude, other.latitude, other.longitude
        )


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride:
    """The scoring-relevant view of a ride request."""

    id: Optional[int] = None
    user_id: int = 0
    pickup: Location = field(default_factory=lambda: Location(0, 0))
    dropoff: Location = field(default_factory=lambda: Location(0, 0))
    vehicle_type: VehicleType = VehicleType.CAR
    gender_preference: GenderRestriction = GenderRestriction.ANY
    status: RideStatus = RideStatus.CREATING_POOL
    is_on_front_route: bool = True
    created_at: datetime = field(default_factory=utcnow)

    def transition_to(self, new_status: RideStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        ensure_ride_transition(self.status, new_status)
        self.status = new_status


@dataclass(frozen=True)
class ScoringConfig:
    name: str = "default"
    version: int = 1
    min_viable_score: float = 60.0

    # Weights (must sum to 100)
    destination_proximity_weight: float = 30.0
    pickup_proximity_weight: float = 25.0
    route_overlap_weight: float = 20.0
    time_alignment_weight: float = 15.0
    detour_penalty_weight: float = 10.0

    # Thresholds
    max_destination_distance_km: float = 2.0
    max_pickup_distance_km: float = 5.0
    min_route_overlap_percent: float = 40.0
    max_detour_percent: float = 30.0
    max_time_difference_minutes: int = 10

    # Front-route constraint
    front_route_only: bool = True
    max_off_route_distance_km: float = 0.5

    id: Optional[int] = None

    @property
    def total_weight(self) -> float:
        return (
            self.destination_proximity_weight
            + self.pickup_proximity_weight
            + self.route_overlap_weight
            + self.time_alignment_weight
            + self.detour_penalty_weight
        )

    def validate(self) -> None:
        if abs(self.total_weight - 100.0) > 1e-6:
            raise ConfigError(
                f"Scoring weights must sum to 100 (got {self.total_weight:g})"
            )
        weights = (
            self.destination_proximity_weight,
            self.pickup_proximity_weight,
            self.route_overlap_weight,
            self.time_alignment_weight,
            self.detour_penalty_weight,
        )
        if any(w < 0 for w in weights):
            raise ConfigError("Scoring weights must be non-negative")
        if min(
            self.max_destination_distance_km,
            self.max_pickup_distance_km,
            self.max_detour_percent,
            self.max_time_difference_minutes,
        ) <= 0:
            raise ConfigError("Distance, detour and time thresholds must be positive")
        if not 0 <= self.min_route_overlap_percent < 100:
            raise ConfigError("min_route_overlap_percent must be in [0, 100)")
        if not 0 <= self.min_viable_score <= 100:
            raise ConfigError("min_viable_score must be in [0, 100]")
        if self.max_off_route_distance_km < 0:
            raise ConfigError("max_off_route_distance_km must be non-negative")
