"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, model_validator

from ridepool.domain.entities import ScoringConfig
from ridepool.domain.enums import (
    GenderRestriction,
    JoinType,
    PoolStatus,
    RideStatus,
    VehicleType,
)


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    pickup_lat: float = Field(..., ge=-90, le=90)
    pickup_lng: float = Field(..., ge=-180, le=180)
    dropoff_lat: float = Field(..., ge=-90, le=90)
    dropoff_lng: float = Field(..., ge=-180, le=180)
    vehicle_type: VehicleType = VehicleType.CAR
    gender_preference: GenderRestriction = GenderRestriction.ANY
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class PoolCreateRequest(BaseModel):
    ride_id: int
    config_name: Optional[str] = Field(None, max_length=100)


class PoolJoinRequest(BaseModel):
    ride_id: int


class DriverAssignRequest(BaseModel):
    driver_id: int
    vehicle_id: int


class PoolCancelRequest(BaseModel):
    reason: str = Field("Cancelled by user", min_length=1, max_length=500)


class LocationUpdateRequest(BaseModel):
    vehicle_id: int
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = Field(None, ge=0, lt=360)
    speed_kmh: Optional[float] = Field(None, ge=0)
    pool_id: Optional[int] = None


class ScoringConfigCreateRequest(BaseModel):
    config_name: str = Field("default", min_length=1, max_length=100)
    min_viable_score: float = Field(60.0, ge=0, le=100)

    destination_proximity_weight: float = Field(30.0, ge=0)
    pickup_proximity_weight: float = Field(25.0, ge=0)
    route_overlap_weight: float = Field(20.0, ge=0)
    time_alignment_weight: float = Field(15.0, ge=0)
    detour_penalty_weight: float = Field(10.0, ge=0)

    max_destination_distance_km: float = Field(2.0, gt=0)
    max_pickup_distance_km: float = Field(5.0, gt=0)
    min_route_overlap_percent: float = Field(40.0, ge=0, lt=100)
    max_detour_percent: float = Field(30.0, gt=0)
    max_time_difference_minutes: int = Field(10, gt=0)

    front_route_only: bool = True
    max_off_route_distance_km: float = Field(0.5, ge=0)

    @model_validator(mode="after")
    def weights_sum_to_100(self) -> ScoringConfigCreateRequest:
        total = (
            self.destination_proximity_weight
            + self.pickup_proximity_weight
            + self.route_overlap_weight
            + self.time_alignment_weight
            + self.detour_penalty_weight
        )
        if abs(total - 100.0) > 1e-6:
            raise ValueError(f"Scoring weights must sum to 100 (got {total:g})")
        return self

    def to_entity(self) -> ScoringConfig:
        fields = self.model_dump()
        return ScoringConfig(name=fields.pop("config_name"), **fields)


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    user_id: int
    pool_id: Optional[int] = None
    pickup_lat: float
    pickup_lng: float
    dropoff_lat: float
    dropoff_lng: float
    vehicle_type: VehicleType
    gender_preference: GenderRestriction
    status: RideStatus
    fare: Optional[float] = None
    distance_km: Optional[float] = None
    is_on_front_route: bool
    route_deviation_km: Optional[float] = None
    cancelled_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class JoinResultResponse(BaseModel):
    pool_id: int
    ride_id: int
    accepted: bool
    score: float
    breakdown: dict = {}
    rejection_reason: Optional[str] = None
    join_type: Optional[JoinType] = None
    pool_cancelled: bool = False

    model_config = {"from_attributes": True}


class RideRequestResponse(BaseModel):
    ride: RideResponse
    pool_id: Optional[int] = None
    created_pool: bool = False
    join: Optional[JoinResultResponse] = None

    model_config = {"from_attributes": True}


class PoolMemberResponse(BaseModel):
    user_id: int
    ride_id: int
    join_type: JoinType
    join_score: Optional[float] = None
    is_front_route_passenger: bool
    joined_at: datetime

    model_config = {"from_attributes": True}


class PoolResponse(BaseModel):
    id: int
    status: PoolStatus
    creator_user_id: int
    driver_id: Optional[int] = None
    vehicle_id: Optional[int] = None
    destination_lat: float
    destination_lng: float
    vehicle_type: VehicleType
    gender_restriction: GenderRestriction
    current_passengers: int
    max_passengers: int
    min_passengers_to_start: int
    viability_score: Optional[float] = None
    score_breakdown: Optional[dict] = None
    fare_per_person: Optional[float] = None
    route_stops: Optional[list[list[float]]] = None
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PoolDetailResponse(PoolResponse):
    members: list[PoolMemberResponse] = []


class PoolMatchResponse(BaseModel):
    pool_id: int
    status: PoolStatus
    current_passengers: int
    max_passengers: int
    destination_distance_km: float
    pickup_distance_km: Optional[float] = None
    viability_score: Optional[float] = None

    model_config = {"from_attributes": True}


class DriverPoolMatchResponse(BaseModel):
    pool_id: int
    status: PoolStatus
    current_passengers: int
    max_passengers: int
    pickup_distance_km: float
    match_score: float
    priority_bonus: float
    is_priority_destination: bool
    is_on_route: bool
    distance_from_priority_km: Optional[float] = None
    viability_score: Optional[float] = None

    model_config = {"from_attributes": True}


class DynamicPoolMatchResponse(BaseModel):
    pool_id: int
    vehicle_id: int
    available_seats: int
    walking_distance_m: float
    vehicle_distance_m: float
    route_distance_m: Optional[float] = None
    destination_distance_km: float

    model_config = {"from_attributes": True}


class NearbyDriverResponse(BaseModel):
    driver_id: int
    vehicle_id: int
    vehicle_type: VehicleType
    distance_km: float
    latitude: float
    longitude: float
    recorded_at: datetime

    model_config = {"from_attributes": True}


class LocationResponse(BaseModel):
    id: int
    vehicle_id: int
    driver_id: int
    pool_id: Optional[int] = None
    lat: float
    lng: float
    cell: str
    heading: Optional[float] = None
    speed_kmh: Optional[float] = None
    is_available: bool
    recorded_at: datetime

    model_config = {"from_attributes": True}


class ScoringConfigResponse(ScoringConfigCreateRequest):
    id: int
    version: int
    is_active: bool

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: Optional[str] = None
