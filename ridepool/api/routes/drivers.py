"""
Driver endpoints
================

POST /api/v1/drivers/location -- report the vehicle's position
GET  /api/v1/drivers/nearest  -- available drivers near a pickup
GET  /api/v1/drivers/pools    -- formed pools the caller could pick up
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from ridepool.api.dependencies import get_caller_id, get_queries, get_tracker
from ridepool.api.middleware import limiter
from ridepool.api.schemas import (
    DriverPoolMatchResponse,
    LocationResponse,
    LocationUpdateRequest,
    NearbyDriverResponse,
)
from ridepool.config import settings
from ridepool.domain.entities import Location
from ridepool.domain.enums import VehicleType
from ridepool.services.matching import MatchingQueryService
from ridepool.services.tracking import LocationTracker

router = APIRouter(prefix="/drivers", tags=["drivers"])


@router.post(
    "/location",
    status_code=201,
    response_model=LocationResponse,
    summary="Record the vehicle's current location",
    description=(
        "Supersedes the vehicle's previous sample.  A sample tied to a pool "
        "is not offered for dispatch."
    ),
)
@limiter.limit(settings.rate_limit)
async def record_location(
    request: Request,
    body: LocationUpdateRequest,
    caller_id: int = Depends(get_caller_id),
    tracker: LocationTracker = Depends(get_tracker),
):
    return await tracker.record_location(
        caller_id,
        body.vehicle_id,
        caller_id,
        Location(body.lat, body.lng),
        heading=body.heading,
        speed_kmh=body.speed_kmh,
        pool_id=body.pool_id,
    )


@router.get(
    "/nearest",
    response_model=list[NearbyDriverResponse],
    summary="Nearest available drivers to a pickup point",
)
@limiter.limit(settings.rate_limit)
async def nearest_drivers(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    vehicle_type: Optional[VehicleType] = None,
    max_distance_km: float = Query(settings.driver_search_radius_km, gt=0),
    limit: int = Query(settings.nearest_drivers_limit, ge=1, le=100),
    queries: MatchingQueryService = Depends(get_queries),
):
    drivers = await queries.find_nearest_available_drivers(
        Location(lat, lng), vehicle_type, max_distance_km, limit
    )
    return [NearbyDriverResponse.model_validate(d) for d in drivers]


@router.get(
    "/pools",
    response_model=list[DriverPoolMatchResponse],
    summary="Pools awaiting a driver near the caller",
)
@limiter.limit(settings.rate_limit)
async def pools_for_driver(
    request: Request,
    lat: float = Query(..., ge=-90, le=90),
    lng: float = Query(..., ge=-180, le=180),
    max_pickup_distance_km: float = Query(settings.driver_max_pickup_km, gt=0),
    vehicle_type: Optional[VehicleType] = None,
    caller_id: int = Depends(get_caller_id),
    queries: MatchingQueryService = Depends(get_queries),
):
    matches = await queries.find_pools_for_driver(
        caller_id, Location(lat, lng), max_pickup_distance_km, vehicle_type
    )
    return [DriverPoolMatchResponse.model_validate(m) for m in matches]
