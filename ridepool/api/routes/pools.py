"""
Pool endpoints
==============

GET  /api/v1/pools/search              -- open pools for a rider
GET  /api/v1/pools/dynamic             -- moving pools a rider can board
POST /api/v1/pools                     -- open a pool around a ride
GET  /api/v1/pools/{pool_id}           -- pool state, score and members
POST /api/v1/pools/{pool_id}/join      -- join with a ride
GET  /api/v1/pools/{pool_id}/evaluate  -- score a ride without joining
POST /api/v1/pools/{pool_id}/driver    -- claim the pool as a driver
POST /api/v1/pools/{pool_id}/start     -- start the trip
POST /api/v1/pools/{pool_id}/complete  -- complete the trip
POST /api/v1/pools/{pool_id}/cancel    -- cancel the pool
"""

from fastapi import APIRouter, Depends, Query, Request

from ridepool.api.dependencies import get_caller_id, get_coordinator, get_queries
from ridepool.api.middleware import limiter
from ridepool.api.schemas import (
    DriverAssignRequest,
    DynamicPoolMatchResponse,
    JoinResultResponse,
    PoolCancelRequest,
    PoolCreateRequest,
    PoolDetailResponse,
    PoolJoinRequest,
    PoolMatchResponse,
    PoolMemberResponse,
    PoolResponse,
)
from ridepool.config import settings
from ridepool.domain.entities import Location
from ridepool.domain.enums import GenderRestriction, VehicleType
from ridepool.services.matching import MatchingQueryService
from ridepool.services.membership import MembershipCoordinator

router = APIRouter(prefix="/pools", tags=["pools"])


@router.get(
    "/search",
    response_model=list[PoolMatchResponse],
    summary="Find open pools heading near a destination",
)
@limiter.limit(settings.rate_limit)
async def search_pools(
    request: Request,
    pickup_lat: float = Query(..., ge=-90, le=90),
    pickup_lng: float = Query(..., ge=-180, le=180),
    dropoff_lat: float = Query(..., ge=-90, le=90),
    dropoff_lng: float = Query(..., ge=-180, le=180),
    vehicle_type: VehicleType = VehicleType.CAR,
    gender_preference: GenderRestriction = GenderRestriction.ANY,
    destination_radius_km: float = Query(settings.destination_radius_km, gt=0),
    pickup_radius_km: float = Query(settings.pickup_radius_km, gt=0),
    queries: MatchingQueryService = Depends(get_queries),
):
    matches = await queries.find_pools_for_rider(
        Location(pickup_lat, pickup_lng),
        Location(dropoff_lat, dropoff_lng),
        vehicle_type,
        gender_preference,
        destination_radius_km,
        pickup_radius_km,
    )
    return [PoolMatchResponse.model_validate(m) for m in matches]


@router.get(
    "/dynamic",
    response_model=list[DynamicPoolMatchResponse],
    summary="Find started pools a rider can still board",
)
@limiter.limit(settings.rate_limit)
async def search_dynamic_pools(
    request: Request,
    pickup_lat: float = Query(..., ge=-90, le=90),
    pickup_lng: float = Query(..., ge=-180, le=180),
    dropoff_lat: float = Query(..., ge=-90, le=90),
    dropoff_lng: float = Query(..., ge=-180, le=180),
    vehicle_type: VehicleType = VehicleType.CAR,
    gender_preference: GenderRestriction = GenderRestriction.ANY,
    route_radius_m: float = Query(settings.dynamic_route_radius_m, gt=0),
    max_walk_m: float = Query(settings.dynamic_max_walk_m, gt=0),
    destination_radius_km: float = Query(settings.destination_radius_km, gt=0),
    queries: MatchingQueryService = Depends(get_queries),
):
    matches = await queries.find_dynamic_pools(
        Location(pickup_lat, pickup_lng),
        Location(dropoff_lat, dropoff_lng),
        vehicle_type,
        gender_preference,
        route_radius_m,
        max_walk_m,
        destination_radius_km,
    )
    return [DynamicPoolMatchResponse.model_validate(m) for m in matches]


@router.post("", status_code=201, response_model=PoolResponse, summary="Open a new pool")
@limiter.limit(settings.rate_limit)
async def create_pool(
    request: Request,
    body: PoolCreateRequest,
    caller_id: int = Depends(get_caller_id),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.create_pool(caller_id, body.ride_id, body.config_name)


@router.get(
    "/{pool_id}",
    response_model=PoolDetailResponse,
    summary="Pool state, score breakdown and active members",
)
@limiter.limit(settings.rate_limit)
async def get_pool(
    request: Request,
    pool_id: int,
    queries: MatchingQueryService = Depends(get_queries),
):
    state = await queries.get_pool_state(pool_id)
    detail = PoolDetailResponse.model_validate(state.pool)
    detail.members = [PoolMemberResponse.model_validate(m) for m, _ in state.members]
    return detail


@router.post(
    "/{pool_id}/join",
    response_model=JoinResultResponse,
    summary="Join a pool",
    description=(
        "A viability rejection is a normal 200 response with "
        "``accepted=false`` and the violated thresholds in "
        "``rejection_reason``.  If the rejected rider was the pool's "
        "second, the pool is cancelled (``pool_cancelled=true``)."
    ),
)
@limiter.limit(settings.rate_limit)
async def join_pool(
    request: Request,
    pool_id: int,
    body: PoolJoinRequest,
    caller_id: int = Depends(get_caller_id),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    result = await coordinator.join(caller_id, body.ride_id, pool_id)
    return JoinResultResponse.model_validate(result)


@router.get(
    "/{pool_id}/evaluate",
    response_model=JoinResultResponse,
    summary="Score a ride against a pool without joining",
)
@limiter.limit(settings.rate_limit)
async def evaluate_join(
    request: Request,
    pool_id: int,
    ride_id: int,
    caller_id: int = Depends(get_caller_id),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    result = await coordinator.evaluate_join(caller_id, ride_id, pool_id)
    return JoinResultResponse.model_validate(result)


@router.post("/{pool_id}/driver", response_model=PoolResponse, summary="Assign a driver")
@limiter.limit(settings.rate_limit)
async def assign_driver(
    request: Request,
    pool_id: int,
    body: DriverAssignRequest,
    caller_id: int = Depends(get_caller_id),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.assign_driver(
        caller_id, pool_id, body.driver_id, body.vehicle_id
    )


@router.post("/{pool_id}/start", response_model=PoolResponse, summary="Start the trip")
@limiter.limit(settings.rate_limit)
async def start_trip(
    request: Request,
    pool_id: int,
    caller_id: int = Depends(get_caller_id),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.start_trip(caller_id, pool_id)


@router.post(
    "/{pool_id}/complete", response_model=PoolResponse, summary="Complete the trip"
)
@limiter.limit(settings.rate_limit)
async def complete_trip(
    request: Request,
    pool_id: int,
    caller_id: int = Depends(get_caller_id),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.complete_trip(caller_id, pool_id)


@router.post("/{pool_id}/cancel", response_model=PoolResponse, summary="Cancel a pool")
@limiter.limit(settings.rate_limit)
async def cancel_pool(
    request: Request,
    pool_id: int,
    body: PoolCancelRequest,
    caller_id: int = Depends(get_caller_id),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.cancel_pool(caller_id, pool_id, body.reason)
