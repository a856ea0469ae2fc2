"""
Ride endpoints
==============

POST /api/v1/rides                 -- request a ride (joins or creates a pool)
GET  /api/v1/rides/active          -- the caller's active ride
GET  /api/v1/rides/{ride_id}       -- ride status, fare and pool
POST /api/v1/rides/{ride_id}/leave -- leave the ride's pool
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from ridepool.api.dependencies import get_caller_id, get_coordinator, get_queries
from ridepool.api.middleware import limiter
from ridepool.api.schemas import (
    PoolResponse,
    RideCreateRequest,
    RideRequestResponse,
    RideResponse,
)
from ridepool.config import settings
from ridepool.domain.entities import Location
from ridepool.services.authorization import Authorizer
from ridepool.services.matching import MatchingQueryService
from ridepool.services.membership import MembershipCoordinator

router = APIRouter(prefix="/rides", tags=["rides"])


@router.post(
    "",
    status_code=201,
    response_model=RideRequestResponse,
    summary="Request a ride",
    description=(
        "Creates the request, then joins the best viable open pool for it "
        "or starts a new pool.  Retrying with the same idempotency key "
        "returns the original request."
    ),
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    caller_id: int = Depends(get_caller_id),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    outcome = await coordinator.request_ride(
        caller_id,
        Location(body.pickup_lat, body.pickup_lng),
        Location(body.dropoff_lat, body.dropoff_lng),
        body.vehicle_type,
        body.gender_preference,
        body.idempotency_key,
    )
    return RideRequestResponse.model_validate(outcome)


@router.get("/active", response_model=RideResponse, summary="Get the caller's active ride")
@limiter.limit(settings.rate_limit)
async def get_active_ride(
    request: Request,
    caller_id: int = Depends(get_caller_id),
    queries: MatchingQueryService = Depends(get_queries),
):
    ride = await queries.get_active_ride(caller_id)
    if ride is None:
        raise HTTPException(status_code=404, detail="No active ride")
    return ride


@router.get("/{ride_id}", response_model=RideResponse, summary="Get ride status and fare")
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: int,
    caller_id: int = Depends(get_caller_id),
    queries: MatchingQueryService = Depends(get_queries),
):
    ride = await queries.get_ride(ride_id)
    Authorizer().ensure_owner(caller_id, ride.user_id, "view this ride")
    return ride


@router.post(
    "/{ride_id}/leave",
    response_model=PoolResponse,
    summary="Leave the ride's pool",
    description=(
        "Cancels the ride and frees its seat.  The pool stays open for "
        "other riders even if it drops below its minimum."
    ),
)
@limiter.limit(settings.rate_limit)
async def leave_pool(
    request: Request,
    ride_id: int,
    caller_id: int = Depends(get_caller_id),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.leave(caller_id, ride_id)
