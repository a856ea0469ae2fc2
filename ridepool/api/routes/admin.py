"""
Admin / observability endpoints
===============================

GET  /api/v1/admin/active-pools    -- list all non-terminal pools
POST /api/v1/admin/scoring-configs -- publish a new scoring config version
GET  /api/v1/admin/health          -- simple health check
"""

from fastapi import APIRouter, Depends, Request

from ridepool.api.dependencies import get_caller_id, get_coordinator, get_queries
from ridepool.api.middleware import limiter
from ridepool.api.schemas import (
    HealthResponse,
    PoolResponse,
    ScoringConfigCreateRequest,
    ScoringConfigResponse,
)
from ridepool.config import settings
from ridepool.services.matching import MatchingQueryService
from ridepool.services.membership import MembershipCoordinator

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/active-pools",
    response_model=list[PoolResponse],
    summary="List all pools that are not completed or cancelled",
)
@limiter.limit(settings.rate_limit)
async def get_active_pools(
    request: Request,
    queries: MatchingQueryService = Depends(get_queries),
):
    return await queries.active_pools()


@router.post(
    "/scoring-configs",
    status_code=201,
    response_model=ScoringConfigResponse,
    summary="Publish a scoring config",
    description=(
        "Stores the config as the next version of its name and makes it the "
        "one new pools use.  Existing pools keep their version."
    ),
)
@limiter.limit(settings.rate_limit)
async def create_scoring_config(
    request: Request,
    body: ScoringConfigCreateRequest,
    caller_id: int = Depends(get_caller_id),
    coordinator: MembershipCoordinator = Depends(get_coordinator),
):
    return await coordinator.create_scoring_config(body.to_entity())


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
