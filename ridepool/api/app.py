"""
FastAPI application factory.

* Registers routes for rides, pools, drivers and admin.
* Maps domain errors to HTTP status codes.
* Starts / stops the location-retention worker via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from ridepool.api.middleware import limiter
from ridepool.api.routes import admin, drivers, pools, rides
from ridepool.domain.exceptions import (
    CapacityError,
    ConcurrencyConflict,
    ConfigError,
    InvalidStateTransition,
    NotFound,
    PermissionDenied,
    RidePoolError,
    ValidationError,
)
from ridepool.workers import retention as _retention

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# (status, machine-readable code) per error class
_ERROR_STATUS: dict[type[RidePoolError], tuple[int, str]] = {
    ValidationError: (422, "validation"),
    NotFound: (404, "not_found"),
    PermissionDenied: (403, "forbidden"),
    CapacityError: (409, "capacity"),
    ConcurrencyConflict: (409, "conflict"),
    InvalidStateTransition: (409, "invalid_state"),
    ConfigError: (500, "config"),
}


async def _domain_error_handler(request: Request, exc: RidePoolError) -> JSONResponse:
    status, code = _ERROR_STATUS.get(type(exc), (400, "error"))
    if status >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=status, content={"detail": str(exc), "code": code})


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the retention worker on startup; stop on shutdown."""
    await _retention.start_retention_loop()
    yield
    await _retention.stop_retention_loop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Ride Pool Matching API",
        description=(
            "Matches ride requests into shared vehicle pools, scores pool "
            "viability, assigns drivers and tracks pools through their "
            "lifecycle under concurrent joins and location updates."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(RidePoolError, _domain_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(pools.router, prefix="/api/v1")
    app.include_router(drivers.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
