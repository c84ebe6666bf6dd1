"""
FastAPI application factory.

* Registers routes for trips, admin and realtime WebSockets.
* Maps the domain error taxonomy onto HTTP status codes.
* Starts / stops the background retention worker via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from triptracker.api.middleware import limiter
from triptracker.api.routes import admin, realtime, trips
from triptracker.domain.errors import (
    BookingIncomplete,
    BookingNotFound,
    InvalidTransition,
    TransportFailure,
    TripClosed,
    TripError,
    TripNotFound,
    Unauthorized,
)
from triptracker.infrastructure.redis_client import close_redis
from triptracker.workers import cleanup as _cleanup

logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: dict[type[TripError], int] = {
    InvalidTransition: 409,
    TripClosed: 409,
    Unauthorized: 403,
    TripNotFound: 404,
    BookingNotFound: 404,
    BookingIncomplete: 422,
    TransportFailure: 503,
}


async def _trip_error_handler(request: Request, exc: TripError) -> JSONResponse:
    status = _STATUS_BY_ERROR.get(type(exc), 400)
    if status >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc)
    return JSONResponse(
        status_code=status, content={"detail": str(exc), "code": exc.code}
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the retention worker on startup; stop on shutdown."""
    await _cleanup.start_cleanup_loop()
    yield
    await _cleanup.stop_cleanup_loop()
    await close_redis()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Trip Tracker API",
        description=(
            "Live tracking of the travel legs tied to a marketplace "
            "booking: trip lifecycle, location ingest with ETA, and "
            "realtime updates for the other party."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(TripError, _trip_error_handler)

    # Routers
    app.include_router(trips.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")
    app.include_router(realtime.router)

    return app
