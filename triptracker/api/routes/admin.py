"""
Admin / observability endpoints
===============================

GET  /api/v1/admin/health                  -- simple health check
GET  /api/v1/admin/active-trips            -- moving trips grouped by H3 cell
POST /api/v1/admin/trips/{trip_id}/cancel  -- cancel a trip as the system
"""

from fastapi import APIRouter, Depends, Request

from triptracker.api.dependencies import get_trip_service
from triptracker.api.middleware import RATE_LIMIT, limiter
from triptracker.api.schemas import ActiveCellResponse, HealthResponse, TripResponse
from triptracker.services.trips import TripService

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/active-trips",
    response_model=list[ActiveCellResponse],
    summary="List moving trips grouped by the H3 cell of their last position",
)
@limiter.limit(RATE_LIMIT)
async def get_active_trips(
    request: Request,
    service: TripService = Depends(get_trip_service),
):
    cells = await service.active_trips_by_cell()
    return [
        ActiveCellResponse(
            h3_cell=cell,
            trips=[TripResponse.build(t) for t in trips],
        )
        for cell, trips in sorted(cells.items())
    ]


@router.post(
    "/trips/{trip_id}/cancel",
    response_model=TripResponse,
    summary="Cancel a trip on behalf of the system",
)
@limiter.limit(RATE_LIMIT)
async def cancel_trip(
    request: Request,
    trip_id: str,
    service: TripService = Depends(get_trip_service),
):
    return TripResponse.build(await service.cancel_trip(trip_id, actor_id=None))


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health():
    return HealthResponse()
