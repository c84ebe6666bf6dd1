"""
Trip endpoints
==============

POST  /api/v1/bookings/{booking_id}/trips          -- create the booking's legs
GET   /api/v1/bookings/{booking_id}/trips          -- list legs (leg order)
GET   /api/v1/bookings/{booking_id}/trips/active   -- first unfinished leg
GET   /api/v1/trips/{trip_id}                      -- read a trip
GET   /api/v1/trips/{trip_id}/next-leg             -- following leg, if any
PATCH /api/v1/trips/{trip_id}/start                -- not_started -> on_the_way
PATCH /api/v1/trips/{trip_id}/arriving-soon        -- on_the_way -> arriving_soon
PATCH /api/v1/trips/{trip_id}/arrive               -- -> arrived
PATCH /api/v1/trips/{trip_id}/complete             -- arrived -> completed
PATCH /api/v1/trips/{trip_id}/cancel               -- any open status -> canceled
POST  /api/v1/trips/{trip_id}/location             -- location ingest
GET   /api/v1/trips/{trip_id}/locations            -- location history

The caller is identified by the ``X-User-Id`` header.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from triptracker.api.dependencies import get_actor_id, get_trip_service
from triptracker.api.middleware import RATE_LIMIT, limiter
from triptracker.api.schemas import (
    LocationSampleResponse,
    LocationUpdateRequest,
    LocationUpdateResponse,
    TripCreateRequest,
    TripResponse,
)
from triptracker.domain.entities import Trip
from triptracker.services.trips import TripService, can_see_location

router = APIRouter(tags=["trips"])


def _view(trip: Trip, actor_id: str) -> TripResponse:
    return TripResponse.build(
        trip, redact_location=not can_see_location(trip, actor_id)
    )


# ── Booking-scoped ────────────────────────────────────────────────────


@router.post(
    "/bookings/{booking_id}/trips",
    status_code=201,
    response_model=list[TripResponse],
    summary="Create the trips (legs) for a booking",
    description=(
        "Legs are derived from the fulfillment type.  Only the booking's "
        "customer or provider may create them.  Calling this again "
        "for the same booking returns the existing legs unchanged."
    ),
)
@limiter.limit(RATE_LIMIT)
async def create_trips(
    request: Request,
    booking_id: str,
    body: Optional[TripCreateRequest] = None,
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    kind = body.fulfillment_type.value if body and body.fulfillment_type else None
    trips = await service.create_trips_for_booking(booking_id, kind, actor_id)
    return [_view(t, actor_id) for t in trips]


@router.get(
    "/bookings/{booking_id}/trips",
    response_model=list[TripResponse],
    summary="List the caller's trips for a booking",
)
@limiter.limit(RATE_LIMIT)
async def list_trips(
    request: Request,
    booking_id: str,
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    trips = await service.get_trips_for_booking(booking_id, actor_id)
    return [_view(t, actor_id) for t in trips]


@router.get(
    "/bookings/{booking_id}/trips/active",
    response_model=TripResponse,
    summary="Get the first unfinished leg of a booking",
)
@limiter.limit(RATE_LIMIT)
async def get_active_trip(
    request: Request,
    booking_id: str,
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    trip = await service.get_active_trip(booking_id, actor_id)
    if trip is None:
        raise HTTPException(status_code=404, detail="No active trip")
    return _view(trip, actor_id)


# ── Trip-scoped ───────────────────────────────────────────────────────


@router.get("/trips/{trip_id}", response_model=TripResponse, summary="Get a trip")
@limiter.limit(RATE_LIMIT)
async def get_trip(
    request: Request,
    trip_id: str,
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    return _view(await service.get_trip(trip_id, actor_id), actor_id)


@router.get(
    "/trips/{trip_id}/next-leg",
    response_model=TripResponse,
    summary="Get the leg following this one",
)
@limiter.limit(RATE_LIMIT)
async def get_next_leg(
    request: Request,
    trip_id: str,
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    trip = await service.get_next_leg(trip_id, actor_id)
    if trip is None:
        raise HTTPException(status_code=404, detail="No next leg")
    return _view(trip, actor_id)


@router.patch("/trips/{trip_id}/start", response_model=TripResponse, summary="Start a trip")
@limiter.limit(RATE_LIMIT)
async def start_trip(
    request: Request,
    trip_id: str,
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    return _view(await service.start_trip(trip_id, actor_id), actor_id)


@router.patch(
    "/trips/{trip_id}/arriving-soon",
    response_model=TripResponse,
    summary="Mark a trip as arriving soon",
)
@limiter.limit(RATE_LIMIT)
async def mark_arriving_soon(
    request: Request,
    trip_id: str,
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    return _view(await service.mark_arriving_soon(trip_id, actor_id), actor_id)


@router.patch("/trips/{trip_id}/arrive", response_model=TripResponse, summary="Mark a trip as arrived")
@limiter.limit(RATE_LIMIT)
async def mark_arrived(
    request: Request,
    trip_id: str,
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    return _view(await service.mark_arrived(trip_id, actor_id), actor_id)


@router.patch("/trips/{trip_id}/complete", response_model=TripResponse, summary="Complete a trip")
@limiter.limit(RATE_LIMIT)
async def complete_trip(
    request: Request,
    trip_id: str,
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    return _view(await service.complete_trip(trip_id, actor_id), actor_id)


@router.patch(
    "/trips/{trip_id}/cancel",
    response_model=TripResponse,
    summary="Cancel a trip",
    description="Only the mover may cancel here; operators use the admin route.",
)
@limiter.limit(RATE_LIMIT)
async def cancel_trip(
    request: Request,
    trip_id: str,
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    return _view(await service.cancel_trip(trip_id, actor_id), actor_id)


# Not rate limited: movers post every few seconds and throttle client-side.
@router.post(
    "/trips/{trip_id}/location",
    response_model=LocationUpdateResponse,
    summary="Submit the mover's current position",
)
async def update_location(
    trip_id: str,
    body: LocationUpdateRequest,
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    try:
        sample = body.to_sample()
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    result = await service.update_location(trip_id, actor_id, sample)
    return LocationUpdateResponse(
        trip=_view(result.trip, actor_id), applied=result.applied
    )


@router.get(
    "/trips/{trip_id}/locations",
    response_model=list[LocationSampleResponse],
    summary="Recent location history, newest first",
)
@limiter.limit(RATE_LIMIT)
async def location_history(
    request: Request,
    trip_id: str,
    limit: int = Query(100, ge=1, le=1000),
    actor_id: str = Depends(get_actor_id),
    service: TripService = Depends(get_trip_service),
):
    samples = await service.get_location_history(trip_id, actor_id, limit)
    return [LocationSampleResponse.build(s) for s in samples]
