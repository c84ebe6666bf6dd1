"""Pub/sub channel names and message schemas for realtime trip updates."""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel

from triptracker.domain.entities import Trip, utcnow

TRIP_CHANNEL_PREFIX = "trip"
BOOKING_CHANNEL_PREFIX = "booking-trips"


def trip_channel(trip_id: str) -> str:
    return f"{TRIP_CHANNEL_PREFIX}:{trip_id}"


def booking_channel(booking_id: str) -> str:
    return f"{BOOKING_CHANNEL_PREFIX}:{booking_id}"


class TripSnapshot(BaseModel):
    """Flat, JSON-friendly view of a trip row."""

    id: str
    booking_id: str
    leg_number: int
    total_legs: int
    mover_id: str
    mover_type: str
    trip_type: str
    service_type: str
    origin_address: Optional[str] = None
    origin_lat: Optional[float] = None
    origin_lng: Optional[float] = None
    destination_address: str
    destination_lat: float
    destination_lng: float
    current_lat: Optional[float] = None
    current_lng: Optional[float] = None
    current_heading: Optional[float] = None
    current_speed: Optional[float] = None
    last_location_update_at: Optional[datetime] = None
    status: str
    started_at: Optional[datetime] = None
    arriving_soon_at: Optional[datetime] = None
    arrived_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    estimated_arrival_time: Optional[datetime] = None
    estimated_distance_meters: Optional[int] = None
    estimated_duration_seconds: Optional[int] = None
    live_location_visible: bool = True
    viewer_id: Optional[str] = None

    @classmethod
    def from_trip(cls, trip: Trip, redact_location: bool = False, **extra):
        located = not redact_location
        return cls(
            id=trip.id,
            booking_id=trip.booking_id,
            leg_number=trip.leg_number,
            total_legs=trip.total_legs,
            mover_id=trip.mover_id,
            mover_type=trip.mover_type.value,
            trip_type=trip.trip_type.value,
            service_type=trip.service_type.value,
            origin_address=trip.origin_address,
            origin_lat=trip.origin.latitude if trip.origin else None,
            origin_lng=trip.origin.longitude if trip.origin else None,
            destination_address=trip.destination_address,
            destination_lat=trip.destination.latitude,
            destination_lng=trip.destination.longitude,
            current_lat=trip.current_latitude if located else None,
            current_lng=trip.current_longitude if located else None,
            current_heading=trip.current_heading if located else None,
            current_speed=trip.current_speed if located else None,
            last_location_update_at=trip.last_location_update_at,
            status=trip.status.value,
            started_at=trip.started_at,
            arriving_soon_at=trip.arriving_soon_at,
            arrived_at=trip.arrived_at,
            completed_at=trip.completed_at,
            canceled_at=trip.canceled_at,
            estimated_arrival_time=trip.estimated_arrival_time,
            estimated_distance_meters=trip.estimated_distance_meters,
            estimated_duration_seconds=trip.estimated_duration_seconds,
            live_location_visible=trip.live_location_visible,
            viewer_id=trip.viewer_id,
            **extra,
        )

    def redacted(self) -> "TripSnapshot":
        """Copy with the live position cleared."""
        return self.model_copy(
            update={
                "current_lat": None,
                "current_lng": None,
                "current_heading": None,
                "current_speed": None,
            }
        )


class TripEvent(BaseModel):
    """A trip row change delivered to subscribers."""

    event: Literal["INSERT", "UPDATE"]
    trip: TripSnapshot
    timestamp: datetime

    @classmethod
    def for_trip(cls, trip: Trip, event: str = "UPDATE") -> "TripEvent":
        return cls(
            event=event,
            trip=TripSnapshot.from_trip(
                trip, redact_location=not trip.live_location_visible
            ),
            timestamp=utcnow(),
        )
