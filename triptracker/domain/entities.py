"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Trip``: enforces the lifecycle
  (not_started -> on_the_way -> arriving_soon -> arrived -> completed,
  or -> canceled from any non-terminal status).
- Transitions never mutate in place: each returns a new ``Trip`` so the
  caller can diff old vs. new and write the change conditionally.
- ``Trip.apply_location`` is the location-ingest gate (mover check,
  terminal check, last-writer-wins by sample timestamp).
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Any, Optional

import h3

from .distance import ensure_utc, estimate_travel, haversine_m
from .enums import (
    MOVING_STATUSES,
    STATUS_TIMESTAMPS,
    TERMINAL_STATUSES,
    TRIP_TRANSITIONS,
    MoverType,
    ServiceType,
    TripStatus,
    TripType,
    UpdateSource,
)
from .errors import InvalidTransition, StaleUpdate, TripClosed, Unauthorized


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def transition_fields(new_status: TripStatus, at: datetime) -> dict[str, Any]:
    """Column changes written when a trip enters *new_status*."""
    fields: dict[str, Any] = {"status": new_status, "updated_at": at}
    stamp = STATUS_TIMESTAMPS.get(new_status)
    if stamp:
        fields[stamp] = at
    if new_status in TERMINAL_STATUSES:
        fields["live_location_visible"] = False
    return fields


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class LocationSample:
    latitude: float
    longitude: float
    heading: Optional[float] = None
    speed: Optional[float] = None
    accuracy: Optional[float] = None
    altitude: Optional[float] = None
    recorded_at: datetime = field(default_factory=utcnow)
    source: UpdateSource = UpdateSource.APP

    def __post_init__(self):
        if not -90 <= self.latitude <= 90:
            raise ValueError(f"latitude out of range: {self.latitude}")
        if not -180 <= self.longitude <= 180:
            raise ValueError(f"longitude out of range: {self.longitude}")
        object.__setattr__(self, "recorded_at", ensure_utc(self.recorded_at))

    def distance_to(self, other: "LocationSample") -> float:
        return haversine_m(
            self.latitude, self.longitude, other.latitude, other.longitude
        )


# ── Entities ──────────────────────────────────────────────────────────


@dataclass(frozen=True)
class Trip:
    id: Optional[str] = None
    booking_id: str = ""
    leg_number: int = 1
    total_legs: int = 1

    mover_id: str = ""
    mover_type: MoverType = MoverType.PROVIDER
    trip_type: TripType = TripType.ON_SITE_SERVICE
    service_type: ServiceType = ServiceType.SERVICE

    origin_address: Optional[str] = None
    origin: Optional[Location] = None
    destination_address: str = ""
    destination: Location = field(default_factory=lambda: Location(0, 0))

    current_latitude: Optional[float] = None
    current_longitude: Optional[float] = None
    current_heading: Optional[float] = None
    current_speed: Optional[float] = None
    current_h3_cell: Optional[str] = None
    last_location_update_at: Optional[datetime] = None

    status: TripStatus = TripStatus.NOT_STARTED
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
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    # ── participants ──────────────────────────────────────────────

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def is_moving(self) -> bool:
        return self.status in MOVING_STATUSES

    def is_mover(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.mover_id == user_id

    def is_viewer(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.viewer_id == user_id

    def is_participant(self, user_id: Optional[str]) -> bool:
        return self.is_mover(user_id) or self.is_viewer(user_id)

    def require_mover(self, user_id: Optional[str]) -> None:
        if not self.is_mover(user_id):
            raise Unauthorized(f"User {user_id} is not the mover for trip {self.id}")

    # ── status transitions ────────────────────────────────────────

    def transition_to(self, new_status: TripStatus, at: datetime) -> "Trip":
        """Return a copy in *new_status* if the transition is legal, else raise."""
        allowed = TRIP_TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise InvalidTransition(
                f"Cannot transition trip {self.id} from {self.status.value} "
                f"to {new_status.value}"
            )
        return replace(self, **transition_fields(new_status, at))

    def start(self, at: datetime) -> "Trip":
        return self.transition_to(TripStatus.ON_THE_WAY, at)

    def mark_arriving_soon(self, at: datetime) -> "Trip":
        return self.transition_to(TripStatus.ARRIVING_SOON, at)

    def mark_arrived(self, at: datetime) -> "Trip":
        return self.transition_to(TripStatus.ARRIVED, at)

    def complete(self, at: datetime) -> "Trip":
        return self.transition_to(TripStatus.COMPLETED, at)

    def cancel(self, at: datetime) -> "Trip":
        if self.is_terminal:
            raise InvalidTransition(
                f"Trip {self.id} is already {self.status.value}"
            )
        return self.transition_to(TripStatus.CANCELED, at)

    # ── location ingest ───────────────────────────────────────────

    def distance_to_destination(self, latitude: float, longitude: float) -> float:
        return haversine_m(
            latitude,
            longitude,
            self.destination.latitude,
            self.destination.longitude,
        )

    def apply_location(
        self,
        sample: LocationSample,
        actor_id: Optional[str],
        *,
        arriving_soon_radius_m: float = 500.0,
        default_speed_mps: float = 8.33,
        h3_resolution: int = 7,
        now: Optional[datetime] = None,
    ) -> "Trip":
        """Return a copy positioned at *sample*.

        Raises ``Unauthorized`` for non-movers, ``TripClosed`` for
        terminal trips and ``StaleUpdate`` when *sample* is not newer
        than the last applied update.
        """
        self.require_mover(actor_id)
        if self.is_terminal:
            raise TripClosed(f"Trip {self.id} is {self.status.value}")
        if (
            self.last_location_update_at is not None
            and sample.recorded_at <= ensure_utc(self.last_location_update_at)
        ):
            raise StaleUpdate(
                f"Sample at {sample.recorded_at.isoformat()} is older than "
                f"{self.last_location_update_at.isoformat()}"
            )

        now = now or utcnow()
        remaining = self.distance_to_destination(sample.latitude, sample.longitude)
        duration, arrival = estimate_travel(
            remaining, sample.speed, default_speed_mps, now
        )
        moved = replace(
            self,
            current_latitude=sample.latitude,
            current_longitude=sample.longitude,
            current_heading=sample.heading,
            current_speed=sample.speed,
            current_h3_cell=h3.latlng_to_cell(
                sample.latitude, sample.longitude, h3_resolution
            ),
            last_location_update_at=sample.recorded_at,
            estimated_distance_meters=int(round(remaining)),
            estimated_duration_seconds=duration,
            estimated_arrival_time=arrival,
            updated_at=now,
        )
        if self.status == TripStatus.ON_THE_WAY and remaining < arriving_soon_radius_m:
            moved = moved.mark_arriving_soon(now)
        return moved

    def location_fields(self) -> dict[str, Any]:
        """Columns written by a location update."""
        return {
            "current_latitude": self.current_latitude,
            "current_longitude": self.current_longitude,
            "current_heading": self.current_heading,
            "current_speed": self.current_speed,
            "current_h3_cell": self.current_h3_cell,
            "last_location_update_at": self.last_location_update_at,
            "estimated_distance_meters": self.estimated_distance_meters,
            "estimated_duration_seconds": self.estimated_duration_seconds,
            "estimated_arrival_time": self.estimated_arrival_time,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class Booking:
    """The slice of a booking that trip planning needs."""

    id: str
    customer_id: str
    provider_id: str
    service_type: ServiceType = ServiceType.SERVICE
    fulfillment_type: Optional[str] = None
    listing_address: Optional[str] = None
    listing_location: Optional[Location] = None
    service_address: Optional[str] = None
    service_location: Optional[Location] = None
