"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  ``TripRepository`` speaks in domain
``Trip`` entities; ORM rows never leave this module.

Write-time guards
-----------------
``write_trip_update`` issues a single conditional ``UPDATE ... WHERE``
so the status (and, for location samples, the last update timestamp)
is re-checked atomically by the database at write time.  A guard miss
returns ``None`` and the caller decides what it means.
"""

from __future__ import annotations

import functools
import logging
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from .models import BookingModel, TripLocationUpdateModel, TripModel
from triptracker.domain.distance import ensure_utc
from triptracker.domain.entities import Booking, Location, LocationSample, Trip
from triptracker.domain.enums import (
    MOVING_STATUSES,
    TERMINAL_STATUSES,
    ServiceType,
    TripStatus,
    UpdateSource,
)
from triptracker.domain.errors import BookingNotFound, TransportFailure, TripNotFound
from triptracker.domain.fulfillment import plan_legs

logger = logging.getLogger(__name__)

# Entity attribute -> column name, where they differ
_COLUMN_NAMES = {
    "current_latitude": "current_lat",
    "current_longitude": "current_lng",
}

_DATETIME_FIELDS = (
    "last_location_update_at",
    "started_at",
    "arriving_soon_at",
    "arrived_at",
    "completed_at",
    "canceled_at",
    "estimated_arrival_time",
    "created_at",
    "updated_at",
)


def _translate_errors(fn):
    """Re-raise connectivity failures as ``TransportFailure``."""

    @functools.wraps(fn)
    async def wrapper(*args, **kwargs):
        try:
            return await fn(*args, **kwargs)
        except (OperationalError, InterfaceError, OSError) as exc:
            logger.warning("Trip store unreachable: %s", exc)
            raise TransportFailure("Trip store unreachable") from exc

    return wrapper


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    return ensure_utc(value) if value is not None else None


def _to_trip(row: TripModel) -> Trip:
    origin = (
        Location(row.origin_lat, row.origin_lng)
        if row.origin_lat is not None and row.origin_lng is not None
        else None
    )
    values: dict[str, Any] = {
        name: _utc(getattr(row, name)) for name in _DATETIME_FIELDS
    }
    return Trip(
        id=row.id,
        booking_id=row.booking_id,
        leg_number=row.leg_number,
        total_legs=row.total_legs,
        mover_id=row.mover_id,
        mover_type=row.mover_type,
        trip_type=row.trip_type,
        service_type=row.service_type,
        origin_address=row.origin_address,
        origin=origin,
        destination_address=row.destination_address,
        destination=Location(row.destination_lat, row.destination_lng),
        current_latitude=row.current_lat,
        current_longitude=row.current_lng,
        current_heading=row.current_heading,
        current_speed=row.current_speed,
        current_h3_cell=row.current_h3_cell,
        status=TripStatus(row.status),
        estimated_distance_meters=row.estimated_distance_meters,
        estimated_duration_seconds=row.estimated_duration_seconds,
        live_location_visible=bool(row.live_location_visible),
        viewer_id=row.viewer_id,
        notes=row.notes,
        **values,
    )


def _to_booking(row: BookingModel) -> Booking:
    listing = (
        Location(row.listing_lat, row.listing_lng)
        if row.listing_lat is not None and row.listing_lng is not None
        else None
    )
    service = (
        Location(row.service_lat, row.service_lng)
        if row.service_lat is not None and row.service_lng is not None
        else None
    )
    return Booking(
        id=row.id,
        customer_id=row.customer_id,
        provider_id=row.provider_id,
        service_type=ServiceType(row.service_type),
        fulfillment_type=row.fulfillment_type,
        listing_address=row.listing_address,
        listing_location=listing,
        service_address=row.service_address,
        service_location=service,
    )


def _to_sample(row: TripLocationUpdateModel) -> LocationSample:
    return LocationSample(
        latitude=row.latitude,
        longitude=row.longitude,
        heading=row.heading,
        speed=row.speed,
        accuracy=row.accuracy,
        altitude=row.altitude,
        recorded_at=row.recorded_at,
        source=UpdateSource(row.update_source),
    )


class TripRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # ── reads ─────────────────────────────────────────────────────

    @_translate_errors
    async def read_trip(self, trip_id: str) -> Trip:
        row = await self.session.get(TripModel, trip_id, populate_existing=True)
        if row is None:
            raise TripNotFound(f"Trip {trip_id} not found")
        return _to_trip(row)

    @_translate_errors
    async def read_booking(self, booking_id: str) -> Booking:
        row = await self.session.get(BookingModel, booking_id)
        if row is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return _to_booking(row)

    @_translate_errors
    async def list_trips(self, booking_id: str) -> list[Trip]:
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.booking_id == booking_id)
            .order_by(TripModel.leg_number)
        )
        return [_to_trip(r) for r in result.scalars().all()]

    @_translate_errors
    async def active_trip(self, booking_id: str) -> Optional[Trip]:
        """Lowest-numbered leg that is not completed or canceled."""
        result = await self.session.execute(
            select(TripModel)
            .where(
                TripModel.booking_id == booking_id,
                TripModel.status.not_in(list(TERMINAL_STATUSES)),
            )
            .order_by(TripModel.leg_number)
            .limit(1)
        )
        row = result.scalar_one_or_none()
        return _to_trip(row) if row else None

    @_translate_errors
    async def next_leg(self, booking_id: str, leg_number: int) -> Optional[Trip]:
        result = await self.session.execute(
            select(TripModel).where(
                TripModel.booking_id == booking_id,
                TripModel.leg_number == leg_number + 1,
            )
        )
        row = result.scalar_one_or_none()
        return _to_trip(row) if row else None

    @_translate_errors
    async def active_trips(self) -> list[Trip]:
        result = await self.session.execute(
            select(TripModel)
            .where(TripModel.status.in_(list(MOVING_STATUSES)))
            .order_by(TripModel.booking_id, TripModel.leg_number)
        )
        return [_to_trip(r) for r in result.scalars().all()]

    # ── writes ────────────────────────────────────────────────────

    @_translate_errors
    async def create_trips(
        self, booking_id: str, fulfillment_type: Optional[str] = None
    ) -> list[Trip]:
        """Create the legs for *booking_id*; existing legs are returned as-is."""
        booking_row = await self.session.get(BookingModel, booking_id)
        if booking_row is None:
            raise BookingNotFound(f"Booking {booking_id} not found")

        existing = await self.list_trips(booking_id)
        if existing:
            return existing

        booking = _to_booking(booking_row)
        rows = []
        for plan in plan_legs(booking, fulfillment_type):
            row = TripModel(
                booking_id=booking_id,
                leg_number=plan.leg_number,
                total_legs=plan.total_legs,
                mover_id=plan.mover_id,
                mover_type=plan.mover_type,
                trip_type=plan.trip_type,
                service_type=plan.service_type,
                origin_address=plan.origin_address,
                origin_lat=plan.origin.latitude if plan.origin else None,
                origin_lng=plan.origin.longitude if plan.origin else None,
                destination_address=plan.destination_address,
                destination_lat=plan.destination.latitude,
                destination_lng=plan.destination.longitude,
                viewer_id=plan.viewer_id,
                status=TripStatus.NOT_STARTED,
                live_location_visible=True,
            )
            self.session.add(row)
            rows.append(row)
        await self.session.flush()
        for row in rows:
            await self.session.refresh(row)
        return [_to_trip(r) for r in rows]

    @_translate_errors
    async def write_trip_update(
        self,
        trip_id: str,
        fields: dict[str, Any],
        *,
        expected_status: Optional[TripStatus] = None,
        reject_terminal: bool = False,
        location_before: Optional[datetime] = None,
    ) -> Optional[Trip]:
        """Atomically apply *fields* if every guard still holds.

        * ``expected_status``  -- row must still be in this status
        * ``reject_terminal``  -- row must not be completed / canceled
        * ``location_before``  -- row's last location update must be
          NULL or strictly earlier than this timestamp

        Returns the updated trip, or ``None`` if a guard failed.
        """
        stmt = update(TripModel).where(TripModel.id == trip_id)
        if expected_status is not None:
            stmt = stmt.where(TripModel.status == expected_status)
        if reject_terminal:
            stmt = stmt.where(TripModel.status.not_in(list(TERMINAL_STATUSES)))
        if location_before is not None:
            stmt = stmt.where(
                or_(
                    TripModel.last_location_update_at.is_(None),
                    TripModel.last_location_update_at < location_before,
                )
            )

        values = {_COLUMN_NAMES.get(k, k): v for k, v in fields.items()}
        result = await self.session.execute(
            stmt.values(**values).execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            return None
        return await self.read_trip(trip_id)

    @_translate_errors
    async def add_location_update(
        self, trip_id: str, sample: LocationSample
    ) -> None:
        self.session.add(
            TripLocationUpdateModel(
                trip_id=trip_id,
                latitude=sample.latitude,
                longitude=sample.longitude,
                heading=sample.heading,
                speed=sample.speed,
                accuracy=sample.accuracy,
                altitude=sample.altitude,
                update_source=sample.source,
                recorded_at=sample.recorded_at,
            )
        )
        await self.session.flush()

    @_translate_errors
    async def location_history(
        self, trip_id: str, limit: int = 100
    ) -> list[LocationSample]:
        """Most recent samples first."""
        result = await self.session.execute(
            select(TripLocationUpdateModel)
            .where(TripLocationUpdateModel.trip_id == trip_id)
            .order_by(TripLocationUpdateModel.recorded_at.desc())
            .limit(limit)
        )
        return [_to_sample(r) for r in result.scalars().all()]

    @_translate_errors
    async def purge_location_history(self, older_than: datetime) -> int:
        """Delete history of trips that ended (completed / canceled) before *older_than*."""
        ended_at = func.coalesce(TripModel.completed_at, TripModel.canceled_at)
        finished = select(TripModel.id).where(
            TripModel.status.in_(list(TERMINAL_STATUSES)),
            ended_at < older_than,
        )
        result = await self.session.execute(
            delete(TripLocationUpdateModel)
            .where(TripLocationUpdateModel.trip_id.in_(finished))
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    @_translate_errors
    async def commit(self) -> None:
        await self.session.commit()
