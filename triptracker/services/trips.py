"""
Trip lifecycle service
======================

Orchestrates every trip operation the API, workers and tests use:

    read trip -> check actor -> compute transition on the entity
              -> conditional write -> commit -> publish

The entity decides whether a change is legal; the store re-checks the
status atomically when it writes, so a writer holding a stale view can
never revive a completed or canceled trip.  Store errors propagate
unchanged; publish failures after a committed write are logged and do
not undo the write (viewers re-read on reconnect).
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, Protocol

from triptracker.config import Settings, settings as default_settings
from triptracker.domain.entities import (
    Booking,
    LocationSample,
    Trip,
    transition_fields,
    utcnow,
)
from triptracker.domain.enums import TripStatus
from triptracker.domain.errors import (
    InvalidTransition,
    StaleUpdate,
    TransportFailure,
    Unauthorized,
)

logger = logging.getLogger(__name__)

# Conditional location writes retried when a concurrent status change
# invalidates the status guard
_MAX_WRITE_ATTEMPTS = 3


class TripStore(Protocol):
    async def create_trips(self, booking_id: str, fulfillment_type: Optional[str] = None) -> list[Trip]: ...
    async def read_booking(self, booking_id: str) -> Booking: ...
    async def read_trip(self, trip_id: str) -> Trip: ...
    async def list_trips(self, booking_id: str) -> list[Trip]: ...
    async def active_trip(self, booking_id: str) -> Optional[Trip]: ...
    async def next_leg(self, booking_id: str, leg_number: int) -> Optional[Trip]: ...
    async def active_trips(self) -> list[Trip]: ...
    async def write_trip_update(self, trip_id: str, fields: dict[str, Any], **guards) -> Optional[Trip]: ...
    async def add_location_update(self, trip_id: str, sample: LocationSample) -> None: ...
    async def location_history(self, trip_id: str, limit: int = 100) -> list[LocationSample]: ...
    async def purge_location_history(self, older_than: datetime) -> int: ...
    async def commit(self) -> None: ...


class TripNotifier(Protocol):
    async def publish(self, trip: Trip, event: str = "UPDATE") -> None: ...


@dataclass(frozen=True)
class LocationResult:
    trip: Trip
    applied: bool


def can_see_location(trip, actor_id: Optional[str]) -> bool:
    """Movers always see their own position; viewers only while shared.

    *trip* may be a ``Trip`` or a ``TripSnapshot`` from a realtime event.
    """
    if actor_id is None:
        return False
    return actor_id == trip.mover_id or (
        actor_id == trip.viewer_id and trip.live_location_visible
    )


class TripService:
    def __init__(
        self,
        store: TripStore,
        notifier: TripNotifier,
        config: Settings = default_settings,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.notifier = notifier
        self.config = config
        self.clock = clock

    # ── creation & reads ──────────────────────────────────────────

    async def create_trips_for_booking(
        self,
        booking_id: str,
        fulfillment_type: Optional[str] = None,
        actor_id: Optional[str] = None,
    ) -> list[Trip]:
        """Create the legs of *booking_id*, or return the existing ones.

        With *actor_id* set, only the booking's customer or provider may
        create; ``None`` means a system caller (seed script, workers).
        """
        if actor_id is not None:
            booking = await self.store.read_booking(booking_id)
            if actor_id not in (booking.customer_id, booking.provider_id):
                raise Unauthorized(
                    f"User {actor_id} is not a party to booking {booking_id}"
                )

        existing = await self.store.list_trips(booking_id)
        if existing:
            return existing

        trips = await self.store.create_trips(booking_id, fulfillment_type)
        await self.store.commit()
        logger.info(
            "Created %d trip(s) for booking %s (fulfillment=%s)",
            len(trips), booking_id, fulfillment_type,
        )
        for trip in trips:
            await self._publish(trip, "INSERT")
        return trips

    async def get_trips_for_booking(
        self, booking_id: str, actor_id: Optional[str] = None
    ) -> list[Trip]:
        trips = await self.store.list_trips(booking_id)
        if actor_id is None:
            return trips
        return [t for t in trips if t.is_participant(actor_id)]

    async def get_active_trip(
        self, booking_id: str, actor_id: Optional[str] = None
    ) -> Optional[Trip]:
        trip = await self.store.active_trip(booking_id)
        if trip is not None and actor_id is not None:
            self._require_participant(trip, actor_id)
        return trip

    async def get_trip(self, trip_id: str, actor_id: Optional[str] = None) -> Trip:
        trip = await self.store.read_trip(trip_id)
        if actor_id is not None:
            self._require_participant(trip, actor_id)
        return trip

    async def get_next_leg(
        self, trip_id: str, actor_id: Optional[str] = None
    ) -> Optional[Trip]:
        trip = await self.get_trip(trip_id, actor_id)
        return await self.store.next_leg(trip.booking_id, trip.leg_number)

    async def get_location_history(
        self, trip_id: str, actor_id: str, limit: int = 100
    ) -> list[LocationSample]:
        trip = await self.store.read_trip(trip_id)
        if not can_see_location(trip, actor_id):
            raise Unauthorized(f"User {actor_id} cannot view location of trip {trip_id}")
        return await self.store.location_history(trip_id, limit)

    async def open_trip_feed(self, trip_id: str, actor_id: Optional[str]) -> Trip:
        """Authorize a realtime subscription to one trip.

        Ends the read transaction so no pooled connection is held for
        the lifetime of the socket.
        """
        trip = await self.store.read_trip(trip_id)
        await self.store.commit()
        self._require_participant(trip, actor_id)
        return trip

    async def open_booking_feed(
        self, booking_id: str, actor_id: Optional[str]
    ) -> list[Trip]:
        trips = [
            t for t in await self.store.list_trips(booking_id)
            if t.is_participant(actor_id)
        ]
        await self.store.commit()
        if not trips:
            raise Unauthorized(
                f"User {actor_id} has no trips on booking {booking_id}"
            )
        return trips

    async def active_trips_by_cell(self) -> dict[str, list[Trip]]:
        """Moving trips grouped by the H3 cell of their last position."""
        cells: dict[str, list[Trip]] = defaultdict(list)
        for trip in await self.store.active_trips():
            cells[trip.current_h3_cell or "unknown"].append(trip)
        return dict(cells)

    # ── status transitions ────────────────────────────────────────

    async def start_trip(self, trip_id: str, actor_id: str) -> Trip:
        return await self._transition(trip_id, actor_id, TripStatus.ON_THE_WAY)

    async def mark_arriving_soon(self, trip_id: str, actor_id: str) -> Trip:
        return await self._transition(trip_id, actor_id, TripStatus.ARRIVING_SOON)

    async def mark_arrived(self, trip_id: str, actor_id: str) -> Trip:
        return await self._transition(trip_id, actor_id, TripStatus.ARRIVED)

    async def complete_trip(self, trip_id: str, actor_id: str) -> Trip:
        return await self._transition(trip_id, actor_id, TripStatus.COMPLETED)

    async def cancel_trip(self, trip_id: str, actor_id: Optional[str] = None) -> Trip:
        """Cancel as the mover, or as the system when *actor_id* is None."""
        return await self._transition(
            trip_id, actor_id, TripStatus.CANCELED, system_allowed=True
        )

    async def _transition(
        self,
        trip_id: str,
        actor_id: Optional[str],
        new_status: TripStatus,
        system_allowed: bool = False,
    ) -> Trip:
        trip = await self.store.read_trip(trip_id)
        if not (system_allowed and actor_id is None):
            trip.require_mover(actor_id)

        now = self.clock()
        if new_status == TripStatus.CANCELED:
            trip.cancel(now)
        else:
            trip.transition_to(new_status, now)

        updated = await self.store.write_trip_update(
            trip_id,
            transition_fields(new_status, now),
            expected_status=trip.status,
        )
        if updated is None:
            current = await self.store.read_trip(trip_id)
            raise InvalidTransition(
                f"Trip {trip_id} moved to {current.status.value} before "
                f"{new_status.value} could be applied"
            )

        await self.store.commit()
        logger.info(
            "Trip %s: %s -> %s (actor=%s)",
            trip_id, trip.status.value, new_status.value, actor_id or "system",
        )
        await self._publish(updated)
        return updated

    # ── location ingest ───────────────────────────────────────────

    async def update_location(
        self, trip_id: str, actor_id: str, sample: LocationSample
    ) -> LocationResult:
        """Apply *sample* to the trip.

        Raises ``Unauthorized`` / ``TripClosed``.  Samples older than the
        last applied one are dropped and reported with ``applied=False``.
        """
        trip = None
        for _ in range(_MAX_WRITE_ATTEMPTS):
            trip = await self.store.read_trip(trip_id)
            try:
                moved = trip.apply_location(
                    sample,
                    actor_id,
                    arriving_soon_radius_m=self.config.arriving_soon_radius_m,
                    default_speed_mps=self.config.default_speed_mps,
                    h3_resolution=self.config.h3_resolution,
                    now=self.clock(),
                )
            except StaleUpdate as exc:
                logger.debug("Dropping stale sample for trip %s: %s", trip_id, exc)
                return LocationResult(trip, applied=False)

            fields = moved.location_fields()
            if moved.status != trip.status:
                # Promotion must not overwrite a concurrent status change
                fields.update(transition_fields(moved.status, moved.updated_at))
                guards = {"expected_status": trip.status}
            else:
                guards = {"reject_terminal": True}

            updated = await self.store.write_trip_update(
                trip_id,
                fields,
                location_before=sample.recorded_at,
                **guards,
            )
            if updated is None:
                # Closed, promoted or overtaken underneath us; re-evaluate
                continue

            await self.store.add_location_update(trip_id, sample)
            await self.store.commit()
            if moved.status != trip.status:
                logger.info(
                    "Trip %s: %s -> %s (within %.0f m of destination)",
                    trip_id, trip.status.value, updated.status.value,
                    self.config.arriving_soon_radius_m,
                )
            await self._publish(updated)
            return LocationResult(updated, applied=True)

        logger.warning(
            "Giving up on sample for trip %s after %d contended writes",
            trip_id, _MAX_WRITE_ATTEMPTS,
        )
        return LocationResult(trip, applied=False)

    # ── maintenance ───────────────────────────────────────────────

    async def purge_location_history(self) -> int:
        cutoff = self.clock() - timedelta(hours=self.config.location_retention_hours)
        deleted = await self.store.purge_location_history(cutoff)
        await self.store.commit()
        return deleted

    # ── helpers ───────────────────────────────────────────────────

    @staticmethod
    def _require_participant(trip: Trip, actor_id: Optional[str]) -> None:
        if not trip.is_participant(actor_id):
            raise Unauthorized(f"User {actor_id} is not part of trip {trip.id}")

    async def _publish(self, trip: Trip, event: str = "UPDATE") -> None:
        try:
            await self.notifier.publish(trip, event)
        except TransportFailure:
            logger.warning("Could not publish %s for trip %s", event, trip.id)
