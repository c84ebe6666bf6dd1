"""
Service-level tests against the real repository on SQLite.

Covers the lifecycle end to end, location ingest (authorization,
staleness, arriving-soon promotion), write-time guards against stale
writers, visibility rules and history retention.
"""

from __future__ import annotations

from datetime import timedelta

import pytest

from triptracker.domain.entities import LocationSample, transition_fields
from triptracker.domain.enums import FulfillmentType, TripStatus, TripType
from triptracker.domain.errors import (
    BookingIncomplete,
    BookingNotFound,
    InvalidTransition,
    TransportFailure,
    TripClosed,
    TripNotFound,
    Unauthorized,
)
from triptracker.infrastructure.repositories import TripRepository
from triptracker.services.trips import TripService, can_see_location
from tests.conftest import CUSTOMER_ID, LISTING, PROVIDER_ID, SERVICE, STRANGER_ID


def _sample(clock, lat, lng, speed=None):
    return LocationSample(
        latitude=lat, longitude=lng, speed=speed, recorded_at=clock()
    )


def _first_read_returns(snapshot):
    """Repository class serving *snapshot* on its first ``read_trip``."""

    class StaleViewRepository(TripRepository):
        served = False

        async def read_trip(self, trip_id):
            if not self.served:
                self.served = True
                return snapshot
            return await super().read_trip(trip_id)

    return StaleViewRepository


class TestCreateTrips:
    @pytest.mark.asyncio
    async def test_round_trip_by_provider_creates_two_legs(
        self, service, make_booking, notifier
    ):
        booking_id = await make_booking(FulfillmentType.PICKUP_AND_DROP_OFF_BY_PROVIDER)
        trips = await service.create_trips_for_booking(booking_id)

        assert [t.leg_number for t in trips] == [1, 2]
        assert all(t.status == TripStatus.NOT_STARTED for t in trips)
        assert all(t.mover_id == PROVIDER_ID for t in trips)
        assert all(t.viewer_id == CUSTOMER_ID for t in trips)
        assert notifier.publish.await_count == 2
        assert notifier.publish.await_args.args[1] == "INSERT"

    @pytest.mark.asyncio
    async def test_create_is_idempotent(self, service, make_booking, notifier):
        booking_id = await make_booking(FulfillmentType.PICKUP_BY_CUSTOMER)
        first = await service.create_trips_for_booking(booking_id)
        second = await service.create_trips_for_booking(booking_id)

        assert [t.id for t in first] == [t.id for t in second]
        assert notifier.publish.await_count == 1

    @pytest.mark.asyncio
    async def test_shipping_creates_nothing(self, service, make_booking):
        booking_id = await make_booking(FulfillmentType.SHIPPING)
        assert await service.create_trips_for_booking(booking_id) == []

    @pytest.mark.asyncio
    async def test_explicit_fulfillment_overrides_booking(self, service, make_booking):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(
            booking_id, FulfillmentType.PICKUP_BY_CUSTOMER.value
        )
        assert trip.trip_type == TripType.CUSTOMER_PICKUP
        assert trip.mover_id == CUSTOMER_ID

    @pytest.mark.asyncio
    async def test_unknown_booking(self, service, db_session):
        with pytest.raises(BookingNotFound):
            await service.create_trips_for_booking("missing")

    @pytest.mark.asyncio
    async def test_only_booking_parties_may_create(self, service, make_booking):
        booking_id = await make_booking()

        with pytest.raises(Unauthorized):
            await service.create_trips_for_booking(booking_id, actor_id=STRANGER_ID)
        assert await service.get_trips_for_booking(booking_id) == []

        trips = await service.create_trips_for_booking(booking_id, actor_id=CUSTOMER_ID)
        assert len(trips) == 1

    @pytest.mark.asyncio
    async def test_incomplete_booking_is_a_domain_error(self, service, make_booking):
        booking_id = await make_booking(
            FulfillmentType.DROP_OFF_BY_PROVIDER, with_service_location=False
        )
        with pytest.raises(BookingIncomplete):
            await service.create_trips_for_booking(booking_id)
        assert await service.get_trips_for_booking(booking_id) == []


class TestRealtimeFeeds:
    @pytest.mark.asyncio
    async def test_participants_may_open_trip_feed(self, service, make_booking):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)

        assert (await service.open_trip_feed(trip.id, CUSTOMER_ID)).id == trip.id
        assert (await service.open_trip_feed(trip.id, PROVIDER_ID)).id == trip.id

    @pytest.mark.asyncio
    @pytest.mark.parametrize("actor_id", [STRANGER_ID, None])
    async def test_others_are_refused(self, service, make_booking, actor_id):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)

        with pytest.raises(Unauthorized):
            await service.open_trip_feed(trip.id, actor_id)
        with pytest.raises(Unauthorized):
            await service.open_booking_feed(booking_id, actor_id)

    @pytest.mark.asyncio
    async def test_booking_feed_lists_callers_legs(self, service, make_booking):
        booking_id = await make_booking(FulfillmentType.PICKUP_AND_DROP_OFF_BY_PROVIDER)
        legs = await service.create_trips_for_booking(booking_id)

        opened = await service.open_booking_feed(booking_id, CUSTOMER_ID)
        assert [t.id for t in opened] == [t.id for t in legs]

    @pytest.mark.asyncio
    async def test_unknown_trip_feed(self, service, db_session):
        with pytest.raises(TripNotFound):
            await service.open_trip_feed("missing", PROVIDER_ID)


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_two_leg_booking_end_to_end(self, service, make_booking, clock):
        booking_id = await make_booking(FulfillmentType.PICKUP_AND_DROP_OFF_BY_PROVIDER)
        leg1, leg2 = await service.create_trips_for_booking(booking_id)

        active = await service.get_active_trip(booking_id)
        assert active.id == leg1.id

        await service.start_trip(leg1.id, PROVIDER_ID)
        clock.advance(30)
        result = await service.update_location(
            leg1.id, PROVIDER_ID, _sample(clock, SERVICE[0] + 0.0018, SERVICE[1])
        )
        assert result.applied
        assert result.trip.status == TripStatus.ARRIVING_SOON

        clock.advance(60)
        await service.mark_arrived(leg1.id, PROVIDER_ID)
        clock.advance(60)
        done = await service.complete_trip(leg1.id, PROVIDER_ID)
        assert done.status == TripStatus.COMPLETED
        assert done.live_location_visible is False
        assert done.completed_at == clock()

        untouched = await service.get_trip(leg2.id)
        assert untouched.status == TripStatus.NOT_STARTED
        assert untouched.started_at is None
        assert untouched.current_latitude is None

        active = await service.get_active_trip(booking_id)
        assert active.id == leg2.id

        next_leg = await service.get_next_leg(leg1.id, CUSTOMER_ID)
        assert next_leg.id == leg2.id
        assert await service.get_next_leg(leg2.id) is None

    @pytest.mark.asyncio
    async def test_status_timestamps_recorded(self, service, make_booking, clock):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)

        started = await service.start_trip(trip.id, PROVIDER_ID)
        assert started.started_at == clock()

        clock.advance(120)
        arrived = await service.mark_arrived(trip.id, PROVIDER_ID)
        assert arrived.arrived_at == clock()
        assert arrived.started_at == started.started_at

    @pytest.mark.asyncio
    async def test_viewer_cannot_change_status(self, service, make_booking):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)

        with pytest.raises(Unauthorized):
            await service.start_trip(trip.id, CUSTOMER_ID)
        with pytest.raises(Unauthorized):
            await service.cancel_trip(trip.id, CUSTOMER_ID)

        assert (await service.get_trip(trip.id)).status == TripStatus.NOT_STARTED

    @pytest.mark.asyncio
    async def test_invalid_transition(self, service, make_booking):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)
        with pytest.raises(InvalidTransition):
            await service.complete_trip(trip.id, PROVIDER_ID)

    @pytest.mark.asyncio
    async def test_system_cancel(self, service, make_booking):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)
        canceled = await service.cancel_trip(trip.id)
        assert canceled.status == TripStatus.CANCELED

        with pytest.raises(InvalidTransition):
            await service.cancel_trip(trip.id, PROVIDER_ID)

    @pytest.mark.asyncio
    async def test_unknown_trip(self, service, db_session):
        with pytest.raises(TripNotFound):
            await service.start_trip("missing", PROVIDER_ID)

    @pytest.mark.asyncio
    async def test_publish_failure_does_not_undo_write(
        self, service, make_booking, notifier
    ):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)

        notifier.publish.side_effect = TransportFailure("down")
        started = await service.start_trip(trip.id, PROVIDER_ID)

        assert started.status == TripStatus.ON_THE_WAY
        assert (await service.get_trip(trip.id)).status == TripStatus.ON_THE_WAY


class TestWriteGuards:
    @pytest.mark.asyncio
    async def test_stale_status_guard_rejects_write(
        self, service, make_booking, db_session, clock
    ):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)
        await service.cancel_trip(trip.id)

        repo = TripRepository(db_session)
        revived = await repo.write_trip_update(
            trip.id,
            transition_fields(TripStatus.ON_THE_WAY, clock()),
            expected_status=TripStatus.NOT_STARTED,
        )
        assert revived is None
        assert (await repo.read_trip(trip.id)).status == TripStatus.CANCELED

    @pytest.mark.asyncio
    async def test_writer_with_stale_view_cannot_revive_trip(
        self, make_booking, db_session, notifier, test_settings, clock
    ):
        repo = TripRepository(db_session)
        service = TripService(repo, notifier, test_settings, clock)
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)

        # Someone else cancels first
        await service.cancel_trip(trip.id)

        stale = TripService(
            _first_read_returns(trip)(db_session), notifier, test_settings, clock
        )
        with pytest.raises(InvalidTransition):
            await stale.start_trip(trip.id, PROVIDER_ID)
        assert (await repo.read_trip(trip.id)).status == TripStatus.CANCELED

    @pytest.mark.asyncio
    async def test_position_lands_despite_concurrent_status_change(
        self, make_booking, db_session, notifier, test_settings, clock
    ):
        repo = TripRepository(db_session)
        service = TripService(repo, notifier, test_settings, clock)
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)
        started = await service.start_trip(trip.id, PROVIDER_ID)
        # Mover marks arrival while a sample is in flight
        await service.mark_arrived(trip.id, PROVIDER_ID)

        stale = TripService(
            _first_read_returns(started)(db_session), notifier, test_settings, clock
        )
        clock.advance(5)
        result = await stale.update_location(
            trip.id, PROVIDER_ID, _sample(clock, LISTING[0], LISTING[1])
        )

        assert result.applied
        assert result.trip.status == TripStatus.ARRIVED
        assert result.trip.current_latitude == LISTING[0]

    @pytest.mark.asyncio
    async def test_position_does_not_land_on_concurrently_closed_trip(
        self, make_booking, db_session, notifier, test_settings, clock
    ):
        repo = TripRepository(db_session)
        service = TripService(repo, notifier, test_settings, clock)
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)
        started = await service.start_trip(trip.id, PROVIDER_ID)
        await service.cancel_trip(trip.id)

        stale = TripService(
            _first_read_returns(started)(db_session), notifier, test_settings, clock
        )
        clock.advance(5)
        with pytest.raises(TripClosed):
            await stale.update_location(
                trip.id, PROVIDER_ID, _sample(clock, LISTING[0], LISTING[1])
            )

        closed = await repo.read_trip(trip.id)
        assert closed.current_latitude is None
        assert await repo.location_history(trip.id) == []

    @pytest.mark.asyncio
    async def test_reject_terminal_guard(self, service, make_booking, db_session):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)
        await service.cancel_trip(trip.id)

        repo = TripRepository(db_session)
        assert (
            await repo.write_trip_update(
                trip.id, {"notes": "late"}, reject_terminal=True
            )
            is None
        )


class TestLocationIngest:
    @pytest.mark.asyncio
    async def test_applied_sample_updates_trip_and_history(
        self, service, make_booking, clock, notifier
    ):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)
        await service.start_trip(trip.id, PROVIDER_ID)

        clock.advance(5)
        result = await service.update_location(
            trip.id, PROVIDER_ID, _sample(clock, 30.2676, -97.7429, speed=12.0)
        )

        assert result.applied
        assert result.trip.current_latitude == 30.2676
        assert result.trip.last_location_update_at == clock()
        assert result.trip.estimated_distance_meters > 2000
        assert result.trip.current_h3_cell

        history = await service.get_location_history(trip.id, CUSTOMER_ID)
        assert len(history) == 1
        assert history[0].speed == 12.0
        assert notifier.publish.await_args.args[0].id == trip.id

    @pytest.mark.asyncio
    async def test_unauthorized_sender_leaves_trip_unchanged(
        self, service, make_booking, clock
    ):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)
        await service.start_trip(trip.id, PROVIDER_ID)

        for actor in (CUSTOMER_ID, STRANGER_ID):
            with pytest.raises(Unauthorized):
                await service.update_location(
                    trip.id, actor, _sample(clock, 30.26, -97.75)
                )

        current = await service.get_trip(trip.id)
        assert current.current_latitude is None
        assert await service.get_location_history(trip.id, PROVIDER_ID) == []

    @pytest.mark.asyncio
    async def test_out_of_order_sample_is_dropped(self, service, make_booking, clock):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)
        await service.start_trip(trip.id, PROVIDER_ID)

        late = _sample(clock, 30.2600, -97.7500)
        clock.advance(10)
        await service.update_location(
            trip.id, PROVIDER_ID, _sample(clock, 30.2650, -97.7450)
        )

        result = await service.update_location(trip.id, PROVIDER_ID, late)
        assert not result.applied
        assert result.trip.current_latitude == 30.2650

        history = await service.get_location_history(trip.id, PROVIDER_ID)
        assert len(history) == 1

    @pytest.mark.asyncio
    async def test_closed_trip_rejects_location(self, service, make_booking, clock):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)
        await service.cancel_trip(trip.id, PROVIDER_ID)

        with pytest.raises(TripClosed):
            await service.update_location(
                trip.id, PROVIDER_ID, _sample(clock, 30.26, -97.75)
            )

    @pytest.mark.asyncio
    async def test_location_before_start_is_accepted(self, service, make_booking, clock):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)

        result = await service.update_location(
            trip.id, PROVIDER_ID, _sample(clock, SERVICE[0], SERVICE[1])
        )
        assert result.applied
        assert result.trip.status == TripStatus.NOT_STARTED


class TestVisibility:
    @pytest.mark.asyncio
    async def test_viewer_loses_location_when_trip_ends(
        self, service, make_booking, clock
    ):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)
        await service.start_trip(trip.id, PROVIDER_ID)
        clock.advance(5)
        await service.update_location(
            trip.id, PROVIDER_ID, _sample(clock, 30.26, -97.75)
        )
        live = await service.get_trip(trip.id)
        assert can_see_location(live, CUSTOMER_ID)

        await service.mark_arrived(trip.id, PROVIDER_ID)
        done = await service.complete_trip(trip.id, PROVIDER_ID)

        assert not can_see_location(done, CUSTOMER_ID)
        assert can_see_location(done, PROVIDER_ID)
        with pytest.raises(Unauthorized):
            await service.get_location_history(trip.id, CUSTOMER_ID)
        assert len(await service.get_location_history(trip.id, PROVIDER_ID)) == 1

    @pytest.mark.asyncio
    async def test_stranger_sees_nothing(self, service, make_booking):
        booking_id = await make_booking()
        (trip,) = await service.create_trips_for_booking(booking_id)

        assert await service.get_trips_for_booking(booking_id, STRANGER_ID) == []
        with pytest.raises(Unauthorized):
            await service.get_trip(trip.id, STRANGER_ID)
        with pytest.raises(Unauthorized):
            await service.get_location_history(trip.id, STRANGER_ID)


class TestOperations:
    @pytest.mark.asyncio
    async def test_active_trips_grouped_by_cell(self, service, make_booking, clock):
        moving_id = await make_booking()
        idle_id = await make_booking()
        (moving,) = await service.create_trips_for_booking(moving_id)
        await service.create_trips_for_booking(idle_id)

        await service.start_trip(moving.id, PROVIDER_ID)
        clock.advance(5)
        result = await service.update_location(
            moving.id, PROVIDER_ID, _sample(clock, 30.2676, -97.7429)
        )

        cells = await service.active_trips_by_cell()
        assert list(cells) == [result.trip.current_h3_cell]
        assert [t.id for t in cells[result.trip.current_h3_cell]] == [moving.id]

    @pytest.mark.asyncio
    async def test_purge_only_removes_expired_history(
        self, service, make_booking, clock
    ):
        ended_id = await make_booking()
        live_id = await make_booking()
        (ended,) = await service.create_trips_for_booking(ended_id)
        (live,) = await service.create_trips_for_booking(live_id)

        for trip in (ended, live):
            await service.start_trip(trip.id, PROVIDER_ID)
        clock.advance(5)
        for trip in (ended, live):
            await service.update_location(
                trip.id, PROVIDER_ID, _sample(clock, 30.26, -97.75)
            )
        await service.cancel_trip(ended.id, PROVIDER_ID)

        # Still inside the retention window
        clock.advance(3600)
        assert await service.purge_location_history() == 0

        clock.advance(timedelta(hours=24).total_seconds())
        assert await service.purge_location_history() == 1
        assert await service.get_location_history(ended.id, PROVIDER_ID) == []
        assert len(await service.get_location_history(live.id, PROVIDER_ID)) == 1
