"""
Realtime WebSocket endpoints
============================

WS /ws/trips/{trip_id}                 -- updates for one leg
WS /ws/bookings/{booking_id}/trips     -- updates for every leg of a booking

The caller is identified by the ``X-User-Id`` header, or the ``user_id``
query parameter for clients that cannot set headers on a handshake.
Only a trip's mover or viewer may subscribe; anyone else is refused with
close code 1008 before the socket is accepted.

Each socket owns one notifier ``Subscription`` for as long as it is
open; disconnecting cancels it.  Events are forwarded as JSON
(``TripEvent``), with the live position stripped for callers who may
not see it.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect, status

from triptracker.api.dependencies import get_notifier, get_trip_service
from triptracker.domain.errors import TransportFailure, TripError
from triptracker.infrastructure.channels import TripEvent
from triptracker.infrastructure.notifier import RedisTripNotifier, Subscription
from triptracker.services.trips import TripService, can_see_location

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _actor_id(ws: WebSocket) -> Optional[str]:
    return ws.headers.get("x-user-id") or ws.query_params.get("user_id")


async def _refuse(ws: WebSocket, exc: TripError) -> None:
    logger.info("Refused realtime client on %s: %s", ws.url.path, exc)
    code = (
        status.WS_1011_INTERNAL_ERROR
        if isinstance(exc, TransportFailure)
        else status.WS_1008_POLICY_VIOLATION
    )
    await ws.close(code=code)


def _view_for(event: TripEvent, actor_id: str) -> Optional[TripEvent]:
    """The event as *actor_id* may see it, or ``None`` if not theirs."""
    snapshot = event.trip
    if actor_id not in (snapshot.mover_id, snapshot.viewer_id):
        return None
    if can_see_location(snapshot, actor_id):
        return event
    return event.model_copy(update={"trip": snapshot.redacted()})


async def _forward(ws: WebSocket, actor_id: str, subscribe) -> None:
    await ws.accept()

    async def send(event: TripEvent) -> None:
        visible = _view_for(event, actor_id)
        if visible is not None:
            await ws.send_text(visible.model_dump_json())

    subscription: Subscription = await subscribe(send)
    try:
        while True:
            # keep connection alive; client can send pings
            await ws.receive_text()
    except WebSocketDisconnect:
        logger.debug("Realtime client %s left %s", actor_id, subscription.channel)
    finally:
        await subscription.cancel()


@router.websocket("/ws/trips/{trip_id}")
async def trip_updates(
    ws: WebSocket,
    trip_id: str,
    notifier: RedisTripNotifier = Depends(get_notifier),
    service: TripService = Depends(get_trip_service),
):
    actor_id = _actor_id(ws)
    try:
        await service.open_trip_feed(trip_id, actor_id)
    except TripError as exc:
        await _refuse(ws, exc)
        return
    await _forward(ws, actor_id, lambda handler: notifier.subscribe(trip_id, handler))


@router.websocket("/ws/bookings/{booking_id}/trips")
async def booking_trip_updates(
    ws: WebSocket,
    booking_id: str,
    notifier: RedisTripNotifier = Depends(get_notifier),
    service: TripService = Depends(get_trip_service),
):
    actor_id = _actor_id(ws)
    try:
        await service.open_booking_feed(booking_id, actor_id)
    except TripError as exc:
        await _refuse(ws, exc)
        return
    await _forward(
        ws, actor_id, lambda handler: notifier.subscribe_booking(booking_id, handler)
    )
