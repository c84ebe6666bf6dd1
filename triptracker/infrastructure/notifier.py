"""
Realtime notifier over Redis pub/sub.

Every trip mutation is published to two channels:

* ``trip:{trip_id}``             -- viewers following a single leg
* ``booking-trips:{booking_id}`` -- viewers following a whole booking

Subscriptions are explicit objects owned by the caller: ``subscribe``
returns a ``Subscription`` whose ``cancel()`` tears down the reader task
and the pub/sub connection.  Delivery is at-least-once; there is no
ordering guarantee across distinct trips.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import RedisError

from .channels import TripEvent, booking_channel, trip_channel
from triptracker.domain.entities import Trip
from triptracker.domain.errors import TransportFailure

logger = logging.getLogger(__name__)

EventHandler = Callable[[TripEvent], Awaitable[None]]


class Subscription:
    def __init__(self, pubsub, channel: str, handler: EventHandler):
        self._pubsub = pubsub
        self.channel = channel
        self._handler = handler
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def active(self) -> bool:
        return not self._closed

    async def start(self) -> "Subscription":
        try:
            await self._pubsub.subscribe(self.channel)
        except RedisError as exc:
            raise TransportFailure(f"Cannot subscribe to {self.channel}") from exc
        self._task = asyncio.create_task(self._pump())
        return self

    async def cancel(self) -> None:
        """Stop delivery.  Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        try:
            await self._pubsub.unsubscribe(self.channel)
            await self._pubsub.aclose()
        except RedisError:
            logger.warning("Error closing subscription to %s", self.channel)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.cancel()

    async def _pump(self) -> None:
        while True:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
            except RedisError:
                logger.exception("Lost realtime channel %s", self.channel)
                return
            if message is None:
                await asyncio.sleep(0)
                continue
            try:
                event = TripEvent.model_validate_json(message["data"])
            except ValidationError:
                logger.warning("Dropping malformed message on %s", self.channel)
                continue
            try:
                await self._handler(event)
            except Exception:
                logger.exception("Trip event handler failed on %s", self.channel)


class RedisTripNotifier:
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, trip: Trip, event: str = "UPDATE") -> None:
        payload = TripEvent.for_trip(trip, event).model_dump_json()
        try:
            await self.redis.publish(trip_channel(trip.id), payload)
            await self.redis.publish(booking_channel(trip.booking_id), payload)
        except RedisError as exc:
            raise TransportFailure("Realtime channel unreachable") from exc

    async def subscribe(self, trip_id: str, handler: EventHandler) -> Subscription:
        return await Subscription(
            self.redis.pubsub(), trip_channel(trip_id), handler
        ).start()

    async def subscribe_booking(
        self, booking_id: str, handler: EventHandler
    ) -> Subscription:
        return await Subscription(
            self.redis.pubsub(), booking_channel(booking_id), handler
        ).start()


class NullNotifier:
    """Publishes nothing; for batch jobs that have no live viewers."""

    async def publish(self, trip: Trip, event: str = "UPDATE") -> None:
        return None
