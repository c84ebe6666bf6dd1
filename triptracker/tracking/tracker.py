"""
Client-side live location tracker.

Turns a device position feed into throttled location updates for one
trip.  The device feed is any ``PositionSource``; the sink is any async
callable taking a ``LocationSample`` (normally
``TripApiClient.update_location`` bound to a trip).

Lifecycle is explicit and owned by the caller: ``start()`` asks for
foreground then background permission and spawns the pump task,
``stop()`` cancels it.  ``samples()`` exposes the same throttled feed as
a lazy async iterator for callers that want to drive it themselves.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from dataclasses import dataclass
from typing import AsyncIterator, Awaitable, Callable, Optional, Protocol

from triptracker.config import settings
from triptracker.domain.entities import LocationSample
from triptracker.domain.errors import TransportFailure, TripClosed, Unauthorized

logger = logging.getLogger(__name__)


class PermissionStatus(str, enum.Enum):
    GRANTED = "granted"
    DENIED = "denied"


class Accuracy(str, enum.Enum):
    BALANCED = "balanced"
    HIGH = "high"


@dataclass(frozen=True)
class WatchOptions:
    accuracy: Accuracy = Accuracy.HIGH
    time_interval_s: float = 5.0
    distance_interval_m: float = 10.0


class PositionSource(Protocol):
    async def request_permission(self, background: bool = False) -> PermissionStatus: ...

    def watch(self, options: WatchOptions) -> AsyncIterator[LocationSample]: ...


Ingest = Callable[[LocationSample], Awaitable[object]]


def should_emit(
    previous: Optional[LocationSample],
    sample: LocationSample,
    min_interval_s: float = 5.0,
    min_distance_m: float = 10.0,
) -> bool:
    """First sample always; afterwards only once both thresholds are met."""
    if previous is None:
        return True
    elapsed = (sample.recorded_at - previous.recorded_at).total_seconds()
    return elapsed >= min_interval_s and previous.distance_to(sample) >= min_distance_m


class LocationTracker:
    def __init__(
        self,
        trip_id: str,
        source: PositionSource,
        ingest: Ingest,
        min_interval_s: float = settings.tracking_min_interval_s,
        min_distance_m: float = settings.tracking_min_distance_m,
        on_sample: Optional[Callable[[LocationSample], None]] = None,
    ):
        self.trip_id = trip_id
        self.source = source
        self.ingest = ingest
        self.min_interval_s = min_interval_s
        self.min_distance_m = min_distance_m
        self.on_sample = on_sample
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def request_permission(self) -> bool:
        if await self.source.request_permission(background=False) != PermissionStatus.GRANTED:
            return False
        return await self.source.request_permission(background=True) == PermissionStatus.GRANTED

    async def samples(self) -> AsyncIterator[LocationSample]:
        """Throttled, potentially infinite feed of device samples."""
        options = WatchOptions(
            time_interval_s=self.min_interval_s,
            distance_interval_m=self.min_distance_m,
        )
        last: Optional[LocationSample] = None
        async for sample in self.source.watch(options):
            if should_emit(last, sample, self.min_interval_s, self.min_distance_m):
                last = sample
                yield sample

    async def start(self) -> bool:
        await self.stop()
        if not await self.request_permission():
            logger.info("Location permission denied; not tracking trip %s", self.trip_id)
            return False
        self._task = asyncio.create_task(self._pump())
        logger.info("Tracking trip %s", self.trip_id)
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def wait(self) -> None:
        """Block until the pump ends (source exhausted or trip closed)."""
        if self._task is not None:
            await self._task

    async def _pump(self) -> None:
        async for sample in self.samples():
            try:
                await self.ingest(sample)
            except (TripClosed, Unauthorized) as exc:
                logger.info("Stopping tracking for trip %s: %s", self.trip_id, exc)
                return
            except TransportFailure:
                logger.warning(
                    "Location update for trip %s not delivered; waiting for next sample",
                    self.trip_id,
                )
                continue
            if self.on_sample:
                self.on_sample(sample)
