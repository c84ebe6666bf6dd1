"""
Background Retention Worker
===========================

Runs every ``CLEANUP_INTERVAL_SECONDS`` (default 1 h).

Location history is only kept for safety/support while a trip is live
and for ``LOCATION_RETENTION_HOURS`` (default 24 h) after it ends.  Each
cycle deletes the history rows of completed / canceled trips that ended
before that window.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one instance runs a cycle at a
  time across multiple API processes.
"""

from __future__ import annotations

import asyncio
import logging

from triptracker.config import settings
from triptracker.infrastructure.database import async_session_factory
from triptracker.infrastructure.locks import DistributedLock
from triptracker.infrastructure.notifier import NullNotifier
from triptracker.infrastructure.redis_client import get_redis
from triptracker.infrastructure.repositories import TripRepository
from triptracker.services.trips import TripService

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_cleanup_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Retention worker started (interval=%ds, retention=%dh)",
        settings.cleanup_interval_seconds,
        settings.location_retention_hours,
    )


async def stop_cleanup_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Retention worker stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a cleanup cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_cleanup_cycle()
        except Exception:
            logger.exception("Unhandled error in cleanup cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.cleanup_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_cleanup_cycle(session_factory=async_session_factory) -> int:
    """Execute one cleanup cycle.  Returns the number of rows deleted."""
    redis = await get_redis()
    lock = DistributedLock(redis, "trip_location_cleanup", ttl_seconds=300)

    if not await lock.acquire():
        logger.debug("Lock held by another worker - skipping cycle")
        return 0

    try:
        async with session_factory() as session:
            service = TripService(TripRepository(session), NullNotifier())
            deleted = await service.purge_location_history()
        if deleted:
            logger.info("Cleanup cycle: %d location rows purged", deleted)
        return deleted
    finally:
        await lock.release()
