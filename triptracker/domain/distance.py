"""
Distance and ETA estimation.

Assumption
----------
Distances are great-circle (Haversine) rather than road distances, and
the ETA is derived from the mover's reported speed (falling back to a
configured average).  A routing-service client would replace both in a
deployment that needs turn-by-turn accuracy.

Complexity: O(1) per call.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Optional, Union

EARTH_RADIUS_M = 6_371_000.0

# Below this a reported speed is treated as "stationary" and ignored
MIN_USABLE_SPEED_MPS = 0.5


def haversine_m(
    lat1: float, lng1: float, lat2: float, lng2: float
) -> float:
    """Return the great-circle distance in **meters** between two points."""
    lat1_r, lat2_r = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlng = math.radians(lng2 - lng1)

    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1_r) * math.cos(lat2_r) * math.sin(dlng / 2) ** 2
    )
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(a))


def format_distance(meters: float) -> str:
    if meters < 1000:
        return f"{_round_half_up(meters)} m"
    km = meters / 1000
    if km < 10:
        return f"{km:.1f} km"
    return f"{_round_half_up(km)} km"


def format_eta(
    eta: Union[str, datetime], now: Optional[datetime] = None
) -> str:
    """Human-readable time remaining until *eta*.

    Accepts an ISO-8601 string or an aware datetime.  Minutes round half
    up (150 s reads "3 minutes"); anything up to 30 s out, including
    past timestamps, reads "Less than a minute".
    """
    if isinstance(eta, str):
        eta = datetime.fromisoformat(eta.replace("Z", "+00:00"))
    eta = ensure_utc(eta)
    now = ensure_utc(now) if now else datetime.now(timezone.utc)

    diff_seconds = (eta - now).total_seconds()
    minutes = _round_half_up(diff_seconds / 60) if diff_seconds > 30 else 0

    if minutes < 1:
        return "Less than a minute"
    if minutes == 1:
        return "1 minute"
    if minutes < 60:
        return f"{minutes} minutes"

    hours, mins = divmod(minutes, 60)
    if mins == 0:
        return f"{hours} hour{'s' if hours > 1 else ''}"
    return f"{hours}h {mins}m"


def estimate_travel(
    distance_m: float,
    speed_mps: Optional[float],
    default_speed_mps: float,
    now: datetime,
) -> tuple[int, datetime]:
    """Return ``(duration_seconds, arrival_time)`` for the remaining distance."""
    speed = speed_mps if speed_mps and speed_mps >= MIN_USABLE_SPEED_MPS else default_speed_mps
    duration = _round_half_up(distance_m / speed)
    return duration, now + timedelta(seconds=duration)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes (e.g. read back from SQLite) as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
