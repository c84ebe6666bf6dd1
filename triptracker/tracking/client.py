"""Async HTTP client for the trip API, as used by the mover's device."""

from __future__ import annotations

from typing import Any, Optional

import httpx

from triptracker.domain.entities import LocationSample
from triptracker.domain.errors import (
    BookingIncomplete,
    BookingNotFound,
    InvalidTransition,
    TransportFailure,
    TripClosed,
    TripError,
    TripNotFound,
    Unauthorized,
)
from triptracker.infrastructure.channels import TripSnapshot

_ERRORS_BY_CODE = {
    cls.code: cls
    for cls in (
        InvalidTransition,
        Unauthorized,
        TripClosed,
        TripNotFound,
        BookingNotFound,
        BookingIncomplete,
        TransportFailure,
    )
}

_ERRORS_BY_STATUS = {
    403: Unauthorized,
    404: TripNotFound,
    409: InvalidTransition,
}


class TripApiClient:
    def __init__(
        self,
        base_url: str,
        user_id: str,
        http: Optional[httpx.AsyncClient] = None,
        timeout: float = 10.0,
    ):
        self.user_id = user_id
        self._http = http or httpx.AsyncClient(base_url=base_url, timeout=timeout)
        self._prefix = "/api/v1"

    async def aclose(self) -> None:
        await self._http.aclose()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *args):
        await self.aclose()

    # ── trips ─────────────────────────────────────────────────────

    async def create_trips(
        self, booking_id: str, fulfillment_type: Optional[str] = None
    ) -> list[TripSnapshot]:
        data = await self._request(
            "POST",
            f"/bookings/{booking_id}/trips",
            json={"fulfillment_type": fulfillment_type},
        )
        return [TripSnapshot.model_validate(t) for t in data]

    async def list_trips(self, booking_id: str) -> list[TripSnapshot]:
        data = await self._request("GET", f"/bookings/{booking_id}/trips")
        return [TripSnapshot.model_validate(t) for t in data]

    async def get_trip(self, trip_id: str) -> TripSnapshot:
        return TripSnapshot.model_validate(
            await self._request("GET", f"/trips/{trip_id}")
        )

    async def start_trip(self, trip_id: str) -> TripSnapshot:
        return await self._transition(trip_id, "start")

    async def mark_arriving_soon(self, trip_id: str) -> TripSnapshot:
        return await self._transition(trip_id, "arriving-soon")

    async def mark_arrived(self, trip_id: str) -> TripSnapshot:
        return await self._transition(trip_id, "arrive")

    async def complete_trip(self, trip_id: str) -> TripSnapshot:
        return await self._transition(trip_id, "complete")

    async def cancel_trip(self, trip_id: str) -> TripSnapshot:
        return await self._transition(trip_id, "cancel")

    async def update_location(
        self, trip_id: str, sample: LocationSample
    ) -> tuple[TripSnapshot, bool]:
        data = await self._request(
            "POST",
            f"/trips/{trip_id}/location",
            json={
                "latitude": sample.latitude,
                "longitude": sample.longitude,
                "heading": sample.heading,
                "speed": sample.speed,
                "accuracy": sample.accuracy,
                "altitude": sample.altitude,
                "recorded_at": sample.recorded_at.isoformat(),
                "source": sample.source.value,
            },
        )
        return TripSnapshot.model_validate(data["trip"]), bool(data["applied"])

    async def location_history(
        self, trip_id: str, limit: int = 100
    ) -> list[dict[str, Any]]:
        return await self._request(
            "GET", f"/trips/{trip_id}/locations", params={"limit": limit}
        )

    def ingest_for(self, trip_id: str):
        """Bind ``update_location`` to one trip, for ``LocationTracker``."""

        async def ingest(sample: LocationSample):
            return await self.update_location(trip_id, sample)

        return ingest

    # ── internals ─────────────────────────────────────────────────

    async def _transition(self, trip_id: str, action: str) -> TripSnapshot:
        return TripSnapshot.model_validate(
            await self._request("PATCH", f"/trips/{trip_id}/{action}")
        )

    async def _request(self, method: str, path: str, **kwargs) -> Any:
        headers = {"X-User-Id": self.user_id}
        try:
            resp = await self._http.request(
                method, self._prefix + path, headers=headers, **kwargs
            )
        except httpx.TransportError as exc:
            raise TransportFailure(f"{method} {path} failed: {exc}") from exc

        if resp.status_code >= 500:
            raise TransportFailure(f"{method} {path} returned {resp.status_code}")
        if resp.status_code >= 400:
            raise _error_from(resp)
        return resp.json()


def _error_from(resp: httpx.Response) -> TripError:
    try:
        body = resp.json()
    except ValueError:
        body = {}
    detail = body.get("detail", resp.text)
    cls = _ERRORS_BY_CODE.get(body.get("code")) or _ERRORS_BY_STATUS.get(
        resp.status_code, TripError
    )
    return cls(detail)
