"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from triptracker.domain.distance import format_distance, format_eta
from triptracker.domain.entities import LocationSample, Trip, utcnow
from triptracker.domain.enums import FulfillmentType, UpdateSource
from triptracker.domain.fulfillment import describe_trip_type
from triptracker.infrastructure.channels import TripSnapshot


# ── Requests ──────────────────────────────────────────────────────────


class TripCreateRequest(BaseModel):
    fulfillment_type: Optional[FulfillmentType] = Field(
        None,
        description="Overrides the booking's own fulfillment type.",
    )


class LocationUpdateRequest(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    heading: Optional[float] = Field(None, ge=0, le=360)
    speed: Optional[float] = Field(None, ge=0, description="Meters per second.")
    accuracy: Optional[float] = Field(None, ge=0, description="Meters.")
    altitude: Optional[float] = None
    recorded_at: Optional[datetime] = Field(
        None,
        description="Device timestamp of the fix; defaults to receipt time. "
        "Samples older than the last applied one are ignored.",
    )
    source: UpdateSource = UpdateSource.APP

    def to_sample(self) -> LocationSample:
        return LocationSample(
            latitude=self.latitude,
            longitude=self.longitude,
            heading=self.heading,
            speed=self.speed,
            accuracy=self.accuracy,
            altitude=self.altitude,
            recorded_at=self.recorded_at or utcnow(),
            source=self.source,
        )


# ── Responses ─────────────────────────────────────────────────────────


class TripResponse(TripSnapshot):
    description: str
    distance_text: Optional[str] = None
    eta_text: Optional[str] = None

    @classmethod
    def build(cls, trip: Trip, redact_location: bool = False) -> "TripResponse":
        return cls.from_trip(
            trip,
            redact_location=redact_location,
            description=describe_trip_type(trip.trip_type, trip.mover_type),
            distance_text=(
                format_distance(trip.estimated_distance_meters)
                if trip.estimated_distance_meters is not None
                else None
            ),
            eta_text=(
                format_eta(trip.estimated_arrival_time)
                if trip.estimated_arrival_time is not None and trip.is_moving
                else None
            ),
        )


class LocationUpdateResponse(BaseModel):
    trip: TripResponse
    applied: bool


class LocationSampleResponse(BaseModel):
    latitude: float
    longitude: float
    heading: Optional[float] = None
    speed: Optional[float] = None
    accuracy: Optional[float] = None
    altitude: Optional[float] = None
    recorded_at: datetime
    source: str

    @classmethod
    def build(cls, sample: LocationSample) -> "LocationSampleResponse":
        return cls(
            latitude=sample.latitude,
            longitude=sample.longitude,
            heading=sample.heading,
            speed=sample.speed,
            accuracy=sample.accuracy,
            altitude=sample.altitude,
            recorded_at=sample.recorded_at,
            source=sample.source.value,
        )


class ActiveCellResponse(BaseModel):
    h3_cell: str
    trips: list[TripResponse] = []


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    detail: str
    code: str
