"""
SQLAlchemy ORM models (PostgreSQL; portable to SQLite for tests).

Tables
------
* ``bookings``               -- booking slice needed to plan trip legs
* ``trips``                  -- one row per leg of movement for a booking
* ``trip_location_updates``  -- history of applied location samples

Indexes
-------
* **Unique** ``(booking_id, leg_number)`` on ``trips``.
* **B-Tree** on ``status``, ``mover_id``, ``viewer_id`` and
  ``current_h3_cell`` for participant look-ups and the operator map.
* **B-Tree** ``(trip_id, recorded_at)`` on the history table for the
  newest-first history query.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base
from triptracker.domain.enums import (
    MoverType,
    ServiceType,
    TripStatus,
    TripType,
    UpdateSource,
)


def _uuid() -> str:
    return str(uuid.uuid4())


def _enum(enum_cls):
    # Persist the lowercase values, not the member names
    return Enum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=32,
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(String(36), primary_key=True, default=_uuid)
    customer_id = Column(String(36), nullable=False)
    provider_id = Column(String(36), nullable=False)
    service_type = Column(_enum(ServiceType), default=ServiceType.SERVICE, nullable=False)
    fulfillment_type = Column(String(40), nullable=True)

    listing_address = Column(Text, nullable=True)
    listing_lat = Column(Float, nullable=True)
    listing_lng = Column(Float, nullable=True)
    service_address = Column(Text, nullable=True)
    service_lat = Column(Float, nullable=True)
    service_lng = Column(Float, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(String(36), primary_key=True, default=_uuid)
    booking_id = Column(String(36), ForeignKey("bookings.id"), nullable=False)
    leg_number = Column(Integer, default=1, nullable=False)
    total_legs = Column(Integer, default=1, nullable=False)

    mover_id = Column(String(36), nullable=False)
    mover_type = Column(_enum(MoverType), nullable=False)
    trip_type = Column(_enum(TripType), nullable=False)
    service_type = Column(_enum(ServiceType), default=ServiceType.SERVICE, nullable=False)

    origin_address = Column(Text, nullable=True)
    origin_lat = Column(Float, nullable=True)
    origin_lng = Column(Float, nullable=True)
    destination_address = Column(Text, nullable=False)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)

    # Live position, written by location ingest
    current_lat = Column(Float, nullable=True)
    current_lng = Column(Float, nullable=True)
    current_heading = Column(Float, nullable=True)
    current_speed = Column(Float, nullable=True)
    current_h3_cell = Column(String(20), nullable=True)
    last_location_update_at = Column(DateTime(timezone=True), nullable=True)

    status = Column(_enum(TripStatus), default=TripStatus.NOT_STARTED, nullable=False)
    started_at = Column(DateTime(timezone=True), nullable=True)
    arriving_soon_at = Column(DateTime(timezone=True), nullable=True)
    arrived_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)

    estimated_arrival_time = Column(DateTime(timezone=True), nullable=True)
    estimated_distance_meters = Column(Integer, nullable=True)
    estimated_duration_seconds = Column(Integer, nullable=True)

    live_location_visible = Column(Boolean, default=True, nullable=False)
    viewer_id = Column(String(36), nullable=True)
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("booking_id", "leg_number", name="uq_trips_booking_leg"),
        Index("idx_trips_status", "status"),
        Index("idx_trips_mover", "mover_id"),
        Index("idx_trips_viewer", "viewer_id"),
        Index("idx_trips_cell", "current_h3_cell"),
    )


class TripLocationUpdateModel(Base):
    __tablename__ = "trip_location_updates"

    id = Column(Integer, primary_key=True, autoincrement=True)
    trip_id = Column(String(36), ForeignKey("trips.id", ondelete="CASCADE"), nullable=False)

    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    heading = Column(Float, nullable=True)
    speed = Column(Float, nullable=True)
    accuracy = Column(Float, nullable=True)
    altitude = Column(Float, nullable=True)
    update_source = Column(_enum(UpdateSource), default=UpdateSource.APP, nullable=False)

    recorded_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_trip_locations_recent", "trip_id", "recorded_at"),
    )
