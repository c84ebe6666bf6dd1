"""Initial schema: bookings, trips and trip location history.

Revision ID: 001
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

TRIP_STATUSES = (
    "not_started",
    "on_the_way",
    "arriving_soon",
    "arrived",
    "completed",
    "canceled",
)
TRIP_TYPES = (
    "on_site_service",
    "customer_pickup",
    "provider_dropoff",
    "provider_pickup",
    "customer_dropoff",
)
SERVICE_TYPES = ("job", "service", "custom_service")


def _enum(name: str, values: tuple[str, ...]) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, length=32)


def upgrade() -> None:
    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("customer_id", sa.String(36), nullable=False),
        sa.Column("provider_id", sa.String(36), nullable=False),
        sa.Column(
            "service_type",
            _enum("servicetype", SERVICE_TYPES),
            nullable=False,
            server_default="service",
        ),
        sa.Column("fulfillment_type", sa.String(40), nullable=True),
        sa.Column("listing_address", sa.Text, nullable=True),
        sa.Column("listing_lat", sa.Float, nullable=True),
        sa.Column("listing_lng", sa.Float, nullable=True),
        sa.Column("service_address", sa.Text, nullable=True),
        sa.Column("service_lat", sa.Float, nullable=True),
        sa.Column("service_lng", sa.Float, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column(
            "booking_id",
            sa.String(36),
            sa.ForeignKey("bookings.id"),
            nullable=False,
        ),
        sa.Column("leg_number", sa.Integer, nullable=False, server_default="1"),
        sa.Column("total_legs", sa.Integer, nullable=False, server_default="1"),
        sa.Column("mover_id", sa.String(36), nullable=False),
        sa.Column(
            "mover_type",
            _enum("movertype", ("provider", "customer")),
            nullable=False,
        ),
        sa.Column("trip_type", _enum("triptype", TRIP_TYPES), nullable=False),
        sa.Column(
            "service_type",
            _enum("servicetype", SERVICE_TYPES),
            nullable=False,
            server_default="service",
        ),
        sa.Column("origin_address", sa.Text, nullable=True),
        sa.Column("origin_lat", sa.Float, nullable=True),
        sa.Column("origin_lng", sa.Float, nullable=True),
        sa.Column("destination_address", sa.Text, nullable=False),
        sa.Column("destination_lat", sa.Float, nullable=False),
        sa.Column("destination_lng", sa.Float, nullable=False),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("current_heading", sa.Float, nullable=True),
        sa.Column("current_speed", sa.Float, nullable=True),
        sa.Column("current_h3_cell", sa.String(20), nullable=True),
        sa.Column("last_location_update_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "status",
            _enum("tripstatus", TRIP_STATUSES),
            nullable=False,
            server_default="not_started",
        ),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arriving_soon_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("canceled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_arrival_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("estimated_distance_meters", sa.Integer, nullable=True),
        sa.Column("estimated_duration_seconds", sa.Integer, nullable=True),
        sa.Column(
            "live_location_visible",
            sa.Boolean,
            nullable=False,
            server_default=sa.true(),
        ),
        sa.Column("viewer_id", sa.String(36), nullable=True),
        sa.Column("notes", sa.Text, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint("booking_id", "leg_number", name="uq_trips_booking_leg"),
    )
    op.create_index("idx_trips_status", "trips", ["status"])
    op.create_index("idx_trips_mover", "trips", ["mover_id"])
    op.create_index("idx_trips_viewer", "trips", ["viewer_id"])
    op.create_index("idx_trips_cell", "trips", ["current_h3_cell"])
    # Partial index for the operator map / active-trip look-ups
    op.create_index(
        "idx_trips_moving",
        "trips",
        ["status"],
        postgresql_where=sa.text("status IN ('on_the_way', 'arriving_soon')"),
    )

    # ── trip_location_updates ─────────────────────────────────────────
    op.create_table(
        "trip_location_updates",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "trip_id",
            sa.String(36),
            sa.ForeignKey("trips.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("latitude", sa.Float, nullable=False),
        sa.Column("longitude", sa.Float, nullable=False),
        sa.Column("heading", sa.Float, nullable=True),
        sa.Column("speed", sa.Float, nullable=True),
        sa.Column("accuracy", sa.Float, nullable=True),
        sa.Column("altitude", sa.Float, nullable=True),
        sa.Column(
            "update_source",
            _enum("updatesource", ("app", "background", "manual")),
            nullable=False,
            server_default="app",
        ),
        sa.Column("recorded_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "idx_trip_locations_recent",
        "trip_location_updates",
        ["trip_id", "recorded_at"],
    )


def downgrade() -> None:
    op.drop_table("trip_location_updates")
    op.drop_table("trips")
    op.drop_table("bookings")
