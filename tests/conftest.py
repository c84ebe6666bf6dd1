"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  The production models are portable, so
the real metadata is created directly; Redis is replaced with
``AsyncMock`` objects.
"""

from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from triptracker.config import Settings
from triptracker.domain.enums import ServiceType
from triptracker.infrastructure.database import Base
from triptracker.infrastructure.models import BookingModel
from triptracker.infrastructure.repositories import TripRepository
from triptracker.services.trips import TripService


# ── Test DB (SQLite in-memory) ────────────────────────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
TestSessionFactory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)

PROVIDER_ID = "provider-1"
CUSTOMER_ID = "customer-1"
STRANGER_ID = "stranger-1"

# Provider workshop and customer address, ~2.5 km apart (Austin, TX)
LISTING = (30.2676, -97.7429)
SERVICE = (30.2544, -97.7644)

T0 = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic ``clock`` for ``TripService``."""

    def __init__(self, now: datetime = T0):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now += timedelta(seconds=seconds)
        return self.now


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create tables, yield a session, then drop everything."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionFactory() as session:
        yield session

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
def session_factory(db_session) -> async_sessionmaker:
    """Session factory bound to the same in-memory database as ``db_session``.

    Test modules must take this fixture rather than importing
    ``TestSessionFactory``: importing ``tests.conftest`` re-executes this
    file and builds a second, empty ``:memory:`` engine.
    """
    return TestSessionFactory


@pytest_asyncio.fixture
async def make_booking(db_session: AsyncSession):
    """Factory inserting a booking with the given fulfillment type."""

    async def _make(
        fulfillment_type=None,
        service_type: ServiceType = ServiceType.SERVICE,
        with_service_location: bool = True,
    ) -> str:
        booking = BookingModel(
            customer_id=CUSTOMER_ID,
            provider_id=PROVIDER_ID,
            service_type=service_type,
            fulfillment_type=fulfillment_type.value if fulfillment_type else None,
            listing_address="501 Congress Ave",
            listing_lat=LISTING[0],
            listing_lng=LISTING[1],
            service_address="1100 S Lamar Blvd" if with_service_location else None,
            service_lat=SERVICE[0] if with_service_location else None,
            service_lng=SERVICE[1] if with_service_location else None,
        )
        db_session.add(booking)
        await db_session.commit()
        return booking.id

    return _make


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def notifier() -> AsyncMock:
    mock = AsyncMock()
    mock.publish = AsyncMock(return_value=None)
    return mock


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        arriving_soon_radius_m=500.0,
        default_speed_mps=10.0,
        h3_resolution=7,
        location_retention_hours=24,
    )


@pytest.fixture
def service(db_session, notifier, test_settings, clock) -> TripService:
    return TripService(TripRepository(db_session), notifier, test_settings, clock)
