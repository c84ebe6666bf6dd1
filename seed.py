"""
Seed script -- populates the database with sample bookings for reviewers.

Run after migrations:
    python seed.py

Creates one booking per fulfillment type around central Austin, then
creates the trips for each of them through the trip service, so the
legs come out exactly as the API would create them.
"""

import asyncio

from sqlalchemy import text

from triptracker.domain.enums import FulfillmentType, ServiceType
from triptracker.infrastructure.database import async_session_factory, engine
from triptracker.infrastructure.models import BookingModel
from triptracker.infrastructure.notifier import NullNotifier
from triptracker.infrastructure.repositories import TripRepository
from triptracker.services.trips import TripService

# Provider workshop (listing location)
LISTING = {"address": "501 Congress Ave, Austin, TX", "lat": 30.2676, "lng": -97.7429}

CUSTOMERS = [
    {"id": "c0000000-0000-0000-0000-000000000001", "address": "1100 S Lamar Blvd, Austin, TX", "lat": 30.2544, "lng": -97.7644},
    {"id": "c0000000-0000-0000-0000-000000000002", "address": "2300 E Cesar Chavez St, Austin, TX", "lat": 30.2553, "lng": -97.7206},
    {"id": "c0000000-0000-0000-0000-000000000003", "address": "4400 N Lamar Blvd, Austin, TX", "lat": 30.3108, "lng": -97.7400},
    {"id": "c0000000-0000-0000-0000-000000000004", "address": "6001 Airport Blvd, Austin, TX", "lat": 30.3252, "lng": -97.7119},
    {"id": "c0000000-0000-0000-0000-000000000005", "address": "1000 E 41st St, Austin, TX", "lat": 30.3000, "lng": -97.7250},
    {"id": "c0000000-0000-0000-0000-000000000006", "address": "9500 S IH 35, Austin, TX", "lat": 30.1652, "lng": -97.7894},
]

PROVIDER_ID = "p0000000-0000-0000-0000-000000000001"

FULFILLMENTS = [
    (FulfillmentType.ON_SITE, ServiceType.SERVICE),
    (FulfillmentType.PICKUP_BY_CUSTOMER, ServiceType.SERVICE),
    (FulfillmentType.DROP_OFF_BY_PROVIDER, ServiceType.CUSTOM_SERVICE),
    (FulfillmentType.PICKUP_AND_DROP_OFF_BY_CUSTOMER, ServiceType.SERVICE),
    (FulfillmentType.PICKUP_AND_DROP_OFF_BY_PROVIDER, ServiceType.JOB),
    (FulfillmentType.SHIPPING, ServiceType.CUSTOM_SERVICE),
]


async def seed() -> None:
    async with async_session_factory() as session:
        # Clear existing data
        await session.execute(text("DELETE FROM trip_location_updates"))
        await session.execute(text("DELETE FROM trips"))
        await session.execute(text("DELETE FROM bookings"))
        await session.commit()

        bookings = []
        for customer, (fulfillment, service_type) in zip(CUSTOMERS, FULFILLMENTS):
            booking = BookingModel(
                customer_id=customer["id"],
                provider_id=PROVIDER_ID,
                service_type=service_type,
                fulfillment_type=fulfillment.value,
                listing_address=LISTING["address"],
                listing_lat=LISTING["lat"],
                listing_lng=LISTING["lng"],
                service_address=customer["address"],
                service_lat=customer["lat"],
                service_lng=customer["lng"],
            )
            session.add(booking)
            bookings.append(booking)
        await session.flush()
        await session.commit()
        print(f"  Created {len(bookings)} bookings")

        service = TripService(TripRepository(session), NullNotifier())
        total = 0
        for booking in bookings:
            trips = await service.create_trips_for_booking(booking.id)
            total += len(trips)
            print(f"    {booking.fulfillment_type:<28} -> {len(trips)} trip(s)")
        print(f"  Created {total} trips")

    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
