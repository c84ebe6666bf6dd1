"""
Leg planning
============

Maps a booking's fulfillment type to the set of trips (legs) that must
be tracked for it.

============================  =========================================
Fulfillment type              Legs
============================  =========================================
PickupByCustomer              1. customer -> listing (customer_pickup)
DropOffByProvider             1. provider -> service location
PickupAndDropOffByCustomer    1. customer -> listing (customer_pickup)
                              2. customer -> listing (customer_dropoff)
PickupAndDropOffByProvider    1. provider -> service location (pickup)
                              2. provider -> service location (dropoff)
Shipping                      none -- tracked by the carrier
anything else                 1. provider -> service location
                                 (on_site_service), if the booking has
                                 a service location
============================  =========================================

The viewer of every leg is the other party of the booking.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .entities import Booking, Location
from .enums import FulfillmentType, MoverType, ServiceType, TripType
from .errors import BookingIncomplete


@dataclass(frozen=True)
class LegPlan:
    leg_number: int
    total_legs: int
    mover_id: str
    mover_type: MoverType
    trip_type: TripType
    service_type: ServiceType
    viewer_id: str
    destination_address: str
    destination: Location
    origin_address: Optional[str] = None
    origin: Optional[Location] = None


_TRIP_TYPE_DESCRIPTIONS = {
    TripType.ON_SITE_SERVICE: "Traveling to service location",
    TripType.CUSTOMER_PICKUP: "Customer traveling to pickup",
    TripType.PROVIDER_DROPOFF: "Provider delivering to customer",
    TripType.PROVIDER_PICKUP: "Provider picking up from customer",
    TripType.CUSTOMER_DROPOFF: "Customer returning to provider",
}


def describe_trip_type(trip_type: TripType, mover_type: MoverType) -> str:
    try:
        return _TRIP_TYPE_DESCRIPTIONS[TripType(trip_type)]
    except (KeyError, ValueError):
        if mover_type == MoverType.PROVIDER:
            return "Provider on the way"
        return "Customer on the way"


def plan_legs(
    booking: Booking, fulfillment_type: Optional[str] = None
) -> list[LegPlan]:
    """Return the legs to create for *booking*, in leg order."""
    kind = fulfillment_type or booking.fulfillment_type

    if kind == FulfillmentType.SHIPPING.value:
        return []

    if kind == FulfillmentType.PICKUP_BY_CUSTOMER.value:
        return [_customer_leg(booking, 1, 1, TripType.CUSTOMER_PICKUP)]

    if kind == FulfillmentType.PICKUP_AND_DROP_OFF_BY_CUSTOMER.value:
        return [
            _customer_leg(booking, 1, 2, TripType.CUSTOMER_PICKUP),
            _customer_leg(booking, 2, 2, TripType.CUSTOMER_DROPOFF),
        ]

    if kind == FulfillmentType.DROP_OFF_BY_PROVIDER.value:
        return [_provider_leg(booking, 1, 1, TripType.PROVIDER_DROPOFF)]

    if kind == FulfillmentType.PICKUP_AND_DROP_OFF_BY_PROVIDER.value:
        return [
            _provider_leg(booking, 1, 2, TripType.PROVIDER_PICKUP),
            _provider_leg(booking, 2, 2, TripType.PROVIDER_DROPOFF),
        ]

    # Default: on-site service, provider travels to the customer
    if booking.service_location is None:
        return []
    return [_provider_leg(booking, 1, 1, TripType.ON_SITE_SERVICE)]


def _customer_leg(
    booking: Booking, leg: int, total: int, trip_type: TripType
) -> LegPlan:
    if booking.listing_location is None:
        raise BookingIncomplete(f"Booking {booking.id} has no listing location")
    return LegPlan(
        leg_number=leg,
        total_legs=total,
        mover_id=booking.customer_id,
        mover_type=MoverType.CUSTOMER,
        trip_type=trip_type,
        service_type=booking.service_type,
        viewer_id=booking.provider_id,
        destination_address=booking.listing_address or "",
        destination=booking.listing_location,
    )


def _provider_leg(
    booking: Booking, leg: int, total: int, trip_type: TripType
) -> LegPlan:
    if booking.service_location is None:
        raise BookingIncomplete(f"Booking {booking.id} has no service location")
    return LegPlan(
        leg_number=leg,
        total_legs=total,
        mover_id=booking.provider_id,
        mover_type=MoverType.PROVIDER,
        trip_type=trip_type,
        service_type=booking.service_type,
        viewer_id=booking.customer_id,
        origin_address=booking.listing_address,
        origin=booking.listing_location,
        destination_address=booking.service_address or "",
        destination=booking.service_location,
    )
