"""Domain enumerations and state-transition rules."""

import enum


class TripStatus(str, enum.Enum):
    NOT_STARTED = "not_started"
    ON_THE_WAY = "on_the_way"
    ARRIVING_SOON = "arriving_soon"
    ARRIVED = "arrived"
    COMPLETED = "completed"
    CANCELED = "canceled"


# State machine: maps current status -> set of valid next statuses
TRIP_TRANSITIONS: dict[TripStatus, set[TripStatus]] = {
    TripStatus.NOT_STARTED: {TripStatus.ON_THE_WAY, TripStatus.CANCELED},
    TripStatus.ON_THE_WAY: {
        TripStatus.ARRIVING_SOON,
        TripStatus.ARRIVED,
        TripStatus.CANCELED,
    },
    TripStatus.ARRIVING_SOON: {TripStatus.ARRIVED, TripStatus.CANCELED},
    TripStatus.ARRIVED: {TripStatus.COMPLETED, TripStatus.CANCELED},
    TripStatus.COMPLETED: set(),
    TripStatus.CANCELED: set(),
}

TERMINAL_STATUSES = frozenset({TripStatus.COMPLETED, TripStatus.CANCELED})

# Statuses in which the mover is physically travelling
MOVING_STATUSES = frozenset({TripStatus.ON_THE_WAY, TripStatus.ARRIVING_SOON})

# Timestamp column written when a status is entered
STATUS_TIMESTAMPS: dict[TripStatus, str] = {
    TripStatus.ON_THE_WAY: "started_at",
    TripStatus.ARRIVING_SOON: "arriving_soon_at",
    TripStatus.ARRIVED: "arrived_at",
    TripStatus.COMPLETED: "completed_at",
    TripStatus.CANCELED: "canceled_at",
}


class MoverType(str, enum.Enum):
    PROVIDER = "provider"
    CUSTOMER = "customer"


class TripType(str, enum.Enum):
    ON_SITE_SERVICE = "on_site_service"
    CUSTOMER_PICKUP = "customer_pickup"
    PROVIDER_DROPOFF = "provider_dropoff"
    PROVIDER_PICKUP = "provider_pickup"
    CUSTOMER_DROPOFF = "customer_dropoff"


class ServiceType(str, enum.Enum):
    JOB = "job"
    SERVICE = "service"
    CUSTOM_SERVICE = "custom_service"


class UpdateSource(str, enum.Enum):
    APP = "app"
    BACKGROUND = "background"
    MANUAL = "manual"


class FulfillmentType(str, enum.Enum):
    PICKUP_BY_CUSTOMER = "PickupByCustomer"
    DROP_OFF_BY_PROVIDER = "DropOffByProvider"
    PICKUP_AND_DROP_OFF_BY_CUSTOMER = "PickupAndDropOffByCustomer"
    PICKUP_AND_DROP_OFF_BY_PROVIDER = "PickupAndDropOffByProvider"
    SHIPPING = "Shipping"
    ON_SITE = "OnSite"
