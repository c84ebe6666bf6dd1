"""Error taxonomy shared by the domain, the store and the API layer."""


class TripError(Exception):
    """Base class for trip-tracking failures."""

    code = "trip_error"


class InvalidTransition(TripError):
    """Requested status change is not reachable from the current status."""

    code = "invalid_transition"


class Unauthorized(TripError):
    """Caller is not allowed to act on this trip."""

    code = "unauthorized"


class TripClosed(TripError):
    """Update attempted against a completed or canceled trip."""

    code = "trip_closed"


class StaleUpdate(TripError):
    """Location sample is older than the last applied one."""

    code = "stale_update"


class TripNotFound(TripError):
    code = "trip_not_found"


class BookingNotFound(TripError):
    code = "booking_not_found"


class TransportFailure(TripError):
    """Store or pub/sub channel unreachable. Safe to retry with backoff."""

    code = "transport_failure"


class BookingIncomplete(TripError):
    """Booking lacks an address or coordinates a planned leg needs."""

    code = "booking_incomplete"
