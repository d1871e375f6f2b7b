"""Domain enumerations and state-transition rules."""

import enum


class RideStatus(str, enum.Enum):
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class BookingStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class Actor(str, enum.Enum):
    """Role a principal plays relative to one booking."""

    DRIVER = "driver"
    PASSENGER = "passenger"


# Bookings in these states hold seats on their ride
ACTIVE_BOOKING_STATUSES: frozenset[BookingStatus] = frozenset(
    {BookingStatus.PENDING, BookingStatus.CONFIRMED}
)

_ANYONE = frozenset({Actor.DRIVER, Actor.PASSENGER})

# State machine: maps current status -> set of valid next statuses.
# Only the ride's driver may move a ride.
RIDE_TRANSITIONS: dict[RideStatus, set[RideStatus]] = {
    RideStatus.SCHEDULED: {RideStatus.IN_PROGRESS, RideStatus.CANCELLED},
    RideStatus.IN_PROGRESS: {RideStatus.COMPLETED, RideStatus.CANCELLED},
    RideStatus.COMPLETED: set(),
    RideStatus.CANCELLED: set(),
}

# State machine: maps current status -> {next status: actors allowed to move it}
BOOKING_TRANSITIONS: dict[BookingStatus, dict[BookingStatus, frozenset[Actor]]] = {
    BookingStatus.PENDING: {
        BookingStatus.CONFIRMED: frozenset({Actor.DRIVER}),
        BookingStatus.CANCELLED: _ANYONE,
    },
    BookingStatus.CONFIRMED: {
        BookingStatus.COMPLETED: _ANYONE,
        BookingStatus.CANCELLED: _ANYONE,
    },
    BookingStatus.COMPLETED: {},
    BookingStatus.CANCELLED: {},
}
