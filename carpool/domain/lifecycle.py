"""
Central validation for ride and booking status changes.

Every status change in the services goes through one of these two
functions; the tables they read live in :mod:`carpool.domain.enums`.
"""

from __future__ import annotations

from .enums import (
    ACTIVE_BOOKING_STATUSES,
    BOOKING_TRANSITIONS,
    RIDE_TRANSITIONS,
    Actor,
    BookingStatus,
    RideStatus,
)
from .errors import Forbidden, InvalidState


def check_ride_transition(current: RideStatus, new: RideStatus) -> None:
    """Raise ``InvalidState`` unless *current* -> *new* is a legal ride move."""
    current, new = RideStatus(current), RideStatus(new)
    if new not in RIDE_TRANSITIONS.get(current, set()):
        raise InvalidState(f"Cannot move ride from {current.value} to {new.value}")


def check_booking_transition(
    current: BookingStatus, new: BookingStatus, actor: Actor
) -> None:
    """
    Validate a booking move for the given actor.

    An illegal move raises ``InvalidState`` whoever asks; a legal move
    requested by the wrong party raises ``Forbidden``.
    """
    current, new = BookingStatus(current), BookingStatus(new)
    allowed = BOOKING_TRANSITIONS.get(current, {})
    if new not in allowed:
        raise InvalidState(
            f"Cannot move booking from {current.value} to {new.value}"
        )
    if actor not in allowed[new]:
        raise Forbidden(f"Only the {_describe(allowed[new])} may set {new.value}")


def releases_seats(current: BookingStatus, new: BookingStatus) -> bool:
    """True when the move takes the booking out of the active set."""
    return (
        BookingStatus(current) in ACTIVE_BOOKING_STATUSES
        and BookingStatus(new) not in ACTIVE_BOOKING_STATUSES
    )


def _describe(actors: frozenset[Actor]) -> str:
    return " or ".join(sorted(a.value for a in actors))
