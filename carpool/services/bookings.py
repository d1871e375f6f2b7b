"""
Seat reservation and booking lifecycle.

Concurrency safety
------------------
* The ride row is read with **SELECT … FOR UPDATE** before any capacity
  check, so concurrent bookings on one ride are serialised by the store.
* The seat decrement is a conditional ``UPDATE`` (``available_seats >=
  n``), so even without the row lock the counter can never go negative.
* The partial unique index on ``(ride_id, passenger_id)`` for active rows
  rejects a second concurrent booking by the same passenger; that
  violation is reported as ``DuplicateBooking``.
* Booking insert and seat decrement share one transaction: either both
  commit or neither does.
"""

from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .rides import RideService
from carpool.domain.entities import Location
from carpool.domain.enums import Actor, BookingStatus, RideStatus
from carpool.domain.errors import (
    DuplicateBooking,
    Forbidden,
    InsufficientCapacity,
    InvalidOperation,
    NotFound,
)
from carpool.domain.lifecycle import check_booking_transition, releases_seats
from carpool.domain.pricing import MAX_AMOUNT, booking_total
from carpool.infrastructure.database import (
    is_unique_violation,
    read_session,
    transaction,
)
from carpool.infrastructure.models import BookingModel, RideModel, UserModel
from carpool.infrastructure.repositories import BookingRepository, RideRepository

logger = logging.getLogger(__name__)


class BookingService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    async def create_booking(
        self,
        passenger_id: int,
        ride_id: int,
        seats_booked: int,
        pickup: Optional[Location] = None,
        dropoff: Optional[Location] = None,
    ) -> BookingModel:
        if seats_booked < 1:
            raise InvalidOperation("seats_booked must be positive")

        try:
            async with transaction(self.session_factory) as session:
                ride = await RideRepository(session).get_for_update(ride_id)
                if ride is None or RideStatus(ride.status) != RideStatus.SCHEDULED:
                    raise NotFound("Ride not found or not available")
                if ride.driver_id == passenger_id:
                    raise InvalidOperation("Drivers cannot book their own rides")
                bookings = BookingRepository(session)
                if await bookings.has_active_booking(ride_id, passenger_id):
                    raise DuplicateBooking("You have already booked this ride")
                if seats_booked > ride.available_seats:
                    raise InsufficientCapacity("Not enough seats available")

                total_price = booking_total(seats_booked, ride.price_per_seat)
                if total_price > MAX_AMOUNT:
                    raise InvalidOperation("Booking total is too large")

                booking = BookingModel(
                    ride_id=ride_id,
                    passenger_id=passenger_id,
                    seats_booked=seats_booked,
                    total_price=total_price,
                    status=BookingStatus.PENDING,
                    **_point_columns("pickup", pickup),
                    **_point_columns("dropoff", dropoff),
                )
                booking = await bookings.create(booking)
                await RideService.reserve_seats(session, ride_id, seats_booked)
        except IntegrityError as exc:
            if is_unique_violation(exc):
                raise DuplicateBooking("You have already booked this ride") from exc
            raise NotFound("Ride or passenger not found") from exc

        logger.info(
            "Booking %s: passenger %s reserved %d seat(s) on ride %s",
            booking.id,
            passenger_id,
            seats_booked,
            ride_id,
        )
        return booking

    async def update_status(
        self, booking_id: int, requester_id: int, new_status: BookingStatus
    ) -> BookingModel:
        """
        Move a booking through its state machine.

        Leaving the active set (``cancelled`` or ``completed``) returns the
        seats to the ride in the same transaction.  Both end states are
        terminal, so a booking can give its seats back only once.
        """
        new_status = BookingStatus(new_status)

        async with transaction(self.session_factory) as session:
            bookings = BookingRepository(session)
            ride_id = await bookings.ride_id_of(booking_id)
            if ride_id is None:
                raise NotFound("Booking not found")
            # Ride row first, then the booking: the order ride cancellation uses
            ride = await RideRepository(session).get_for_update(ride_id)
            booking = await bookings.get_for_update(booking_id)
            if booking is None:
                raise NotFound("Booking not found")
            actor = _actor_for(requester_id, booking, ride)
            if actor is None:
                raise Forbidden("Not authorized to update this booking")

            current = BookingStatus(booking.status)
            check_booking_transition(current, new_status, actor)

            booking.status = new_status
            await session.flush()
            if releases_seats(current, new_status):
                await RideService.release_seats(
                    session, booking.ride_id, booking.seats_booked
                )
            await session.refresh(booking)

        logger.info(
            "Booking %s moved %s -> %s by %s %s",
            booking_id,
            current.value,
            new_status.value,
            actor.value,
            requester_id,
        )
        return booking

    # ── Reads ─────────────────────────────────────────────────────────

    async def get(
        self, booking_id: int, requester_id: int
    ) -> tuple[BookingModel, RideModel, UserModel, UserModel]:
        """Booking with its ride, driver and passenger; parties only."""
        async with read_session(self.session_factory) as session:
            row = await BookingRepository(session).get_with_parties(booking_id)
        if row is None:
            raise NotFound("Booking not found")
        booking, ride, _driver, _passenger = row
        if _actor_for(requester_id, booking, ride) is None:
            raise Forbidden("Not authorized to view this booking")
        return row

    async def list_for_passenger(
        self, passenger_id: int
    ) -> list[tuple[BookingModel, RideModel, UserModel]]:
        async with read_session(self.session_factory) as session:
            return await BookingRepository(session).list_for_passenger(passenger_id)

    async def list_for_ride(
        self, ride_id: int, requester_id: int
    ) -> list[tuple[BookingModel, UserModel]]:
        async with read_session(self.session_factory) as session:
            ride = await RideRepository(session).get_by_id(ride_id)
            if ride is None or ride.driver_id != requester_id:
                raise Forbidden("Not authorized to view these bookings")
            return await BookingRepository(session).list_for_ride(ride_id)


def _actor_for(
    user_id: int, booking: BookingModel, ride: Optional[RideModel]
) -> Optional[Actor]:
    """The principal is the ride's driver or the booking's passenger, or neither."""
    if ride is not None and ride.driver_id == user_id:
        return Actor.DRIVER
    if booking.passenger_id == user_id:
        return Actor.PASSENGER
    return None


def _point_columns(prefix: str, point: Optional[Location]) -> dict:
    if point is None:
        return {}
    return {
        f"{prefix}_lat": point.latitude,
        f"{prefix}_lng": point.longitude,
        f"{prefix}_address": point.address,
    }
