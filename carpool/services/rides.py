"""
Ride lifecycle operations.

Owns ride records, the ``available_seats`` counter and the ride status
state machine.  ``reserve_seats`` / ``release_seats`` take the caller's
session: they only ever run inside a booking transaction.
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carpool.domain.entities import BoundingBox, Location, Principal
from carpool.domain.enums import BookingStatus, RideStatus
from carpool.domain.errors import (
    Forbidden,
    InsufficientCapacity,
    InvalidOperation,
    NotFound,
)
from carpool.domain.lifecycle import check_ride_transition
from carpool.domain.pricing import MAX_AMOUNT, to_money
from carpool.infrastructure.database import read_session, transaction
from carpool.infrastructure.models import RideModel, UserModel
from carpool.infrastructure.repositories import BookingRepository, RideRepository

logger = logging.getLogger(__name__)

# Fields a driver may change through ``update``
UPDATABLE_FIELDS = (
    "departure_time",
    "arrival_time",
    "total_seats",
    "price_per_seat",
    "status",
    "notes",
)

# Fields a driver may reset to null
CLEARABLE_FIELDS = {"arrival_time", "notes"}

# Ride statuses that end the live location stream
_CLOSING_STATUSES = {RideStatus.COMPLETED, RideStatus.CANCELLED}


class RideService:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession], publisher=None):
        self.session_factory = session_factory
        # Anything with ``async close_channel(ride_id)``; see carpool.realtime.broker
        self.publisher = publisher

    # ── Driver operations ─────────────────────────────────────────────

    async def create(
        self,
        principal: Principal,
        *,
        origin: Location,
        destination: Location,
        departure_time: datetime,
        total_seats: int,
        price_per_seat,
        notes: Optional[str] = None,
        arrival_time: Optional[datetime] = None,
    ) -> RideModel:
        if not principal.is_driver:
            raise Forbidden("Only drivers can create rides")
        if total_seats < 1:
            raise InvalidOperation("total_seats must be positive")
        price_per_seat = _checked_price(price_per_seat)

        ride = RideModel(
            driver_id=principal.user_id,
            origin_lat=origin.latitude,
            origin_lng=origin.longitude,
            origin_address=origin.address,
            destination_lat=destination.latitude,
            destination_lng=destination.longitude,
            destination_address=destination.address,
            departure_time=departure_time,
            arrival_time=arrival_time,
            total_seats=total_seats,
            available_seats=total_seats,
            price_per_seat=price_per_seat,
            status=RideStatus.SCHEDULED,
            notes=notes,
        )
        try:
            async with transaction(self.session_factory) as session:
                ride = await RideRepository(session).create(ride)
        except IntegrityError as exc:
            raise NotFound("Driver account not found") from exc

        logger.info(
            "Ride %s created by driver %s (%d seats)",
            ride.id,
            principal.user_id,
            total_seats,
        )
        return ride

    async def update(
        self, ride_id: int, driver_id: int, fields: dict[str, Any]
    ) -> RideModel:
        """
        Apply the supplied *fields*; omitted fields keep their value.
        An explicit ``None`` clears ``arrival_time`` or ``notes`` and is
        ignored for the other fields.

        A missing ride and a ride owned by someone else are both
        ``Forbidden``, so other drivers learn nothing about the ride.
        """
        changes = {
            k: v
            for k, v in fields.items()
            if k in UPDATABLE_FIELDS and (v is not None or k in CLEARABLE_FIELDS)
        }
        closing = False

        async with transaction(self.session_factory) as session:
            rides = RideRepository(session)
            ride = await rides.get_for_update(ride_id)
            if ride is None or ride.driver_id != driver_id:
                raise Forbidden("Not authorized to update this ride")

            new_total = changes.pop("total_seats", None)
            if new_total is not None:
                if new_total < 1:
                    raise InvalidOperation("total_seats must be positive")
                if new_total == ride.total_seats:
                    new_total = None

            if "price_per_seat" in changes:
                changes["price_per_seat"] = _checked_price(changes["price_per_seat"])

            new_status = changes.get("status")
            if new_status is not None:
                new_status = RideStatus(new_status)
                if new_status == RideStatus(ride.status):
                    del changes["status"]
                    new_status = None
                else:
                    check_ride_transition(ride.status, new_status)
                    changes["status"] = new_status

            if new_status == RideStatus.CANCELLED:
                await self._cancel_active_bookings(session, ride_id)

            await rides.apply_update(ride_id, changes, new_total_seats=new_total)
            ride = await rides.refresh(ride)
            closing = new_status in _CLOSING_STATUSES

        logger.info("Ride %s updated by driver %s: %s", ride_id, driver_id, sorted(fields))
        if closing:
            await self._close_channel(ride_id)
        return ride

    async def delete(self, ride_id: int, driver_id: int) -> None:
        """
        Delete a ride owned by *driver_id*.

        Rejected with ``InvalidOperation`` while any booking on the ride is
        still active; cancel or complete them first.  Inactive bookings and
        location history are removed with the ride.
        """
        async with transaction(self.session_factory) as session:
            rides = RideRepository(session)
            ride = await rides.get_for_update(ride_id)
            if ride is None or ride.driver_id != driver_id:
                raise Forbidden("Not authorized to delete this ride or ride not found")
            if await BookingRepository(session).count_active(ride_id):
                raise InvalidOperation(
                    "Ride has active bookings; cancel the ride instead"
                )
            await rides.delete(ride_id)

        logger.info("Ride %s deleted by driver %s", ride_id, driver_id)
        await self._close_channel(ride_id)

    # ── Reads ─────────────────────────────────────────────────────────

    async def get(self, ride_id: int) -> tuple[RideModel, UserModel]:
        async with read_session(self.session_factory) as session:
            row = await RideRepository(session).get_with_driver(ride_id)
        if row is None:
            raise NotFound("Ride not found")
        return row

    async def search(
        self,
        *,
        seats_needed: int = 1,
        on_date: Optional[date] = None,
        origin_box: Optional[BoundingBox] = None,
        destination_box: Optional[BoundingBox] = None,
    ) -> list[tuple[RideModel, UserModel]]:
        async with read_session(self.session_factory) as session:
            return await RideRepository(session).search(
                seats_needed=max(seats_needed, 1),
                on_date=on_date,
                origin_box=origin_box,
                destination_box=destination_box,
            )

    async def list_by_driver(self, driver_id: int) -> list[RideModel]:
        async with read_session(self.session_factory) as session:
            return await RideRepository(session).list_by_driver(driver_id)

    # ── Capacity (call only inside the booking transaction) ───────────

    @staticmethod
    async def reserve_seats(session: AsyncSession, ride_id: int, count: int) -> None:
        if count < 1:
            raise InvalidOperation("Seat count must be positive")
        if not await RideRepository(session).decrement_available(ride_id, count):
            raise InsufficientCapacity("Not enough seats available")

    @staticmethod
    async def release_seats(session: AsyncSession, ride_id: int, count: int) -> None:
        if count < 1:
            raise InvalidOperation("Seat count must be positive")
        if not await RideRepository(session).increment_available(ride_id, count):
            raise NotFound("Ride not found")

    # ── Internals ─────────────────────────────────────────────────────

    async def _cancel_active_bookings(self, session: AsyncSession, ride_id: int) -> None:
        """Cancel every active booking on a ride that is being cancelled."""
        for booking in await BookingRepository(session).list_active_for_ride_for_update(
            ride_id
        ):
            booking.status = BookingStatus.CANCELLED
            await self.release_seats(session, ride_id, booking.seats_booked)
        await session.flush()

    async def _close_channel(self, ride_id: int) -> None:
        if self.publisher is None:
            return
        try:
            await self.publisher.close_channel(ride_id)
        except Exception:
            logger.warning("Could not close live channel of ride %s", ride_id, exc_info=True)


def _checked_price(value):
    price = to_money(value)
    if price < 0:
        raise InvalidOperation("price_per_seat cannot be negative")
    if price > MAX_AMOUNT:
        raise InvalidOperation("price_per_seat is too large")
    return price
