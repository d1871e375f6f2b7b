"""Seat reservation and booking lifecycle tests against SQLite."""

from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from carpool.domain.entities import Location
from carpool.domain.enums import BookingStatus, RideStatus
from carpool.domain.errors import (
    DuplicateBooking,
    Forbidden,
    InsufficientCapacity,
    InvalidOperation,
    InvalidState,
    NotFound,
    Unavailable,
)
from carpool.infrastructure.models import RideModel
from carpool.services.rides import RideService
from tests.conftest import capacity_holds


async def _available(session_factory, ride_id: int) -> int:
    async with session_factory() as session:
        ride = await session.get(RideModel, ride_id)
        return ride.available_seats


class TestCreateBooking:
    @pytest.mark.asyncio
    async def test_marketplace_walkthrough(
        self, booking_service, make_ride, users, session_factory
    ):
        ride = await make_ride(seats=3, price="10.00")

        b1 = await booking_service.create_booking(users.p, ride.id, 2)
        assert b1.status == BookingStatus.PENDING
        assert await _available(session_factory, ride.id) == 1

        with pytest.raises(DuplicateBooking):
            await booking_service.create_booking(users.p, ride.id, 1)

        b2 = await booking_service.create_booking(users.q, ride.id, 1)
        assert b2.status == BookingStatus.PENDING
        assert await _available(session_factory, ride.id) == 0

        with pytest.raises(InsufficientCapacity):
            await booking_service.create_booking(users.q2, ride.id, 1)

        await booking_service.update_status(b1.id, users.driver, BookingStatus.CANCELLED)
        assert await _available(session_factory, ride.id) == 2
        assert await capacity_holds(session_factory, ride.id)

    @pytest.mark.asyncio
    async def test_booking_exactly_the_free_seats(
        self, booking_service, make_ride, users, session_factory
    ):
        ride = await make_ride(seats=3)
        await booking_service.create_booking(users.p, ride.id, 3)
        assert await _available(session_factory, ride.id) == 0

    @pytest.mark.asyncio
    async def test_one_seat_too_many(self, booking_service, make_ride, users, session_factory):
        ride = await make_ride(seats=3)
        with pytest.raises(InsufficientCapacity):
            await booking_service.create_booking(users.p, ride.id, 4)
        assert await _available(session_factory, ride.id) == 3

    @pytest.mark.asyncio
    async def test_total_price_is_seats_times_price(self, booking_service, make_ride, users):
        ride = await make_ride(price="25.00")
        booking = await booking_service.create_booking(users.p, ride.id, 2)
        assert booking.total_price == Decimal("50.00")

    @pytest.mark.asyncio
    async def test_total_above_largest_amount_rejected(
        self, booking_service, make_ride, users, session_factory
    ):
        ride = await make_ride(seats=3, price="99999999.99")
        await booking_service.create_booking(users.q, ride.id, 1)
        with pytest.raises(InvalidOperation):
            await booking_service.create_booking(users.p, ride.id, 2)
        assert await _available(session_factory, ride.id) == 2
        assert await capacity_holds(session_factory, ride.id)

    @pytest.mark.asyncio
    async def test_pickup_and_dropoff_are_stored(self, booking_service, make_ride, users):
        ride = await make_ride()
        booking = await booking_service.create_booking(
            users.p,
            ride.id,
            1,
            pickup=Location(19.11, 72.87, "Andheri station"),
            dropoff=Location(18.53, 73.85, "Pune station"),
        )
        assert (booking.pickup_lat, booking.pickup_address) == (19.11, "Andheri station")
        assert booking.dropoff_lng == 73.85

    @pytest.mark.asyncio
    async def test_driver_cannot_book_own_ride(self, booking_service, make_ride, users):
        ride = await make_ride()
        with pytest.raises(InvalidOperation):
            await booking_service.create_booking(users.driver, ride.id, 1)

    @pytest.mark.asyncio
    async def test_missing_ride(self, booking_service, users):
        with pytest.raises(NotFound):
            await booking_service.create_booking(users.p, 424242, 1)

    @pytest.mark.asyncio
    async def test_ride_not_open_for_booking(
        self, booking_service, ride_service, make_ride, users
    ):
        ride = await make_ride()
        await ride_service.update(ride.id, users.driver, {"status": RideStatus.IN_PROGRESS})
        with pytest.raises(NotFound):
            await booking_service.create_booking(users.p, ride.id, 1)

    @pytest.mark.asyncio
    async def test_unknown_passenger_account(self, booking_service, make_ride, users):
        ride = await make_ride()
        with pytest.raises(NotFound):
            await booking_service.create_booking(9999, ride.id, 1)

    @pytest.mark.asyncio
    async def test_rebooking_after_cancel_is_allowed(
        self, booking_service, make_ride, users
    ):
        ride = await make_ride()
        first = await booking_service.create_booking(users.p, ride.id, 1)
        await booking_service.update_status(first.id, users.p, BookingStatus.CANCELLED)
        second = await booking_service.create_booking(users.p, ride.id, 1)
        assert second.id != first.id


class TestUpdateStatus:
    @pytest.mark.asyncio
    async def test_double_cancel_releases_once(
        self, booking_service, make_ride, users, session_factory
    ):
        ride = await make_ride(seats=3)
        booking = await booking_service.create_booking(users.p, ride.id, 2)
        await booking_service.update_status(booking.id, users.p, BookingStatus.CANCELLED)
        assert await _available(session_factory, ride.id) == 3

        with pytest.raises(InvalidState):
            await booking_service.update_status(
                booking.id, users.p, BookingStatus.CANCELLED
            )
        assert await _available(session_factory, ride.id) == 3

    @pytest.mark.asyncio
    async def test_cancel_restores_seats_at_any_later_price(
        self, booking_service, ride_service, make_ride, users, session_factory
    ):
        ride = await make_ride(seats=3, price="25.00")
        booking = await booking_service.create_booking(users.p, ride.id, 2)
        await ride_service.update(ride.id, users.driver, {"price_per_seat": 40})

        _, ride_row, _, _ = await booking_service.get(booking.id, users.p)
        assert ride_row.price_per_seat == Decimal("40.00")
        assert booking.total_price == Decimal("50.00")

        cancelled = await booking_service.update_status(
            booking.id, users.p, BookingStatus.CANCELLED
        )
        assert cancelled.total_price == Decimal("50.00")
        assert await _available(session_factory, ride.id) == 3

    @pytest.mark.asyncio
    async def test_driver_confirms_then_passenger_completes(
        self, booking_service, make_ride, users, session_factory
    ):
        ride = await make_ride(seats=3)
        booking = await booking_service.create_booking(users.p, ride.id, 1)

        confirmed = await booking_service.update_status(
            booking.id, users.driver, BookingStatus.CONFIRMED
        )
        assert confirmed.status == BookingStatus.CONFIRMED
        assert await _available(session_factory, ride.id) == 2

        completed = await booking_service.update_status(
            booking.id, users.p, BookingStatus.COMPLETED
        )
        assert completed.status == BookingStatus.COMPLETED
        assert await capacity_holds(session_factory, ride.id)

    @pytest.mark.asyncio
    async def test_passenger_cannot_confirm(self, booking_service, make_ride, users):
        ride = await make_ride()
        booking = await booking_service.create_booking(users.p, ride.id, 1)
        with pytest.raises(Forbidden):
            await booking_service.update_status(
                booking.id, users.p, BookingStatus.CONFIRMED
            )

    @pytest.mark.asyncio
    async def test_third_party_cannot_touch_booking(
        self, booking_service, make_ride, users, session_factory
    ):
        ride = await make_ride()
        booking = await booking_service.create_booking(users.p, ride.id, 1)
        with pytest.raises(Forbidden):
            await booking_service.update_status(
                booking.id, users.outsider, BookingStatus.CANCELLED
            )
        assert await _available(session_factory, ride.id) == 2

    @pytest.mark.asyncio
    async def test_missing_booking(self, booking_service, users):
        with pytest.raises(NotFound):
            await booking_service.update_status(424242, users.p, BookingStatus.CANCELLED)


class TestReads:
    @pytest.mark.asyncio
    async def test_get_for_parties_only(self, booking_service, make_ride, users):
        ride = await make_ride()
        booking = await booking_service.create_booking(users.p, ride.id, 1)

        for requester in (users.p, users.driver):
            row, ride_row, driver, passenger = await booking_service.get(
                booking.id, requester
            )
            assert row.id == booking.id
            assert ride_row.id == ride.id
            assert driver.id == users.driver
            assert passenger.id == users.p

        with pytest.raises(Forbidden):
            await booking_service.get(booking.id, users.outsider)

    @pytest.mark.asyncio
    async def test_get_missing(self, booking_service, users):
        with pytest.raises(NotFound):
            await booking_service.get(424242, users.p)

    @pytest.mark.asyncio
    async def test_list_for_passenger(self, booking_service, make_ride, users):
        first = await make_ride()
        second = await make_ride(driver_id=users.other_driver)
        await booking_service.create_booking(users.p, first.id, 1)
        await booking_service.create_booking(users.p, second.id, 2)
        await booking_service.create_booking(users.q, first.id, 1)

        rows = await booking_service.list_for_passenger(users.p)
        assert {ride.id for _, ride, _ in rows} == {first.id, second.id}
        assert {driver.id for _, _, driver in rows} == {users.driver, users.other_driver}

    @pytest.mark.asyncio
    async def test_list_for_ride_is_driver_only(self, booking_service, make_ride, users):
        ride = await make_ride()
        await booking_service.create_booking(users.p, ride.id, 1)
        await booking_service.create_booking(users.q, ride.id, 1)

        rows = await booking_service.list_for_ride(ride.id, users.driver)
        assert {passenger.id for _, passenger in rows} == {users.p, users.q}

        with pytest.raises(Forbidden):
            await booking_service.list_for_ride(ride.id, users.p)
        with pytest.raises(Forbidden):
            await booking_service.list_for_ride(424242, users.driver)


class TestStoreFailure:
    @pytest.mark.asyncio
    async def test_failure_after_insert_rolls_back_booking_and_seats(
        self, booking_service, make_ride, users, session_factory, monkeypatch
    ):
        ride = await make_ride(seats=3)

        async def connection_lost(session, ride_id, count):
            raise OperationalError("UPDATE rides", {}, ConnectionError("connection lost"))

        monkeypatch.setattr(RideService, "reserve_seats", staticmethod(connection_lost))

        with pytest.raises(Unavailable):
            await booking_service.create_booking(users.p, ride.id, 2)

        assert await booking_service.list_for_passenger(users.p) == []
        assert await _available(session_factory, ride.id) == 3
        assert await capacity_holds(session_factory, ride.id)
