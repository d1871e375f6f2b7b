"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Seat counter changes are expressed as
single conditional ``UPDATE`` statements so the database, not Python,
evaluates them against the current row.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Optional

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import aliased

from .models import BookingModel, LocationSampleModel, RideModel, UserModel
from carpool.domain.entities import BoundingBox
from carpool.domain.enums import ACTIVE_BOOKING_STATUSES, RideStatus

_ACTIVE = sorted(ACTIVE_BOOKING_STATUSES)


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        await self.session.refresh(ride)
        return ride

    async def get_by_id(self, ride_id: int) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def get_for_update(self, ride_id: int) -> Optional[RideModel]:
        """SELECT ... FOR UPDATE so concurrent writers on this ride queue up."""
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_with_driver(
        self, ride_id: int
    ) -> Optional[tuple[RideModel, UserModel]]:
        result = await self.session.execute(
            select(RideModel, UserModel)
            .join(UserModel, RideModel.driver_id == UserModel.id)
            .where(RideModel.id == ride_id)
        )
        row = result.first()
        return (row[0], row[1]) if row else None

    async def search(
        self,
        *,
        seats_needed: int = 1,
        on_date: Optional[date] = None,
        origin_box: Optional[BoundingBox] = None,
        destination_box: Optional[BoundingBox] = None,
    ) -> list[tuple[RideModel, UserModel]]:
        query = (
            select(RideModel, UserModel)
            .join(UserModel, RideModel.driver_id == UserModel.id)
            .where(
                RideModel.status == RideStatus.SCHEDULED,
                RideModel.available_seats >= seats_needed,
            )
        )
        if on_date is not None:
            start = datetime.combine(on_date, time.min)
            query = query.where(
                RideModel.departure_time >= start,
                RideModel.departure_time < start + timedelta(days=1),
            )
        if origin_box is not None:
            query = query.where(
                _in_box(RideModel.origin_lat, RideModel.origin_lng, origin_box)
            )
        if destination_box is not None:
            query = query.where(
                _in_box(
                    RideModel.destination_lat,
                    RideModel.destination_lng,
                    destination_box,
                )
            )
        result = await self.session.execute(
            query.order_by(RideModel.departure_time.asc(), RideModel.id.asc())
        )
        return [(ride, driver) for ride, driver in result.all()]

    async def list_by_driver(self, driver_id: int) -> list[RideModel]:
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.driver_id == driver_id)
            .order_by(RideModel.departure_time.desc(), RideModel.id.desc())
        )
        return list(result.scalars().all())

    async def apply_update(
        self, ride_id: int, values: dict, new_total_seats: Optional[int] = None
    ) -> None:
        """
        Write *values* in one statement.

        When *new_total_seats* is given, ``available_seats`` becomes
        ``max(0, new_total - booked)`` where ``booked`` is read from the
        row being updated, never from a Python-side copy.
        """
        values = dict(values)
        if new_total_seats is not None:
            booked = RideModel.total_seats - RideModel.available_seats
            values["total_seats"] = new_total_seats
            values["available_seats"] = case(
                (booked >= new_total_seats, 0),
                else_=new_total_seats - booked,
            )
        values["updated_at"] = func.now()
        await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id)
            .values(**values)
            .execution_options(synchronize_session=False)
        )

    async def decrement_available(self, ride_id: int, count: int) -> bool:
        """Take *count* seats if that many are free.  False when they are not."""
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id, RideModel.available_seats >= count)
            .values(
                available_seats=RideModel.available_seats - count,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def increment_available(self, ride_id: int, count: int) -> bool:
        """Return *count* seats, never past ``total_seats``."""
        restored = RideModel.available_seats + count
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id)
            .values(
                available_seats=case(
                    (restored > RideModel.total_seats, RideModel.total_seats),
                    else_=restored,
                ),
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def delete(self, ride_id: int) -> None:
        await self.session.execute(delete(RideModel).where(RideModel.id == ride_id))

    async def refresh(self, ride: RideModel) -> RideModel:
        await self.session.refresh(ride)
        return ride


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: BookingModel) -> BookingModel:
        self.session.add(booking)
        await self.session.flush()
        await self.session.refresh(booking)
        return booking

    async def ride_id_of(self, booking_id: int) -> Optional[int]:
        result = await self.session.execute(
            select(BookingModel.ride_id).where(BookingModel.id == booking_id)
        )
        return result.scalar_one_or_none()

    async def get_for_update(self, booking_id: int) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_with_parties(
        self, booking_id: int
    ) -> Optional[tuple[BookingModel, RideModel, UserModel, UserModel]]:
        """Booking plus its ride, the ride's driver and the passenger."""
        driver = aliased(UserModel)
        passenger = aliased(UserModel)
        result = await self.session.execute(
            select(BookingModel, RideModel, driver, passenger)
            .join(RideModel, BookingModel.ride_id == RideModel.id)
            .join(driver, RideModel.driver_id == driver.id)
            .join(passenger, BookingModel.passenger_id == passenger.id)
            .where(BookingModel.id == booking_id)
        )
        row = result.first()
        return tuple(row) if row else None

    async def list_for_passenger(
        self, passenger_id: int
    ) -> list[tuple[BookingModel, RideModel, UserModel]]:
        result = await self.session.execute(
            select(BookingModel, RideModel, UserModel)
            .join(RideModel, BookingModel.ride_id == RideModel.id)
            .join(UserModel, RideModel.driver_id == UserModel.id)
            .where(BookingModel.passenger_id == passenger_id)
            .order_by(RideModel.departure_time.desc(), BookingModel.id.desc())
        )
        return [tuple(row) for row in result.all()]

    async def list_for_ride(
        self, ride_id: int
    ) -> list[tuple[BookingModel, UserModel]]:
        result = await self.session.execute(
            select(BookingModel, UserModel)
            .join(UserModel, BookingModel.passenger_id == UserModel.id)
            .where(BookingModel.ride_id == ride_id)
            .order_by(BookingModel.created_at.desc(), BookingModel.id.desc())
        )
        return [tuple(row) for row in result.all()]

    async def list_active_for_ride_for_update(
        self, ride_id: int
    ) -> list[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.status.in_(_ACTIVE),
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def has_active_booking(self, ride_id: int, passenger_id: int) -> bool:
        result = await self.session.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.passenger_id == passenger_id,
                BookingModel.status.in_(_ACTIVE),
            )
        )
        return (result.scalar() or 0) > 0

    async def count_active(self, ride_id: int) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.status.in_(_ACTIVE),
            )
        )
        return result.scalar() or 0


class LocationRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def append(self, sample: LocationSampleModel) -> LocationSampleModel:
        self.session.add(sample)
        await self.session.flush()
        return sample

    async def recent(self, ride_id: int, limit: int) -> list[LocationSampleModel]:
        result = await self.session.execute(
            select(LocationSampleModel)
            .where(LocationSampleModel.ride_id == ride_id)
            .order_by(
                LocationSampleModel.recorded_at.desc(),
                LocationSampleModel.id.desc(),
            )
            .limit(limit)
        )
        return list(result.scalars().all())

    async def rides_over_retention(self, keep: int) -> list[int]:
        result = await self.session.execute(
            select(LocationSampleModel.ride_id)
            .group_by(LocationSampleModel.ride_id)
            .having(func.count() > keep)
        )
        return list(result.scalars().all())

    async def prune(self, ride_id: int, keep: int) -> int:
        """Delete all but the newest *keep* samples of one ride."""
        newest = (
            select(LocationSampleModel.id)
            .where(LocationSampleModel.ride_id == ride_id)
            .order_by(
                LocationSampleModel.recorded_at.desc(),
                LocationSampleModel.id.desc(),
            )
            .limit(keep)
        )
        result = await self.session.execute(
            delete(LocationSampleModel)
            .where(
                LocationSampleModel.ride_id == ride_id,
                LocationSampleModel.id.not_in(newest.scalar_subquery()),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0


def _in_box(lat_col, lng_col, box: BoundingBox):
    return and_(
        lat_col.between(box.min_lat, box.max_lat),
        lng_col.between(box.min_lng, box.max_lng),
    )
