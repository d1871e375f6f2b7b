"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``users``             -- principals known to the auth gateway (read-only here)
* ``rides``             -- ride offers with their live seat counter
* ``bookings``          -- seat reservations against a ride
* ``location_tracking`` -- append-only driver position samples

Constraints
-----------
* ``CHECK`` keeps ``0 <= available_seats <= total_seats`` at the row level.
* A **partial unique index** on ``bookings (ride_id, passenger_id)`` for
  non-cancelled rows allows one active booking per passenger per ride.
* Bookings and location samples cascade with their ride.

Indexes
-------
* **B-Tree** on ride ``status``/``departure_time`` and ``driver_id`` for
  search and driver listings, booking ``passenger_id``, and
  ``(ride_id, recorded_at)`` for newest-first history reads.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    func,
    text,
)

from .database import Base
from carpool.domain.enums import BookingStatus, RideStatus


def _enum_values(enum_cls):
    # Persist the lowercase wire values, not the member names
    return [member.value for member in enum_cls]


class UserModel(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, autoincrement=True)
    first_name = Column(String(100), nullable=False)
    last_name = Column(String(100), nullable=False)
    email = Column(String(255), unique=True, nullable=False)
    phone = Column(String(30), nullable=True)
    is_driver = Column(Boolean, default=False, nullable=False)
    rating = Column(Float, default=5.0)
    car_model = Column(String(100), nullable=True)
    car_plate = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class RideModel(Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(Integer, ForeignKey("users.id"), nullable=False)

    origin_lat = Column(Float, nullable=False)
    origin_lng = Column(Float, nullable=False)
    origin_address = Column(String(255), nullable=True)
    destination_lat = Column(Float, nullable=False)
    destination_lng = Column(Float, nullable=False)
    destination_address = Column(String(255), nullable=True)

    departure_time = Column(DateTime(timezone=True), nullable=False)
    arrival_time = Column(DateTime(timezone=True), nullable=True)
    total_seats = Column(Integer, nullable=False)
    available_seats = Column(Integer, nullable=False)
    price_per_seat = Column(Numeric(10, 2), nullable=False)
    status = Column(
        Enum(RideStatus, name="ridestatus", values_callable=_enum_values),
        default=RideStatus.SCHEDULED,
        nullable=False,
    )
    notes = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("total_seats > 0", name="ck_rides_total_seats_positive"),
        CheckConstraint(
            "available_seats >= 0 AND available_seats <= total_seats",
            name="ck_rides_available_seats_bounds",
        ),
        CheckConstraint("price_per_seat >= 0", name="ck_rides_price_non_negative"),
        Index("idx_rides_status_departure", "status", "departure_time"),
        Index("idx_rides_driver", "driver_id"),
    )


class BookingModel(Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(
        Integer, ForeignKey("rides.id", ondelete="CASCADE"), nullable=False
    )
    passenger_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    seats_booked = Column(Integer, nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)

    pickup_lat = Column(Float, nullable=True)
    pickup_lng = Column(Float, nullable=True)
    pickup_address = Column(String(255), nullable=True)
    dropoff_lat = Column(Float, nullable=True)
    dropoff_lng = Column(Float, nullable=True)
    dropoff_address = Column(String(255), nullable=True)

    status = Column(
        Enum(BookingStatus, name="bookingstatus", values_callable=_enum_values),
        default=BookingStatus.PENDING,
        nullable=False,
    )

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        CheckConstraint("seats_booked > 0", name="ck_bookings_seats_positive"),
        Index(
            "uq_bookings_active_passenger",
            "ride_id",
            "passenger_id",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
            sqlite_where=text("status <> 'cancelled'"),
        ),
        Index("idx_bookings_passenger", "passenger_id"),
        Index("idx_bookings_ride", "ride_id"),
    )


class LocationSampleModel(Base):
    __tablename__ = "location_tracking"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(
        Integer, ForeignKey("rides.id", ondelete="CASCADE"), nullable=False
    )
    latitude = Column(Float, nullable=False)
    longitude = Column(Float, nullable=False)
    speed = Column(Float, nullable=True)
    heading = Column(Float, nullable=True)
    # Assigned by the relay, not the database, so the value published on
    # the live channel is exactly the stored one
    recorded_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("idx_location_ride_recorded", "ride_id", "recorded_at"),
    )
