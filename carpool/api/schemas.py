"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from carpool.domain.enums import BookingStatus, RideStatus


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    origin_lat: float = Field(..., ge=-90, le=90)
    origin_lng: float = Field(..., ge=-180, le=180)
    origin_address: Optional[str] = Field(None, max_length=255)
    destination_lat: float = Field(..., ge=-90, le=90)
    destination_lng: float = Field(..., ge=-180, le=180)
    destination_address: Optional[str] = Field(None, max_length=255)
    departure_time: datetime
    arrival_time: Optional[datetime] = None
    total_seats: int = Field(..., ge=1, le=50)
    price_per_seat: float = Field(..., ge=0, le=99_999_999.99)
    notes: Optional[str] = None


class RideUpdateRequest(BaseModel):
    """Partial update: omitted fields keep their current value."""

    departure_time: Optional[datetime] = None
    arrival_time: Optional[datetime] = None
    total_seats: Optional[int] = Field(None, ge=1, le=50)
    price_per_seat: Optional[float] = Field(None, ge=0, le=99_999_999.99)
    status: Optional[RideStatus] = None
    notes: Optional[str] = None


class BookingCreateRequest(BaseModel):
    ride_id: int
    seats_booked: int = Field(1, ge=1, le=50)
    pickup_lat: Optional[float] = Field(None, ge=-90, le=90)
    pickup_lng: Optional[float] = Field(None, ge=-180, le=180)
    pickup_address: Optional[str] = Field(None, max_length=255)
    dropoff_lat: Optional[float] = Field(None, ge=-90, le=90)
    dropoff_lng: Optional[float] = Field(None, ge=-180, le=180)
    dropoff_address: Optional[str] = Field(None, max_length=255)


class BookingStatusRequest(BaseModel):
    status: BookingStatus


class LocationUpdateRequest(BaseModel):
    ride_id: int
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    speed: Optional[float] = Field(None, ge=0)
    heading: Optional[float] = Field(None, ge=0, lt=360)


# ── Responses ─────────────────────────────────────────────────────────


class Point(BaseModel):
    lat: float
    lng: float
    address: Optional[str] = None


class DriverSummary(BaseModel):
    id: int
    first_name: str
    last_name: str
    rating: Optional[float] = None
    phone: Optional[str] = None
    car_model: Optional[str] = None
    car_plate: Optional[str] = None

    model_config = {"from_attributes": True}


class PassengerSummary(BaseModel):
    id: int
    first_name: str
    last_name: str
    rating: Optional[float] = None
    phone: Optional[str] = None

    model_config = {"from_attributes": True}


class RideResponse(BaseModel):
    id: int
    driver_id: int
    origin: Point
    destination: Point
    departure_time: datetime
    arrival_time: Optional[datetime] = None
    total_seats: int
    available_seats: int
    price_per_seat: float
    status: RideStatus
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, ride, **extra) -> "RideResponse":
        return cls(
            id=ride.id,
            driver_id=ride.driver_id,
            origin=Point(
                lat=ride.origin_lat, lng=ride.origin_lng, address=ride.origin_address
            ),
            destination=Point(
                lat=ride.destination_lat,
                lng=ride.destination_lng,
                address=ride.destination_address,
            ),
            departure_time=ride.departure_time,
            arrival_time=ride.arrival_time,
            total_seats=ride.total_seats,
            available_seats=ride.available_seats,
            price_per_seat=ride.price_per_seat,
            status=ride.status,
            notes=ride.notes,
            created_at=ride.created_at,
            updated_at=ride.updated_at,
            **extra,
        )


class RideWithDriverResponse(RideResponse):
    driver: DriverSummary


class RideSummary(BaseModel):
    id: int
    origin_address: Optional[str] = None
    destination_address: Optional[str] = None
    departure_time: datetime
    status: RideStatus

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    ride_id: int
    passenger_id: int
    seats_booked: int
    total_price: float
    status: BookingStatus
    pickup: Optional[Point] = None
    dropoff: Optional[Point] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_model(cls, booking, **extra) -> "BookingResponse":
        return cls(
            id=booking.id,
            ride_id=booking.ride_id,
            passenger_id=booking.passenger_id,
            seats_booked=booking.seats_booked,
            total_price=booking.total_price,
            status=booking.status,
            pickup=_point(booking, "pickup"),
            dropoff=_point(booking, "dropoff"),
            created_at=booking.created_at,
            updated_at=booking.updated_at,
            **extra,
        )


class PassengerBookingResponse(BookingResponse):
    ride: RideSummary
    driver: DriverSummary


class RideBookingResponse(BookingResponse):
    passenger: PassengerSummary


class BookingDetailResponse(BookingResponse):
    ride: RideSummary
    driver: DriverSummary
    passenger: PassengerSummary


class LocationSampleResponse(BaseModel):
    latitude: float
    longitude: float
    speed: Optional[float] = None
    heading: Optional[float] = None
    timestamp: datetime


class LocationHistoryResponse(BaseModel):
    locations: list[LocationSampleResponse]


class ChannelsResponse(BaseModel):
    channels: dict[int, int]


class HealthResponse(BaseModel):
    status: str = "ok"


class ErrorResponse(BaseModel):
    error: str
    detail: str


def _point(booking, prefix: str) -> Optional[Point]:
    lat = getattr(booking, f"{prefix}_lat")
    if lat is None:
        return None
    return Point(
        lat=lat,
        lng=getattr(booking, f"{prefix}_lng"),
        address=getattr(booking, f"{prefix}_address"),
    )
