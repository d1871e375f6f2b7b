"""
Booking endpoints
=================

POST  /api/v1/bookings                  -- reserve seats on a ride (passenger)
GET   /api/v1/bookings/mine             -- the caller's bookings as passenger
GET   /api/v1/bookings/ride/{ride_id}   -- bookings on a ride (its driver only)
GET   /api/v1/bookings/{booking_id}     -- booking details (driver or passenger)
PATCH /api/v1/bookings/{booking_id}/status -- confirm / complete / cancel
"""

from fastapi import APIRouter, Depends, Request

from carpool.api.dependencies import get_booking_service, get_principal
from carpool.api.middleware import limiter
from carpool.api.schemas import (
    BookingCreateRequest,
    BookingDetailResponse,
    BookingResponse,
    BookingStatusRequest,
    DriverSummary,
    PassengerBookingResponse,
    PassengerSummary,
    RideBookingResponse,
    RideSummary,
)
from carpool.config import settings
from carpool.domain.entities import Location, Principal
from carpool.services.bookings import BookingService

router = APIRouter(prefix="/bookings", tags=["bookings"])


def _location(lat, lng, address):
    if lat is None or lng is None:
        return None
    return Location(lat, lng, address)


@router.post(
    "",
    status_code=201,
    response_model=BookingResponse,
    summary="Book seats on a ride",
    responses={
        404: {"description": "Ride not found or not open for booking"},
        409: {"description": "Not enough seats, or already booked"},
    },
)
@limiter.limit(settings.rate_limit)
async def create_booking(
    request: Request,
    body: BookingCreateRequest,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.create_booking(
        principal.user_id,
        body.ride_id,
        body.seats_booked,
        pickup=_location(body.pickup_lat, body.pickup_lng, body.pickup_address),
        dropoff=_location(body.dropoff_lat, body.dropoff_lng, body.dropoff_address),
    )
    return BookingResponse.from_model(booking)


@router.get(
    "/mine",
    response_model=list[PassengerBookingResponse],
    summary="My bookings as passenger",
)
@limiter.limit(settings.rate_limit)
async def my_bookings(
    request: Request,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    rows = await service.list_for_passenger(principal.user_id)
    return [
        PassengerBookingResponse.from_model(
            booking,
            ride=RideSummary.model_validate(ride),
            driver=DriverSummary.model_validate(driver),
        )
        for booking, ride, driver in rows
    ]


@router.get(
    "/ride/{ride_id}",
    response_model=list[RideBookingResponse],
    summary="Bookings on one of my rides",
)
@limiter.limit(settings.rate_limit)
async def ride_bookings(
    request: Request,
    ride_id: int,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    rows = await service.list_for_ride(ride_id, principal.user_id)
    return [
        RideBookingResponse.from_model(
            booking, passenger=PassengerSummary.model_validate(passenger)
        )
        for booking, passenger in rows
    ]


@router.get(
    "/{booking_id}",
    response_model=BookingDetailResponse,
    summary="Get booking details",
)
@limiter.limit(settings.rate_limit)
async def get_booking(
    request: Request,
    booking_id: int,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    booking, ride, driver, passenger = await service.get(
        booking_id, principal.user_id
    )
    return BookingDetailResponse.from_model(
        booking,
        ride=RideSummary.model_validate(ride),
        driver=DriverSummary.model_validate(driver),
        passenger=PassengerSummary.model_validate(passenger),
    )


@router.patch(
    "/{booking_id}/status",
    response_model=BookingResponse,
    summary="Change booking status",
    description=(
        "pending -> confirmed (driver), pending/confirmed -> cancelled "
        "(driver or passenger), confirmed -> completed (driver or passenger). "
        "Cancelled and completed are terminal; leaving the active set "
        "returns the seats to the ride."
    ),
)
@limiter.limit(settings.rate_limit)
async def update_booking_status(
    request: Request,
    booking_id: int,
    body: BookingStatusRequest,
    principal: Principal = Depends(get_principal),
    service: BookingService = Depends(get_booking_service),
):
    booking = await service.update_status(booking_id, principal.user_id, body.status)
    return BookingResponse.from_model(booking)
