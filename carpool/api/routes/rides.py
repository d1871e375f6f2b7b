"""
Ride endpoints
==============

POST   /api/v1/rides            -- offer a ride (drivers only)
GET    /api/v1/rides/search     -- scheduled rides with free seats
GET    /api/v1/rides/mine       -- the caller's rides as driver
GET    /api/v1/rides/{ride_id}  -- ride details with driver summary
PUT    /api/v1/rides/{ride_id}  -- partial update by the owning driver
DELETE /api/v1/rides/{ride_id}  -- delete a ride without active bookings
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request, Response

from carpool.api.dependencies import get_principal, get_ride_service
from carpool.api.middleware import limiter
from carpool.api.schemas import (
    DriverSummary,
    RideCreateRequest,
    RideResponse,
    RideUpdateRequest,
    RideWithDriverResponse,
)
from carpool.config import settings
from carpool.domain.entities import BoundingBox, Location, Principal
from carpool.services.rides import RideService

router = APIRouter(prefix="/rides", tags=["rides"])


def _with_driver(ride, driver) -> RideWithDriverResponse:
    return RideWithDriverResponse.from_model(
        ride, driver=DriverSummary.model_validate(driver)
    )


@router.post(
    "",
    status_code=201,
    response_model=RideResponse,
    summary="Offer a ride",
)
@limiter.limit(settings.rate_limit)
async def create_ride(
    request: Request,
    body: RideCreateRequest,
    principal: Principal = Depends(get_principal),
    service: RideService = Depends(get_ride_service),
):
    ride = await service.create(
        principal,
        origin=Location(body.origin_lat, body.origin_lng, body.origin_address),
        destination=Location(
            body.destination_lat, body.destination_lng, body.destination_address
        ),
        departure_time=body.departure_time,
        arrival_time=body.arrival_time,
        total_seats=body.total_seats,
        price_per_seat=body.price_per_seat,
        notes=body.notes,
    )
    return RideResponse.from_model(ride)


@router.get(
    "/search",
    response_model=list[RideWithDriverResponse],
    summary="Search scheduled rides",
    description=(
        "Origin / destination filters are a coarse lat/lng box around the "
        "given point, not a true distance search."
    ),
)
@limiter.limit(settings.rate_limit)
async def search_rides(
    request: Request,
    seats: int = Query(1, ge=1),
    on_date: Optional[date] = Query(None, alias="date"),
    origin_lat: Optional[float] = Query(None, ge=-90, le=90),
    origin_lng: Optional[float] = Query(None, ge=-180, le=180),
    dest_lat: Optional[float] = Query(None, ge=-90, le=90),
    dest_lng: Optional[float] = Query(None, ge=-180, le=180),
    principal: Principal = Depends(get_principal),
    service: RideService = Depends(get_ride_service),
):
    origin_box = destination_box = None
    if origin_lat is not None and origin_lng is not None:
        origin_box = BoundingBox.around(
            origin_lat, origin_lng, settings.search_box_degrees
        )
    if dest_lat is not None and dest_lng is not None:
        destination_box = BoundingBox.around(
            dest_lat, dest_lng, settings.search_box_degrees
        )

    rows = await service.search(
        seats_needed=seats,
        on_date=on_date,
        origin_box=origin_box,
        destination_box=destination_box,
    )
    return [_with_driver(ride, driver) for ride, driver in rows]


@router.get("/mine", response_model=list[RideResponse], summary="My rides as driver")
@limiter.limit(settings.rate_limit)
async def my_rides(
    request: Request,
    principal: Principal = Depends(get_principal),
    service: RideService = Depends(get_ride_service),
):
    rides = await service.list_by_driver(principal.user_id)
    return [RideResponse.from_model(r) for r in rides]


@router.get(
    "/{ride_id}",
    response_model=RideWithDriverResponse,
    summary="Get ride details",
)
@limiter.limit(settings.rate_limit)
async def get_ride(
    request: Request,
    ride_id: int,
    principal: Principal = Depends(get_principal),
    service: RideService = Depends(get_ride_service),
):
    ride, driver = await service.get(ride_id)
    return _with_driver(ride, driver)


@router.put(
    "/{ride_id}",
    response_model=RideResponse,
    summary="Update a ride",
    description=(
        "Only supplied fields change.  Changing total_seats recomputes "
        "available_seats from the seats already booked; changing status "
        "follows the ride state machine, and cancelling a ride cancels "
        "its active bookings."
    ),
)
@limiter.limit(settings.rate_limit)
async def update_ride(
    request: Request,
    ride_id: int,
    body: RideUpdateRequest,
    principal: Principal = Depends(get_principal),
    service: RideService = Depends(get_ride_service),
):
    ride = await service.update(
        ride_id, principal.user_id, body.model_dump(exclude_unset=True)
    )
    return RideResponse.from_model(ride)


@router.delete("/{ride_id}", status_code=204, summary="Delete a ride")
@limiter.limit(settings.rate_limit)
async def delete_ride(
    request: Request,
    ride_id: int,
    principal: Principal = Depends(get_principal),
    service: RideService = Depends(get_ride_service),
):
    await service.delete(ride_id, principal.user_id)
    return Response(status_code=204)
