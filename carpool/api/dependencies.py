"""FastAPI dependency injection helpers."""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.datastructures import Headers
from starlette.requests import HTTPConnection

from carpool.domain.entities import Principal
from carpool.infrastructure.database import async_session_factory
from carpool.realtime.channels import ChannelRegistry, channel_registry
from carpool.services.bookings import BookingService
from carpool.services.location import LocationRelay
from carpool.services.rides import RideService

_TRUE = {"1", "true", "yes", "on"}


def principal_from_headers(headers: Headers) -> Optional[Principal]:
    """
    Read the principal the auth gateway attached to the request.

    The gateway has already verified credentials; these headers are
    trusted as-is.  Returns None when no usable identity is present.
    """
    raw_id = headers.get("X-User-Id", "")
    if not raw_id.isdigit():
        return None
    is_driver = headers.get("X-User-Is-Driver", "").strip().lower() in _TRUE
    return Principal(user_id=int(raw_id), is_driver=is_driver)


def get_principal(conn: HTTPConnection) -> Principal:
    principal = principal_from_headers(conn.headers)
    if principal is None:
        raise HTTPException(status_code=401, detail="Authentication required")
    return principal


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    return async_session_factory


def get_channel_registry() -> ChannelRegistry:
    return channel_registry


def get_publisher(conn: HTTPConnection):
    """Publisher chosen at startup (local or Redis); see ``create_app``."""
    return conn.app.state.location_publisher


def get_ride_service(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    publisher=Depends(get_publisher),
) -> RideService:
    return RideService(factory, publisher)


def get_booking_service(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
) -> BookingService:
    return BookingService(factory)


def get_location_relay(
    factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    registry: ChannelRegistry = Depends(get_channel_registry),
    publisher=Depends(get_publisher),
) -> LocationRelay:
    return LocationRelay(factory, registry, publisher)
