"""
Location relay.

The driver of an in-progress ride posts position samples; each sample is
stored with a server timestamp and then published on the ride's live
channel carrying that same timestamp.  Reads (history, current) and
channel joins are allowed for the driver and for passengers holding an
active booking on the ride.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carpool.config import settings
from carpool.domain.entities import LocationUpdate, Principal
from carpool.domain.enums import RideStatus
from carpool.domain.errors import Forbidden, InvalidState, NotFound
from carpool.infrastructure.database import read_session, transaction
from carpool.infrastructure.models import LocationSampleModel
from carpool.infrastructure.repositories import (
    BookingRepository,
    LocationRepository,
    RideRepository,
)
from carpool.realtime.channels import ChannelRegistry

logger = logging.getLogger(__name__)


class LocationRelay:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        registry: ChannelRegistry,
        publisher,
        window: Optional[int] = None,
    ):
        self.session_factory = session_factory
        self.registry = registry
        # LocalPublisher or RedisPublisher
        self.publisher = publisher
        self.window = window or settings.location_history_window

    async def record_sample(
        self,
        driver_id: int,
        ride_id: int,
        latitude: float,
        longitude: float,
        speed: Optional[float] = None,
        heading: Optional[float] = None,
    ) -> LocationUpdate:
        recorded_at = datetime.now(timezone.utc)

        async with transaction(self.session_factory) as session:
            ride = await RideRepository(session).get_by_id(ride_id)
            if ride is None or ride.driver_id != driver_id:
                raise Forbidden("Not authorized to update location for this ride")
            if RideStatus(ride.status) != RideStatus.IN_PROGRESS:
                raise InvalidState("Can only track location for rides in progress")
            await LocationRepository(session).append(
                LocationSampleModel(
                    ride_id=ride_id,
                    latitude=latitude,
                    longitude=longitude,
                    speed=speed,
                    heading=heading,
                    recorded_at=recorded_at,
                )
            )

        update = LocationUpdate(
            ride_id=ride_id,
            latitude=latitude,
            longitude=longitude,
            speed=speed,
            heading=heading,
            timestamp=recorded_at,
        )
        await self._publish(update)
        return update

    async def history(
        self, ride_id: int, requester_id: int, limit: Optional[int] = None
    ) -> list[LocationSampleModel]:
        """Newest-first samples, at most ``window`` of them."""
        limit = min(max(limit or self.window, 1), self.window)
        async with read_session(self.session_factory) as session:
            await self._authorize(session, ride_id, requester_id)
            return await LocationRepository(session).recent(ride_id, limit)

    async def current(self, ride_id: int, requester_id: int) -> LocationSampleModel:
        async with read_session(self.session_factory) as session:
            await self._authorize(session, ride_id, requester_id)
            samples = await LocationRepository(session).recent(ride_id, 1)
        if not samples:
            raise NotFound("No location data available for this ride")
        return samples[0]

    # ── Live channel ──────────────────────────────────────────────────

    async def join(self, ride_id: int, principal: Principal, subscriber: Any) -> None:
        """
        Attach *subscriber* to the ride's channel.

        Gated by the same check as ``history``/``current``.  Membership is
        not re-checked afterwards: a passenger who cancels keeps receiving
        samples until they leave or the ride closes.
        """
        async with read_session(self.session_factory) as session:
            await self._authorize(session, ride_id, principal.user_id)
        self.registry.join(ride_id, subscriber)

    def leave(self, ride_id: int, subscriber: Any) -> None:
        self.registry.leave(ride_id, subscriber)

    # ── Internals ─────────────────────────────────────────────────────

    async def _authorize(
        self, session: AsyncSession, ride_id: int, user_id: int
    ) -> None:
        ride = await RideRepository(session).get_by_id(ride_id)
        if ride is None:
            raise Forbidden("Not authorized to view location for this ride")
        if ride.driver_id == user_id:
            return
        if not await BookingRepository(session).has_active_booking(ride_id, user_id):
            raise Forbidden("Not authorized to view location for this ride")

    async def _publish(self, update: LocationUpdate) -> None:
        try:
            await self.publisher.publish(update.ride_id, update.to_message())
        except Exception:
            logger.warning(
                "Publishing location for ride %s failed", update.ride_id, exc_info=True
            )
