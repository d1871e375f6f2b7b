"""
Per-ride live channel registry.

One logical channel per ride id.  A channel is created when its first
subscriber joins and removed when the last one leaves or when the ride
is closed (completed, cancelled or deleted), so no subscriber reference
outlives its ride.

A subscriber is anything exposing ``async send_json(dict)`` and
``async close(code)`` -- in production a Starlette ``WebSocket``.
"""

from __future__ import annotations

import logging
from typing import Any

logger = logging.getLogger(__name__)

CLOSE_NORMAL = 1000


class ChannelRegistry:
    def __init__(self) -> None:
        self._channels: dict[int, set[Any]] = {}

    def join(self, ride_id: int, subscriber: Any) -> None:
        self._channels.setdefault(ride_id, set()).add(subscriber)
        logger.info(
            "Subscriber joined ride %s channel (%d live)",
            ride_id,
            len(self._channels[ride_id]),
        )

    def leave(self, ride_id: int, subscriber: Any) -> None:
        members = self._channels.get(ride_id)
        if members is None:
            return
        members.discard(subscriber)
        if not members:
            del self._channels[ride_id]
            logger.info("Ride %s channel torn down (no subscribers)", ride_id)

    def subscriber_count(self, ride_id: int) -> int:
        return len(self._channels.get(ride_id, ()))

    def snapshot(self) -> dict[int, int]:
        """Ride id -> live subscriber count, for the admin endpoint."""
        return {ride_id: len(members) for ride_id, members in self._channels.items()}

    async def broadcast(self, ride_id: int, message: dict[str, Any]) -> int:
        """
        Send *message* to every subscriber of the ride.

        Zero subscribers is a no-op.  A subscriber whose send fails is
        dropped; the rest still receive the message.  Returns the number
        of successful deliveries.
        """
        members = self._channels.get(ride_id)
        if not members:
            return 0
        delivered = 0
        for subscriber in list(members):
            try:
                await subscriber.send_json(message)
                delivered += 1
            except Exception:
                logger.warning(
                    "Dropping subscriber of ride %s after failed send",
                    ride_id,
                    exc_info=True,
                )
                self.leave(ride_id, subscriber)
        return delivered

    async def close(self, ride_id: int, reason: str = "ride closed") -> None:
        """Notify and disconnect every subscriber, then forget the channel."""
        members = self._channels.pop(ride_id, None)
        if not members:
            return
        message = {"type": "channel-closed", "ride_id": ride_id, "reason": reason}
        for subscriber in members:
            try:
                await subscriber.send_json(message)
                await subscriber.close(code=CLOSE_NORMAL)
            except Exception:
                logger.debug("Subscriber of ride %s already gone", ride_id)
        logger.info("Ride %s channel closed (%s)", ride_id, reason)


channel_registry = ChannelRegistry()
