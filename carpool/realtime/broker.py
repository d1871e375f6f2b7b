"""
Publishers that carry live-channel traffic to subscribers.

* ``LocalPublisher``   -- delivers straight into this process's registry.
* ``RedisPublisher``   -- publishes to Redis pub/sub; every API process
  runs a ``RedisFanout`` that listens on ``ride-location:*`` and hands
  messages to its own registry, so a sample recorded on one instance
  reaches subscribers attached to any instance.

Publishing is fire-and-forget: failures are logged, never raised to the
caller that recorded the sample.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import redis.asyncio as aioredis

from .channels import ChannelRegistry

logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "ride-location:"


def channel_name(ride_id: int) -> str:
    return f"{CHANNEL_PREFIX}{ride_id}"


class LocalPublisher:
    def __init__(self, registry: ChannelRegistry):
        self.registry = registry

    async def publish(self, ride_id: int, message: dict[str, Any]) -> None:
        await self.registry.broadcast(ride_id, message)

    async def close_channel(self, ride_id: int) -> None:
        await self.registry.close(ride_id)


class RedisPublisher:
    def __init__(self, client: aioredis.Redis):
        self.redis = client

    async def publish(self, ride_id: int, message: dict[str, Any]) -> None:
        await self.redis.publish(channel_name(ride_id), json.dumps(message))

    async def close_channel(self, ride_id: int) -> None:
        await self.publish(ride_id, {"type": "channel-closed", "ride_id": ride_id})


class RedisFanout:
    """Subscribes to every ride channel in Redis and fans out locally."""

    def __init__(self, client: aioredis.Redis, registry: ChannelRegistry):
        self.redis = client
        self.registry = registry
        self.task: asyncio.Task | None = None
        self.reconnect_delay = 5

    async def start(self) -> None:
        self.task = asyncio.create_task(self._listen())
        logger.info("Redis location fan-out started")

    async def stop(self) -> None:
        if self.task:
            self.task.cancel()
            try:
                await self.task
            except asyncio.CancelledError:
                pass
        logger.info("Redis location fan-out stopped")

    async def handle(self, raw_channel: str, raw_data: str) -> None:
        try:
            ride_id = int(raw_channel[len(CHANNEL_PREFIX):])
            data = json.loads(raw_data)
        except (ValueError, json.JSONDecodeError):
            logger.warning("Ignoring malformed message on %s", raw_channel)
            return
        if not isinstance(data, dict):
            logger.warning("Ignoring non-object message on %s", raw_channel)
            return
        if data.get("type") == "channel-closed":
            await self.registry.close(ride_id)
        else:
            await self.registry.broadcast(ride_id, data)

    async def _listen(self) -> None:
        while True:
            pubsub = self.redis.pubsub()
            try:
                await pubsub.psubscribe(f"{CHANNEL_PREFIX}*")
                async for message in pubsub.listen():
                    if message["type"] != "pmessage":
                        continue
                    try:
                        await self.handle(message["channel"], message["data"])
                    except Exception as e:
                        logger.warning("Error fanning out message: %s", e)
            except aioredis.RedisError as e:
                logger.error(
                    "Redis subscription failed (%s), reconnecting in %ss...",
                    e,
                    self.reconnect_delay,
                )
                await asyncio.sleep(self.reconnect_delay)
            except asyncio.CancelledError:
                break
            finally:
                await pubsub.aclose()
