"""
Background Location History Pruner
==================================

Runs every ``HISTORY_PRUNE_INTERVAL_SECONDS`` (default 300 s).

Keeps the location history bounded: for each ride with more than
``LOCATION_HISTORY_RETENTION`` samples, every sample older than the
newest ``LOCATION_HISTORY_RETENTION`` is deleted.

Concurrency safety
------------------
* **Redis distributed lock** ensures only one API process prunes at a
  time; the others skip the cycle.
* Each ride is pruned in its own short transaction so pruning never
  holds locks that a live ``record_sample`` would wait on for long.
"""

from __future__ import annotations

import asyncio
import logging

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from carpool.config import settings
from carpool.infrastructure.database import (
    async_session_factory,
    read_session,
    transaction,
)
from carpool.infrastructure.locks import DistributedLock
from carpool.infrastructure.redis_client import get_redis
from carpool.infrastructure.repositories import LocationRepository

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_pruning_loop() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "History pruner started (interval=%ds, retention=%d)",
        settings.history_prune_interval_seconds,
        settings.location_history_retention,
    )


async def stop_pruning_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("History pruner stopped")


async def prune_history(
    session_factory: async_sessionmaker[AsyncSession], keep: int
) -> int:
    """Trim every ride's samples to the newest *keep*.  Returns rows deleted."""
    async with read_session(session_factory) as session:
        ride_ids = await LocationRepository(session).rides_over_retention(keep)

    deleted = 0
    for ride_id in ride_ids:
        async with transaction(session_factory) as session:
            deleted += await LocationRepository(session).prune(ride_id, keep)
    return deleted


async def run_pruning_cycle() -> int:
    """Execute one pruning cycle.  Returns the number of samples deleted."""
    redis = await get_redis()
    lock = DistributedLock(redis, "location_history_pruner", ttl_seconds=120)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping cycle")
        return 0

    deleted = 0
    try:
        deleted = await prune_history(
            async_session_factory, settings.location_history_retention
        )
        if deleted:
            logger.info("Pruning cycle: %d location samples deleted", deleted)
    except Exception:
        logger.exception("Error in pruning cycle")
    finally:
        await lock.release()

    return deleted


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    """Periodic loop: run a pruning cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_pruning_cycle()
        except Exception:
            logger.exception("Unhandled error in pruning cycle")
        # Wait for the interval or until stop is signalled
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.history_prune_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle
