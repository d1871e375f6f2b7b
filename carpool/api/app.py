"""
FastAPI application factory.

* Registers routes for rides, bookings, location and admin.
* Maps domain errors to JSON responses.
* Picks the live-channel publisher (in-process or Redis pub/sub) and
  starts / stops the Redis fan-out and the history pruner via lifespan
  events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from carpool.api.middleware import carpool_error_handler, limiter
from carpool.api.routes import admin, bookings, location, rides
from carpool.config import settings
from carpool.domain.errors import CarpoolError
from carpool.infrastructure.redis_client import get_redis
from carpool.realtime.broker import LocalPublisher, RedisFanout, RedisPublisher
from carpool.realtime.channels import channel_registry
from carpool.workers import history_pruner as _pruner

logging.basicConfig(level=logging.INFO)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Wire the Redis relay and the pruner on startup; stop them on shutdown."""
    fanout = None
    if settings.realtime_backend == "redis":
        redis = await get_redis()
        fanout = RedisFanout(redis, channel_registry)
        await fanout.start()
        app.state.location_publisher = RedisPublisher(redis)
        logger.info("Live channels relayed through Redis")
    if settings.history_pruner_enabled:
        await _pruner.start_pruning_loop()

    yield

    if settings.history_pruner_enabled:
        await _pruner.stop_pruning_loop()
    if fanout is not None:
        await fanout.stop()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Carpool Marketplace API",
        description=(
            "Drivers offer rides, passengers reserve seats.  Seat capacity "
            "is enforced under concurrent bookings, rides and bookings follow "
            "explicit state machines, and driver positions are relayed live "
            "to the ride's participants."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors
    app.add_exception_handler(CarpoolError, carpool_error_handler)

    # Live-channel publisher; replaced by RedisPublisher in lifespan
    app.state.location_publisher = LocalPublisher(channel_registry)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(location.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
