"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  Every connection opens its transactions
with ``BEGIN IMMEDIATE``, which makes SQLite serialise writers the way
``SELECT ... FOR UPDATE`` does on PostgreSQL, so the concurrency tests
exercise real contention.  Each test gets a fresh database file.
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event, func, select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from carpool.api.middleware import limiter
from carpool.config import settings
from carpool.domain.entities import Location, Principal
from carpool.domain.enums import ACTIVE_BOOKING_STATUSES
from carpool.infrastructure.database import Base
from carpool.infrastructure.models import BookingModel, RideModel, UserModel
from carpool.realtime.broker import LocalPublisher
from carpool.realtime.channels import ChannelRegistry
from carpool.services.bookings import BookingService
from carpool.services.location import LocationRelay
from carpool.services.rides import RideService


DEPARTURE = datetime(2030, 1, 15, 9, 0, tzinfo=timezone.utc)
ORIGIN = Location(19.1136, 72.8697, "Andheri West")
DESTINATION = Location(18.5204, 73.8567, "Pune")


def auth(user_id: int, driver: bool = False) -> dict[str, str]:
    """Headers the auth gateway would attach for this principal."""
    return {"X-User-Id": str(user_id), "X-User-Is-Driver": "true" if driver else "false"}


def build_engine(path) -> AsyncEngine:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{path}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        # Take over transaction control from the driver
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    return engine


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


def seed_users() -> dict[str, UserModel]:
    return {
        "driver": UserModel(
            first_name="Dana", last_name="Driver", email="dana@example.com",
            is_driver=True, rating=4.9, car_model="Toyota Prius", car_plate="MH01ZZ0001",
        ),
        "other_driver": UserModel(
            first_name="Omar", last_name="Driver", email="omar@example.com",
            is_driver=True, car_model="Honda City", car_plate="MH01ZZ0002",
        ),
        "p": UserModel(first_name="Pat", last_name="Passenger", email="pat@example.com"),
        "q": UserModel(first_name="Quinn", last_name="Passenger", email="quinn@example.com"),
        "q2": UserModel(first_name="Quincy", last_name="Passenger", email="quincy@example.com"),
        "outsider": UserModel(first_name="Olive", last_name="Outsider", email="olive@example.com"),
    }


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    eng = build_engine(tmp_path / "carpool.db")
    await create_schema(eng)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def users(session_factory) -> SimpleNamespace:
    """Driver D, second driver, passengers P, Q, Q' and a non-participant."""
    rows = seed_users()
    async with session_factory() as session:
        session.add_all(rows.values())
        await session.commit()
    return SimpleNamespace(**{name: user.id for name, user in rows.items()})


@pytest.fixture
def registry() -> ChannelRegistry:
    return ChannelRegistry()


@pytest.fixture
def publisher(registry) -> LocalPublisher:
    return LocalPublisher(registry)


@pytest.fixture
def ride_service(session_factory, publisher) -> RideService:
    return RideService(session_factory, publisher)


@pytest.fixture
def booking_service(session_factory) -> BookingService:
    return BookingService(session_factory)


@pytest.fixture
def relay(session_factory, registry, publisher) -> LocationRelay:
    return LocationRelay(session_factory, registry, publisher, window=100)


@pytest.fixture
def make_ride(ride_service, users):
    """Create a scheduled ride offered by driver D (or another driver)."""

    async def _make(
        seats: int = 3,
        price="25.00",
        driver_id=None,
        departure: datetime = DEPARTURE,
        origin: Location = ORIGIN,
        destination: Location = DESTINATION,
    ):
        return await ride_service.create(
            Principal(driver_id or users.driver, is_driver=True),
            origin=origin,
            destination=destination,
            departure_time=departure,
            total_seats=seats,
            price_per_seat=price,
        )

    return _make


@pytest.fixture
def no_background(monkeypatch):
    """Keep the app's lifespan from starting the pruner or Redis fan-out."""
    monkeypatch.setattr(settings, "history_pruner_enabled", False)
    monkeypatch.setattr(settings, "realtime_backend", "memory")
    monkeypatch.setattr(limiter, "enabled", False)


@pytest_asyncio.fixture
async def client(session_factory, registry, publisher, no_background):
    """AsyncClient against the real app, wired to the test database."""
    from carpool.api.app import create_app
    from carpool.api.dependencies import get_channel_registry, get_session_factory

    app = create_app()
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_channel_registry] = lambda: registry
    app.state.location_publisher = publisher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


class FakeSubscriber:
    """Stands in for a WebSocket on a ride's live channel."""

    def __init__(self, fail: bool = False):
        self.messages: list[dict] = []
        self.closed_with = None
        self.fail = fail

    async def send_json(self, message: dict) -> None:
        if self.fail:
            raise ConnectionError("socket gone")
        self.messages.append(message)

    async def close(self, code: int = 1000) -> None:
        self.closed_with = code


async def capacity_holds(session_factory, ride_id: int) -> bool:
    """available_seats == total_seats - seats held by active bookings."""
    async with session_factory() as session:
        ride = await session.get(RideModel, ride_id)
        held = await session.scalar(
            select(func.coalesce(func.sum(BookingModel.seats_booked), 0)).where(
                BookingModel.ride_id == ride_id,
                BookingModel.status.in_(sorted(ACTIVE_BOOKING_STATUSES)),
            )
        )
    return ride.available_seats == ride.total_seats - held
