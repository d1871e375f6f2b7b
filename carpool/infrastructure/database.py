"""
Async SQLAlchemy engine and session factory.

Uses ``asyncpg`` as the PostgreSQL driver for non-blocking I/O.
Every service operation opens its own session from
``async_session_factory`` and runs inside ``session.begin()`` so that a
failure anywhere rolls the whole unit of work back.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.exc import (
    DBAPIError,
    IntegrityError,
    InterfaceError,
    OperationalError,
)
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from carpool.config import settings
from carpool.domain.errors import Unavailable

engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    """Shared declarative base for all ORM models."""


# SQLSTATEs that clear up on retry: serialization failure, deadlock, lock timeout
TRANSIENT_SQLSTATES = frozenset({"40001", "40P01", "55P03"})


def _sqlstate(exc: DBAPIError) -> Optional[str]:
    orig = exc.orig
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def is_transient(exc: DBAPIError) -> bool:
    """True for failures where rolling back and retrying can succeed."""
    if exc.connection_invalidated:
        return True
    if isinstance(exc, (OperationalError, InterfaceError)):
        return True
    return _sqlstate(exc) in TRANSIENT_SQLSTATES


@asynccontextmanager
async def transaction(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """
    Open a session and a transaction; commit on exit, roll back on error.

    Transient driver failures (deadlock, lock timeout, serialization
    failure, dropped connection) become ``Unavailable``.  Everything else,
    integrity errors included, propagates untouched.
    """
    async with factory() as session:
        try:
            async with session.begin():
                yield session
        except DBAPIError as exc:
            if is_transient(exc):
                raise Unavailable("Storage temporarily unavailable, retry") from exc
            raise


@asynccontextmanager
async def read_session(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Session for read-only work, with the same failure mapping as ``transaction``."""
    async with factory() as session:
        try:
            yield session
        except DBAPIError as exc:
            if is_transient(exc):
                raise Unavailable("Storage temporarily unavailable, retry") from exc
            raise


def is_unique_violation(exc: IntegrityError) -> bool:
    """Distinguish a unique-constraint violation from FK / check failures."""
    code = _sqlstate(exc)
    if code is not None:
        return code == "23505"
    message = str(exc.orig).lower()
    return "unique" in message or "duplicate key" in message
