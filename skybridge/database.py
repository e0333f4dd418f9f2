"""Database engine and session management."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

if TYPE_CHECKING:
    from skybridge.config import Settings


def _connect_args(settings: Settings) -> dict[str, Any]:
    # The scheduler and request handlers write concurrently; SQLite makes a
    # blocked writer wait this long for the lock instead of failing at once.
    if settings.database_url.startswith("sqlite"):
        return {"timeout": settings.database_busy_timeout_seconds}
    return {}


def create_engine(
    settings: Settings,
) -> tuple[
    AsyncEngine,
    async_sessionmaker[AsyncSession],
]:
    """Create async engine and session factory.

    Sessions keep attribute values after commit, so ORM rows returned by the
    services stay readable once their transaction has ended.

    Returns (engine, session_factory) tuple.
    """
    engine = create_async_engine(
        settings.database_url,
        echo=settings.debug,
        connect_args=_connect_args(settings),
    )
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )
    return engine, session_factory


async def check_connectivity(engine: AsyncEngine) -> None:
    """Run a trivial query; raises if the database is unreachable."""
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))
