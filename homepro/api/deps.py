"""
Shared FastAPI dependencies for the Homepro matching backend.

Provides the async database session and the calendar gateway used by the
route handlers. Both are overridable through ``app.dependency_overrides``,
which is how the tests substitute an in-memory database and a fake calendar.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from homepro.core.config import settings
from homepro.integrations.calcom import AvailabilityGateway, CalComService

# ---------------------------------------------------------------------------
# Async engine & session factory
# ---------------------------------------------------------------------------
# The engine is created once at module import time. Sessions are scoped to a
# single request via ``get_db``.
# ---------------------------------------------------------------------------

engine = create_async_engine(
    settings.database_url,
    echo=settings.sql_echo,
    pool_size=settings.db_pool_size,
    max_overflow=settings.db_max_overflow,
    pool_pre_ping=True,
)

async_session_factory = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Yield an async database session that is committed on success, rolled
    back on error, and closed after the request completes.

    Usage in a route::

        @router.get("/items")
        async def list_items(db: DBSession):
            ...
    """
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_calendar_gateway() -> AvailabilityGateway:
    """The Cal.com gateway configured from settings."""
    return CalComService()


# ---------------------------------------------------------------------------
# Annotated type aliases for convenience
# ---------------------------------------------------------------------------
DBSession = Annotated[AsyncSession, Depends(get_db)]
CalendarGateway = Annotated[AvailabilityGateway, Depends(get_calendar_gateway)]
