"""
E2E test fixtures for the Homepro matching backend.

Provides:
- An in-memory SQLite database (aiosqlite) created fresh for each test
- A FastAPI test app with the matching and booking routers registered
- httpx AsyncClient wired via ASGI transport (no network needed)

The calendar is the in-memory fake gateway so the full
route -> service -> DB flow runs without Cal.com. Seeding helpers live
in ``tests.e2e.seeding``.
"""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from homepro.models import Base
from tests.factories import FakeCalendarGateway

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"


# ---------------------------------------------------------------------------
# Async engine + session factory (in-memory SQLite)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """A fresh in-memory database per test.

    ``StaticPool`` keeps one connection so every session sees the same
    in-memory database.
    """
    engine = create_async_engine(
        TEST_DB_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # SQLite does not enforce foreign keys by default
    @event.listens_for(engine.sync_engine, "connect")
    def _enable_fk(dbapi_conn, _):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session for seeding and inspecting the database from tests."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def gateway() -> FakeCalendarGateway:
    return FakeCalendarGateway()


# ---------------------------------------------------------------------------
# FastAPI test application
# ---------------------------------------------------------------------------

def _create_test_app(session_factory, gateway: FakeCalendarGateway):
    """Build a FastAPI app with the matching and booking routers, the DB
    dependency bound to the test database, and the fake calendar."""
    from fastapi import FastAPI

    from homepro.api.deps import get_calendar_gateway, get_db
    from homepro.api.routes.bookings import router as bookings_router
    from homepro.api.routes.matching import router as matching_router

    app = FastAPI(title="Homepro Test")

    async def _override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_calendar_gateway] = lambda: gateway

    app.include_router(matching_router, prefix="/api/v1")
    app.include_router(bookings_router, prefix="/api/v1")

    return app


@pytest_asyncio.fixture
async def client(session_factory, gateway) -> AsyncGenerator[AsyncClient, None]:
    """httpx AsyncClient connected to the test app via ASGI transport."""
    app = _create_test_app(session_factory, gateway)
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
