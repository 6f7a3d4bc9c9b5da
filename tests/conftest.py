"""
Shared pytest fixtures for the Homepro matching backend tests.

Provides a mock database session, a factory for validated provider records,
and an in-memory fake of the calendar gateway that records every call.
"""

from typing import Callable
from unittest.mock import AsyncMock, MagicMock

import pytest

from homepro.services.candidateRepository import CandidateProvider
from tests.factories import FakeCalendarGateway, build_candidate


# ---------------------------------------------------------------------------
# Database session mock
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_db() -> AsyncMock:
    """Async mock of ``AsyncSession``.

    Supports ``db.execute()``, ``db.add()``, ``db.flush()``, ``db.commit()``
    and ``db.rollback()`` out of the box. Individual tests can configure
    ``mock_db.execute`` to control query results.
    """
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


# ---------------------------------------------------------------------------
# Domain fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def make_candidate() -> Callable[..., CandidateProvider]:
    """Factory for provider records placed north of the job location."""
    return build_candidate


@pytest.fixture
def fake_gateway() -> FakeCalendarGateway:
    return FakeCalendarGateway()
