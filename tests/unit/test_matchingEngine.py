"""
Unit tests for the Provider Matching Engine.

The candidate repository is patched; the calendar is the in-memory fake
gateway. Covers the simple, distance-excluded and emergency scenarios,
availability semantics, per-candidate failure isolation, price filtering
and the no-candidates outcome.
"""

import asyncio
import uuid
from datetime import datetime, time, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from homepro.core.config import settings
from homepro.core.exceptions import (
    ProviderNotFoundError,
    UpstreamFailureError,
    ValidationError,
)
from homepro.integrations.calcom import CalComService
from homepro.services.matchingEngine import (
    CustomerPreferences,
    MatchingCriteria,
    MatchOutcome,
    PriceRange,
    build_availability_snapshot,
    find_matching_providers,
    get_provider_availability,
)
from tests.factories import JOB_DATE, JOB_LAT, JOB_LON, slot

FETCH_CANDIDATES = "homepro.services.candidateRepository.fetch_candidates"
GET_PROVIDER = "homepro.services.candidateRepository.get_provider"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _criteria(**overrides) -> MatchingCriteria:
    fields = dict(
        service_type="plumbing",
        latitude=JOB_LAT,
        longitude=JOB_LON,
        scheduled_date=JOB_DATE,
        urgency="standard",
    )
    fields.update(overrides)
    return MatchingCriteria(**fields)


async def _run(mock_db, gateway, candidates, criteria):
    with patch(FETCH_CANDIDATES, new=AsyncMock(return_value=candidates)):
        return await find_matching_providers(mock_db, gateway, criteria, now=NOW)


# ---------------------------------------------------------------------------
# Scenarios
# ---------------------------------------------------------------------------


class TestMatchingScenarios:

    @pytest.mark.asyncio
    async def test_simple_match(self, mock_db, fake_gateway, make_candidate):
        provider = make_candidate(miles=10, rating=4.5, base_rate=100)
        fake_gateway.slots[1001] = [slot(JOB_DATE, 9), slot(JOB_DATE, 13)]

        result = await _run(mock_db, fake_gateway, [provider], _criteria())

        assert result.outcome is MatchOutcome.MATCHED
        assert len(result.matches) == 1
        match = result.matches[0]
        assert match.provider_id == provider.id
        assert match.pricing.total_estimate == Decimal("100")
        assert match.pricing.travel_fee == Decimal("0.00")
        assert match.availability.is_available is True
        assert round(match.distance_miles, 1) == 10.0

    @pytest.mark.asyncio
    async def test_distance_excluded_candidate(self, mock_db, fake_gateway, make_candidate):
        provider = make_candidate(miles=60, service_radius_miles=100)
        fake_gateway.slots[1001] = [slot(JOB_DATE, 9)]

        result = await _run(mock_db, fake_gateway, [provider], _criteria())

        assert result.outcome is MatchOutcome.NO_CANDIDATES
        assert result.matches == []
        assert result.total_candidates == 1
        assert result.within_radius == 0
        assert fake_gateway.slot_requests == []

    @pytest.mark.asyncio
    async def test_emergency_pricing(self, mock_db, fake_gateway, make_candidate):
        provider = make_candidate(miles=20, base_rate=100)
        fake_gateway.slots[1001] = [slot(JOB_DATE, 9)]

        result = await _run(
            mock_db, fake_gateway, [provider], _criteria(urgency="emergency")
        )

        pricing = result.matches[0].pricing
        assert pricing.travel_fee == Decimal("15.00")
        assert pricing.total_estimate == Decimal("165")

    @pytest.mark.asyncio
    async def test_missing_base_rate_defaults_to_75(self, mock_db, fake_gateway, make_candidate):
        provider = make_candidate(base_rate=None)
        fake_gateway.slots[1001] = [slot(JOB_DATE, 9)]

        result = await _run(mock_db, fake_gateway, [provider], _criteria())

        assert result.matches[0].pricing.total_estimate == Decimal("75")


# ---------------------------------------------------------------------------
# Availability
# ---------------------------------------------------------------------------


class TestAvailability:

    @pytest.mark.asyncio
    async def test_requested_time_inside_slot_is_available(
        self, mock_db, fake_gateway, make_candidate
    ):
        fake_gateway.slots[1001] = [slot(JOB_DATE, 10)]
        result = await _run(
            mock_db, fake_gateway, [make_candidate()], _criteria(scheduled_time=time(11, 30))
        )
        assert result.matches[0].is_available is True

    @pytest.mark.asyncio
    async def test_requested_time_at_slot_end_is_not_available(
        self, mock_db, fake_gateway, make_candidate
    ):
        fake_gateway.slots[1001] = [slot(JOB_DATE, 10)]
        result = await _run(
            mock_db, fake_gateway, [make_candidate()], _criteria(scheduled_time=time(12, 0))
        )
        match = result.matches[0]
        assert match.is_available is False
        assert match.availability.next_available_slot == slot(JOB_DATE, 10)

    @pytest.mark.asyncio
    async def test_requested_time_with_no_slots_excludes_candidate(
        self, mock_db, fake_gateway, make_candidate
    ):
        result = await _run(
            mock_db, fake_gateway, [make_candidate()], _criteria(scheduled_time=time(9, 0))
        )
        assert result.outcome is MatchOutcome.NO_CANDIDATES
        assert result.excluded_unavailable == 1

    @pytest.mark.asyncio
    async def test_no_requested_time_and_no_slots_is_listed_unavailable(
        self, mock_db, fake_gateway, make_candidate
    ):
        result = await _run(mock_db, fake_gateway, [make_candidate()], _criteria())
        assert len(result.matches) == 1
        assert result.matches[0].is_available is False
        assert result.matches[0].availability.next_available_slot is None

    @pytest.mark.asyncio
    async def test_day_window_in_calendar_time_zone(self, mock_db, fake_gateway, make_candidate):
        await _run(mock_db, fake_gateway, [make_candidate()], _criteria())

        event_type, start, end, tz = fake_gateway.slot_requests[0]
        assert event_type == 1001
        assert tz == settings.cal_com_time_zone
        assert start == slot(JOB_DATE, 0)
        assert end.date() == JOB_DATE and end.hour == 23 and end.minute == 59

    @pytest.mark.asyncio
    async def test_available_provider_ranked_before_better_rated_busy_one(
        self, mock_db, fake_gateway, make_candidate
    ):
        busy = make_candidate(rating=5.0, miles=2, cal_com_event_type_id=1)
        free = make_candidate(rating=3.5, miles=20, cal_com_event_type_id=2)
        fake_gateway.slots[1] = [slot(JOB_DATE, 15)]
        fake_gateway.slots[2] = [slot(JOB_DATE, 9)]

        result = await _run(
            mock_db, fake_gateway, [busy, free], _criteria(scheduled_time=time(9, 30))
        )

        assert [m.provider_id for m in result.matches] == [free.id, busy.id]


class TestBuildAvailabilitySnapshot:

    def test_slots_become_two_hour_windows(self):
        snapshot = build_availability_snapshot([slot(JOB_DATE, 13), slot(JOB_DATE, 9)], None)
        assert snapshot.is_available is True
        assert snapshot.next_available_slot == slot(JOB_DATE, 9)
        assert [(w.start.hour, w.end.hour) for w in snapshot.available_slots] == [
            (9, 11),
            (13, 15),
        ]

    def test_empty_slots(self):
        snapshot = build_availability_snapshot([], slot(JOB_DATE, 9))
        assert snapshot.is_available is False
        assert snapshot.available_slots == []


# ---------------------------------------------------------------------------
# Failure isolation
# ---------------------------------------------------------------------------


class TestFailureIsolation:

    @pytest.mark.asyncio
    async def test_calendar_failure_excludes_only_that_candidate(
        self, mock_db, fake_gateway, make_candidate
    ):
        broken = make_candidate(cal_com_event_type_id=1)
        healthy = make_candidate(cal_com_event_type_id=2)
        fake_gateway.failing_event_types.add(1)
        fake_gateway.slots[2] = [slot(JOB_DATE, 9)]

        result = await _run(mock_db, fake_gateway, [broken, healthy], _criteria())

        assert [m.provider_id for m in result.matches] == [healthy.id]
        assert result.failed_availability_checks == [broken.id]

    @pytest.mark.asyncio
    async def test_calendar_timeout_excludes_candidate(
        self, mock_db, fake_gateway, make_candidate
    ):
        slow = make_candidate(cal_com_event_type_id=1)
        fast = make_candidate(cal_com_event_type_id=2)
        fake_gateway.slots[2] = [slot(JOB_DATE, 9)]
        original = fake_gateway.get_available_slots

        async def sometimes_slow(event_type_id, *args):
            if event_type_id == 1:
                await asyncio.sleep(1)
            return await original(event_type_id, *args)

        fake_gateway.get_available_slots = sometimes_slow

        with patch.object(settings, "availability_timeout_seconds", 0.05):
            result = await _run(mock_db, fake_gateway, [slow, fast], _criteria())

        assert [m.provider_id for m in result.matches] == [fast.id]
        assert result.failed_availability_checks == [slow.id]

    @pytest.mark.asyncio
    async def test_provider_without_calendar_is_excluded(
        self, mock_db, fake_gateway, make_candidate
    ):
        provider = make_candidate(cal_com_event_type_id=None)
        result = await _run(mock_db, fake_gateway, [provider], _criteria())
        assert result.matches == []
        assert result.failed_availability_checks == [provider.id]

    @pytest.mark.asyncio
    async def test_unpriceable_candidate_excludes_only_that_candidate(
        self, mock_db, fake_gateway, make_candidate
    ):
        good = make_candidate(cal_com_event_type_id=1)
        negative_rate = make_candidate(cal_com_event_type_id=2, base_rate=-5.0)
        fake_gateway.slots[1] = [slot(JOB_DATE, 9)]
        fake_gateway.slots[2] = [slot(JOB_DATE, 9)]

        result = await _run(mock_db, fake_gateway, [good, negative_rate], _criteria())

        assert [m.provider_id for m in result.matches] == [good.id]
        assert result.failed_availability_checks == [negative_rate.id]

    @pytest.mark.asyncio
    async def test_unexpected_gateway_error_excludes_only_that_candidate(
        self, mock_db, fake_gateway, make_candidate
    ):
        odd = make_candidate(cal_com_event_type_id=1)
        healthy = make_candidate(cal_com_event_type_id=2)
        fake_gateway.slots[2] = [slot(JOB_DATE, 9)]
        original = fake_gateway.get_available_slots

        async def breaks_for_one(event_type_id, *args):
            if event_type_id == 1:
                raise AttributeError("'int' object has no attribute 'replace'")
            return await original(event_type_id, *args)

        fake_gateway.get_available_slots = breaks_for_one

        result = await _run(mock_db, fake_gateway, [odd, healthy], _criteria())

        assert [m.provider_id for m in result.matches] == [healthy.id]
        assert result.failed_availability_checks == [odd.id]

    @pytest.mark.asyncio
    async def test_malformed_calcom_slots_exclude_only_that_candidate(
        self, mock_db, make_candidate
    ):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.params["eventTypeId"] == "2":
                return httpx.Response(
                    200, json={"slots": {"2024-06-01": [{"time": 1717246800}]}}
                )
            return httpx.Response(
                200, json={"slots": {"2024-06-01": [{"time": "2024-06-01T13:00:00Z"}]}}
            )

        gateway = CalComService(
            api_key="test-key",
            base_url="https://cal.test/v1",
            client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )
        healthy = make_candidate(cal_com_event_type_id=1)
        malformed = make_candidate(cal_com_event_type_id=2)

        result = await _run(mock_db, gateway, [healthy, malformed], _criteria())

        assert [m.provider_id for m in result.matches] == [healthy.id]
        assert result.failed_availability_checks == [malformed.id]

    @pytest.mark.asyncio
    async def test_repository_failure_aborts_search(self, mock_db, fake_gateway):
        failing = AsyncMock(side_effect=UpstreamFailureError("db down", source="database"))
        with patch(FETCH_CANDIDATES, new=failing):
            with pytest.raises(UpstreamFailureError):
                await find_matching_providers(mock_db, fake_gateway, _criteria())

    @pytest.mark.asyncio
    async def test_no_candidates_is_an_outcome_not_an_error(self, mock_db, fake_gateway):
        result = await _run(mock_db, fake_gateway, [], _criteria())
        assert result.outcome is MatchOutcome.NO_CANDIDATES
        assert result.matches == []


# ---------------------------------------------------------------------------
# Preferences & validation
# ---------------------------------------------------------------------------


class TestPreferences:

    @pytest.mark.asyncio
    async def test_price_range_bounds_are_inclusive(self, mock_db, fake_gateway, make_candidate):
        at_max = make_candidate(base_rate=100, cal_com_event_type_id=1)
        above = make_candidate(base_rate=101, cal_com_event_type_id=2)
        fake_gateway.slots[1] = [slot(JOB_DATE, 9)]
        fake_gateway.slots[2] = [slot(JOB_DATE, 9)]
        prefs = CustomerPreferences(price_range=PriceRange(min=50, max=100))

        result = await _run(
            mock_db, fake_gateway, [at_max, above], _criteria(preferences=prefs)
        )

        assert [m.provider_id for m in result.matches] == [at_max.id]
        assert result.excluded_by_price == 1

    @pytest.mark.asyncio
    async def test_veteran_preference_reorders(self, mock_db, fake_gateway, make_candidate):
        civilian = make_candidate(rating=4.9, cal_com_event_type_id=1)
        veteran = make_candidate(rating=4.3, military_veteran=True, cal_com_event_type_id=2)
        fake_gateway.slots[1] = [slot(JOB_DATE, 9)]
        fake_gateway.slots[2] = [slot(JOB_DATE, 9)]
        prefs = CustomerPreferences(military_veteran=True)

        result = await _run(
            mock_db, fake_gateway, [civilian, veteran], _criteria(preferences=prefs)
        )

        assert [m.provider_id for m in result.matches] == [veteran.id, civilian.id]

    @pytest.mark.asyncio
    async def test_min_rating_passed_to_repository(self, mock_db, fake_gateway):
        fetch = AsyncMock(return_value=[])
        prefs = CustomerPreferences(min_rating=4.0)
        with patch(FETCH_CANDIDATES, new=fetch):
            await find_matching_providers(mock_db, fake_gateway, _criteria(preferences=prefs))
        fetch.assert_awaited_once_with(mock_db, "plumbing", 4.0)

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "overrides",
        [
            {"latitude": 91.0},
            {"longitude": -181.0},
            {"radius": 0},
            {"urgency": "someday"},
            {"service_type": " "},
            {"preferences": CustomerPreferences(price_range=PriceRange(min=200, max=100))},
        ],
    )
    async def test_malformed_criteria_rejected_before_io(self, mock_db, fake_gateway, overrides):
        fetch = AsyncMock(return_value=[])
        with patch(FETCH_CANDIDATES, new=fetch):
            with pytest.raises(ValidationError):
                await find_matching_providers(mock_db, fake_gateway, _criteria(**overrides))
        fetch.assert_not_awaited()


# ---------------------------------------------------------------------------
# get_provider_availability
# ---------------------------------------------------------------------------


class TestGetProviderAvailability:

    @pytest.mark.asyncio
    async def test_returns_window_slots(self, mock_db, fake_gateway, make_candidate):
        provider = make_candidate()
        fake_gateway.slots[1001] = [slot(JOB_DATE, 9), slot(JOB_DATE, 14)]

        with patch(GET_PROVIDER, new=AsyncMock(return_value=provider)):
            snapshot = await get_provider_availability(
                mock_db, fake_gateway, provider.id, slot(JOB_DATE, 0), slot(JOB_DATE, 23)
            )

        assert snapshot.is_available is True
        assert len(snapshot.available_slots) == 2

    @pytest.mark.asyncio
    async def test_unknown_provider(self, mock_db, fake_gateway):
        missing = uuid.uuid4()
        with patch(GET_PROVIDER, new=AsyncMock(side_effect=ProviderNotFoundError(missing))):
            with pytest.raises(ProviderNotFoundError):
                await get_provider_availability(
                    mock_db, fake_gateway, missing, slot(JOB_DATE, 0), slot(JOB_DATE, 23)
                )

    @pytest.mark.asyncio
    async def test_provider_without_calendar(self, mock_db, fake_gateway, make_candidate):
        provider = make_candidate(cal_com_event_type_id=None)
        with patch(GET_PROVIDER, new=AsyncMock(return_value=provider)):
            with pytest.raises(ValidationError):
                await get_provider_availability(
                    mock_db, fake_gateway, provider.id, slot(JOB_DATE, 0), slot(JOB_DATE, 23)
                )

    @pytest.mark.asyncio
    async def test_inverted_window_rejected(self, mock_db, fake_gateway):
        with pytest.raises(ValidationError):
            await get_provider_availability(
                mock_db, fake_gateway, uuid.uuid4(), slot(JOB_DATE, 23), slot(JOB_DATE, 0)
            )
