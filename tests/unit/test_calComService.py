"""
Unit tests for the Cal.com gateway.

HTTP is served by ``httpx.MockTransport`` so request shape, retry policy
and error mapping are exercised without the network. Backoff sleeps are
patched out.
"""

import json
from datetime import datetime
from unittest.mock import AsyncMock, patch
from zoneinfo import ZoneInfo

import httpx
import pytest

from homepro.integrations.calcom import (
    Attendee,
    CalComError,
    CalComService,
    parse_slots_response,
)

TZ = "America/New_York"
START = datetime(2024, 6, 1, 0, 0, tzinfo=ZoneInfo(TZ))
END = datetime(2024, 6, 1, 23, 59, tzinfo=ZoneInfo(TZ))

SLEEP = "homepro.integrations.calcom.calComService.asyncio.sleep"


def _service(handler, **kwargs) -> tuple[CalComService, list[httpx.Request]]:
    seen: list[httpx.Request] = []

    def _record(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return handler(request)

    client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
    service = CalComService(
        api_key="test-key",
        base_url="https://cal.test/v1",
        max_retries=3,
        client=client,
        **kwargs,
    )
    return service, seen


def _sequence(*responses):
    remaining = list(responses)

    def handler(request):
        item = remaining.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    return handler


# ---------------------------------------------------------------------------
# parse_slots_response
# ---------------------------------------------------------------------------


class TestParseSlots:

    def test_flattens_and_sorts_days(self):
        data = {
            "slots": {
                "2024-06-02": [{"time": "2024-06-02T13:00:00Z"}],
                "2024-06-01": [
                    {"time": "2024-06-01T18:00:00Z"},
                    {"time": "2024-06-01T14:00:00Z"},
                ],
            }
        }
        slots = parse_slots_response(data, TZ)
        assert [s.isoformat() for s in slots] == [
            "2024-06-01T14:00:00+00:00",
            "2024-06-01T18:00:00+00:00",
            "2024-06-02T13:00:00+00:00",
        ]

    def test_naive_times_take_the_calendar_zone(self):
        slots = parse_slots_response({"slots": {"2024-06-01": [{"time": "2024-06-01T09:00:00"}]}}, TZ)
        assert slots[0].tzinfo == ZoneInfo(TZ)

    def test_empty_payload_means_no_slots(self):
        assert parse_slots_response({"slots": {}}, TZ) == []
        assert parse_slots_response({}, TZ) == []

    def test_garbage_time_raises(self):
        with pytest.raises(CalComError):
            parse_slots_response({"slots": {"d": [{"time": "not-a-time"}]}}, TZ)

    @pytest.mark.parametrize(
        "payload",
        [
            {"slots": {"2024-06-01": [{"time": 1717246800}]}},
            {"slots": {"2024-06-01": [{"time": ["2024-06-01T13:00:00Z"]}]}},
            {"slots": {"2024-06-01": "2024-06-01T13:00:00Z"}},
        ],
    )
    def test_non_string_slot_times_raise_calcom_error(self, payload):
        with pytest.raises(CalComError):
            parse_slots_response(payload, TZ)

    @pytest.mark.asyncio
    async def test_non_string_slot_time_from_api_raises_calcom_error(self):
        service, _ = _service(
            lambda r: httpx.Response(
                200, json={"slots": {"2024-06-01": [{"time": 1717246800}]}}
            )
        )
        with pytest.raises(CalComError):
            await service.get_available_slots(42, START, END, TZ)


# ---------------------------------------------------------------------------
# get_available_slots
# ---------------------------------------------------------------------------


class TestGetAvailableSlots:

    @pytest.mark.asyncio
    async def test_request_shape(self):
        service, seen = _service(
            lambda r: httpx.Response(
                200, json={"slots": {"2024-06-01": [{"time": "2024-06-01T13:00:00Z"}]}}
            )
        )

        slots = await service.get_available_slots(42, START, END, TZ)

        assert len(slots) == 1
        request = seen[0]
        assert request.method == "GET"
        assert request.url.path == "/v1/slots"
        assert request.url.params["eventTypeId"] == "42"
        assert request.url.params["timeZone"] == TZ
        assert request.headers["Authorization"] == "Bearer test-key"

    @pytest.mark.asyncio
    async def test_retries_server_errors_then_succeeds(self):
        service, seen = _service(
            _sequence(
                httpx.Response(503),
                httpx.Response(502),
                httpx.Response(200, json={"slots": {}}),
            )
        )
        with patch(SLEEP, new=AsyncMock()) as sleep:
            assert await service.get_available_slots(42, START, END, TZ) == []
        assert len(seen) == 3
        assert [c.args[0] for c in sleep.await_args_list] == [0.5, 1.0]

    @pytest.mark.asyncio
    async def test_retries_timeouts(self):
        service, seen = _service(
            _sequence(
                httpx.ReadTimeout("slow"),
                httpx.Response(200, json={"slots": {}}),
            )
        )
        with patch(SLEEP, new=AsyncMock()):
            assert await service.get_available_slots(42, START, END, TZ) == []
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        service, seen = _service(lambda r: httpx.Response(500, text="oops"))
        with patch(SLEEP, new=AsyncMock()):
            with pytest.raises(CalComError) as exc_info:
                await service.get_available_slots(42, START, END, TZ)
        assert len(seen) == 3
        assert exc_info.value.status_code == 500
        assert exc_info.value.source == "cal.com"

    @pytest.mark.asyncio
    async def test_client_errors_are_not_retried(self):
        service, seen = _service(lambda r: httpx.Response(404, json={"message": "nope"}))
        with pytest.raises(CalComError) as exc_info:
            await service.get_available_slots(42, START, END, TZ)
        assert len(seen) == 1
        assert exc_info.value.status_code == 404

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        service = CalComService(api_key="", base_url="https://cal.test/v1")
        with pytest.raises(CalComError):
            await service.get_available_slots(42, START, END, TZ)


# ---------------------------------------------------------------------------
# create_booking / cancel_booking
# ---------------------------------------------------------------------------


class TestBookings:

    ATTENDEE = Attendee(name="Sam Rivera", email="sam@example.com", time_zone=TZ)

    @pytest.mark.asyncio
    async def test_create_booking_payload_and_result(self):
        service, seen = _service(
            lambda r: httpx.Response(200, json={"id": 555, "uid": "abc-123"})
        )

        booking = await service.create_booking(
            42, START, END, self.ATTENDEE, {"booking_id": "b-1"}
        )

        assert booking.id == "555"
        assert booking.uid == "abc-123"
        body = json.loads(seen[0].content)
        assert body["eventTypeId"] == 42
        assert body["responses"] == {"name": "Sam Rivera", "email": "sam@example.com"}
        assert body["metadata"] == {"booking_id": "b-1", "source": "homepro"}

    @pytest.mark.asyncio
    async def test_create_booking_not_retried_on_server_error(self):
        service, seen = _service(lambda r: httpx.Response(500))
        with patch(SLEEP, new=AsyncMock()):
            with pytest.raises(CalComError):
                await service.create_booking(42, START, END, self.ATTENDEE, {})
        assert len(seen) == 1

    @pytest.mark.asyncio
    async def test_create_booking_retried_when_connection_failed(self):
        service, seen = _service(
            _sequence(
                httpx.ConnectError("refused"),
                httpx.Response(200, json={"id": 1, "uid": "u-1"}),
            )
        )
        with patch(SLEEP, new=AsyncMock()):
            booking = await service.create_booking(42, START, END, self.ATTENDEE, {})
        assert booking.uid == "u-1"
        assert len(seen) == 2

    @pytest.mark.asyncio
    async def test_create_booking_without_uid_is_an_error(self):
        service, _ = _service(lambda r: httpx.Response(200, json={"id": 1}))
        with pytest.raises(CalComError):
            await service.create_booking(42, START, END, self.ATTENDEE, {})

    @pytest.mark.asyncio
    async def test_cancel_booking(self):
        service, seen = _service(lambda r: httpx.Response(200, json={}))

        await service.cancel_booking("abc-123", "Customer request")

        request = seen[0]
        assert request.method == "DELETE"
        assert request.url.path == "/v1/bookings/abc-123"
        assert json.loads(request.content) == {"reason": "Customer request"}
