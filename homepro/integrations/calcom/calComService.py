"""
Cal.com API wrapper service
===========================

Async adapter over the Cal.com v1 REST API, used as the availability
gateway: free-slot lookup, booking creation and booking cancellation for a
provider's event type.

All HTTP calls use httpx with retry logic (exponential backoff) on
timeouts, connection errors and 5xx responses. Booking creation is not
idempotent, so it is only retried when the connection could not be
established at all.

An empty slot list is a successful answer; every failure surfaces as
``CalComError`` so callers can tell "no availability" from "calendar down".
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator, Protocol
from zoneinfo import ZoneInfo

import httpx

from homepro.core.config import settings
from homepro.core.exceptions import UpstreamFailureError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

_INITIAL_BACKOFF_SECONDS = 0.5  # doubles each retry: 0.5, 1.0, 2.0
BOOKING_SOURCE = "homepro"


# ---------------------------------------------------------------------------
# Custom exception
# ---------------------------------------------------------------------------


class CalComError(UpstreamFailureError):
    """Raised when a Cal.com request fails after all retries or returns an
    error response."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        raw: Any = None,
    ) -> None:
        super().__init__(message, source="cal.com")
        self.status_code = status_code
        self.raw = raw


# ---------------------------------------------------------------------------
# Gateway contract
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Attendee:
    name: str
    email: str
    time_zone: str


@dataclass(frozen=True)
class ExternalBooking:
    """Identifiers of a booking held by the external calendar."""

    id: str
    uid: str
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)


class AvailabilityGateway(Protocol):
    """Operations the matching and booking services need from a calendar."""

    async def get_available_slots(
        self,
        event_type_id: int,
        start_time: datetime,
        end_time: datetime,
        time_zone: str,
    ) -> list[datetime]: ...

    async def create_booking(
        self,
        event_type_id: int,
        start: datetime,
        end: datetime,
        attendee: Attendee,
        metadata: dict[str, Any],
    ) -> ExternalBooking: ...

    async def cancel_booking(self, uid: str, reason: str) -> None: ...


# ---------------------------------------------------------------------------
# Parsing helpers
# ---------------------------------------------------------------------------


def parse_slot_time(value: str, time_zone: str) -> datetime:
    """Parse a Cal.com slot timestamp into an aware datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(time_zone))
    return parsed


def parse_slots_response(data: dict[str, Any], time_zone: str) -> list[datetime]:
    """Flatten the ``{"slots": {"YYYY-MM-DD": [{"time": ...}]}}`` payload
    into a sorted list of slot start times."""
    slots_by_day = data.get("slots") or {}
    if not isinstance(slots_by_day, dict):
        raise CalComError("Unexpected slots payload from Cal.com", raw=data)

    starts: list[datetime] = []
    for day_slots in slots_by_day.values():
        if day_slots and not isinstance(day_slots, list):
            raise CalComError("Unexpected slots payload from Cal.com", raw=data)
        for slot in day_slots or []:
            value = slot.get("time") if isinstance(slot, dict) else slot
            if not value:
                continue
            if not isinstance(value, str):
                raise CalComError(
                    f"Unexpected slot time type from Cal.com: {value!r}", raw=data
                )
            try:
                starts.append(parse_slot_time(value, time_zone))
            except ValueError as exc:
                raise CalComError(
                    f"Unparseable slot time from Cal.com: {value!r}", raw=data
                ) from exc
    return sorted(starts)


# ---------------------------------------------------------------------------
# Service
# ---------------------------------------------------------------------------


class CalComService:
    """Availability gateway backed by the Cal.com v1 API."""

    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        *,
        timeout_seconds: float | None = None,
        max_retries: int | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.api_key = api_key if api_key is not None else settings.cal_com_api_key
        self.base_url = (base_url or settings.cal_com_base_url).rstrip("/")
        self.timeout_seconds = timeout_seconds or settings.cal_com_timeout_seconds
        self.max_retries = max_retries or settings.cal_com_max_retries
        self._client = client

    # -- HTTP plumbing ------------------------------------------------------

    @asynccontextmanager
    async def _http(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient() as client:
            yield client

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            raise CalComError("CAL_COM_API_KEY is not configured")
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    async def _request_with_retry(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
        idempotent: bool = True,
    ) -> dict[str, Any]:
        """Execute a request with exponential-backoff retry logic.

        Retries on 5xx, timeouts and connection errors. Non-idempotent
        requests are only retried on connection errors (nothing was sent).
        4xx responses are surfaced immediately.
        """
        url = f"{self.base_url}{path}"
        headers = self._headers()
        last_exception: Exception | None = None
        backoff = _INITIAL_BACKOFF_SECONDS

        async with self._http() as client:
            for attempt in range(1, self.max_retries + 1):
                try:
                    response = await client.request(
                        method,
                        url,
                        params=params,
                        json=json,
                        headers=headers,
                        timeout=self.timeout_seconds,
                    )
                except httpx.ConnectError as exc:
                    last_exception = exc
                    logger.warning(
                        "Cal.com connection error on %s %s attempt %d/%d: %s",
                        method, path, attempt, self.max_retries, exc,
                    )
                except httpx.TimeoutException as exc:
                    last_exception = exc
                    logger.warning(
                        "Cal.com timeout on %s %s attempt %d/%d: %s",
                        method, path, attempt, self.max_retries, exc,
                    )
                    if not idempotent:
                        break
                except httpx.HTTPError as exc:
                    raise CalComError(
                        f"Cal.com {method} {path} transport error: {exc}",
                        raw=str(exc),
                    ) from exc
                else:
                    if 400 <= response.status_code < 500:
                        raise CalComError(
                            f"Cal.com client error: HTTP {response.status_code}",
                            status_code=response.status_code,
                            raw=response.text,
                        )

                    if response.status_code >= 500:
                        last_exception = CalComError(
                            f"Cal.com server error: HTTP {response.status_code}",
                            status_code=response.status_code,
                            raw=response.text,
                        )
                        logger.warning(
                            "Cal.com server error on %s %s attempt %d/%d: HTTP %d",
                            method, path, attempt, self.max_retries,
                            response.status_code,
                        )
                        if not idempotent:
                            break
                    else:
                        if not response.content:
                            return {}
                        try:
                            return response.json()  # type: ignore[no-any-return]
                        except ValueError as exc:
                            raise CalComError(
                                "Cal.com returned a non-JSON response",
                                status_code=response.status_code,
                                raw=response.text,
                            ) from exc

                if attempt < self.max_retries:
                    await asyncio.sleep(backoff)
                    backoff *= 2

        if isinstance(last_exception, CalComError):
            raise last_exception
        raise CalComError(
            f"Cal.com {method} {path} failed after retries",
            raw=str(last_exception),
        ) from last_exception

    # -- Public API ---------------------------------------------------------

    async def get_available_slots(
        self,
        event_type_id: int,
        start_time: datetime,
        end_time: datetime,
        time_zone: str,
    ) -> list[datetime]:
        """Return the free slot start times for an event type in a window.

        Raises:
            CalComError: On any transport or API failure.
        """
        data = await self._request_with_retry(
            "GET",
            "/slots",
            params={
                "eventTypeId": event_type_id,
                "startTime": start_time.isoformat(),
                "endTime": end_time.isoformat(),
                "timeZone": time_zone,
            },
        )
        return parse_slots_response(data, time_zone)

    async def create_booking(
        self,
        event_type_id: int,
        start: datetime,
        end: datetime,
        attendee: Attendee,
        metadata: dict[str, Any],
    ) -> ExternalBooking:
        """Create a booking on the provider's event type.

        Raises:
            CalComError: On failure or when the response lacks identifiers.
        """
        payload = {
            "eventTypeId": event_type_id,
            "start": start.isoformat(),
            "end": end.isoformat(),
            "responses": {
                "name": attendee.name,
                "email": attendee.email,
            },
            "timeZone": attendee.time_zone,
            "language": "en",
            "metadata": {**metadata, "source": BOOKING_SOURCE},
        }
        data = await self._request_with_retry(
            "POST", "/bookings", json=payload, idempotent=False
        )

        if data.get("id") is None or not data.get("uid"):
            raise CalComError("Cal.com booking response missing id/uid", raw=data)

        logger.info(
            "Cal.com booking %s created for event type %s", data["uid"], event_type_id
        )
        return ExternalBooking(id=str(data["id"]), uid=str(data["uid"]), raw=data)

    async def cancel_booking(self, uid: str, reason: str) -> None:
        """Cancel a booking by uid.

        Raises:
            CalComError: On failure.
        """
        await self._request_with_retry(
            "DELETE",
            f"/bookings/{uid}",
            json={"reason": reason},
        )
        logger.info("Cal.com booking %s cancelled (%s)", uid, reason)
