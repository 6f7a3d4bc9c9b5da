"""
Cal.com integration package
===========================

Public API for the external calendar used as the availability gateway.

Typical usage::

    from homepro.integrations.calcom import CalComService, Attendee

    gateway = CalComService()
    slots = await gateway.get_available_slots(event_type_id, start, end, tz)
"""

from homepro.integrations.calcom.calComService import (
    Attendee,
    AvailabilityGateway,
    CalComError,
    CalComService,
    ExternalBooking,
    parse_slots_response,
)

__all__ = [
    "Attendee",
    "AvailabilityGateway",
    "CalComError",
    "CalComService",
    "ExternalBooking",
    "parse_slots_response",
]
