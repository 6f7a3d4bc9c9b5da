"""
Error taxonomy shared by the matching and booking services.

Route handlers translate these into HTTP responses; services raise them
with the identifiers needed to act on the failure. "No eligible providers"
is not an error: it is the ``no_candidates`` search outcome.
"""

from __future__ import annotations

import uuid
from typing import Any


class HomeproError(Exception):
    """Base class for all service-level errors."""


# ---------------------------------------------------------------------------
# Not found
# ---------------------------------------------------------------------------

class NotFoundError(HomeproError):
    pass


class ProviderNotFoundError(NotFoundError):
    def __init__(self, provider_id: uuid.UUID) -> None:
        self.provider_id = provider_id
        super().__init__(f"Provider with id '{provider_id}' not found.")


class BookingNotFoundError(NotFoundError):
    def __init__(self, booking_id: uuid.UUID) -> None:
        self.booking_id = booking_id
        super().__init__(f"Booking with id '{booking_id}' not found.")


# ---------------------------------------------------------------------------
# Input validation
# ---------------------------------------------------------------------------

class ValidationError(HomeproError):
    """Raised for malformed criteria or booking input, before any I/O."""

    def __init__(self, message: str, *, field: str | None = None) -> None:
        self.field = field
        super().__init__(message)


# ---------------------------------------------------------------------------
# Upstream (database / calendar) failures
# ---------------------------------------------------------------------------

class UpstreamFailureError(HomeproError):
    """A collaborator (database, calendar service) failed to answer."""

    def __init__(self, message: str, *, source: str) -> None:
        self.source = source
        super().__init__(message)


# ---------------------------------------------------------------------------
# Booking commit
# ---------------------------------------------------------------------------

class CommitFailureError(HomeproError):
    """Raised when the two-phase booking commit fails.

    ``phase`` names the step that failed (``"insert"``, ``"external"`` or
    ``"link"``). When compensation could not undo a side effect, the
    surviving artifact is reported in ``orphaned_booking_id`` or
    ``orphaned_external_uid`` so an operator can reconcile it.
    """

    def __init__(
        self,
        message: str,
        *,
        phase: str,
        booking_id: uuid.UUID | None = None,
        orphaned_booking_id: uuid.UUID | None = None,
        orphaned_external_uid: str | None = None,
    ) -> None:
        self.phase = phase
        self.booking_id = booking_id
        self.orphaned_booking_id = orphaned_booking_id
        self.orphaned_external_uid = orphaned_external_uid
        super().__init__(message)

    @property
    def fully_rolled_back(self) -> bool:
        return self.orphaned_booking_id is None and self.orphaned_external_uid is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "message": str(self),
            "phase": self.phase,
            "booking_id": str(self.booking_id) if self.booking_id else None,
            "orphaned_booking_id": (
                str(self.orphaned_booking_id) if self.orphaned_booking_id else None
            ),
            "orphaned_external_uid": self.orphaned_external_uid,
        }


class ConflictDetectedError(HomeproError):
    """The chosen provider already has an overlapping job."""

    def __init__(self, provider_id: uuid.UUID, message: str | None = None) -> None:
        self.provider_id = provider_id
        super().__init__(
            message
            or f"Provider '{provider_id}' already has a job overlapping the requested time."
        )
