"""
Conflict Detector
=================

Decides whether a new job would overlap a provider's already-committed jobs
on the same day. Jobs are half-open intervals ``[start, start + duration)``,
so back-to-back jobs (one ending exactly when the next starts) do not
conflict.

Existing jobs with no recorded duration are assumed to last
``settings.default_job_duration_hours``. Every use of that fallback is
logged because a wrong default either double-books a provider or excludes
one needlessly.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from homepro.core.config import settings
from homepro.core.exceptions import ValidationError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduledJob:
    """An internal job occupying a provider's time."""

    booking_id: uuid.UUID
    start: datetime
    duration_hours: Optional[float] = None


def intervals_overlap(
    start_a: datetime,
    end_a: datetime,
    start_b: datetime,
    end_b: datetime,
) -> bool:
    """Half-open interval overlap: ``[start_a, end_a)`` vs ``[start_b, end_b)``."""
    return start_a < end_b and start_b < end_a


def _job_end(job: ScheduledJob, default_duration_hours: float) -> datetime:
    duration = job.duration_hours
    if duration is None or duration <= 0:
        logger.warning(
            "Booking %s has no usable duration (%r); assuming %.2f hours",
            job.booking_id,
            duration,
            default_duration_hours,
        )
        duration = default_duration_hours
    return job.start + timedelta(hours=float(duration))


def find_conflicts(
    existing_jobs: Iterable[ScheduledJob],
    new_start: datetime,
    new_duration_hours: float,
    *,
    default_duration_hours: float | None = None,
) -> list[ScheduledJob]:
    """Return the existing jobs that overlap the proposed job.

    Args:
        existing_jobs: The provider's committed jobs for the target date.
        new_start: Start of the proposed job.
        new_duration_hours: Length of the proposed job; must be positive.
        default_duration_hours: Assumed length for existing jobs without a
            recorded duration. Defaults to the configured value.

    Raises:
        ValidationError: If ``new_duration_hours`` is not positive.
    """
    if new_duration_hours is None or new_duration_hours <= 0:
        raise ValidationError(
            "Estimated duration must be a positive number of hours.",
            field="estimated_duration_hours",
        )

    fallback = (
        default_duration_hours
        if default_duration_hours is not None
        else settings.default_job_duration_hours
    )
    new_end = new_start + timedelta(hours=float(new_duration_hours))

    return [
        job
        for job in existing_jobs
        if intervals_overlap(new_start, new_end, job.start, _job_end(job, fallback))
    ]


def has_conflict(
    existing_jobs: Iterable[ScheduledJob],
    new_start: datetime,
    new_duration_hours: float,
    *,
    default_duration_hours: float | None = None,
) -> bool:
    """True if the proposed job overlaps any existing job."""
    return bool(
        find_conflicts(
            existing_jobs,
            new_start,
            new_duration_hours,
            default_duration_hours=default_duration_hours,
        )
    )
