"""Conflict detection between a candidate slot and a patient's live appointments.

Two slots conflict when they fall on the same calendar date and start less
than the conflict window apart. Dates are compared as supplied by the caller;
no timezone normalization is applied, so slots on either side of midnight
never conflict.
"""

from collections.abc import Iterable
from datetime import datetime, timedelta

from backend.core import config
from backend.schemas.appointment import AppointmentRecord


def _start_of(slot: AppointmentRecord | datetime) -> datetime:
    if isinstance(slot, datetime):
        return slot
    return slot.appointment_date_time


def _distance(first: datetime, second: datetime) -> timedelta:
    # Mixing naive and aware values compares wall-clock times.
    if (first.tzinfo is None) != (second.tzinfo is None):
        first = first.replace(tzinfo=None)
        second = second.replace(tzinfo=None)
    return abs(first - second)


def has_conflict(
    existing: AppointmentRecord | datetime,
    candidate: AppointmentRecord | datetime,
    window_minutes: int | None = None,
) -> bool:
    window = timedelta(minutes=window_minutes or config.CONFLICT_WINDOW_MINUTES)
    existing_start = _start_of(existing)
    candidate_start = _start_of(candidate)

    if existing_start.date() != candidate_start.date():
        return False

    return _distance(existing_start, candidate_start) < window


def find_conflicts(
    existing: Iterable[AppointmentRecord],
    candidate: datetime,
    exclude_id: str | None = None,
    window_minutes: int | None = None,
) -> list[AppointmentRecord]:
    return [
        appointment
        for appointment in existing
        if appointment.id != exclude_id and has_conflict(appointment, candidate, window_minutes)
    ]
