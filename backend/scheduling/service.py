"""Appointment scheduling: booking, listing, editing and cancellation for one patient at a time.

Booking is a check-then-act sequence against the patient's store. The check is
pinned to the schedule version read beforehand and the insert only lands if
that version is still current, so two concurrent bookings cannot both pass
the conflict check. The loser re-reads and re-checks.
"""

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any

import pydantic

from backend.core import config
from backend.core.errors import AuthError, ConflictError, StaleScheduleError, ValidationError
from backend.scheduling.conflicts import find_conflicts
from backend.schemas.appointment import AppointmentChanges, AppointmentDraft, AppointmentRecord
from backend.stores.appointment_store import AppointmentStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PatientIdentity:
    patient_id: str


def _field_errors(exc: pydantic.ValidationError) -> list[dict]:
    errors = []
    for error in exc.errors():
        location = [str(part) for part in error.get('loc', ()) if part != '__root__']
        errors.append({
            'field': '.'.join(location) or None,
            'message': error.get('msg', 'Invalid value.'),
        })
    return errors


def parse_booking_details(details: Mapping[str, Any]) -> AppointmentDraft:
    try:
        return AppointmentDraft.model_validate(dict(details))
    except pydantic.ValidationError as exc:
        raise ValidationError('Invalid appointment details.', errors=_field_errors(exc)) from exc


def parse_changes(changes: Mapping[str, Any]) -> dict[str, Any]:
    try:
        parsed = AppointmentChanges.model_validate(dict(changes))
    except pydantic.ValidationError as exc:
        raise ValidationError('Invalid appointment changes.', errors=_field_errors(exc)) from exc

    fields = parsed.model_dump(exclude_unset=True)
    if not fields:
        raise ValidationError('No appointment fields to update.')
    return fields


class SchedulingService:
    def __init__(
        self,
        store_for: Callable[[str], AppointmentStore],
        conflict_window_minutes: int | None = None,
        max_booking_attempts: int | None = None,
        recheck_conflicts_on_edit: bool | None = None,
    ):
        self.store_for = store_for
        self.conflict_window_minutes = conflict_window_minutes or config.CONFLICT_WINDOW_MINUTES
        self.max_booking_attempts = max_booking_attempts or config.BOOKING_MAX_ATTEMPTS
        self.recheck_conflicts_on_edit = (
            config.RECHECK_CONFLICTS_ON_EDIT if recheck_conflicts_on_edit is None else recheck_conflicts_on_edit
        )

    def _store(self, identity: PatientIdentity | None) -> AppointmentStore:
        if identity is None or not identity.patient_id:
            raise AuthError()
        return self.store_for(identity.patient_id)

    def _ensure_no_conflict(
        self,
        existing: list[AppointmentRecord],
        draft_start,
        patient_id: str,
        exclude_id: str | None = None,
    ) -> None:
        conflicts = find_conflicts(existing, draft_start, exclude_id, self.conflict_window_minutes)
        if conflicts:
            conflicting_ids = [appointment.id for appointment in conflicts]
            logger.info(
                'Rejected slot %s for patient %s; conflicts with %s.',
                draft_start.isoformat(), patient_id, ', '.join(conflicting_ids),
            )
            raise ConflictError(conflicting_ids=conflicting_ids)

    def book_appointment(self, identity: PatientIdentity | None, details: Mapping[str, Any]) -> AppointmentRecord:
        store = self._store(identity)
        draft = parse_booking_details(details)

        for attempt in range(1, self.max_booking_attempts + 1):
            expected_version = store.version()
            self._ensure_no_conflict(store.list_all(), draft.appointment_date_time, store.patient_id)

            try:
                appointment_id = store.create(draft, expected_version=expected_version)
            except StaleScheduleError:
                logger.info(
                    'Schedule for patient %s changed during booking (attempt %d of %d).',
                    store.patient_id, attempt, self.max_booking_attempts,
                )
                continue

            logger.info('Booked appointment %s for patient %s.', appointment_id, store.patient_id)
            return store.get(appointment_id)

        raise ConflictError('Schedule changed while booking. Please try again.')

    def list_appointments(self, identity: PatientIdentity | None) -> list[AppointmentRecord]:
        return self._store(identity).list_all()

    def get_appointment(self, identity: PatientIdentity | None, appointment_id: str) -> AppointmentRecord:
        return self._store(identity).get(appointment_id)

    def edit_appointment(
        self,
        identity: PatientIdentity | None,
        appointment_id: str,
        changes: Mapping[str, Any],
    ) -> AppointmentRecord:
        store = self._store(identity)
        fields = parse_changes(changes)

        if self.recheck_conflicts_on_edit and 'appointment_date_time' in fields:
            appointment = self._move_appointment(store, appointment_id, fields)
        else:
            appointment = store.update(appointment_id, fields)

        logger.info(
            'Edited appointment %s for patient %s (%s).',
            appointment_id, store.patient_id, ', '.join(sorted(fields)),
        )
        return appointment

    def _move_appointment(
        self,
        store: AppointmentStore,
        appointment_id: str,
        fields: dict[str, Any],
    ) -> AppointmentRecord:
        # Same versioned check-then-write as booking, so a move and a booking cannot both land.
        for attempt in range(1, self.max_booking_attempts + 1):
            expected_version = store.version()
            store.get(appointment_id)
            self._ensure_no_conflict(
                store.list_all(), fields['appointment_date_time'], store.patient_id, exclude_id=appointment_id,
            )

            try:
                return store.update(appointment_id, fields, expected_version=expected_version)
            except StaleScheduleError:
                logger.info(
                    'Schedule for patient %s changed during edit of %s (attempt %d of %d).',
                    store.patient_id, appointment_id, attempt, self.max_booking_attempts,
                )

        raise ConflictError('Schedule changed while editing. Please try again.')

    def cancel_appointment(self, identity: PatientIdentity | None, appointment_id: str) -> None:
        store = self._store(identity)
        store.delete(appointment_id)
        logger.info('Canceled appointment %s for patient %s.', appointment_id, store.patient_id)
