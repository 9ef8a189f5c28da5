"""Patient-scoped appointment stores.

Every store instance is bound to a single ``patient_id``; an appointment id that
belongs to another patient is indistinguishable from one that does not exist.
"""

import logging
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from backend.core.errors import NotFoundError, StaleScheduleError, StorageError
from backend.models.appointment import Appointment, PatientSchedule
from backend.schemas.appointment import AppointmentDraft, AppointmentRecord

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ('name', 'age', 'email', 'hospital', 'appointment_date_time')


def new_appointment_id() -> str:
    return uuid.uuid4().hex


def _to_column_value(field: str, value: Any) -> Any:
    if field == 'appointment_date_time' and isinstance(value, datetime):
        return value.isoformat()
    return value


class AppointmentStore(Protocol):
    patient_id: str

    def version(self) -> int: ...

    def create(self, draft: AppointmentDraft, expected_version: int | None = None) -> str: ...

    def list_all(self) -> list[AppointmentRecord]: ...

    def get(self, appointment_id: str) -> AppointmentRecord: ...

    def update(
        self, appointment_id: str, fields: dict[str, Any], expected_version: int | None = None,
    ) -> AppointmentRecord: ...

    def delete(self, appointment_id: str) -> None: ...


class SqlAppointmentStore:
    def __init__(self, db: Session, patient_id: str):
        self.db = db
        self.patient_id = patient_id

    @contextmanager
    def _guard(self, action: str) -> Iterator[None]:
        try:
            yield
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.exception('Appointment store failed to %s for patient %s.', action, self.patient_id)
            raise StorageError() from exc

    def _find(self, appointment_id: str) -> Appointment:
        appointment = self.db.execute(
            select(Appointment)
            .where(
                Appointment.patient_id == self.patient_id,
                Appointment.id == appointment_id,
            )
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if appointment is None:
            raise NotFoundError()
        return appointment

    def _current_version(self) -> int | None:
        return self.db.execute(
            select(PatientSchedule.version).where(PatientSchedule.patient_id == self.patient_id)
        ).scalar_one_or_none()

    def _stale(self, expected_version: int) -> StaleScheduleError:
        self.db.rollback()
        logger.info('Schedule for patient %s moved past version %d.', self.patient_id, expected_version)
        return StaleScheduleError(self.patient_id, expected_version)

    def _claim_version(self, expected_version: int) -> None:
        """Bump the patient's schedule version if it still equals ``expected_version``.

        Rolls the session back and raises ``StaleScheduleError`` otherwise.
        """
        if expected_version == 0 and self._current_version() is None:
            # A concurrent first booking makes this insert fail on the primary key.
            self.db.add(PatientSchedule(patient_id=self.patient_id, version=1))
            try:
                self.db.flush()
            except IntegrityError as exc:
                raise self._stale(expected_version) from exc
            return

        result = self.db.execute(
            update(PatientSchedule)
            .where(
                PatientSchedule.patient_id == self.patient_id,
                PatientSchedule.version == expected_version,
            )
            .values(version=PatientSchedule.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise self._stale(expected_version)

    def version(self) -> int:
        with self._guard('read schedule version'):
            current = self._current_version()
        return current or 0

    def create(self, draft: AppointmentDraft, expected_version: int | None = None) -> str:
        appointment_id = new_appointment_id()

        with self._guard('create appointment'):
            if expected_version is not None:
                self._claim_version(expected_version)

            appointment = Appointment(
                id=appointment_id,
                patient_id=self.patient_id,
                name=draft.name,
                age=draft.age,
                email=draft.email,
                hospital=draft.hospital,
                appointment_date_time=draft.appointment_date_time.isoformat(),
            )
            self.db.add(appointment)
            self.db.commit()

        return appointment_id

    def list_all(self) -> list[AppointmentRecord]:
        with self._guard('list appointments'):
            appointments = self.db.execute(
                select(Appointment)
                .where(Appointment.patient_id == self.patient_id)
                .order_by(Appointment.row_id.asc())
                .execution_options(populate_existing=True)
            ).scalars().all()

            return [AppointmentRecord.model_validate(appointment) for appointment in appointments]

    def get(self, appointment_id: str) -> AppointmentRecord:
        with self._guard('read appointment'):
            return AppointmentRecord.model_validate(self._find(appointment_id))

    def update(
        self,
        appointment_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> AppointmentRecord:
        with self._guard('update appointment'):
            appointment = self._find(appointment_id)
            if expected_version is not None:
                self._claim_version(expected_version)

            for field, value in fields.items():
                if field not in EDITABLE_FIELDS:
                    continue
                setattr(appointment, field, _to_column_value(field, value))
            self.db.commit()
            self.db.refresh(appointment)

            return AppointmentRecord.model_validate(appointment)

    def delete(self, appointment_id: str) -> None:
        with self._guard('delete appointment'):
            appointment = self._find(appointment_id)
            self.db.delete(appointment)
            self.db.commit()


class InMemoryAppointmentBackend:
    """Process-local appointment storage partitioned by patient, for tests and local runs."""

    def __init__(self):
        self._lock = Lock()
        self._appointments: dict[str, dict[str, AppointmentRecord]] = {}
        self._versions: dict[str, int] = {}

    def for_patient(self, patient_id: str) -> 'InMemoryAppointmentStore':
        return InMemoryAppointmentStore(self, patient_id)

    def snapshot(self) -> dict[str, list[AppointmentRecord]]:
        with self._lock:
            return {
                patient_id: [appointment.model_copy() for appointment in appointments.values()]
                for patient_id, appointments in self._appointments.items()
            }


class InMemoryAppointmentStore:
    def __init__(self, backend: InMemoryAppointmentBackend, patient_id: str):
        self.backend = backend
        self.patient_id = patient_id

    def _appointments(self) -> dict[str, AppointmentRecord]:
        return self.backend._appointments.get(self.patient_id, {})

    def _claim_version(self, expected_version: int | None) -> None:
        # Caller holds the backend lock.
        current = self.backend._versions.get(self.patient_id, 0)
        if expected_version is not None and current != expected_version:
            raise StaleScheduleError(self.patient_id, expected_version)
        self.backend._versions[self.patient_id] = current + 1

    def version(self) -> int:
        with self.backend._lock:
            return self.backend._versions.get(self.patient_id, 0)

    def create(self, draft: AppointmentDraft, expected_version: int | None = None) -> str:
        appointment_id = new_appointment_id()
        with self.backend._lock:
            self._claim_version(expected_version)
            self.backend._appointments.setdefault(self.patient_id, {})[appointment_id] = AppointmentRecord(
                id=appointment_id,
                patient_id=self.patient_id,
                **draft.model_dump(),
            )

        return appointment_id

    def list_all(self) -> list[AppointmentRecord]:
        with self.backend._lock:
            return [appointment.model_copy() for appointment in self._appointments().values()]

    def get(self, appointment_id: str) -> AppointmentRecord:
        with self.backend._lock:
            appointment = self._appointments().get(appointment_id)
        if appointment is None:
            raise NotFoundError()
        return appointment.model_copy()

    def update(
        self,
        appointment_id: str,
        fields: dict[str, Any],
        expected_version: int | None = None,
    ) -> AppointmentRecord:
        changes = {field: value for field, value in fields.items() if field in EDITABLE_FIELDS}
        with self.backend._lock:
            appointments = self._appointments()
            if appointment_id not in appointments:
                raise NotFoundError()
            if expected_version is not None:
                self._claim_version(expected_version)
            updated = appointments[appointment_id].model_copy(update=changes)
            appointments[appointment_id] = updated
        return updated.model_copy()

    def delete(self, appointment_id: str) -> None:
        with self.backend._lock:
            appointments = self._appointments()
            if appointment_id not in appointments:
                raise NotFoundError()
            del appointments[appointment_id]
