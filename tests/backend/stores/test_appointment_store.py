import logging
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from backend.core.errors import NotFoundError, StaleScheduleError, StorageError
from backend.models.appointment import Appointment, PatientSchedule
from backend.schemas.appointment import AppointmentDraft
from backend.stores.appointment_store import InMemoryAppointmentBackend, SqlAppointmentStore


def _draft(start: datetime, **overrides) -> AppointmentDraft:
    values = {
        'name': 'Jane Doe',
        'age': 34,
        'email': 'jane@example.com',
        'hospital': 'Hospital A',
        'appointment_date_time': start,
    }
    values.update(overrides)
    return AppointmentDraft(**values)


def test_create_then_list_preserves_insertion_order(db_session) -> None:
    store = SqlAppointmentStore(db_session, 'p1')

    later_id = store.create(_draft(datetime(2024, 6, 3, 9, 0)))
    earlier_id = store.create(_draft(datetime(2024, 6, 1, 9, 0)))

    appointments = store.list_all()
    assert [appointment.id for appointment in appointments] == [later_id, earlier_id]
    assert appointments[0].patient_id == 'p1'
    assert appointments[0].appointment_date_time == datetime(2024, 6, 3, 9, 0)


def test_list_all_is_empty_for_new_patient(db_session) -> None:
    assert SqlAppointmentStore(db_session, 'nobody').list_all() == []


def test_get_is_scoped_to_patient(db_session) -> None:
    appointment_id = SqlAppointmentStore(db_session, 'p1').create(_draft(datetime(2024, 6, 1, 9, 0)))

    assert SqlAppointmentStore(db_session, 'p1').get(appointment_id).id == appointment_id
    with pytest.raises(NotFoundError):
        SqlAppointmentStore(db_session, 'p2').get(appointment_id)


def test_update_merges_editable_fields(db_session) -> None:
    store = SqlAppointmentStore(db_session, 'p1')
    appointment_id = store.create(_draft(datetime(2024, 6, 1, 9, 0)))

    updated = store.update(appointment_id, {
        'hospital': 'Hospital B',
        'appointment_date_time': datetime(2024, 6, 1, 15, 30),
        'patient_id': 'p2',
    })

    assert updated.hospital == 'Hospital B'
    assert updated.appointment_date_time == datetime(2024, 6, 1, 15, 30)
    assert updated.patient_id == 'p1'
    assert updated.name == 'Jane Doe'


def test_update_other_patients_appointment_is_not_found(db_session) -> None:
    appointment_id = SqlAppointmentStore(db_session, 'p1').create(_draft(datetime(2024, 6, 1, 9, 0)))

    with pytest.raises(NotFoundError):
        SqlAppointmentStore(db_session, 'p2').update(appointment_id, {'hospital': 'Hospital B'})

    assert SqlAppointmentStore(db_session, 'p1').get(appointment_id).hospital == 'Hospital A'


def test_delete_hard_removes_row(db_session) -> None:
    store = SqlAppointmentStore(db_session, 'p1')
    appointment_id = store.create(_draft(datetime(2024, 6, 1, 9, 0)))

    store.delete(appointment_id)

    assert db_session.query(Appointment).filter(Appointment.id == appointment_id).first() is None
    with pytest.raises(NotFoundError):
        store.delete(appointment_id)


def test_conditional_create_bumps_version(db_session) -> None:
    store = SqlAppointmentStore(db_session, 'p1')
    assert store.version() == 0

    store.create(_draft(datetime(2024, 6, 1, 9, 0)), expected_version=0)
    store.create(_draft(datetime(2024, 6, 1, 11, 0)), expected_version=1)

    assert store.version() == 2
    assert SqlAppointmentStore(db_session, 'p2').version() == 0


def test_conditional_create_with_stale_version_writes_nothing(db_session) -> None:
    store = SqlAppointmentStore(db_session, 'p1')
    store.create(_draft(datetime(2024, 6, 1, 9, 0)), expected_version=0)

    with pytest.raises(StaleScheduleError):
        store.create(_draft(datetime(2024, 6, 1, 9, 30)), expected_version=0)

    assert len(store.list_all()) == 1
    assert store.version() == 1


def test_storage_failures_surface_as_storage_error(db_session, monkeypatch: pytest.MonkeyPatch) -> None:
    store = SqlAppointmentStore(db_session, 'p1')

    def broken_execute(*args, **kwargs):
        raise OperationalError('SELECT 1', {}, Exception('database is locked'))

    monkeypatch.setattr(db_session, 'execute', broken_execute)

    with pytest.raises(StorageError):
        store.list_all()
    with pytest.raises(StorageError):
        store.version()


def test_first_booking_race_is_reported_as_stale(db_session, session_factory, monkeypatch, caplog) -> None:
    competitor = session_factory()
    competitor.add(PatientSchedule(patient_id='p1', version=1))
    competitor.commit()
    competitor.close()

    store = SqlAppointmentStore(db_session, 'p1')
    # The competing first booking committed after this store looked for the schedule row.
    monkeypatch.setattr(store, '_current_version', lambda: None)

    with caplog.at_level(logging.INFO, logger='backend.stores.appointment_store'):
        with pytest.raises(StaleScheduleError):
            store.create(_draft(datetime(2024, 6, 1, 9, 0)), expected_version=0)

    assert db_session.query(Appointment).count() == 0
    assert not [record for record in caplog.records if record.levelno >= logging.ERROR]
    monkeypatch.undo()
    assert store.version() == 1


def test_conditional_update_claims_version(db_session) -> None:
    store = SqlAppointmentStore(db_session, 'p1')
    appointment_id = store.create(_draft(datetime(2024, 6, 1, 9, 0)), expected_version=0)

    moved = store.update(appointment_id, {'appointment_date_time': datetime(2024, 6, 1, 13, 0)}, expected_version=1)

    assert moved.appointment_date_time == datetime(2024, 6, 1, 13, 0)
    assert store.version() == 2


def test_conditional_update_with_stale_version_changes_nothing(db_session) -> None:
    store = SqlAppointmentStore(db_session, 'p1')
    appointment_id = store.create(_draft(datetime(2024, 6, 1, 9, 0)), expected_version=0)
    store.create(_draft(datetime(2024, 6, 1, 15, 0)), expected_version=1)

    with pytest.raises(StaleScheduleError):
        store.update(appointment_id, {'appointment_date_time': datetime(2024, 6, 1, 13, 0)}, expected_version=1)

    assert store.get(appointment_id).appointment_date_time == datetime(2024, 6, 1, 9, 0)
    assert store.version() == 2


def test_in_memory_reads_do_not_create_partitions() -> None:
    backend = InMemoryAppointmentBackend()
    store = backend.for_patient('p1')

    assert store.list_all() == []
    with pytest.raises(NotFoundError):
        store.get('missing')
    with pytest.raises(NotFoundError):
        store.update('missing', {'hospital': 'Hospital B'})
    with pytest.raises(NotFoundError):
        store.delete('missing')

    assert backend.snapshot() == {}


def test_in_memory_reads_return_copies() -> None:
    backend = InMemoryAppointmentBackend()
    store = backend.for_patient('p1')
    appointment_id = store.create(_draft(datetime(2024, 6, 1, 9, 0)))

    store.get(appointment_id).hospital = 'Changed'
    store.list_all()[0].name = 'Changed'
    store.update(appointment_id, {'age': 40}).email = 'changed@example.com'

    stored = store.get(appointment_id)
    assert stored.hospital == 'Hospital A'
    assert stored.name == 'Jane Doe'
    assert stored.email == 'jane@example.com'
    assert stored.age == 40


def test_in_memory_conditional_update_with_stale_version_changes_nothing() -> None:
    backend = InMemoryAppointmentBackend()
    store = backend.for_patient('p1')
    appointment_id = store.create(_draft(datetime(2024, 6, 1, 9, 0)), expected_version=0)

    with pytest.raises(StaleScheduleError):
        store.update(appointment_id, {'hospital': 'Hospital B'}, expected_version=0)

    assert store.get(appointment_id).hospital == 'Hospital A'
    assert store.version() == 1
