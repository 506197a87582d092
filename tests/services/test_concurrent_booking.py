from datetime import datetime
from threading import Barrier, Lock, Thread

import pytest
from sqlalchemy.orm import sessionmaker

from clinic_api import database
from clinic_api.core.errors import SlotConflict
from clinic_api.core.records import Caller
from clinic_api.database import Base
from clinic_api.models.appointment import Appointment
from clinic_api.repositories import appointment_repository
from clinic_api.repositories.appointment_repository import AppointmentRepository
from clinic_api.repositories.user_repository import UserRepository
from clinic_api.services.appointment_service import AppointmentService

NOW = datetime(2030, 1, 15, 9, 0)
TOMORROW_10 = datetime(2030, 1, 16, 10, 0)


@pytest.fixture
def file_session_factory(tmp_path, monkeypatch: pytest.MonkeyPatch):
    """Sessions on a SQLite file, each with its own connection, like separate workers."""
    engine = database.build_engine(f"sqlite:///{tmp_path / 'clinic.db'}")
    Base.metadata.create_all(bind=engine)
    monkeypatch.setattr(database, '_appointment_schema_checked', False)
    database.ensure_appointment_schema(engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        engine.dispose()


@pytest.fixture
def people(file_session_factory):
    db = file_session_factory()
    try:
        repository = UserRepository(db)
        doctor = repository.create(
            name='Dr. Grey', email='grey@clinic.com', hashed_password='x', role='doctor', specialization='Cardiology'
        )
        first = repository.create(name='Pat Jones', email='pat@example.com', hashed_password='x', role='patient')
        second = repository.create(name='Sam Lee', email='sam@example.com', hashed_password='x', role='patient')
    finally:
        db.close()
    return {'doctor': doctor, 'patients': [first, second]}


def separate_process_locks(monkeypatch: pytest.MonkeyPatch) -> None:
    # Every booking gets its own in-process lock, as it would in another worker.
    monkeypatch.setattr(appointment_repository, '_calendar_lock_for', lambda doctor_id: Lock())


def active_count(session_factory) -> int:
    db = session_factory()
    try:
        return db.query(Appointment).filter(Appointment.status.in_(('pending', 'confirmed'))).count()
    finally:
        db.close()


def test_simultaneous_bookings_for_one_slot_admit_exactly_one(
    file_session_factory, people, monkeypatch: pytest.MonkeyPatch
) -> None:
    separate_process_locks(monkeypatch)
    barrier = Barrier(2)
    outcomes = []
    outcomes_lock = Lock()

    def book(patient) -> None:
        db = file_session_factory()
        service = AppointmentService(AppointmentRepository(db), UserRepository(db), clock=lambda: NOW)
        try:
            barrier.wait()
            service.create_appointment(
                Caller(id=patient.id, role='patient'),
                doctor_id=people['doctor'].id,
                start_at=TOMORROW_10,
                duration_minutes=30,
            )
            outcome = 'booked'
        except SlotConflict:
            outcome = 'conflict'
        finally:
            db.close()
        with outcomes_lock:
            outcomes.append(outcome)

    threads = [Thread(target=book, args=(patient,)) for patient in people['patients']]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    assert sorted(outcomes) == ['booked', 'conflict']
    assert active_count(file_session_factory) == 1


def test_booking_that_missed_a_committed_overlap_is_still_rejected(
    file_session_factory, people, monkeypatch: pytest.MonkeyPatch
) -> None:
    first_db = file_session_factory()
    second_db = file_session_factory()
    try:
        first = AppointmentService(AppointmentRepository(first_db), UserRepository(first_db), clock=lambda: NOW)
        second_repository = AppointmentRepository(second_db)
        second = AppointmentService(second_repository, UserRepository(second_db), clock=lambda: NOW)

        # The second booking read the calendar before the first one was committed.
        monkeypatch.setattr(second_repository, 'find_overlapping', lambda *args, **kwargs: [])

        first.create_appointment(
            Caller(id=people['patients'][0].id, role='patient'),
            doctor_id=people['doctor'].id,
            start_at=TOMORROW_10,
            duration_minutes=30,
        )
        with pytest.raises(SlotConflict):
            second.create_appointment(
                Caller(id=people['patients'][1].id, role='patient'),
                doctor_id=people['doctor'].id,
                start_at=datetime(2030, 1, 16, 10, 15),
                duration_minutes=30,
            )
    finally:
        first_db.close()
        second_db.close()

    assert active_count(file_session_factory) == 1
