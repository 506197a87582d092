"""SQLAlchemy-backed appointment store."""

import logging
from contextlib import contextmanager
from datetime import datetime
from threading import Lock
from typing import Iterable, Iterator

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_api.core.errors import SlotConflict
from clinic_api.core.records import AppointmentFilters, AppointmentRecord
from clinic_api.core.scheduling import ACTIVE_STATUSES
from clinic_api.database import APPOINTMENT_OVERLAP_CONSTRAINT
from clinic_api.models.appointment import Appointment

logger = logging.getLogger(__name__)

CALENDAR_LOCK_STRIPES = 64

# A fixed pool of locks; doctors whose ids share a stripe share a lock.
_calendar_locks = tuple(Lock() for _ in range(CALENDAR_LOCK_STRIPES))


def _calendar_lock_for(doctor_id: int) -> Lock:
    return _calendar_locks[doctor_id % CALENDAR_LOCK_STRIPES]


def to_record(appointment: Appointment) -> AppointmentRecord:
    return AppointmentRecord(
        id=appointment.id,
        patient_id=appointment.patient_id,
        doctor_id=appointment.doctor_id,
        start_at=appointment.start_at,
        end_at=appointment.end_at,
        duration_minutes=appointment.duration_minutes,
        status=appointment.status,
        reason=appointment.reason,
        notes=appointment.notes,
        created_at=appointment.created_at,
        updated_at=appointment.updated_at,
    )


def is_overlap_violation(exc: IntegrityError) -> bool:
    return APPOINTMENT_OVERLAP_CONSTRAINT in str(exc.orig)


class AppointmentRepository:
    def __init__(self, db: Session):
        self.db = db

    @contextmanager
    def calendar_lock(self, doctor_id: int) -> Iterator[None]:
        """Serialise bookings for one doctor.

        Inside this process a striped lock orders the callers. On SQLite the
        block also opens the transaction with ``BEGIN IMMEDIATE`` so other
        processes wait for the database write lock before they read the
        calendar. Anything left uncommitted when the block raises is rolled
        back, which also releases locks taken inside the block.
        """
        with _calendar_lock_for(doctor_id):
            try:
                self._begin_immediate()
                yield
            except Exception:
                self.db.rollback()
                raise

    def _begin_immediate(self) -> None:
        connection = self.db.connection()
        if connection.dialect.name != 'sqlite':
            return
        # Already inside a write transaction; SQLite cannot nest BEGIN.
        if connection.connection.dbapi_connection.in_transaction:
            return
        connection.exec_driver_sql('BEGIN IMMEDIATE')

    def find_by_id(self, appointment_id: int) -> AppointmentRecord | None:
        appointment = self.db.get(Appointment, appointment_id)
        if appointment is None:
            return None
        return to_record(appointment)

    def find_overlapping(
        self,
        doctor_id: int,
        start_at: datetime,
        end_at: datetime,
        statuses: Iterable[str] = ACTIVE_STATUSES,
        exclude_id: int | None = None,
    ) -> list[AppointmentRecord]:
        query = self.db.query(Appointment).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(tuple(statuses)),
            Appointment.start_at < end_at,
            Appointment.end_at > start_at,
        )
        if exclude_id is not None:
            query = query.filter(Appointment.id != exclude_id)

        return [to_record(appointment) for appointment in query.order_by(Appointment.start_at.asc()).all()]

    def find_by_participant(
        self,
        user_id: int,
        role: str,
        filters: AppointmentFilters | None = None,
    ) -> list[AppointmentRecord]:
        filters = filters or AppointmentFilters()

        if role == 'doctor':
            query = self.db.query(Appointment).filter(Appointment.doctor_id == user_id)
        else:
            query = self.db.query(Appointment).filter(Appointment.patient_id == user_id)

        if filters.start_from is not None:
            query = query.filter(Appointment.start_at >= filters.start_from)
        if filters.start_to is not None:
            query = query.filter(Appointment.start_at <= filters.start_to)
        if filters.status:
            query = query.filter(Appointment.status == filters.status)

        appointments = query.order_by(Appointment.start_at.asc(), Appointment.id.asc()).all()
        return [to_record(appointment) for appointment in appointments]

    def insert(self, record: AppointmentRecord) -> AppointmentRecord:
        appointment = Appointment(
            patient_id=record.patient_id,
            doctor_id=record.doctor_id,
            start_at=record.start_at,
            end_at=record.end_at,
            duration_minutes=record.duration_minutes,
            status=record.status,
            reason=record.reason,
            notes=record.notes,
        )
        self.db.add(appointment)
        self._commit()
        self.db.refresh(appointment)
        return to_record(appointment)

    def update(self, record: AppointmentRecord) -> AppointmentRecord | None:
        """Write the mutable fields of ``record``; the last writer wins."""
        appointment = self.db.get(Appointment, record.id)
        if appointment is None:
            return None

        appointment.status = record.status
        appointment.notes = record.notes
        self._commit()
        self.db.refresh(appointment)
        return to_record(appointment)

    def _commit(self) -> None:
        try:
            self.db.commit()
        except IntegrityError as exc:
            self.db.rollback()
            if is_overlap_violation(exc):
                logger.warning('Overlapping booking rejected by the database constraint.')
                raise SlotConflict(cause=exc) from exc
            raise
