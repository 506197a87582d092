"""Appointment booking, updates and lookups.

The service owns every scheduling decision: whether a doctor can take a
booking, whether a status change is legal and who may see or touch an
appointment. It keeps no state between calls and re-reads the stores for
every decision.
"""

import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Callable, Iterable

from clinic_api.core import config
from clinic_api.core.errors import (
    DoctorNotFound,
    Forbidden,
    InvalidAction,
    NotFound,
    SlotConflict,
    ValidationFailed,
)
from clinic_api.core.records import AppointmentFilters, AppointmentRecord, Caller, UserRecord
from clinic_api.core.scheduling import (
    MAX_REASON_LENGTH,
    STATUS_CANCELLED,
    STATUS_PENDING,
    compute_end_at,
    ensure_cancel_window,
    ensure_future_start,
    ensure_transition_allowed,
    ensure_valid_status,
    to_naive_utc,
    utcnow,
)
from clinic_api.repositories.appointment_repository import AppointmentRepository
from clinic_api.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

CANCEL_ACTION = 'cancel'

# Marks an update field the caller did not send, as opposed to an explicit None.
UNSET: Any = object()


def is_participant(appointment: AppointmentRecord, caller: Caller) -> bool:
    if caller.role == 'doctor':
        return appointment.doctor_id == caller.id
    if caller.role == 'patient':
        return appointment.patient_id == caller.id
    return False


class AppointmentService:
    def __init__(
        self,
        appointments: AppointmentRepository,
        users: UserRepository,
        *,
        clock: Callable[[], datetime] = utcnow,
        cancel_cutoff_minutes: int | None = None,
    ):
        self.appointments = appointments
        self.users = users
        self.clock = clock
        if cancel_cutoff_minutes is None:
            cancel_cutoff_minutes = config.CANCEL_CUTOFF_MINUTES
        self.cancel_cutoff_minutes = cancel_cutoff_minutes

    def create_appointment(
        self,
        caller: Caller,
        doctor_id: int,
        start_at: datetime,
        duration_minutes: int,
        reason: str | None = None,
    ) -> AppointmentRecord:
        """Book a pending appointment for ``caller`` with ``doctor_id``.

        Raises:
            DoctorNotFound: the doctor id does not belong to a doctor.
            InvalidSlot: ``start_at`` is not in the future.
            SlotConflict: the doctor already has an active appointment that
                overlaps the requested window.
        """
        if reason is not None and len(reason) > MAX_REASON_LENGTH:
            raise ValidationFailed('Reason is too long')

        with self.appointments.calendar_lock(doctor_id):
            doctor = self.users.find_by_id(doctor_id, for_update=True)
            if doctor is None or not doctor.is_doctor:
                raise DoctorNotFound()

            start = to_naive_utc(start_at)
            ensure_future_start(start, self.clock())
            end = compute_end_at(start, duration_minutes)

            if self.appointments.find_overlapping(doctor_id, start, end):
                raise SlotConflict()

            created = self.appointments.insert(
                AppointmentRecord(
                    id=None,
                    patient_id=caller.id,
                    doctor_id=doctor_id,
                    start_at=start,
                    end_at=end,
                    duration_minutes=duration_minutes,
                    status=STATUS_PENDING,
                    reason=reason,
                )
            )

        logger.info(
            'Booked appointment %s for patient %s with doctor %s at %s',
            created.id, caller.id, doctor_id, start.isoformat(),
        )
        return created

    def get_appointment(self, appointment_id: int, caller: Caller) -> AppointmentRecord:
        appointment = self.appointments.find_by_id(appointment_id)
        if appointment is None:
            raise NotFound()
        if not is_participant(appointment, caller):
            raise Forbidden()
        return appointment

    def list_appointments(
        self,
        caller: Caller,
        filters: AppointmentFilters | None = None,
    ) -> list[AppointmentRecord]:
        filters = filters or AppointmentFilters()
        normalized = AppointmentFilters(
            start_from=to_naive_utc(filters.start_from) if filters.start_from else None,
            start_to=to_naive_utc(filters.start_to) if filters.start_to else None,
            status=filters.status,
        )
        return self.appointments.find_by_participant(caller.id, caller.role, normalized)

    def participants(self, appointments: Iterable[AppointmentRecord]) -> dict[int, UserRecord]:
        """Load the doctors and patients referenced by ``appointments``, keyed by id."""
        user_ids = set()
        for appointment in appointments:
            user_ids.add(appointment.patient_id)
            user_ids.add(appointment.doctor_id)
        return self.users.find_by_ids(user_ids)

    def update_appointment(
        self,
        appointment_id: int,
        caller: Caller,
        *,
        status: str | None = None,
        notes: str | None = UNSET,
        action: str | None = None,
    ) -> AppointmentRecord:
        """Apply a doctor's status/notes change or a patient's cancellation.

        ``notes=None`` clears the notes; leaving ``notes`` out keeps them.
        """
        appointment = self.get_appointment(appointment_id, caller)

        if caller.role == 'doctor':
            updated = self._apply_doctor_changes(appointment, status, notes)
        elif caller.role == 'patient':
            updated = self._apply_patient_action(appointment, action)
        else:
            raise Forbidden()

        if updated == appointment:
            return appointment

        saved = self.appointments.update(updated)
        if saved is None:
            raise NotFound()

        if saved.status != appointment.status:
            logger.info(
                'Appointment %s moved from %s to %s by %s %s',
                saved.id, appointment.status, saved.status, caller.role, caller.id,
            )
        return saved

    def _apply_doctor_changes(
        self,
        appointment: AppointmentRecord,
        status: str | None,
        notes: str | None,
    ) -> AppointmentRecord:
        changes = {}
        if status is not None:
            requested = ensure_valid_status(status)
            ensure_transition_allowed(appointment.status, requested)
            changes['status'] = requested
        if notes is not UNSET:
            changes['notes'] = notes
        return replace(appointment, **changes)

    def _apply_patient_action(self, appointment: AppointmentRecord, action: str | None) -> AppointmentRecord:
        if action != CANCEL_ACTION:
            raise InvalidAction()

        ensure_cancel_window(appointment.start_at, self.clock(), self.cancel_cutoff_minutes)
        ensure_transition_allowed(appointment.status, STATUS_CANCELLED)
        return replace(appointment, status=STATUS_CANCELLED)
