import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_api.auth.dependencies import require_roles
from clinic_api.core.errors import InternalFailure
from clinic_api.core.records import AppointmentFilters, AppointmentRecord, Caller, UserRecord
from clinic_api.core.scheduling import (
    APPOINTMENT_STATUSES,
    MAX_DURATION_MINUTES,
    MAX_REASON_LENGTH,
    MIN_DURATION_MINUTES,
)
from clinic_api.database import get_db
from clinic_api.repositories.appointment_repository import AppointmentRepository
from clinic_api.repositories.user_repository import UserRepository
from clinic_api.services.appointment_service import AppointmentService

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CreateAppointmentRequest(CamelModel):
    doctor_id: int
    start_at: datetime
    duration_minutes: int = Field(ge=MIN_DURATION_MINUTES, le=MAX_DURATION_MINUTES)
    reason: str | None = None

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip()
        if not normalized:
            return None

        if len(normalized) > MAX_REASON_LENGTH:
            raise ValueError('Reason is too long')

        return normalized


class UpdateAppointmentRequest(CamelModel):
    status: str | None = None
    notes: str | None = None
    action: str | None = None

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None

        normalized = value.strip().lower()
        if normalized not in APPOINTMENT_STATUSES:
            raise ValueError('Invalid status')

        return normalized

    @field_validator('action')
    @classmethod
    def normalize_action(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower()


class PatientSummary(CamelModel):
    id: int
    name: str
    email: str


class DoctorSummary(CamelModel):
    id: int
    name: str
    specialization: str | None = None


class AppointmentResponse(CamelModel):
    id: int
    patient_id: int
    doctor_id: int
    patient: PatientSummary | None = None
    doctor: DoctorSummary | None = None
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    status: str
    reason: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class AppointmentEnvelope(CamelModel):
    status: str = 'success'
    appointment: AppointmentResponse


class AppointmentListEnvelope(CamelModel):
    status: str = 'success'
    results: int
    appointments: list[AppointmentResponse]


def as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    return value.replace(tzinfo=timezone.utc)


def to_patient_summary(user: UserRecord | None) -> PatientSummary | None:
    if user is None:
        return None
    return PatientSummary(id=user.id, name=user.name, email=user.email)


def to_doctor_summary(user: UserRecord | None) -> DoctorSummary | None:
    if user is None:
        return None
    return DoctorSummary(id=user.id, name=user.name, specialization=user.specialization)


def to_appointment_response(
    appointment: AppointmentRecord,
    participants: dict[int, UserRecord] | None = None,
) -> AppointmentResponse:
    participants = participants or {}
    return AppointmentResponse(
        id=appointment.id,
        patient_id=appointment.patient_id,
        doctor_id=appointment.doctor_id,
        patient=to_patient_summary(participants.get(appointment.patient_id)),
        doctor=to_doctor_summary(participants.get(appointment.doctor_id)),
        start_at=as_utc(appointment.start_at),
        end_at=as_utc(appointment.end_at),
        duration_minutes=appointment.duration_minutes,
        status=appointment.status,
        reason=appointment.reason,
        notes=appointment.notes,
        created_at=as_utc(appointment.created_at),
        updated_at=as_utc(appointment.updated_at),
    )


def get_appointment_service(db: Session = Depends(get_db)) -> AppointmentService:
    return AppointmentService(AppointmentRepository(db), UserRepository(db))


@router.post('', response_model=AppointmentEnvelope, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    caller: Caller = Depends(require_roles('patient')),
    service: AppointmentService = Depends(get_appointment_service),
    db: Session = Depends(get_db),
):
    try:
        appointment = service.create_appointment(
            caller,
            doctor_id=data.doctor_id,
            start_at=data.start_at,
            duration_minutes=data.duration_minutes,
            reason=data.reason,
        )
        participants = service.participants([appointment])
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to create appointment.')
        raise InternalFailure(cause=exc) from exc

    return AppointmentEnvelope(appointment=to_appointment_response(appointment, participants))


@router.get('', response_model=AppointmentListEnvelope)
def list_appointments(
    start_from: datetime | None = Query(default=None, alias='from'),
    start_to: datetime | None = Query(default=None, alias='to'),
    status_filter: str | None = Query(default=None, alias='status'),
    caller: Caller = Depends(require_roles('patient', 'doctor')),
    service: AppointmentService = Depends(get_appointment_service),
    db: Session = Depends(get_db),
):
    filters = AppointmentFilters(
        start_from=start_from,
        start_to=start_to,
        status=status_filter.strip().lower() if status_filter else None,
    )

    try:
        appointments = service.list_appointments(caller, filters)
        participants = service.participants(appointments)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to list appointments.')
        raise InternalFailure(cause=exc) from exc

    return AppointmentListEnvelope(
        results=len(appointments),
        appointments=[to_appointment_response(appointment, participants) for appointment in appointments],
    )


@router.get('/{appointment_id}', response_model=AppointmentEnvelope)
def get_appointment(
    appointment_id: int,
    caller: Caller = Depends(require_roles('patient', 'doctor')),
    service: AppointmentService = Depends(get_appointment_service),
    db: Session = Depends(get_db),
):
    try:
        appointment = service.get_appointment(appointment_id, caller)
        participants = service.participants([appointment])
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to load appointment %s.', appointment_id)
        raise InternalFailure(cause=exc) from exc

    return AppointmentEnvelope(appointment=to_appointment_response(appointment, participants))


@router.patch('/{appointment_id}', response_model=AppointmentEnvelope)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    caller: Caller = Depends(require_roles('patient', 'doctor')),
    service: AppointmentService = Depends(get_appointment_service),
    db: Session = Depends(get_db),
):
    # Only fields present in the body reach the service, so "notes": null clears the notes.
    changes = data.model_dump(exclude_unset=True)

    try:
        appointment = service.update_appointment(appointment_id, caller, **changes)
        participants = service.participants([appointment])
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to update appointment %s.', appointment_id)
        raise InternalFailure(cause=exc) from exc

    return AppointmentEnvelope(appointment=to_appointment_response(appointment, participants))
