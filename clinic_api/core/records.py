"""Plain records passed between the stores, the services and the routes."""

from dataclasses import dataclass
from datetime import datetime


@dataclass(frozen=True)
class UserRecord:
    id: int
    name: str
    email: str
    role: str
    hashed_password: str = ""
    specialization: str | None = None
    phone: str | None = None
    img_link: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_doctor(self) -> bool:
        return self.role == "doctor"


@dataclass(frozen=True)
class AppointmentRecord:
    id: int | None
    patient_id: int
    doctor_id: int
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    status: str
    reason: str | None = None
    notes: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True)
class Caller:
    """An authenticated caller as asserted by the access token."""

    id: int
    role: str


@dataclass(frozen=True)
class AppointmentFilters:
    start_from: datetime | None = None
    start_to: datetime | None = None
    status: str | None = None
