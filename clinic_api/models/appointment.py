"""Appointment model definitions."""

from sqlalchemy import CheckConstraint, Column, DateTime, ForeignKey, Index, Integer, String

from clinic_api.core.scheduling import utcnow
from clinic_api.database import Base


class Appointment(Base):
    """Represents a booked appointment between a patient and a doctor."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index("idx_appointments_doctor_time_range", "doctor_id", "start_at", "end_at"),
        Index("idx_appointments_patient_start", "patient_id", "start_at"),
        CheckConstraint("end_at > start_at", name="ck_appointments_positive_range"),
        CheckConstraint(
            "duration_minutes >= 5 AND duration_minutes <= 480",
            name="ck_appointments_duration_range",
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    start_at = Column(DateTime, nullable=False)
    end_at = Column(DateTime, nullable=False)
    duration_minutes = Column(Integer, nullable=False)
    status = Column(String, nullable=False, default="pending")
    reason = Column(String(500))
    notes = Column(String)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
