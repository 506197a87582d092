"""User model definitions."""

from sqlalchemy import Column, DateTime, Integer, String

from clinic_api.core.scheduling import utcnow
from clinic_api.database import Base


class User(Base):
    """Represents a registered doctor or patient."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, unique=True, index=True, nullable=False)
    hashed_password = Column(String, nullable=False)
    role = Column(String, nullable=False)  # doctor/patient
    specialization = Column(String)
    phone = Column(String)
    img_link = Column(String)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
