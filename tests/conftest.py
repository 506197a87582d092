import os

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite://')
os.environ.setdefault('JWT_SECRET_KEY', 'test-secret-key-with-at-least-32-bytes')
os.environ.setdefault('BCRYPT_ROUNDS', '4')

from clinic_api.database import Base, install_sqlite_overlap_trigger  # noqa: E402
from clinic_api.models.appointment import Appointment  # noqa: E402
from clinic_api.models.user import User  # noqa: E402
from clinic_api.repositories.user_repository import UserRepository  # noqa: E402


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine, tables=[User.__table__, Appointment.__table__])
    with engine.begin() as connection:
        install_sqlite_overlap_trigger(connection)
    try:
        yield testing_session_local
    finally:
        Base.metadata.drop_all(bind=engine, tables=[Appointment.__table__, User.__table__])
        engine.dispose()


@pytest.fixture
def db_session(session_factory):
    db = session_factory()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def users(db_session):
    """A few stored users, created without paying for password hashing."""
    repository = UserRepository(db_session)

    def create(name: str, email: str, role: str, specialization: str | None = None):
        return repository.create(
            name=name,
            email=email,
            hashed_password='not-a-real-hash',
            role=role,
            specialization=specialization,
        )

    return {
        'doctor': create('Dr. Grey', 'grey@clinic.com', 'doctor', 'Cardiology'),
        'other_doctor': create('Dr. Shepherd', 'shepherd@clinic.com', 'doctor', 'Neurology'),
        'patient': create('Pat Jones', 'pat@example.com', 'patient'),
        'other_patient': create('Sam Lee', 'sam@example.com', 'patient'),
    }
