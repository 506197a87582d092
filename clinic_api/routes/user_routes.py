import logging
from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_api.auth import jwt_handler
from clinic_api.auth.dependencies import get_current_caller, require_roles
from clinic_api.core.errors import InternalFailure
from clinic_api.core.records import Caller, UserRecord
from clinic_api.database import get_db
from clinic_api.repositories.user_repository import UserRepository
from clinic_api.services.user_service import UserService

router = APIRouter(tags=['users'])

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3
MIN_PASSWORD_LENGTH = 6


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _strip_or_none(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class RegisterRequest(CamelModel):
    name: str
    email: EmailStr
    password: str = Field(min_length=MIN_PASSWORD_LENGTH)
    role: Literal['doctor', 'patient']
    phone: str | None = None
    specialization: str | None = None
    img_link: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str) -> str:
        normalized = value.strip()
        if len(normalized) < MIN_NAME_LENGTH:
            raise ValueError(f'Name must be at least {MIN_NAME_LENGTH} characters long')
        return normalized

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()

    @field_validator('phone', 'specialization', 'img_link')
    @classmethod
    def strip_optional(cls, value: str | None) -> str | None:
        return _strip_or_none(value)

    @model_validator(mode='after')
    def require_doctor_specialization(self) -> 'RegisterRequest':
        if self.role == 'doctor' and not self.specialization:
            raise ValueError('Specialization is required for doctors')
        return self


class LoginRequest(CamelModel):
    email: str
    password: str

    @field_validator('email')
    @classmethod
    def normalize_email(cls, value: str) -> str:
        return value.strip().lower()


class UpdateUserRequest(CamelModel):
    name: str | None = None
    phone: str | None = None
    specialization: str | None = None
    img_link: str | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if len(normalized) < MIN_NAME_LENGTH:
            raise ValueError(f'Name must be at least {MIN_NAME_LENGTH} characters long')
        return normalized

    @field_validator('phone', 'specialization', 'img_link')
    @classmethod
    def strip_optional(cls, value: str | None) -> str | None:
        return _strip_or_none(value)


class UserResponse(CamelModel):
    id: int
    name: str
    email: str
    role: str
    phone: str | None = None
    specialization: str | None = None
    img_link: str | None = None
    created_at: datetime | None = None


class AuthData(CamelModel):
    user: UserResponse
    token: str


class AuthEnvelope(CamelModel):
    status: str = 'success'
    data: AuthData


class UserEnvelope(CamelModel):
    status: str = 'success'
    user: UserResponse


class UserListEnvelope(CamelModel):
    status: str = 'success'
    results: int
    users: list[UserResponse]


class DoctorListEnvelope(CamelModel):
    status: str = 'success'
    results: int
    doctors: list[UserResponse]


def to_user_response(user: UserRecord) -> UserResponse:
    return UserResponse(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        phone=user.phone,
        specialization=user.specialization,
        img_link=user.img_link,
        created_at=user.created_at.replace(tzinfo=timezone.utc) if user.created_at else None,
    )


def to_auth_envelope(user: UserRecord) -> AuthEnvelope:
    token = jwt_handler.create_access_token(user_id=user.id, role=user.role)
    return AuthEnvelope(data=AuthData(user=to_user_response(user), token=token))


def get_user_service(db: Session = Depends(get_db)) -> UserService:
    return UserService(UserRepository(db))


@router.post('/register', response_model=AuthEnvelope, status_code=status.HTTP_201_CREATED)
def register_user(
    data: RegisterRequest,
    service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db),
):
    try:
        user = service.register_user(
            name=data.name,
            email=data.email,
            password=data.password,
            role=data.role,
            specialization=data.specialization,
            phone=data.phone,
            img_link=data.img_link,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to register user.')
        raise InternalFailure(cause=exc) from exc

    return to_auth_envelope(user)


@router.post('/login', response_model=AuthEnvelope)
def login_user(
    data: LoginRequest,
    service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db),
):
    try:
        user = service.authenticate(data.email, data.password)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to log in user.')
        raise InternalFailure(cause=exc) from exc

    return to_auth_envelope(user)


@router.get('/doctors', response_model=DoctorListEnvelope)
def list_doctors(
    service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db),
):
    try:
        doctors = service.list_doctors()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to list doctors.')
        raise InternalFailure(cause=exc) from exc

    return DoctorListEnvelope(results=len(doctors), doctors=[to_user_response(doctor) for doctor in doctors])


@router.get('/me', response_model=UserEnvelope)
def me(
    caller: Caller = Depends(get_current_caller),
    service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db),
):
    try:
        user = service.get_user(caller.id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to load user %s.', caller.id)
        raise InternalFailure(cause=exc) from exc

    return UserEnvelope(user=to_user_response(user))


@router.get('/users', response_model=UserListEnvelope)
def list_users(
    caller: Caller = Depends(require_roles('doctor')),
    service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db),
):
    try:
        users = service.list_users()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to list users.')
        raise InternalFailure(cause=exc) from exc

    return UserListEnvelope(results=len(users), users=[to_user_response(user) for user in users])


@router.get('/users/{user_id}', response_model=UserEnvelope)
def get_user(
    user_id: int,
    caller: Caller = Depends(require_roles('doctor')),
    service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db),
):
    try:
        user = service.get_user(user_id)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to load user %s.', user_id)
        raise InternalFailure(cause=exc) from exc

    return UserEnvelope(user=to_user_response(user))


@router.put('/users/{user_id}', response_model=UserEnvelope)
def update_user(
    user_id: int,
    data: UpdateUserRequest,
    caller: Caller = Depends(get_current_caller),
    service: UserService = Depends(get_user_service),
    db: Session = Depends(get_db),
):
    changes = data.model_dump(exclude_unset=True)
    if 'name' in changes and changes['name'] is None:
        del changes['name']

    try:
        user = service.update_user(user_id, caller, **changes)
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception('Failed to update user %s.', user_id)
        raise InternalFailure(cause=exc) from exc

    return UserEnvelope(user=to_user_response(user))
