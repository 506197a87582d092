"""Registration, login and profile management for doctors and patients."""

import logging

from clinic_api.auth import passwords
from clinic_api.core.errors import DuplicateEmail, Forbidden, NotFound, Unauthorized, ValidationFailed
from clinic_api.core.records import Caller, UserRecord
from clinic_api.repositories.user_repository import UserRepository

logger = logging.getLogger(__name__)

USER_ROLES = ('doctor', 'patient')


class UserService:
    def __init__(self, users: UserRepository):
        self.users = users

    def register_user(
        self,
        *,
        name: str,
        email: str,
        password: str,
        role: str,
        specialization: str | None = None,
        phone: str | None = None,
        img_link: str | None = None,
    ) -> UserRecord:
        if role not in USER_ROLES:
            raise ValidationFailed('Role must be either doctor or patient')
        if role == 'doctor' and not specialization:
            raise ValidationFailed('Specialization is required for doctors')

        if self.users.find_by_email(email) is not None:
            raise DuplicateEmail()

        user = self.users.create(
            name=name,
            email=email,
            hashed_password=passwords.hash_password(password),
            role=role,
            specialization=specialization if role == 'doctor' else None,
            phone=phone,
            img_link=img_link,
        )
        logger.info('Registered %s %s', user.role, user.id)
        return user

    def authenticate(self, email: str, password: str) -> UserRecord:
        user = self.users.find_by_email(email)
        if user is None or not passwords.verify_password(password, user.hashed_password):
            raise Unauthorized('Invalid email or password')
        return user

    def list_doctors(self) -> list[UserRecord]:
        return self.users.list_users(role='doctor')

    def list_users(self) -> list[UserRecord]:
        return self.users.list_users()

    def get_user(self, user_id: int) -> UserRecord:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise NotFound('User not found')
        return user

    def update_user(self, user_id: int, caller: Caller, **changes) -> UserRecord:
        """Update the caller's own profile; email and role never change here."""
        if caller.id != user_id:
            raise Forbidden()

        user = self.get_user(user_id)
        if user.is_doctor and 'specialization' in changes and not changes['specialization']:
            raise ValidationFailed('Specialization is required for doctors')
        if not user.is_doctor:
            changes.pop('specialization', None)

        updated = self.users.update(user_id, **changes)
        if updated is None:
            raise NotFound('User not found')
        return updated
