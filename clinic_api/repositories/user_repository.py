"""SQLAlchemy-backed identity store."""

from typing import Iterable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_api.core.errors import DuplicateEmail
from clinic_api.core.records import UserRecord
from clinic_api.models.user import User

UPDATABLE_FIELDS = ('name', 'phone', 'specialization', 'img_link')


def to_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        name=user.name,
        email=user.email,
        role=user.role,
        hashed_password=user.hashed_password,
        specialization=user.specialization,
        phone=user.phone,
        img_link=user.img_link,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )


class UserRepository:
    def __init__(self, db: Session):
        self.db = db

    def find_by_id(self, user_id: int, for_update: bool = False) -> UserRecord | None:
        query = self.db.query(User).filter(User.id == user_id)
        if for_update:
            query = query.with_for_update()
        user = query.first()
        if user is None:
            return None
        return to_record(user)

    def find_by_ids(self, user_ids: Iterable[int]) -> dict[int, UserRecord]:
        ids = set(user_ids)
        if not ids:
            return {}
        users = self.db.query(User).filter(User.id.in_(ids)).all()
        return {user.id: to_record(user) for user in users}

    def find_by_email(self, email: str) -> UserRecord | None:
        user = self.db.query(User).filter(User.email == email.strip().lower()).first()
        if user is None:
            return None
        return to_record(user)

    def list_users(self, role: str | None = None) -> list[UserRecord]:
        query = self.db.query(User)
        if role:
            query = query.filter(User.role == role)
        return [to_record(user) for user in query.order_by(User.id.asc()).all()]

    def create(
        self,
        *,
        name: str,
        email: str,
        hashed_password: str,
        role: str,
        specialization: str | None = None,
        phone: str | None = None,
        img_link: str | None = None,
    ) -> UserRecord:
        user = User(
            name=name,
            email=email.strip().lower(),
            hashed_password=hashed_password,
            role=role,
            specialization=specialization,
            phone=phone,
            img_link=img_link,
        )
        self.db.add(user)
        try:
            self.db.commit()
        except IntegrityError as exc:
            # Two registrations for one email raced past the lookup.
            self.db.rollback()
            raise DuplicateEmail(cause=exc) from exc
        self.db.refresh(user)
        return to_record(user)

    def update(self, user_id: int, **changes) -> UserRecord | None:
        user = self.db.get(User, user_id)
        if user is None:
            return None

        for field, value in changes.items():
            if field not in UPDATABLE_FIELDS:
                raise ValueError(f'{field} cannot be updated')
            setattr(user, field, value)

        self.db.commit()
        self.db.refresh(user)
        return to_record(user)
