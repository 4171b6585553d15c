from __future__ import annotations

import threading
from datetime import datetime
from typing import Dict, Optional, Protocol

from sqlalchemy import DateTime, String, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Mapped, mapped_column, sessionmaker

from gopherai.identity.models import User
from gopherai.storage.sql_repository import Base


class DuplicateUser(ValueError):
    pass


class UserRepository(Protocol):
    def create(self, user: User) -> User: ...

    def find_by_email(self, email: str) -> Optional[User]: ...

    def exists_by_username(self, username: str) -> bool: ...


class InMemoryUserRepository:
    def __init__(self) -> None:
        self._users: Dict[str, User] = {}
        self._lock = threading.Lock()

    def create(self, user: User) -> User:
        with self._lock:
            for existing in self._users.values():
                if existing.email == user.email or existing.username == user.username:
                    raise DuplicateUser(user.email)
            self._users[user.id] = user
            return user

    def find_by_email(self, email: str) -> Optional[User]:
        with self._lock:
            return next((u for u in self._users.values() if u.email == email), None)

    def exists_by_username(self, username: str) -> bool:
        with self._lock:
            return any(u.username == username for u in self._users.values())


class UserRow(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(32), primary_key=True)
    username: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class SqlUserRepository:
    def __init__(self, engine: Engine) -> None:
        Base.metadata.create_all(engine, tables=[UserRow.__table__])
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    @staticmethod
    def _to_user(row: UserRow) -> User:
        return User(
            id=row.id,
            username=row.username,
            email=row.email,
            password_hash=row.password_hash,
            created_at=row.created_at,
        )

    def create(self, user: User) -> User:
        try:
            with self._session_factory.begin() as db:
                db.add(
                    UserRow(
                        id=user.id,
                        username=user.username,
                        email=user.email,
                        password_hash=user.password_hash,
                        created_at=user.created_at,
                    )
                )
        except IntegrityError as exc:
            raise DuplicateUser(user.email) from exc
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        with self._session_factory() as db:
            row = db.scalars(select(UserRow).where(UserRow.email == email)).first()
            return self._to_user(row) if row is not None else None

    def exists_by_username(self, username: str) -> bool:
        with self._session_factory() as db:
            return db.scalars(select(UserRow.id).where(UserRow.username == username)).first() is not None
