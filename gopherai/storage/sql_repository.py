"""SQLAlchemy-backed repositories (SQLite by default, any SQLAlchemy URL works)."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import List, Optional

from sqlalchemy import Boolean, DateTime, Integer, String, Text, create_engine, delete, select, update
from sqlalchemy.engine import Engine
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker
from sqlalchemy.pool import StaticPool

from gopherai.storage.models import Message, SessionRecord

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class MessageRow(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    session_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    user_name: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    is_user: Mapped[bool] = mapped_column(Boolean, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)


class SessionRow(Base):
    __tablename__ = "sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    user_name: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(100), nullable=False, default="")
    model_type: Mapped[str] = mapped_column(String(8), nullable=False, default="1")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    deleted_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out.
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def create_sql_engine(database_url: str) -> Engine:
    """Create an engine and make sure the tables exist."""
    kwargs = {}
    if database_url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in database_url or database_url.rstrip("/") == "sqlite:":
            kwargs["poolclass"] = StaticPool
    engine = create_engine(database_url, **kwargs)
    Base.metadata.create_all(engine)
    logger.info("SQL storage ready at %s", engine.url.render_as_string(hide_password=True))
    return engine


def _to_message(row: MessageRow) -> Message:
    return Message(
        id=str(row.id),
        session_id=row.session_id,
        user_name=row.user_name,
        content=row.content,
        is_user=row.is_user,
        created_at=_aware(row.created_at),
    )


def _to_session(row: SessionRow) -> SessionRecord:
    return SessionRecord(
        id=row.id,
        user_name=row.user_name,
        title=row.title,
        model_type=row.model_type,
        created_at=_aware(row.created_at),
        deleted_at=_aware(row.deleted_at),
    )


class SqlMessageRepository:
    def __init__(self, engine: Engine) -> None:
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    def create(self, message: Message) -> Message:
        row = MessageRow(
            session_id=message.session_id,
            user_name=message.user_name,
            content=message.content,
            is_user=message.is_user,
            created_at=message.created_at,
        )
        with self._session_factory.begin() as db:
            db.add(row)
            db.flush()
            return _to_message(row)

    def find_by_session_id(self, session_id: str) -> List[Message]:
        stmt = (
            select(MessageRow)
            .where(MessageRow.session_id == session_id)
            .order_by(MessageRow.created_at.asc(), MessageRow.id.asc())
        )
        with self._session_factory() as db:
            return [_to_message(row) for row in db.scalars(stmt)]

    def find_all(self) -> List[Message]:
        stmt = select(MessageRow).order_by(MessageRow.created_at.asc(), MessageRow.id.asc())
        with self._session_factory() as db:
            return [_to_message(row) for row in db.scalars(stmt)]

    def delete_by_session_id(self, session_id: str) -> int:
        with self._session_factory.begin() as db:
            result = db.execute(delete(MessageRow).where(MessageRow.session_id == session_id))
            return result.rowcount or 0


class SqlSessionRepository:
    def __init__(self, engine: Engine) -> None:
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    def create(self, record: SessionRecord) -> SessionRecord:
        row = SessionRow(
            id=record.id,
            user_name=record.user_name,
            title=record.title,
            model_type=record.model_type,
            created_at=record.created_at,
            deleted_at=record.deleted_at,
        )
        with self._session_factory.begin() as db:
            db.add(row)
        return record

    def find_by_id(self, session_id: str) -> Optional[SessionRecord]:
        stmt = select(SessionRow).where(SessionRow.id == session_id, SessionRow.deleted_at.is_(None))
        with self._session_factory() as db:
            row = db.scalars(stmt).first()
            return _to_session(row) if row is not None else None

    def find_by_user_name(self, user_name: str) -> List[SessionRecord]:
        stmt = (
            select(SessionRow)
            .where(SessionRow.user_name == user_name, SessionRow.deleted_at.is_(None))
            .order_by(SessionRow.created_at.desc())
        )
        with self._session_factory() as db:
            return [_to_session(row) for row in db.scalars(stmt)]

    def soft_delete(self, session_id: str) -> bool:
        with self._session_factory.begin() as db:
            result = db.execute(
                update(SessionRow)
                .where(SessionRow.id == session_id, SessionRow.deleted_at.is_(None))
                .values(deleted_at=datetime.now(timezone.utc))
            )
            return bool(result.rowcount)
