from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


class Message(BaseModel):
    """One chat turn. Immutable once created; ``id`` is assigned by durable storage."""

    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    session_id: str
    user_name: str
    content: str
    is_user: bool
    created_at: datetime = Field(default_factory=_now)


class SessionRecord(BaseModel):
    id: str
    user_name: str
    title: str = ""
    model_type: str = "1"
    created_at: datetime = Field(default_factory=_now)
    deleted_at: Optional[datetime] = None

    @property
    def deleted(self) -> bool:
        return self.deleted_at is not None
