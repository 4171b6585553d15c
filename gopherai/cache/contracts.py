from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, Protocol

from pydantic import BaseModel

from gopherai.storage.models import Message


class CacheType(str, Enum):
    REDIS = "redis"
    MEMORY = "memory"


class BackendUnavailable(RuntimeError):
    """The cache/queue backend could not be reached."""


class QueueMessage(BaseModel):
    """Transport projection of a chat Message."""

    session_id: str
    user_name: str
    content: str
    is_user: bool
    created_at: datetime

    @classmethod
    def from_message(cls, message: Message) -> "QueueMessage":
        return cls(
            session_id=message.session_id,
            user_name=message.user_name,
            content=message.content,
            is_user=message.is_user,
            created_at=message.created_at,
        )

    def to_message(self) -> Message:
        return Message(
            session_id=self.session_id,
            user_name=self.user_name,
            content=self.content,
            is_user=self.is_user,
            created_at=self.created_at,
        )

    def to_fields(self) -> Dict[str, str]:
        """Flat string fields for a Redis stream entry."""
        return {
            "sessionId": self.session_id,
            "userName": self.user_name,
            "content": self.content,
            "isUser": "1" if self.is_user else "0",
            "createdAt": self.created_at.isoformat(),
        }

    @classmethod
    def from_fields(cls, fields: Dict[str, str]) -> "QueueMessage":
        return cls(
            session_id=fields["sessionId"],
            user_name=fields["userName"],
            content=fields["content"],
            is_user=fields["isUser"] == "1",
            created_at=datetime.fromisoformat(fields["createdAt"]),
        )


MessageHandler = Callable[[QueueMessage], Awaitable[None]]


class CacheQueue(Protocol):
    cache_type: CacheType

    async def get(self, key: str) -> Optional[Any]: ...

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def init_queue(self) -> None: ...

    async def publish(self, message: QueueMessage) -> None: ...

    async def start_consumer(self, handler: MessageHandler) -> None: ...

    async def close(self) -> None: ...
