"""Durable storage for chat messages and sessions."""

from gopherai.storage.models import Message, SessionRecord  # noqa: F401
from gopherai.storage.repository import (  # noqa: F401
    InMemoryMessageRepository,
    InMemorySessionRepository,
    MessageRepository,
    SessionRepository,
)
