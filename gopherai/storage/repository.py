"""Message and session repositories.

Repositories are synchronous; async callers reach them through
``asyncio.to_thread`` so every durable read/write is a suspension point.
"""
from __future__ import annotations

import itertools
import threading
from datetime import datetime, timezone
from typing import Dict, List, Optional, Protocol

from gopherai.storage.models import Message, SessionRecord


class MessageRepository(Protocol):
    def create(self, message: Message) -> Message: ...

    def find_by_session_id(self, session_id: str) -> List[Message]: ...

    def find_all(self) -> List[Message]: ...

    def delete_by_session_id(self, session_id: str) -> int: ...


class SessionRepository(Protocol):
    def create(self, record: SessionRecord) -> SessionRecord: ...

    def find_by_id(self, session_id: str) -> Optional[SessionRecord]: ...

    def find_by_user_name(self, user_name: str) -> List[SessionRecord]: ...

    def soft_delete(self, session_id: str) -> bool: ...


class InMemoryMessageRepository:
    """Append-only message table kept in a list; ids are a process-local sequence."""

    def __init__(self) -> None:
        self._rows: List[Message] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def create(self, message: Message) -> Message:
        with self._lock:
            stored = message.model_copy(update={"id": str(next(self._ids))})
            self._rows.append(stored)
            return stored

    def find_by_session_id(self, session_id: str) -> List[Message]:
        with self._lock:
            rows = [m for m in self._rows if m.session_id == session_id]
        # sorted() is stable, so equal timestamps keep insertion order
        return sorted(rows, key=lambda m: m.created_at)

    def find_all(self) -> List[Message]:
        with self._lock:
            rows = list(self._rows)
        return sorted(rows, key=lambda m: m.created_at)

    def delete_by_session_id(self, session_id: str) -> int:
        with self._lock:
            before = len(self._rows)
            self._rows = [m for m in self._rows if m.session_id != session_id]
            return before - len(self._rows)


class InMemorySessionRepository:
    def __init__(self) -> None:
        self._sessions: Dict[str, SessionRecord] = {}
        self._lock = threading.Lock()

    def create(self, record: SessionRecord) -> SessionRecord:
        with self._lock:
            if record.id in self._sessions:
                raise ValueError(f"session {record.id} already exists")
            self._sessions[record.id] = record
            return record

    def find_by_id(self, session_id: str) -> Optional[SessionRecord]:
        with self._lock:
            record = self._sessions.get(session_id)
        if record is None or record.deleted:
            return None
        return record

    def find_by_user_name(self, user_name: str) -> List[SessionRecord]:
        with self._lock:
            rows = [s for s in self._sessions.values() if s.user_name == user_name and not s.deleted]
        return sorted(rows, key=lambda s: s.created_at, reverse=True)

    def soft_delete(self, session_id: str) -> bool:
        with self._lock:
            record = self._sessions.get(session_id)
            if record is None or record.deleted:
                return False
            record.deleted_at = datetime.now(timezone.utc)
            return True
