"""Queue-backed persistence of chat turns.

Appending a message publishes it to the cache/queue backend; the single
consumer started here writes each entry to the message repository. The
request path never waits on the write.

Entries for a session that has no live durable record (never created, or
soft-deleted while the entry sat in the queue) are dropped. The record is
checked again after the write so a delete that lands mid-write still wins.
"""
from __future__ import annotations

import asyncio
import logging

from gopherai.cache.contracts import CacheQueue, QueueMessage
from gopherai.storage.models import Message
from gopherai.storage.repository import MessageRepository, SessionRepository

logger = logging.getLogger(__name__)


class PersistenceFailure(RuntimeError):
    """Writing a queued message to durable storage failed."""


class PersistencePipeline:
    def __init__(self, messages: MessageRepository, sessions: SessionRepository, cache: CacheQueue) -> None:
        self._messages = messages
        self._sessions = sessions
        self._cache = cache
        self._started = False

    async def publish(self, message: Message) -> None:
        await self._cache.publish(QueueMessage.from_message(message))

    def _write(self, message: Message) -> bool:
        if self._sessions.find_by_id(message.session_id) is None:
            return False
        self._messages.create(message)
        if self._sessions.find_by_id(message.session_id) is None:
            self._messages.delete_by_session_id(message.session_id)
            return False
        return True

    async def handle(self, queued: QueueMessage) -> None:
        try:
            written = await asyncio.to_thread(self._write, queued.to_message())
        except Exception as exc:
            raise PersistenceFailure(
                f"failed to persist message for session {queued.session_id}: {exc}"
            ) from exc
        if not written:
            logger.info("Skipped queued message for missing or deleted session %s", queued.session_id)

    async def start(self) -> None:
        if self._started:
            return
        await self._cache.init_queue()
        await self._cache.start_consumer(self.handle)
        self._started = True
        logger.info("Persistence pipeline started on %s backend", self._cache.cache_type.value)
