"""In-process cache and FIFO queue. Nothing survives a restart."""
from __future__ import annotations

import asyncio
import json
import logging
import time
from collections import deque
from typing import Any, Deque, Dict, Optional, Tuple

from gopherai.cache.contracts import CacheType, MessageHandler, QueueMessage

logger = logging.getLogger(__name__)


class MemoryCacheQueue:
    cache_type = CacheType.MEMORY

    def __init__(self) -> None:
        self._store: Dict[str, Tuple[str, Optional[float]]] = {}
        self._queue: Deque[QueueMessage] = deque()
        self._handler: Optional[MessageHandler] = None
        self._consuming = False
        self._drain_task: Optional[asyncio.Task] = None

    # Cache

    async def get(self, key: str) -> Optional[Any]:
        entry = self._store.get(key)
        if entry is None:
            return None
        raw, expires_at = entry
        if expires_at is not None and time.monotonic() >= expires_at:
            self._store.pop(key, None)
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        # ttl of None or 0 means no expiry
        expires_at = time.monotonic() + ttl if ttl and ttl > 0 else None
        self._store[key] = (json.dumps(value), expires_at)

    async def delete(self, key: str) -> None:
        self._store.pop(key, None)

    # Queue

    async def init_queue(self) -> None:
        logger.info("Using in-memory message queue")

    async def publish(self, message: QueueMessage) -> None:
        self._queue.append(message)
        self._kick()

    async def start_consumer(self, handler: MessageHandler) -> None:
        self._handler = handler
        logger.info("In-memory queue consumer started (%d queued)", len(self._queue))
        self._kick()

    def _kick(self) -> None:
        if self._handler is None or self._consuming or not self._queue:
            return
        self._consuming = True
        self._drain_task = asyncio.get_running_loop().create_task(self._drain())

    async def _drain(self) -> None:
        try:
            while self._queue and self._handler is not None:
                message = self._queue[0]
                try:
                    await self._handler(message)
                except Exception:
                    logger.exception(
                        "Dropping queued message for session %s after handler failure", message.session_id
                    )
                finally:
                    self._queue.popleft()
        finally:
            self._consuming = False

    @property
    def pending(self) -> int:
        return len(self._queue)

    async def wait_idle(self) -> None:
        """Wait until every message published so far has been handled."""
        while self._drain_task is not None and not self._drain_task.done():
            await self._drain_task

    async def close(self) -> None:
        await self.wait_idle()
        self._handler = None
        self._store.clear()
