"""Redis cache plus a stream/consumer-group message queue."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional, Tuple

from redis import asyncio as aioredis
from redis.exceptions import RedisError, ResponseError

from gopherai.cache.contracts import BackendUnavailable, CacheType, MessageHandler, QueueMessage
from gopherai.config.runtime_config import Settings

logger = logging.getLogger(__name__)

STREAM_KEY = "gopherai:message:stream"
CONSUMER_GROUP = "message_consumer_group"
CONSUMER_NAME = "message_consumer_1"
READ_COUNT = 10
READ_BLOCK_MS = 5000


def _retry_delay(attempt: int) -> float:
    return min(attempt * 0.2, 2.0)


class RedisCacheQueue:
    cache_type = CacheType.REDIS

    def __init__(self, client: Any, backoff_seconds: float = 1.0) -> None:
        self._client = client
        self._backoff_seconds = backoff_seconds
        self._consumer_task: Optional[asyncio.Task] = None
        self._stopping = False

    @classmethod
    async def connect(cls, settings: Settings) -> "RedisCacheQueue":
        """Connect with bounded retry; raises BackendUnavailable once attempts run out."""
        attempts = settings.redis_connect_attempts
        last_error: Optional[Exception] = None
        for attempt in range(1, attempts + 1):
            client = aioredis.Redis(
                host=settings.redis_host,
                port=settings.redis_port,
                password=settings.redis_password,
                db=settings.redis_db,
                decode_responses=True,
                socket_connect_timeout=5,
            )
            try:
                await client.ping()
            except (RedisError, OSError) as exc:
                last_error = exc
                await client.aclose()
                logger.warning("Redis connect attempt %d/%d failed: %s", attempt, attempts, exc)
                if attempt < attempts:
                    await asyncio.sleep(_retry_delay(attempt))
                continue
            logger.info("Connected to Redis at %s:%s", settings.redis_host, settings.redis_port)
            return cls(client, backoff_seconds=settings.consumer_backoff_seconds)
        raise BackendUnavailable(f"redis unreachable after {attempts} attempts: {last_error}") from last_error

    # Cache

    async def get(self, key: str) -> Optional[Any]:
        raw = await self._client.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> None:
        payload = json.dumps(value)
        if ttl and ttl > 0:
            await self._client.setex(key, ttl, payload)
        else:
            await self._client.set(key, payload)

    async def delete(self, key: str) -> None:
        await self._client.delete(key)

    # Queue

    async def init_queue(self) -> None:
        if not await self._client.exists(STREAM_KEY):
            await self._client.xadd(STREAM_KEY, {"init": "true"})
        try:
            await self._client.xgroup_create(STREAM_KEY, CONSUMER_GROUP, id="0", mkstream=True)
            logger.info("Created consumer group %s on %s", CONSUMER_GROUP, STREAM_KEY)
        except ResponseError as exc:
            if "BUSYGROUP" not in str(exc):
                raise

    async def publish(self, message: QueueMessage) -> None:
        try:
            await self._client.xadd(STREAM_KEY, message.to_fields())
        except RedisError as exc:
            raise BackendUnavailable(f"stream publish failed: {exc}") from exc

    async def start_consumer(self, handler: MessageHandler) -> None:
        if self._consumer_task is not None and not self._consumer_task.done():
            return
        self._stopping = False
        self._consumer_task = asyncio.get_running_loop().create_task(self._consume_loop(handler))
        logger.info("Redis stream consumer %s started", CONSUMER_NAME)

    async def _read(self, last_id: str) -> List[Tuple[str, Dict[str, str]]]:
        response = await self._client.xreadgroup(
            CONSUMER_GROUP,
            CONSUMER_NAME,
            {STREAM_KEY: last_id},
            count=READ_COUNT,
            block=READ_BLOCK_MS,
        )
        return [entry for _stream, batch in response or [] for entry in batch]

    async def _consume_loop(self, handler: MessageHandler) -> None:
        # Replay this consumer's unacknowledged entries, then switch to new ones.
        last_id = "0"
        while not self._stopping:
            try:
                entries = await self._read(last_id)
                if last_id != ">":
                    if not entries:
                        last_id = ">"
                        continue
                    last_id = entries[-1][0]
                for entry_id, fields in entries:
                    await self._handle_entry(entry_id, fields, handler)
            except asyncio.CancelledError:
                raise
            except RedisError as exc:
                logger.error("Redis stream consume failed: %s", exc)
                await asyncio.sleep(self._backoff_seconds)

    async def _handle_entry(self, entry_id: str, fields: Optional[Dict[str, str]], handler: MessageHandler) -> None:
        if not fields or fields.get("init") == "true":
            await self._client.xack(STREAM_KEY, CONSUMER_GROUP, entry_id)
            return
        try:
            message = QueueMessage.from_fields(fields)
        except (KeyError, ValueError) as exc:
            logger.error("Dropping malformed stream entry %s: %s", entry_id, exc)
            await self._client.xack(STREAM_KEY, CONSUMER_GROUP, entry_id)
            return
        try:
            await handler(message)
        except Exception:
            logger.exception("Handler failed for stream entry %s; left pending for redelivery", entry_id)
            return
        await self._client.xack(STREAM_KEY, CONSUMER_GROUP, entry_id)

    async def stop_consumer(self) -> None:
        self._stopping = True
        task, self._consumer_task = self._consumer_task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def close(self) -> None:
        await self.stop_consumer()
        await self._client.aclose()
