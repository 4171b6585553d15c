"""Startup selection of the cache/queue backend."""
from __future__ import annotations

import logging

from gopherai.cache.contracts import BackendUnavailable, CacheQueue
from gopherai.cache.memory_backend import MemoryCacheQueue
from gopherai.cache.redis_backend import RedisCacheQueue
from gopherai.config.runtime_config import Settings

logger = logging.getLogger(__name__)


async def select_cache_queue(settings: Settings) -> CacheQueue:
    """Prefer Redis; fall back to the in-process backend instead of failing boot."""
    if not settings.redis_enabled:
        logger.info("Redis disabled; using in-memory cache and queue")
        return MemoryCacheQueue()
    try:
        return await RedisCacheQueue.connect(settings)
    except BackendUnavailable as exc:
        logger.warning("Falling back to in-memory cache and queue: %s", exc)
        return MemoryCacheQueue()
