"""Cache and message-queue abstraction with Redis and in-process backends."""

from gopherai.cache.contracts import BackendUnavailable, CacheQueue, CacheType, QueueMessage  # noqa: F401
from gopherai.cache.manager import select_cache_queue  # noqa: F401
