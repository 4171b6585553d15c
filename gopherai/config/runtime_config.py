"""Runtime configuration helpers for GopherAI."""
from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Any, Dict, Optional

DEFAULT_OPENAI_BASE_URL = "https://dashscope.aliyuncs.com/compatible-mode/v1"


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(name, default)


def _get_int(name: str, default: int) -> int:
    raw = _get_env(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _get_float(name: str, default: float) -> float:
    raw = _get_env(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _get_bool(name: str, default: bool) -> bool:
    raw = _get_env(name)
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def get_app_name() -> str:
    return _get_env("APP_NAME") or "GopherAI"


def get_host() -> str:
    return _get_env("HOST") or "0.0.0.0"


def get_port() -> int:
    return _get_int("PORT", 9090)


def get_log_level() -> str:
    return (_get_env("LOG_LEVEL") or "INFO").upper()


def get_redis_enabled() -> bool:
    return _get_bool("REDIS_ENABLED", True)


def get_redis_host() -> str:
    return _get_env("REDIS_HOST") or "127.0.0.1"


def get_redis_port() -> int:
    return _get_int("REDIS_PORT", 6379)


def get_redis_password() -> Optional[str]:
    return _get_env("REDIS_PASSWORD") or None


def get_redis_db() -> int:
    return _get_int("REDIS_DB", 0)


def get_redis_connect_attempts() -> int:
    return max(1, _get_int("REDIS_CONNECT_ATTEMPTS", 3))


def get_consumer_backoff_seconds() -> float:
    return _get_float("CONSUMER_BACKOFF_SECONDS", 1.0)


def get_storage_backend() -> str:
    backend = (_get_env("STORAGE_BACKEND") or "sql").lower()
    if backend not in {"sql", "memory"}:
        raise RuntimeError(f"Unsupported STORAGE_BACKEND={backend!r}; expected 'sql' or 'memory'")
    return backend


def get_database_url() -> str:
    return _get_env("DATABASE_URL") or "sqlite:///./gopherai.db"


def get_jwt_secret() -> str:
    return _get_env("JWT_SECRET") or "GopherAI-v1"


def get_jwt_issuer() -> str:
    return _get_env("JWT_ISSUER") or "gopherai"


def get_jwt_ttl_seconds() -> int:
    return _get_int("JWT_TTL_SECONDS", 365 * 24 * 3600)


def get_openai_api_key() -> Optional[str]:
    return _get_env("OPENAI_API_KEY") or None


def get_openai_base_url() -> str:
    return (_get_env("OPENAI_BASE_URL") or DEFAULT_OPENAI_BASE_URL).rstrip("/")


def get_openai_model() -> str:
    return _get_env("OPENAI_MODEL") or "qwen-turbo"


def get_ollama_base_url() -> str:
    return (_get_env("OLLAMA_BASE_URL") or "http://127.0.0.1:11434").rstrip("/")


def get_ollama_model() -> str:
    return _get_env("OLLAMA_MODEL") or "llama3"


def get_model_timeout_seconds() -> float:
    return _get_float("MODEL_TIMEOUT_SECONDS", 120.0)


def get_rag_doc_dir() -> str:
    return _get_env("RAG_DOC_DIR") or "./docs"


def get_rag_top_k() -> int:
    return max(1, _get_int("RAG_TOP_K", 3))


def get_rag_cache_ttl() -> int:
    return _get_int("RAG_CACHE_TTL", 3600)


def config_snapshot() -> Dict[str, Any]:
    """Return the resolved configuration (secrets masked) for diagnostics."""
    return {
        "app_name": get_app_name(),
        "host": get_host(),
        "port": get_port(),
        "log_level": get_log_level(),
        "redis_enabled": get_redis_enabled(),
        "redis_host": get_redis_host(),
        "redis_port": get_redis_port(),
        "redis_db": get_redis_db(),
        "storage_backend": get_storage_backend(),
        "database_url": get_database_url(),
        "openai_base_url": get_openai_base_url(),
        "openai_model": get_openai_model(),
        "openai_api_key_set": bool(get_openai_api_key()),
        "ollama_base_url": get_ollama_base_url(),
        "ollama_model": get_ollama_model(),
        "model_timeout_seconds": get_model_timeout_seconds(),
        "rag_doc_dir": get_rag_doc_dir(),
    }


@dataclass
class Settings:
    app_name: str
    host: str
    port: int
    log_level: str
    redis_enabled: bool
    redis_host: str
    redis_port: int
    redis_password: Optional[str]
    redis_db: int
    redis_connect_attempts: int
    consumer_backoff_seconds: float
    storage_backend: str
    database_url: str
    jwt_secret: str
    jwt_issuer: str
    jwt_ttl_seconds: int
    openai_api_key: Optional[str]
    openai_base_url: str
    openai_model: str
    ollama_base_url: str
    ollama_model: str
    model_timeout_seconds: float
    rag_doc_dir: str
    rag_top_k: int
    rag_cache_ttl: int


def get_settings() -> Settings:
    return Settings(
        app_name=get_app_name(),
        host=get_host(),
        port=get_port(),
        log_level=get_log_level(),
        redis_enabled=get_redis_enabled(),
        redis_host=get_redis_host(),
        redis_port=get_redis_port(),
        redis_password=get_redis_password(),
        redis_db=get_redis_db(),
        redis_connect_attempts=get_redis_connect_attempts(),
        consumer_backoff_seconds=get_consumer_backoff_seconds(),
        storage_backend=get_storage_backend(),
        database_url=get_database_url(),
        jwt_secret=get_jwt_secret(),
        jwt_issuer=get_jwt_issuer(),
        jwt_ttl_seconds=get_jwt_ttl_seconds(),
        openai_api_key=get_openai_api_key(),
        openai_base_url=get_openai_base_url(),
        openai_model=get_openai_model(),
        ollama_base_url=get_ollama_base_url(),
        ollama_model=get_ollama_model(),
        model_timeout_seconds=get_model_timeout_seconds(),
        rag_doc_dir=get_rag_doc_dir(),
        rag_top_k=get_rag_top_k(),
        rag_cache_ttl=get_rag_cache_ttl(),
    )
