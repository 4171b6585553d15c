"""Process-wide service graph, built once at startup and held on ``app.state``."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from fastapi import Request
from sqlalchemy.engine import Engine

from gopherai.ai.factory import ModelFactory, build_default_factory
from gopherai.ai.registry import ConversationRegistry
from gopherai.ai.retrieval import DocumentIndex
from gopherai.cache.contracts import CacheQueue
from gopherai.cache.manager import select_cache_queue
from gopherai.chat.bootstrap import load_conversations
from gopherai.chat.persistence import PersistencePipeline
from gopherai.chat.session_service import SessionService
from gopherai.config.runtime_config import Settings
from gopherai.files.service import FileService
from gopherai.identity.jwt_service import JwtService
from gopherai.identity.repository import InMemoryUserRepository, SqlUserRepository, UserRepository
from gopherai.identity.service import UserService
from gopherai.storage.repository import (
    InMemoryMessageRepository,
    InMemorySessionRepository,
    MessageRepository,
    SessionRepository,
)
from gopherai.storage.sql_repository import SqlMessageRepository, SqlSessionRepository, create_sql_engine

logger = logging.getLogger(__name__)


@dataclass
class Services:
    settings: Settings
    cache: CacheQueue
    messages: MessageRepository
    sessions: SessionRepository
    jwt: JwtService
    users: UserService
    documents: DocumentIndex
    factory: ModelFactory
    registry: ConversationRegistry
    pipeline: PersistencePipeline
    session_service: SessionService
    files: FileService
    engine: Optional[Engine] = None

    async def start(self) -> None:
        await self.pipeline.start()
        await load_conversations(self.registry, self.messages, self.sessions)

    async def shutdown(self) -> None:
        await self.registry.flush()
        await self.cache.close()
        if self.engine is not None:
            self.engine.dispose()
        logger.info("Services shut down")


async def build_services(
    settings: Settings,
    cache: Optional[CacheQueue] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Services:
    cache = cache or await select_cache_queue(settings)

    engine: Optional[Engine] = None
    messages: MessageRepository
    sessions: SessionRepository
    user_repo: UserRepository
    if settings.storage_backend == "sql":
        engine = create_sql_engine(settings.database_url)
        messages = SqlMessageRepository(engine)
        sessions = SqlSessionRepository(engine)
        user_repo = SqlUserRepository(engine)
    else:
        messages = InMemoryMessageRepository()
        sessions = InMemorySessionRepository()
        user_repo = InMemoryUserRepository()

    jwt = JwtService.from_settings(settings)
    documents = DocumentIndex(cache, settings.rag_doc_dir, settings.rag_top_k, settings.rag_cache_ttl)
    factory = build_default_factory(settings, documents, transport=transport)
    pipeline = PersistencePipeline(messages, sessions, cache)
    registry = ConversationRegistry(factory, persist=pipeline.publish)
    return Services(
        settings=settings,
        cache=cache,
        messages=messages,
        sessions=sessions,
        jwt=jwt,
        users=UserService(user_repo, jwt),
        documents=documents,
        factory=factory,
        registry=registry,
        pipeline=pipeline,
        session_service=SessionService(registry, messages, sessions),
        files=FileService(documents),
        engine=engine,
    )


def get_services(request: Request) -> Services:
    return request.app.state.services
