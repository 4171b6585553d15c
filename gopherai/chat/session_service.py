"""Session-level chat operations used by the HTTP layer."""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import List

from gopherai.ai.contracts import OnChunk
from gopherai.ai.conversation import ConversationState
from gopherai.ai.factory import DEFAULT_MODEL_TYPE
from gopherai.ai.registry import DEFAULT_TITLE, ConversationRegistry, SessionSummary, generate_session_title
from gopherai.storage.models import Message, SessionRecord
from gopherai.storage.repository import MessageRepository, SessionRepository

logger = logging.getLogger(__name__)


class SessionNotFound(LookupError):
    """No live or durable session with this id belongs to the caller."""

    def __init__(self, session_id: str) -> None:
        super().__init__(f"session {session_id} not found")
        self.session_id = session_id


@dataclass
class NewSessionResult:
    session_id: str
    response: str


class SessionService:
    def __init__(
        self,
        registry: ConversationRegistry,
        messages: MessageRepository,
        sessions: SessionRepository,
    ) -> None:
        self.registry = registry
        self.messages = messages
        self.sessions = sessions

    async def _owned_record(self, user_name: str, session_id: str) -> SessionRecord:
        record = await asyncio.to_thread(self.sessions.find_by_id, session_id)
        if record is None or record.user_name != user_name:
            raise SessionNotFound(session_id)
        return record

    async def _resolve(self, user_name: str, session_id: str, model_type: str) -> ConversationState:
        state = self.registry.get(user_name, session_id)
        if state is not None:
            return state
        record = await self._owned_record(user_name, session_id)
        history = await asyncio.to_thread(self.messages.find_by_session_id, session_id)
        # another request may have hydrated the session while we were reading
        state = self.registry.get(user_name, session_id)
        if state is None:
            state = self.registry.get_or_create(user_name, session_id, record.model_type or model_type)
            state.load_history(history)
        return state

    async def _create(self, user_name: str, text: str, model_type: str) -> ConversationState:
        session_id = str(uuid.uuid4())
        record = SessionRecord(
            id=session_id,
            user_name=user_name,
            title=generate_session_title(text),
            model_type=model_type,
        )
        await asyncio.to_thread(self.sessions.create, record)
        logger.info("Created session %s for %s (model %s)", session_id, user_name, model_type)
        return self.registry.get_or_create(user_name, session_id, model_type)

    async def create_session_and_send(
        self, user_name: str, text: str, model_type: str = DEFAULT_MODEL_TYPE
    ) -> NewSessionResult:
        state = await self._create(user_name, text, model_type)
        reply = await state.generate_turn(text)
        return NewSessionResult(session_id=state.session_id, response=reply)

    async def send(
        self, user_name: str, session_id: str, text: str, model_type: str = DEFAULT_MODEL_TYPE
    ) -> str:
        state = await self._resolve(user_name, session_id, model_type)
        return await state.generate_turn(text)

    async def create_session_and_stream(
        self, user_name: str, text: str, model_type: str, on_chunk: OnChunk
    ) -> NewSessionResult:
        state = await self._create(user_name, text, model_type)
        reply = await state.stream_turn(text, on_chunk)
        return NewSessionResult(session_id=state.session_id, response=reply)

    async def stream(
        self, user_name: str, session_id: str, text: str, model_type: str, on_chunk: OnChunk
    ) -> str:
        state = await self._resolve(user_name, session_id, model_type)
        return await state.stream_turn(text, on_chunk)

    async def history(self, user_name: str, session_id: str) -> List[Message]:
        state = self.registry.get(user_name, session_id)
        if state is not None:
            return state.get_messages()
        await self._owned_record(user_name, session_id)
        return await asyncio.to_thread(self.messages.find_by_session_id, session_id)

    async def list_sessions(self, user_name: str) -> List[SessionSummary]:
        """Durable sessions newest first, then live sessions with no durable record."""
        records = await asyncio.to_thread(self.sessions.find_by_user_name, user_name)
        live = {summary.session_id: summary for summary in self.registry.list_sessions(user_name)}
        summaries: List[SessionSummary] = []
        for record in records:
            summary = live.pop(record.id, None)
            if summary is not None and summary.title != DEFAULT_TITLE:
                title = summary.title
            else:
                title = record.title or DEFAULT_TITLE
            summaries.append(SessionSummary(session_id=record.id, title=title))
        summaries.extend(live.values())
        return summaries

    async def delete_session(self, user_name: str, session_id: str) -> None:
        await self._owned_record(user_name, session_id)
        state = self.registry.get(user_name, session_id)
        if state is not None:
            await state.flush()
        await asyncio.to_thread(self.sessions.soft_delete, session_id)
        removed = await asyncio.to_thread(self.messages.delete_by_session_id, session_id)
        self.registry.remove(user_name, session_id)
        logger.info("Deleted session %s for %s (%d messages)", session_id, user_name, removed)
