"""Per-session conversation state."""
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, List, Optional, Set

from gopherai.ai.contracts import ChatModel, ChatTurn, ModelFailure, OnChunk, Role
from gopherai.storage.models import Message

logger = logging.getLogger(__name__)

PersistCallback = Callable[[Message], Awaitable[None]]


class ConversationState:
    """Ordered history for one (user, session) plus the model serving it.

    Turns on one state are serialised by a per-session lock. Persistence runs
    as detached tasks chained in append order; their failures are only logged.
    """

    def __init__(
        self,
        session_id: str,
        user_name: str,
        model: ChatModel,
        persist: Optional[PersistCallback] = None,
    ) -> None:
        self.session_id = session_id
        self.user_name = user_name
        self.model = model
        self._persist = persist
        self._messages: List[Message] = []
        self._turn_lock = asyncio.Lock()
        self._persist_tail: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    @property
    def model_type(self) -> str:
        return self.model.model_type

    def append(self, content: str, is_user: bool) -> Message:
        message = Message(
            session_id=self.session_id,
            user_name=self.user_name,
            content=content,
            is_user=is_user,
        )
        self._messages.append(message)
        self._schedule_persist(message)
        return message

    def get_messages(self) -> List[Message]:
        return list(self._messages)

    def load_history(self, messages: Iterable[Message]) -> None:
        self._messages = list(messages)

    def first_user_message(self) -> Optional[Message]:
        return next((m for m in self._messages if m.is_user), None)

    def _turns(self) -> List[ChatTurn]:
        return [
            ChatTurn(role=Role.USER if m.is_user else Role.ASSISTANT, content=m.content)
            for m in self._messages
        ]

    async def generate_turn(self, user_text: str) -> str:
        async with self._turn_lock:
            self.append(user_text, True)
            try:
                reply = await self.model.generate(self._turns())
            except ModelFailure:
                raise
            except Exception as exc:
                raise ModelFailure(str(exc) or exc.__class__.__name__, self.model_type) from exc
            self.append(reply, False)
            return reply

    async def stream_turn(self, user_text: str, on_chunk: OnChunk) -> str:
        async with self._turn_lock:
            self.append(user_text, True)
            try:
                reply = await self.model.stream(self._turns(), on_chunk)
            except ModelFailure:
                raise
            except Exception as exc:
                raise ModelFailure(str(exc) or exc.__class__.__name__, self.model_type) from exc
            self.append(reply, False)
            return reply

    # Persistence

    def _schedule_persist(self, message: Message) -> None:
        if self._persist is None:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running loop; message for session %s was not persisted", self.session_id)
            return
        task = loop.create_task(self._run_persist(self._persist_tail, message))
        self._pending.add(task)
        task.add_done_callback(self._persist_done)
        self._persist_tail = task

    async def _run_persist(self, previous: Optional[asyncio.Task], message: Message) -> None:
        if previous is not None and not previous.done():
            await asyncio.wait([previous])
        await self._persist(message)

    def _persist_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "Persist callback failed for session %s: %s", self.session_id, exc, exc_info=exc
            )

    async def flush(self) -> None:
        """Wait for every persistence task scheduled so far."""
        if self._pending:
            await asyncio.wait(list(self._pending))
