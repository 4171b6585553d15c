"""Process-wide index of live conversations, keyed user -> session."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from gopherai.ai.conversation import ConversationState, PersistCallback
from gopherai.ai.factory import DEFAULT_MODEL_TYPE, ModelFactory

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "New Chat"
TITLE_LENGTH = 50


def generate_session_title(text: str) -> str:
    text = text.strip()
    if not text:
        return DEFAULT_TITLE
    if len(text) > TITLE_LENGTH:
        return text[:TITLE_LENGTH] + "..."
    return text


@dataclass
class SessionSummary:
    session_id: str
    title: str


class ConversationRegistry:
    """At most one ConversationState per (user, session).

    Map mutations are guarded by an RLock so the registry stays consistent
    when touched from worker threads as well as the event loop.
    """

    def __init__(self, factory: ModelFactory, persist: Optional[PersistCallback] = None) -> None:
        self._factory = factory
        self._persist = persist
        self._states: Dict[str, Dict[str, ConversationState]] = {}
        self._lock = threading.RLock()

    def get_or_create(
        self, user_name: str, session_id: str, model_type: str = DEFAULT_MODEL_TYPE
    ) -> ConversationState:
        with self._lock:
            state = self._states.get(user_name, {}).get(session_id)
            if state is not None:
                return state
            model = self._factory.create(model_type, {"user_name": user_name, "session_id": session_id})
            state = ConversationState(session_id, user_name, model, persist=self._persist)
            self._states.setdefault(user_name, {})[session_id] = state
            logger.debug("Created conversation %s/%s with model %s", user_name, session_id, state.model_type)
            return state

    def get(self, user_name: str, session_id: str) -> Optional[ConversationState]:
        with self._lock:
            return self._states.get(user_name, {}).get(session_id)

    def remove(self, user_name: str, session_id: str) -> bool:
        with self._lock:
            sessions = self._states.get(user_name)
            if not sessions or session_id not in sessions:
                return False
            del sessions[session_id]
            if not sessions:
                del self._states[user_name]
            return True

    def list_sessions(self, user_name: str) -> List[SessionSummary]:
        with self._lock:
            states = list(self._states.get(user_name, {}).values())
        summaries = []
        for state in states:
            first = state.first_user_message()
            title = generate_session_title(first.content) if first else DEFAULT_TITLE
            summaries.append(SessionSummary(session_id=state.session_id, title=title))
        return summaries

    def user_names(self) -> List[str]:
        with self._lock:
            return list(self._states)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "totalUsers": len(self._states),
                "totalSessions": sum(len(sessions) for sessions in self._states.values()),
            }

    async def flush(self) -> None:
        """Wait for every live conversation's pending persistence tasks."""
        with self._lock:
            states = [state for sessions in self._states.values() for state in sessions.values()]
        for state in states:
            await state.flush()
