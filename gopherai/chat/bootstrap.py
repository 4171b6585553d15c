"""Startup replay of durable messages into the conversation registry."""
from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Tuple

from gopherai.ai.registry import ConversationRegistry
from gopherai.storage.models import Message
from gopherai.storage.repository import MessageRepository, SessionRepository

logger = logging.getLogger(__name__)


def group_by_conversation(messages: List[Message]) -> Dict[Tuple[str, str], List[Message]]:
    groups: Dict[Tuple[str, str], List[Message]] = {}
    for message in messages:
        groups.setdefault((message.user_name, message.session_id), []).append(message)
    return groups


async def load_conversations(
    registry: ConversationRegistry,
    messages: MessageRepository,
    sessions: SessionRepository,
) -> int:
    """Seed the registry from storage; returns the number of conversations loaded.

    Groups whose session record is missing, soft-deleted or owned by another
    user are skipped.
    """
    rows = await asyncio.to_thread(messages.find_all)
    groups = group_by_conversation(rows)
    loaded = 0
    for (user_name, session_id), history in groups.items():
        record = await asyncio.to_thread(sessions.find_by_id, session_id)
        if record is None or record.user_name != user_name:
            logger.warning("Skipping %d stored messages of missing or deleted session %s", len(history), session_id)
            continue
        registry.get_or_create(user_name, session_id, record.model_type).load_history(history)
        loaded += 1
    logger.info("Loaded %d conversations (%d messages) from storage", loaded, len(rows))
    return loaded
