"""
Model-neutral chat abstractions.

Every backend adapts its provider API to ``ChatModel``: a blocking ``generate``
and a chunked ``stream`` that reports partial text through ``on_chunk`` and
resolves with the full reply. Conversation history reaches the model as plain
user/assistant ``ChatTurn`` pairs; any system prompt is the backend's business.
"""
from __future__ import annotations

from abc import ABC, abstractmethod
from enum import Enum
from typing import Awaitable, Callable, List, Optional, Union

from pydantic import BaseModel


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ChatTurn(BaseModel):
    role: Role
    content: str = ""


OnChunk = Callable[[str], Union[None, Awaitable[None]]]


class ModelFailure(RuntimeError):
    """The model backend rejected the call, timed out, or returned garbage."""

    def __init__(self, message: str, model_type: Optional[str] = None) -> None:
        super().__init__(message)
        self.model_type = model_type


class ChatModel(ABC):
    model_type: str = ""

    @abstractmethod
    async def generate(self, history: List[ChatTurn]) -> str:
        """Return the complete reply for the conversation so far."""

    @abstractmethod
    async def stream(self, history: List[ChatTurn], on_chunk: OnChunk) -> str:
        """Call ``on_chunk`` for each partial reply in order, then return the full reply."""


async def emit_chunk(on_chunk: OnChunk, chunk: str) -> None:
    """Invoke a sync or async chunk callback."""
    result = on_chunk(chunk)
    if result is not None:
        await result
