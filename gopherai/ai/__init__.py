"""Conversation state, model clients and the model factory."""

from gopherai.ai.contracts import ChatModel, ChatTurn, ModelFailure  # noqa: F401
from gopherai.ai.conversation import ConversationState  # noqa: F401
from gopherai.ai.factory import ModelFactory  # noqa: F401
from gopherai.ai.registry import ConversationRegistry  # noqa: F401
