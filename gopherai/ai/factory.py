"""Model-type tag to chat model construction."""
from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Dict, List, Optional

import httpx

from gopherai.ai.contracts import ChatModel
from gopherai.ai.models import OllamaChatModel, OpenAIChatModel, RetrievalChatModel, ToolChatModel
from gopherai.ai.retrieval import DocumentIndex
from gopherai.ai.tools import default_tools
from gopherai.config.runtime_config import Settings

logger = logging.getLogger(__name__)

DEFAULT_MODEL_TYPE = "1"

ModelCreator = Callable[[Dict[str, Any]], ChatModel]


class ModelFactory:
    """Registry of model creators keyed by type tag.

    ``create`` never fails on an unknown tag: it logs and builds the default
    type instead. Creators receive a config dict (``user_name`` at least).
    """

    def __init__(self, default_type: str = DEFAULT_MODEL_TYPE) -> None:
        self.default_type = default_type
        self._creators: Dict[str, ModelCreator] = {}
        self._lock = threading.Lock()

    def register(self, model_type: str, creator: ModelCreator) -> None:
        with self._lock:
            self._creators[model_type] = creator

    def create(self, model_type: str, config: Optional[Dict[str, Any]] = None) -> ChatModel:
        with self._lock:
            creator = self._creators.get(model_type)
            if creator is None:
                logger.warning("Unknown model type %r, falling back to %r", model_type, self.default_type)
                creator = self._creators.get(self.default_type)
        if creator is None:
            raise LookupError(f"no creator registered for default model type {self.default_type!r}")
        return creator(dict(config or {}))

    def registered_types(self) -> List[str]:
        with self._lock:
            return list(self._creators)


def build_default_factory(
    settings: Settings,
    documents: DocumentIndex,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ModelFactory:
    """Factory with the four built-in types wired to ``settings``."""
    openai_kwargs = dict(
        base_url=settings.openai_base_url,
        model=settings.openai_model,
        api_key=settings.openai_api_key,
        timeout=settings.model_timeout_seconds,
        transport=transport,
    )
    factory = ModelFactory()
    factory.register("1", lambda config: OpenAIChatModel(**openai_kwargs))
    factory.register(
        "2",
        lambda config: RetrievalChatModel(documents=documents, user_name=config.get("user_name", ""), **openai_kwargs),
    )
    factory.register(
        "3",
        lambda config: ToolChatModel(
            tools=default_tools(documents, config.get("user_name", ""), transport=transport), **openai_kwargs
        ),
    )
    factory.register(
        "4",
        lambda config: OllamaChatModel(
            base_url=settings.ollama_base_url,
            model=settings.ollama_model,
            timeout=settings.model_timeout_seconds,
            transport=transport,
        ),
    )
    return factory
