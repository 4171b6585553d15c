import dataclasses

import pytest

from gopherai.ai.factory import ModelFactory, build_default_factory
from gopherai.ai.models import OllamaChatModel, OpenAIChatModel, RetrievalChatModel, ToolChatModel
from gopherai.ai.retrieval import DocumentIndex
from gopherai.ai.tests.fakes import EchoModel
from gopherai.cache.memory_backend import MemoryCacheQueue
from gopherai.config.runtime_config import get_settings


def _factory():
    settings = dataclasses.replace(get_settings(), openai_model="gpt-test", ollama_model="llama-test")
    return build_default_factory(settings, DocumentIndex(MemoryCacheQueue(), "/nonexistent"))


def test_builtin_types_registered():
    factory = _factory()
    assert factory.registered_types() == ["1", "2", "3", "4"]
    assert type(factory.create("1")) is OpenAIChatModel
    assert isinstance(factory.create("2", {"user_name": "u1"}), RetrievalChatModel)
    assert isinstance(factory.create("3", {"user_name": "u1"}), ToolChatModel)
    assert isinstance(factory.create("4"), OllamaChatModel)


def test_creators_receive_user_name():
    model = _factory().create("2", {"user_name": "12345678901"})
    assert model.user_name == "12345678901"


def test_unknown_type_falls_back_to_default(caplog):
    factory = _factory()
    model = factory.create("99")
    assert type(model) is OpenAIChatModel
    assert "Unknown model type" in caplog.text


def test_runtime_registration_overrides():
    factory = ModelFactory()
    echo = EchoModel()
    factory.register("1", lambda config: echo)
    factory.register("custom", lambda config: echo)
    assert factory.create("custom") is echo
    assert factory.registered_types() == ["1", "custom"]


def test_missing_default_creator_raises():
    with pytest.raises(LookupError):
        ModelFactory().create("1")
