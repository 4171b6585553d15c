import asyncio
from datetime import datetime, timezone

import pytest

from gopherai.ai.contracts import ModelFailure, Role
from gopherai.ai.conversation import ConversationState
from gopherai.ai.tests.fakes import EchoModel, FailingModel
from gopherai.storage.models import Message


def _state(model=None, persist=None) -> ConversationState:
    return ConversationState("s1", "10000000001", model or EchoModel(), persist=persist)


def test_append_preserves_call_order():
    state = _state()
    for i in range(5):
        state.append(f"m{i}", i % 2 == 0)
    messages = state.get_messages()
    assert [m.content for m in messages] == ["m0", "m1", "m2", "m3", "m4"]
    assert [m.is_user for m in messages] == [True, False, True, False, True]
    assert all(m.session_id == "s1" and m.created_at.tzinfo is not None for m in messages)


def test_get_messages_returns_a_copy():
    state = _state()
    state.append("hi", True)
    state.get_messages().clear()
    assert len(state.get_messages()) == 1


def test_generate_turn_sends_role_pairs_and_appends_reply():
    model = EchoModel()
    state = _state(model)
    state.append("earlier", True)
    state.append("earlier reply", False)

    reply = asyncio.run(state.generate_turn("hello"))

    assert reply == "echo: hello"
    sent = model.calls[0]
    assert [t.role for t in sent] == [Role.USER, Role.ASSISTANT, Role.USER]
    assert sent[-1].content == "hello"
    assert [(m.is_user, m.content) for m in state.get_messages()[-2:]] == [(True, "hello"), (False, "echo: hello")]


def test_model_failure_keeps_user_turn():
    state = _state(FailingModel())
    with pytest.raises(ModelFailure):
        asyncio.run(state.generate_turn("hello"))
    assert [(m.is_user, m.content) for m in state.get_messages()] == [(True, "hello")]


def test_unexpected_model_error_is_wrapped():
    state = _state(FailingModel(error=ConnectionResetError("reset")))
    with pytest.raises(ModelFailure):
        asyncio.run(state.generate_turn("hello"))


def test_stream_turn_delivers_chunks_in_order():
    chunks = []
    state = _state()
    reply = asyncio.run(state.stream_turn("abcd", chunks.append))
    assert "".join(chunks) == reply == "echo: abcd"
    assert len(chunks) == 2
    assert state.get_messages()[-1].content == reply


def test_stream_failure_keeps_emitted_chunks():
    chunks = []
    state = _state(FailingModel(partial="half an ans"))
    with pytest.raises(ModelFailure):
        asyncio.run(state.stream_turn("q", chunks.append))
    assert chunks == ["half an ans"]
    assert [m.content for m in state.get_messages()] == ["q"]


def test_load_history_overwrites_and_is_idempotent():
    state = _state()
    state.append("stale", True)
    history = [
        Message(session_id="s1", user_name="u", content="a", is_user=True, created_at=datetime(2024, 1, 1, tzinfo=timezone.utc)),
        Message(session_id="s1", user_name="u", content="b", is_user=False, created_at=datetime(2024, 1, 2, tzinfo=timezone.utc)),
    ]
    state.load_history(history)
    state.load_history(history)
    assert state.get_messages() == history


def test_persist_callback_runs_in_append_order():
    persisted = []

    async def persist(message):
        # later messages finish faster; chaining must still keep order
        await asyncio.sleep(0.01 if message.is_user else 0)
        persisted.append(message.content)

    async def run():
        state = _state(persist=persist)
        await state.generate_turn("one")
        await state.generate_turn("two")
        await state.flush()

    asyncio.run(run())
    assert persisted == ["one", "echo: one", "two", "echo: two"]


def test_persist_failure_is_not_surfaced(caplog):
    async def persist(message):
        raise RuntimeError("queue down")

    async def run():
        state = _state(persist=persist)
        reply = await state.generate_turn("hello")
        await state.flush()
        return reply

    assert asyncio.run(run()) == "echo: hello"
    assert "Persist callback failed" in caplog.text


def test_concurrent_turns_on_one_session_do_not_interleave():
    model = EchoModel(delay=0.01)

    async def run():
        state = _state(model)
        await asyncio.gather(state.generate_turn("a"), state.generate_turn("b"))
        return state.get_messages()

    messages = asyncio.run(run())
    pairs = [(messages[i].content, messages[i + 1].content) for i in (0, 2)]
    assert sorted(pairs) == [("a", "echo: a"), ("b", "echo: b")]
