import asyncio

import pytest

from gopherai.ai.registry import ConversationRegistry
from gopherai.ai.tests.fakes import EchoModel, echo_factory
from gopherai.cache.contracts import QueueMessage
from gopherai.cache.memory_backend import MemoryCacheQueue
from gopherai.chat.bootstrap import group_by_conversation, load_conversations
from gopherai.chat.persistence import PersistenceFailure, PersistencePipeline
from gopherai.storage.models import SessionRecord
from gopherai.storage.repository import InMemoryMessageRepository, InMemorySessionRepository
from gopherai.storage.sql_repository import SqlMessageRepository, SqlSessionRepository, create_sql_engine


def _fields(messages):
    return [(m.session_id, m.user_name, m.content, m.is_user, m.created_at) for m in messages]


def _record(sessions, session_id, user_name="u1", model_type="1"):
    sessions.create(SessionRecord(id=session_id, user_name=user_name, title="t", model_type=model_type))


@pytest.fixture(params=["memory", "sql"])
def repos(request):
    if request.param == "memory":
        yield InMemoryMessageRepository(), InMemorySessionRepository()
    else:
        engine = create_sql_engine("sqlite:///:memory:")
        yield SqlMessageRepository(engine), SqlSessionRepository(engine)
        engine.dispose()


def test_round_trip_through_queue_and_bootstrap(repos):
    messages, sessions = repos
    _record(sessions, "s1", "u1")
    _record(sessions, "s2", "u2")

    async def run():
        cache = MemoryCacheQueue()
        pipeline = PersistencePipeline(messages, sessions, cache)
        await pipeline.start()
        registry = ConversationRegistry(echo_factory(), persist=pipeline.publish)
        state = registry.get_or_create("u1", "s1")
        for i in range(6):
            state.append(f"m{i}", i % 2 == 0)
        other = registry.get_or_create("u2", "s2")
        await other.generate_turn("hi")
        await registry.flush()
        await cache.wait_idle()

        fresh = ConversationRegistry(echo_factory())
        loaded = await load_conversations(fresh, messages, sessions)
        return state, other, fresh, loaded

    state, other, fresh, loaded = asyncio.run(run())
    assert loaded == 2
    assert _fields(fresh.get("u1", "s1").get_messages()) == _fields(state.get_messages())
    assert _fields(fresh.get("u2", "s2").get_messages()) == _fields(other.get_messages())
    assert all(m.id for m in fresh.get("u1", "s1").get_messages())


def test_bootstrap_uses_session_model_type():
    special = EchoModel()
    messages, sessions = InMemoryMessageRepository(), InMemorySessionRepository()
    _record(sessions, "s4", model_type="4")

    async def run():
        registry = ConversationRegistry(echo_factory())
        state = registry.get_or_create("u1", "s4")
        state.append("q", True)
        messages.create(state.get_messages()[0])
        fresh = ConversationRegistry(echo_factory({"4": special}))
        await load_conversations(fresh, messages, sessions)
        return fresh

    fresh = asyncio.run(run())
    assert fresh.get("u1", "s4").model is special


def test_bootstrap_twice_does_not_duplicate():
    messages, sessions = InMemoryMessageRepository(), InMemorySessionRepository()
    _record(sessions, "s1")

    async def run():
        source = ConversationRegistry(echo_factory())
        state = source.get_or_create("u1", "s1")
        state.append("a", True)
        state.append("b", False)
        for m in state.get_messages():
            messages.create(m)
        registry = ConversationRegistry(echo_factory())
        await load_conversations(registry, messages, sessions)
        await load_conversations(registry, messages, sessions)
        return registry

    registry = asyncio.run(run())
    assert [m.content for m in registry.get("u1", "s1").get_messages()] == ["a", "b"]


def test_bootstrap_skips_deleted_and_unknown_sessions(repos):
    messages, sessions = repos
    _record(sessions, "kept")
    _record(sessions, "gone")
    sessions.soft_delete("gone")

    async def run():
        source = ConversationRegistry(echo_factory())
        for session_id in ("kept", "gone", "orphan"):
            messages.create(source.get_or_create("u1", session_id).append(f"in {session_id}", True))
        registry = ConversationRegistry(echo_factory())
        loaded = await load_conversations(registry, messages, sessions)
        return registry, loaded

    registry, loaded = asyncio.run(run())
    assert loaded == 1
    assert registry.get("u1", "kept") is not None
    assert registry.get("u1", "gone") is None
    assert registry.get("u1", "orphan") is None


def test_group_by_conversation_keeps_order():
    state_msgs = []
    registry = ConversationRegistry(echo_factory())
    a = registry.get_or_create("u1", "s1")
    b = registry.get_or_create("u1", "s2")
    state_msgs.append(a.append("a1", True))
    state_msgs.append(b.append("b1", True))
    state_msgs.append(a.append("a2", False))
    groups = group_by_conversation(state_msgs)
    assert [m.content for m in groups[("u1", "s1")]] == ["a1", "a2"]
    assert [m.content for m in groups[("u1", "s2")]] == ["b1"]


class BrokenRepository(InMemoryMessageRepository):
    def create(self, message):
        raise OSError("disk full")


def test_persistence_failure_is_logged_not_raised(caplog):
    sessions = InMemorySessionRepository()
    _record(sessions, "s1")

    async def run():
        cache = MemoryCacheQueue()
        pipeline = PersistencePipeline(BrokenRepository(), sessions, cache)
        await pipeline.start()
        registry = ConversationRegistry(echo_factory(), persist=pipeline.publish)
        reply = await registry.get_or_create("u1", "s1").generate_turn("hello")
        await registry.flush()
        await cache.wait_idle()
        return reply

    assert asyncio.run(run()) == "echo: hello"
    assert "Dropping queued message" in caplog.text


def test_handle_wraps_storage_errors():
    sessions = InMemorySessionRepository()
    _record(sessions, "s1")
    pipeline = PersistencePipeline(BrokenRepository(), sessions, MemoryCacheQueue())
    registry = ConversationRegistry(echo_factory())
    message = registry.get_or_create("u1", "s1").append("x", True)

    with pytest.raises(PersistenceFailure):
        asyncio.run(pipeline.handle(QueueMessage.from_message(message)))


def test_handle_drops_messages_of_deleted_session():
    messages, sessions = InMemoryMessageRepository(), InMemorySessionRepository()
    _record(sessions, "s1")
    sessions.soft_delete("s1")
    pipeline = PersistencePipeline(messages, sessions, MemoryCacheQueue())
    message = ConversationRegistry(echo_factory()).get_or_create("u1", "s1").append("late", True)

    asyncio.run(pipeline.handle(QueueMessage.from_message(message)))
    assert messages.find_all() == []


class DeleteDuringWrite(InMemoryMessageRepository):
    """Soft-deletes the session while the row is being written."""

    def __init__(self, sessions):
        super().__init__()
        self.sessions = sessions

    def create(self, message):
        created = super().create(message)
        self.sessions.soft_delete(message.session_id)
        return created


def test_handle_purges_row_when_session_deleted_mid_write():
    sessions = InMemorySessionRepository()
    _record(sessions, "s1")
    messages = DeleteDuringWrite(sessions)
    pipeline = PersistencePipeline(messages, sessions, MemoryCacheQueue())
    message = ConversationRegistry(echo_factory()).get_or_create("u1", "s1").append("racing", True)

    asyncio.run(pipeline.handle(QueueMessage.from_message(message)))
    assert messages.find_by_session_id("s1") == []
