import asyncio
import json
from pathlib import Path

import httpx
import pytest

from gopherai.ai.contracts import ChatTurn, ModelFailure, Role
from gopherai.ai.models import OllamaChatModel, OpenAIChatModel, RetrievalChatModel, ToolChatModel
from gopherai.ai.retrieval import DocumentIndex
from gopherai.ai.tools import Tool
from gopherai.cache.memory_backend import MemoryCacheQueue

HISTORY = [
    ChatTurn(role=Role.USER, content="hi"),
    ChatTurn(role=Role.ASSISTANT, content="hello"),
    ChatTurn(role=Role.USER, content="what is gopher?"),
]


def _completion(content=None, tool_calls=None):
    message = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = tool_calls
    return httpx.Response(200, json={"choices": [{"message": message}]})


def _openai(handler, cls=OpenAIChatModel, **kwargs):
    return cls(
        base_url="http://llm.test/v1",
        model="gpt-test",
        api_key="sk-test",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


def test_openai_generate_posts_history():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return _completion("Gophers are rodents.")

    reply = asyncio.run(_openai(handler).generate(HISTORY))
    assert reply == "Gophers are rodents."
    assert seen["url"] == "http://llm.test/v1/chat/completions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["body"]["model"] == "gpt-test"
    assert [m["role"] for m in seen["body"]["messages"]] == ["user", "assistant", "user"]


def test_openai_stream_parses_sse_until_done():
    frames = [
        {"choices": [{"delta": {"role": "assistant"}}]},
        {"choices": [{"delta": {"content": "Go"}}]},
        {"choices": []},
        {"choices": [{"delta": {"content": "phers"}}]},
    ]
    body = "".join(f"data: {json.dumps(f)}\n\n" for f in frames) + "data: [DONE]\n\n"

    def handler(request):
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content=body.encode(), headers={"content-type": "text/event-stream"})

    chunks = []
    reply = asyncio.run(_openai(handler).stream(HISTORY, chunks.append))
    assert chunks == ["Go", "phers"]
    assert reply == "Gophers"


def test_openai_http_error_is_model_failure():
    model = _openai(lambda request: httpx.Response(500, text="boom"))
    with pytest.raises(ModelFailure):
        asyncio.run(model.generate(HISTORY))
    with pytest.raises(ModelFailure):
        asyncio.run(model.stream(HISTORY, lambda chunk: None))


def test_openai_transport_error_is_model_failure():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(ModelFailure):
        asyncio.run(_openai(handler).generate(HISTORY))


def test_openai_malformed_payload_is_model_failure():
    model = _openai(lambda request: httpx.Response(200, json={"unexpected": True}))
    with pytest.raises(ModelFailure):
        asyncio.run(model.generate(HISTORY))


def test_retrieval_model_rewrites_latest_question(tmp_path: Path):
    user_dir = tmp_path / "u1"
    user_dir.mkdir()
    (user_dir / "notes.md").write_text("Gopher is the Go mascot.\n\nPython has a snake logo.")
    seen = {}

    def handler(request):
        seen["messages"] = json.loads(request.content)["messages"]
        return _completion("It is a mascot.")

    documents = DocumentIndex(MemoryCacheQueue(), str(tmp_path), top_k=1)
    model = _openai(handler, cls=RetrievalChatModel, documents=documents, user_name="u1")
    assert asyncio.run(model.generate(HISTORY)) == "It is a mascot."
    last = seen["messages"][-1]
    assert last["role"] == "user"
    assert "Gopher is the Go mascot." in last["content"]
    assert "User Question: what is gopher?" in last["content"]
    assert seen["messages"][0] == {"role": "user", "content": "hi"}


def test_retrieval_model_without_documents_sends_plain_history(tmp_path):
    seen = {}

    def handler(request):
        seen["messages"] = json.loads(request.content)["messages"]
        return _completion("plain")

    documents = DocumentIndex(MemoryCacheQueue(), str(tmp_path))
    model = _openai(handler, cls=RetrievalChatModel, documents=documents, user_name="nobody")
    asyncio.run(model.generate(HISTORY))
    assert seen["messages"][-1] == {"role": "user", "content": "what is gopher?"}


def test_tool_model_runs_tool_loop_and_streams_final_answer():
    requests = []

    async def lookup(args):
        return f"looked up {args['term']}"

    tool = Tool(
        name="lookup",
        description="Look something up",
        parameters={"type": "object", "properties": {"term": {"type": "string"}}},
        call=lookup,
    )

    def handler(request):
        body = json.loads(request.content)
        requests.append(body)
        if len(requests) == 1:
            return _completion(
                "",
                tool_calls=[{"id": "call_1", "type": "function", "function": {"name": "lookup", "arguments": '{"term": "gopher"}'}}],
            )
        return _completion("Final: gopher found")

    chunks = []
    model = _openai(handler, cls=ToolChatModel, tools=[tool])
    reply = asyncio.run(model.stream(HISTORY, chunks.append))

    assert reply == "Final: gopher found"
    assert chunks == [reply]
    assert requests[0]["messages"][0]["role"] == "system"
    assert requests[0]["tools"][0]["function"]["name"] == "lookup"
    tool_message = requests[1]["messages"][-1]
    assert tool_message == {"role": "tool", "tool_call_id": "call_1", "content": "looked up gopher"}


def test_tool_model_reports_unknown_tool_to_model():
    requests = []

    def handler(request):
        requests.append(json.loads(request.content))
        if len(requests) == 1:
            return _completion(tool_calls=[{"id": "c", "type": "function", "function": {"name": "nope", "arguments": "{}"}}])
        return _completion("done")

    assert asyncio.run(_openai(handler, cls=ToolChatModel, tools=[]).generate(HISTORY)) == "done"
    assert requests[1]["messages"][-1]["content"] == "error: unknown tool nope"


def test_tool_model_gives_up_after_max_steps():
    def handler(request):
        return _completion(tool_calls=[{"id": "c", "type": "function", "function": {"name": "nope", "arguments": ""}}])

    with pytest.raises(ModelFailure):
        asyncio.run(_openai(handler, cls=ToolChatModel, tools=[], max_steps=2).generate(HISTORY))


def _ollama(handler):
    return OllamaChatModel(base_url="http://ollama.test", model="llama-test", transport=httpx.MockTransport(handler))


def test_ollama_generate():
    def handler(request):
        assert request.url.path == "/api/chat"
        assert json.loads(request.content)["stream"] is False
        return httpx.Response(200, json={"message": {"role": "assistant", "content": "local reply"}, "done": True})

    assert asyncio.run(_ollama(handler).generate(HISTORY)) == "local reply"


def test_ollama_stream_parses_ndjson():
    lines = [
        {"message": {"content": "lo"}, "done": False},
        {"message": {"content": "cal"}, "done": False},
        {"message": {"content": ""}, "done": True},
    ]
    body = "\n".join(json.dumps(line) for line in lines) + "\n"
    chunks = []
    reply = asyncio.run(_ollama(lambda r: httpx.Response(200, content=body.encode())).stream(HISTORY, chunks.append))
    assert chunks == ["lo", "cal"]
    assert reply == "local"


def test_ollama_error_payload_is_model_failure():
    with pytest.raises(ModelFailure):
        asyncio.run(_ollama(lambda r: httpx.Response(200, json={"error": "model not found"})).generate(HISTORY))
