"""
Concrete chat model clients.

- ``OpenAIChatModel`` ("1"): OpenAI-compatible ``/chat/completions``.
- ``RetrievalChatModel`` ("2"): same endpoint, latest user turn rewritten with
  BM25 matches from the user's uploaded documents.
- ``ToolChatModel`` ("3"): same endpoint with function calling over local tools.
- ``OllamaChatModel`` ("4"): local inference through Ollama ``/api/chat``.

Transport errors, non-2xx responses and unparseable payloads all surface as
``ModelFailure``. Each client takes an optional httpx transport for tests.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from gopherai.ai.contracts import ChatModel, ChatTurn, ModelFailure, OnChunk, Role, emit_chunk
from gopherai.ai.retrieval import DocumentIndex, build_rag_prompt
from gopherai.ai.tools import Tool

logger = logging.getLogger(__name__)

TOOL_SYSTEM_PROMPT = (
    "You are a helpful assistant. Call the available tools whenever they help "
    "answer the user's question, then answer in plain text."
)


def to_wire(history: List[ChatTurn]) -> List[Dict[str, Any]]:
    return [{"role": turn.role.value, "content": turn.content} for turn in history]


class OpenAIChatModel(ChatModel):
    model_type = "1"

    def __init__(
        self,
        base_url: str,
        model: str,
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=httpx.Timeout(self.timeout),
            transport=self._transport,
        )

    async def _complete(self, messages: List[Dict[str, Any]], tools: Optional[List[Dict[str, Any]]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"model": self.model, "messages": messages}
        if tools:
            payload["tools"] = tools
        try:
            async with self._client() as client:
                resp = await client.post("/chat/completions", json=payload)
        except httpx.HTTPError as exc:
            raise ModelFailure(f"model request failed: {exc}", self.model_type) from exc
        if resp.status_code >= 400:
            raise ModelFailure(f"model returned HTTP {resp.status_code}: {resp.text[:200]}", self.model_type)
        try:
            return resp.json()["choices"][0]["message"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ModelFailure("malformed completion payload", self.model_type) from exc

    def _parse_event(self, data: str) -> str:
        try:
            event = json.loads(data)
        except ValueError as exc:
            raise ModelFailure("malformed stream payload", self.model_type) from exc
        choices = event.get("choices") or []
        if not choices:
            return ""
        return (choices[0].get("delta") or {}).get("content") or ""

    async def _stream_messages(self, messages: List[Dict[str, Any]], on_chunk: OnChunk) -> str:
        payload = {"model": self.model, "messages": messages, "stream": True}
        parts: List[str] = []
        try:
            async with self._client() as client:
                async with client.stream("POST", "/chat/completions", json=payload) as resp:
                    if resp.status_code >= 400:
                        body = await resp.aread()
                        raise ModelFailure(
                            f"model returned HTTP {resp.status_code}: {body[:200]!r}", self.model_type
                        )
                    async for line in resp.aiter_lines():
                        line = line.strip()
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:"):].strip()
                        if data == "[DONE]":
                            break
                        text = self._parse_event(data)
                        if text:
                            parts.append(text)
                            await emit_chunk(on_chunk, text)
        except httpx.HTTPError as exc:
            raise ModelFailure(f"model stream failed: {exc}", self.model_type) from exc
        return "".join(parts)

    async def generate(self, history: List[ChatTurn]) -> str:
        message = await self._complete(to_wire(history))
        return message.get("content") or ""

    async def stream(self, history: List[ChatTurn], on_chunk: OnChunk) -> str:
        return await self._stream_messages(to_wire(history), on_chunk)


class RetrievalChatModel(OpenAIChatModel):
    model_type = "2"

    def __init__(self, documents: DocumentIndex, user_name: str, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.documents = documents
        self.user_name = user_name

    async def _augment(self, history: List[ChatTurn]) -> List[Dict[str, Any]]:
        messages = to_wire(history)
        if not messages or messages[-1]["role"] != Role.USER.value:
            return messages
        question = messages[-1]["content"]
        try:
            docs = await self.documents.search(self.user_name, question)
        except OSError as exc:
            logger.warning("Document retrieval failed for %s, answering without context: %s", self.user_name, exc)
            return messages
        if docs:
            messages[-1] = {"role": Role.USER.value, "content": build_rag_prompt(question, docs)}
        return messages

    async def generate(self, history: List[ChatTurn]) -> str:
        message = await self._complete(await self._augment(history))
        return message.get("content") or ""

    async def stream(self, history: List[ChatTurn], on_chunk: OnChunk) -> str:
        return await self._stream_messages(await self._augment(history), on_chunk)


class ToolChatModel(OpenAIChatModel):
    """Function-calling loop: execute requested tools and re-ask until a plain answer arrives."""

    model_type = "3"

    def __init__(self, tools: List[Tool], max_steps: int = 5, **kwargs: Any) -> None:
        super().__init__(**kwargs)
        self.tools = {tool.name: tool for tool in tools}
        self.max_steps = max_steps

    async def _call_tool(self, name: str, raw_arguments: Any) -> str:
        tool = self.tools.get(name)
        if tool is None:
            return f"error: unknown tool {name}"
        try:
            args = json.loads(raw_arguments) if isinstance(raw_arguments, str) and raw_arguments else {}
        except ValueError:
            return f"error: arguments for {name} are not valid JSON"
        try:
            return await tool.call(args if isinstance(args, dict) else {})
        except Exception as exc:
            logger.warning("Tool %s failed: %s", name, exc)
            return f"error: {name} failed: {exc}"

    async def _run(self, history: List[ChatTurn]) -> str:
        messages = [{"role": Role.SYSTEM.value, "content": TOOL_SYSTEM_PROMPT}, *to_wire(history)]
        schemas = [tool.schema() for tool in self.tools.values()]
        for _ in range(self.max_steps):
            reply = await self._complete(messages, tools=schemas)
            calls = reply.get("tool_calls") or []
            if not calls:
                return reply.get("content") or ""
            messages.append({"role": Role.ASSISTANT.value, "content": reply.get("content") or "", "tool_calls": calls})
            for call in calls:
                function = call.get("function") or {}
                result = await self._call_tool(function.get("name", ""), function.get("arguments"))
                messages.append({"role": Role.TOOL.value, "tool_call_id": call.get("id"), "content": result})
        raise ModelFailure(f"tool loop did not finish within {self.max_steps} steps", self.model_type)

    async def generate(self, history: List[ChatTurn]) -> str:
        return await self._run(history)

    async def stream(self, history: List[ChatTurn], on_chunk: OnChunk) -> str:
        reply = await self._run(history)
        if reply:
            await emit_chunk(on_chunk, reply)
        return reply


class OllamaChatModel(ChatModel):
    model_type = "4"

    def __init__(
        self,
        base_url: str,
        model: str,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url
        self.model = model
        self.timeout = timeout
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(base_url=self.base_url, timeout=httpx.Timeout(self.timeout), transport=self._transport)

    def _parse(self, raw: str) -> Dict[str, Any]:
        try:
            data = json.loads(raw)
        except ValueError as exc:
            raise ModelFailure("malformed ollama payload", self.model_type) from exc
        if data.get("error"):
            raise ModelFailure(f"ollama error: {data['error']}", self.model_type)
        return data

    async def generate(self, history: List[ChatTurn]) -> str:
        payload = {"model": self.model, "messages": to_wire(history), "stream": False}
        try:
            async with self._client() as client:
                resp = await client.post("/api/chat", json=payload)
        except httpx.HTTPError as exc:
            raise ModelFailure(f"ollama request failed: {exc}", self.model_type) from exc
        if resp.status_code >= 400:
            raise ModelFailure(f"ollama returned HTTP {resp.status_code}", self.model_type)
        data = self._parse(resp.text)
        return (data.get("message") or {}).get("content") or ""

    async def stream(self, history: List[ChatTurn], on_chunk: OnChunk) -> str:
        payload = {"model": self.model, "messages": to_wire(history), "stream": True}
        parts: List[str] = []
        try:
            async with self._client() as client:
                async with client.stream("POST", "/api/chat", json=payload) as resp:
                    if resp.status_code >= 400:
                        await resp.aread()
                        raise ModelFailure(f"ollama returned HTTP {resp.status_code}", self.model_type)
                    async for line in resp.aiter_lines():
                        if not line.strip():
                            continue
                        data = self._parse(line)
                        text = (data.get("message") or {}).get("content") or ""
                        if text:
                            parts.append(text)
                            await emit_chunk(on_chunk, text)
                        if data.get("done"):
                            break
        except httpx.HTTPError as exc:
            raise ModelFailure(f"ollama stream failed: {exc}", self.model_type) from exc
        return "".join(parts)
