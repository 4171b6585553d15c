"""SSE framing for streamed chat turns.

Each event is ``data: <json>\\n\\n``: zero or more ``{"content": ...}`` chunks,
then exactly one terminal ``{"done": true, ...}`` or ``{"error": ...}``.
"""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, Set

from gopherai.ai.contracts import ModelFailure, OnChunk
from gopherai.chat.session_service import SessionNotFound

logger = logging.getLogger(__name__)

SESSION_NOT_FOUND_MESSAGE = "Session not found or access denied"

TurnRunner = Callable[[OnChunk], Awaitable[Dict[str, Any]]]

_END = object()
# Turns keep running after a client disconnects; hold references until they finish.
_running: Set[asyncio.Task] = set()


def sse_frame(payload: Dict[str, Any]) -> str:
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n"


def error_message(exc: Exception) -> str:
    if isinstance(exc, SessionNotFound):
        return SESSION_NOT_FOUND_MESSAGE
    if isinstance(exc, ModelFailure):
        return f"model failure: {exc}"
    return "internal error"


async def turn_events(run: TurnRunner) -> AsyncGenerator[str, None]:
    """Run one streamed turn in its own task and yield its SSE frames in order."""
    queue: asyncio.Queue = asyncio.Queue()

    async def on_chunk(text: str) -> None:
        await queue.put(sse_frame({"content": text}))

    async def runner() -> None:
        try:
            terminal = await run(on_chunk)
            await queue.put(sse_frame(terminal))
        except (SessionNotFound, ModelFailure) as exc:
            logger.warning("Streamed turn failed: %s", exc)
            await queue.put(sse_frame({"error": error_message(exc)}))
        except Exception as exc:
            logger.exception("Streamed turn crashed")
            await queue.put(sse_frame({"error": error_message(exc)}))
        finally:
            await queue.put(_END)

    task = asyncio.get_running_loop().create_task(runner())
    _running.add(task)
    task.add_done_callback(_running.discard)
    while True:
        item = await queue.get()
        if item is _END:
            break
        yield item
