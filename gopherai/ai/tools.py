"""Local tools advertised to the tool-calling model."""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from gopherai.ai.retrieval import DocumentIndex

logger = logging.getLogger(__name__)

WEATHER_URL = "https://wttr.in"


@dataclass
class Tool:
    name: str
    description: str
    parameters: Dict[str, Any]
    call: Callable[[Dict[str, Any]], Awaitable[str]]

    def schema(self) -> Dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def get_time_information(now: Optional[datetime.datetime] = None) -> str:
    now = now or datetime.datetime.now()
    return (
        f"Day: {now.strftime('%A')}\n"
        f"Date: {now.strftime('%Y-%m-%d')}\n"
        f"Time: {now.strftime('%H:%M:%S')}"
    )


def current_time_tool() -> Tool:
    async def call(_args: Dict[str, Any]) -> str:
        return get_time_information()

    return Tool(
        name="current_time",
        description="Get the current local date and time.",
        parameters={"type": "object", "properties": {}},
        call=call,
    )


def document_search_tool(index: DocumentIndex, user_name: str) -> Tool:
    async def call(args: Dict[str, Any]) -> str:
        query = str(args.get("query") or "").strip()
        if not query:
            return "error: query is required"
        docs = await index.search(user_name, query)
        if not docs:
            return "No uploaded documents matched."
        return "\n\n".join(f"[Document {i}]: {doc}" for i, doc in enumerate(docs, start=1))

    return Tool(
        name="search_documents",
        description="Search the user's uploaded documents for passages relevant to a query.",
        parameters={
            "type": "object",
            "properties": {"query": {"type": "string", "description": "What to look for"}},
            "required": ["query"],
        },
        call=call,
    )


def weather_tool(transport: Optional[httpx.AsyncBaseTransport] = None, timeout: float = 10.0) -> Tool:
    async def call(args: Dict[str, Any]) -> str:
        city = str(args.get("city") or "").strip()
        if not city:
            return "error: city is required"
        async with httpx.AsyncClient(base_url=WEATHER_URL, timeout=timeout, transport=transport) as client:
            resp = await client.get(f"/{city}", params={"format": "j1"})
            resp.raise_for_status()
            data = resp.json()
        current = (data.get("current_condition") or [{}])[0]
        condition = ((current.get("weatherDesc") or [{}])[0]).get("value", "unknown")
        return (
            f"location: {city}\n"
            f"temperature: {current.get('temp_C', '?')}°C\n"
            f"condition: {condition}\n"
            f"humidity: {current.get('humidity', '?')}%\n"
            f"wind_speed: {current.get('windspeedKmph', '?')} km/h"
        )

    return Tool(
        name="get_weather",
        description="Get current weather information for a city.",
        parameters={
            "type": "object",
            "properties": {"city": {"type": "string", "description": "City name, such as Beijing"}},
            "required": ["city"],
        },
        call=call,
    )


def default_tools(
    index: DocumentIndex,
    user_name: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[Tool]:
    return [current_time_tool(), document_search_tool(index, user_name), weather_tool(transport=transport)]
