"""
Server-sent events for chat: typed event model, constructors, and wire framing.

Each event goes out as one frame, data: {"type", "content"?, "payload"?}\\n\\n, and is
flushed as its own chunk of the streaming response.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from typing import Any, Literal, Optional

from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from app.core.config import SOURCE_SNIPPET_CHARS

logger = logging.getLogger(__name__)

EventType = Literal["tool_call", "source", "token", "error", "done"]

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


class ChatEvent(BaseModel):
    """One progress event of a chat turn."""

    type: EventType
    content: Optional[str] = None
    payload: Optional[dict[str, Any]] = None


def tool_call_event(name: str, raw_arguments: str) -> ChatEvent:
    return ChatEvent(type="tool_call", payload={"name": name, "input": raw_arguments})


def source_event(note_uid: str, content: str) -> ChatEvent:
    return ChatEvent(type="source", payload={"note_uid": note_uid, "snippet": content[:SOURCE_SNIPPET_CHARS]})


def token_event(text: str) -> ChatEvent:
    return ChatEvent(type="token", content=text)


def error_event(message: str) -> ChatEvent:
    return ChatEvent(type="error", content=message)


def done_event(session_uid: str) -> ChatEvent:
    return ChatEvent(type="done", content=session_uid)


def format_sse(event: ChatEvent) -> str:
    """Encode one event as an SSE data frame."""
    return f"data: {event.model_dump_json(exclude_none=True)}\n\n"


async def _frames(events: AsyncIterator[ChatEvent]) -> AsyncIterator[str]:
    async for event in events:
        yield format_sse(event)


def sse_response(events: AsyncIterator[ChatEvent]) -> StreamingResponse:
    return StreamingResponse(_frames(events), media_type="text/event-stream", headers=SSE_HEADERS)
