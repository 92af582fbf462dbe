"""
Agent LLM: OpenAI-compatible chat completions (OpenAI, OpenRouter, ...) via the openai SDK.

One buffered model turn per call. Transport and decoding failures surface as
LLMTransportError; there are no automatic retries.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

import openai
from openai import AsyncOpenAI

from app.core.config import LLM_API_TIMEOUT, OPENAI_API_KEY, OPENAI_BASE_URL, OPENAI_LLM_MODEL
from app.core.errors import LLMTransportError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ToolCall:
    """A model request to run one tool. arguments is the raw JSON-encoded string."""

    id: str
    name: str
    arguments: str

    def to_message(self) -> dict[str, Any]:
        return {"id": self.id, "type": "function", "function": {"name": self.name, "arguments": self.arguments}}


@dataclass(slots=True)
class AssistantTurn:
    content: str
    tool_calls: list[ToolCall] = field(default_factory=list)


class ChatLLM:
    """Thin async wrapper over chat.completions for tool-calling turns and single prompts."""

    def __init__(self, client: AsyncOpenAI, model: str = OPENAI_LLM_MODEL) -> None:
        self._client = client
        self.model = model

    async def _create(self, **kwargs: Any) -> Any:
        try:
            response = await self._client.chat.completions.create(model=self.model, **kwargs)
        except openai.APIError as e:
            logger.warning("[llm] request failed: %s", e)
            raise LLMTransportError(f"LLM request failed: {e}") from e
        if not getattr(response, "choices", None):
            raise LLMTransportError("failed to decode LLM response")
        return response.choices[0].message

    async def chat_with_tools(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> AssistantTurn:
        """
        Run one model turn with tool declarations. Returns the text and any tool-call requests,
        with arguments left as the raw strings the model produced.
        """
        logger.info("[llm:chat_with_tools] IN  messages=%d tools=%d", len(messages), len(tools))
        kwargs: dict[str, Any] = {"messages": messages}
        if tools:
            kwargs["tools"] = tools
        msg = await self._create(**kwargs)
        tool_calls = []
        for tc in getattr(msg, "tool_calls", None) or []:
            fn = getattr(tc, "function", None)
            if not fn:
                continue
            tool_calls.append(
                ToolCall(id=getattr(tc, "id", None) or "", name=fn.name or "", arguments=fn.arguments or "")
            )
        content = getattr(msg, "content", None) or ""
        if tool_calls:
            logger.info("[llm:chat_with_tools] OUT tool_calls=%s", [t.name for t in tool_calls])
        else:
            logger.info("[llm:chat_with_tools] OUT content_len=%d", len(content))
        return AssistantTurn(content=content, tool_calls=tool_calls)

    async def complete(self, prompt: str) -> str:
        """Single-turn completion without tools (summaries, titles)."""
        logger.info("[llm:complete] IN  prompt_len=%d", len(prompt))
        msg = await self._create(messages=[{"role": "user", "content": prompt}])
        out = (getattr(msg, "content", None) or "").strip()
        logger.info("[llm:complete] OUT response_len=%d", len(out))
        return out


def get_chat_llm() -> Optional[ChatLLM]:
    """Build the configured LLM, or None when OPENAI_API_KEY is not set (chat disabled)."""
    if not OPENAI_API_KEY:
        logger.warning("[llm] OPENAI_API_KEY not set; AI chat is disabled")
        return None
    client = AsyncOpenAI(
        api_key=OPENAI_API_KEY,
        base_url=OPENAI_BASE_URL or None,
        timeout=LLM_API_TIMEOUT,
        max_retries=0,
    )
    return ChatLLM(client, model=OPENAI_LLM_MODEL)
