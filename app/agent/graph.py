"""
LangGraph agent: call_model → run_tools → call_model … → END.

Each round is one model turn. A turn without tool calls is the final answer; a turn with
tool calls runs them (deduplicated by call id) and feeds the results back. The round cap
ends the loop softly: whatever answer exists (possibly none) is kept.
Progress events (tool_call before each dispatch, then simulated answer tokens) are streamed
to the caller as they happen.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal, Optional, TypedDict

from langgraph.graph import END, StateGraph
from langgraph.types import StreamWriter

from app.agent.llm import ChatLLM, ToolCall
from app.agent.tools import ToolRegistry
from app.api.streaming import ChatEvent, error_event, token_event, tool_call_event
from app.core.config import MAX_AGENT_ROUNDS, TOKEN_DELAY_SECONDS
from app.core.errors import LLMTransportError
from app.core.models import ROLE_ASSISTANT, ROLE_USER, ChatMessage

logger = logging.getLogger(__name__)


class AgentState(TypedDict):
    messages: list[dict[str, Any]]
    pending_calls: list[ToolCall]
    round: int
    answer: str


@dataclass(slots=True)
class ToolResult:
    call_id: str
    name: str
    content: str


def build_system_prompt(summary: str, now: datetime) -> str:
    base = (
        "You are an AI assistant for the user's personal knowledge base of notes.\n"
        f"Today's local date: {now.strftime('%Y-%m-%d %H:%M:%S')}.\n\n"
        "You have access to tools that let you read the user's notes. YOU CURRENTLY HAVE ZERO KNOWLEDGE "
        "OF THE USER'S NOTES.\n"
        "CRITICAL INSTRUCTIONS:\n"
        "1. YOU MUST ALWAYS USE A TOOL to look up notes. NEVER answer questions about the user's notes "
        "from your own memory.\n"
        '2. For questions about a SPECIFIC DATE or exact keyword, YOU MUST use "query_notes".\n'
        '3. For general conceptual questions, use "search_notes".\n'
        "4. To create, append, tag, or delete notes, use the respective tools.\n"
        "5. NEVER hallucinate note content. If a tool returns no results, tell the user exactly that."
    )
    if summary:
        base += "\n\nSummary of earlier conversation:\n" + summary
    return base


def build_messages(
    summary: str, history: list[ChatMessage], user_text: str, now: Optional[datetime] = None
) -> list[dict[str, Any]]:
    """System instruction, prior user/assistant turns, then the new utterance."""
    messages: list[dict[str, Any]] = [
        {"role": "system", "content": build_system_prompt(summary, now or datetime.now())}
    ]
    for m in history:
        if m.role in (ROLE_USER, ROLE_ASSISTANT):
            messages.append({"role": m.role, "content": m.content})
    messages.append({"role": ROLE_USER, "content": user_text})
    return messages


class AgentOrchestrator:
    """
    Bounded tool-calling loop for one chat request.

    stream() yields progress events; once it is exhausted, answer holds the final text
    ("" when none was reached) and tool_results every dispatched result in order.
    """

    def __init__(
        self,
        llm: ChatLLM,
        registry: ToolRegistry,
        max_rounds: int = MAX_AGENT_ROUNDS,
        token_delay: float = TOKEN_DELAY_SECONDS,
    ) -> None:
        self.llm = llm
        self.registry = registry
        self.max_rounds = max_rounds
        self.token_delay = token_delay
        self.answer = ""
        self.rounds = 0
        self.tool_results: list[ToolResult] = []
        self._graph = self.build_graph()

    async def _call_model(self, state: AgentState) -> dict:
        """Node 1: one model turn with the declared tools."""
        rnd = state["round"] + 1
        logger.info("[agent:call_model] IN  round=%d messages=%d", rnd, len(state["messages"]))
        turn = await self.llm.chat_with_tools(state["messages"], self.registry.schemas())
        if not turn.tool_calls:
            logger.info("[agent:call_model] OUT final answer_len=%d", len(turn.content))
            return {"answer": turn.content, "pending_calls": [], "round": rnd}
        assistant_msg = {
            "role": ROLE_ASSISTANT,
            "content": turn.content,
            "tool_calls": [tc.to_message() for tc in turn.tool_calls],
        }
        logger.info("[agent:call_model] OUT tool_calls=%s", [tc.name for tc in turn.tool_calls])
        return {
            "messages": state["messages"] + [assistant_msg],
            "pending_calls": turn.tool_calls,
            "round": rnd,
        }

    async def _run_tools(self, state: AgentState, writer: StreamWriter) -> dict:
        """Node 2: dispatch each requested call once, append results as tool messages."""
        messages = list(state["messages"])
        seen: set[str] = set()
        for tc in state["pending_calls"]:
            if tc.id in seen:
                logger.info("[agent:run_tools] skip duplicate call id=%s", tc.id)
                continue
            seen.add(tc.id)
            writer(tool_call_event(tc.name, tc.arguments))
            result = await self.registry.dispatch(tc.name, tc.arguments)
            self.tool_results.append(ToolResult(call_id=tc.id, name=tc.name, content=result))
            messages.append({"role": "tool", "tool_call_id": tc.id, "content": result})
        return {"messages": messages, "pending_calls": []}

    def _route_after_model(self, state: AgentState) -> Literal["run_tools", "__end__"]:
        return "run_tools" if state["pending_calls"] else END

    def _route_after_tools(self, state: AgentState) -> Literal["call_model", "__end__"]:
        if state["round"] < self.max_rounds:
            return "call_model"
        logger.info("[agent:route_after_tools] round cap %d reached without a final answer", self.max_rounds)
        return END

    def build_graph(self):
        graph = StateGraph(AgentState)

        graph.add_node("call_model", self._call_model)
        graph.add_node("run_tools", self._run_tools)

        graph.set_entry_point("call_model")
        graph.add_conditional_edges("call_model", self._route_after_model)
        graph.add_conditional_edges("run_tools", self._route_after_tools)

        return graph.compile()

    async def stream(self, messages: list[dict[str, Any]]) -> AsyncIterator[ChatEvent]:
        """
        Run the loop over a prepared message list. Yields tool_call events as tools are
        dispatched, an error event if the LLM transport fails, then the answer as tokens.
        """
        logger.info("[agent] START messages=%d max_rounds=%d", len(messages), self.max_rounds)
        initial: AgentState = {"messages": messages, "pending_calls": [], "round": 0, "answer": ""}
        # two supersteps per round, plus headroom
        config = {"recursion_limit": 2 * self.max_rounds + 5}
        final: dict = {}
        try:
            async for mode, chunk in self._graph.astream(initial, config=config, stream_mode=["custom", "values"]):
                if mode == "custom":
                    yield chunk
                else:
                    final = chunk
        except LLMTransportError as e:
            logger.warning("[agent] aborted: %s", e)
            self.rounds = final.get("round", 0)
            yield error_event(str(e))
            return

        self.rounds = final.get("round", 0)
        self.answer = final.get("answer", "") or ""
        logger.info("[agent] END rounds=%d answer_len=%d tools=%d", self.rounds, len(self.answer), len(self.tool_results))

        for word in self.answer.split():
            yield token_event(word + " ")
            if self.token_delay > 0:
                await asyncio.sleep(self.token_delay)
