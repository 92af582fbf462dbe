"""
Chat turn pipeline: compaction, persistence, the agent loop, and citations.

Responsibility: For one user message in one session, run the compactor then the
orchestrator and yield the events that make up the SSE stream. Called by the API;
no HTTP here. The stream always ends with a done event.
"""

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Optional

from app.agent.graph import AgentOrchestrator, build_messages
from app.agent.llm import ChatLLM
from app.agent.tools import build_registry
from app.api.streaming import ChatEvent, done_event, error_event, source_event
from app.core.chat_store import ChatStore
from app.core.config import (
    DEFAULT_SESSION_TITLE,
    MAX_AGENT_ROUNDS,
    PERSIST_TOOL_RESULTS,
    SOURCE_TOP_K,
    TOKEN_DELAY_SECONDS,
)
from app.core.errors import CompactionError
from app.core.models import ROLE_ASSISTANT, ROLE_TOOL, ROLE_USER, ChatSession
from app.core.note_store import NoteStore
from app.services.compactor import ContextCompactor
from app.services.title_service import schedule_title_generation
from app.services.vector_store import VectorIndex

logger = logging.getLogger(__name__)


class ChatService:
    def __init__(
        self,
        chat_store: ChatStore,
        note_store: NoteStore,
        llm: ChatLLM,
        vector_index: Optional[VectorIndex] = None,
        *,
        compactor: Optional[ContextCompactor] = None,
        max_rounds: int = MAX_AGENT_ROUNDS,
        token_delay: float = TOKEN_DELAY_SECONDS,
        persist_tool_results: bool = PERSIST_TOOL_RESULTS,
    ) -> None:
        self.chat_store = chat_store
        self.note_store = note_store
        self.llm = llm
        self.vector_index = vector_index
        self.compactor = compactor or ContextCompactor(llm, chat_store)
        self.max_rounds = max_rounds
        self.token_delay = token_delay
        self.persist_tool_results = persist_tool_results

    async def stream_chat(
        self, session: ChatSession, user_id: int, content: str, tag_filter: str = ""
    ) -> AsyncIterator[ChatEvent]:
        logger.info("[chat:stream_chat] IN  session=%s user_id=%s content_len=%d", session.uid, user_id, len(content))
        try:
            async for event in self._run_turn(session, user_id, content, tag_filter):
                yield event
        except Exception as e:
            logger.exception("[chat:stream_chat] chat turn failed")
            yield error_event(str(e))
        yield done_event(session.uid)
        logger.info("[chat:stream_chat] END session=%s", session.uid)

    async def _run_turn(
        self, session: ChatSession, user_id: int, content: str, tag_filter: str
    ) -> AsyncIterator[ChatEvent]:
        history = await self.chat_store.list_messages(session.id)
        is_first_message = not history

        try:
            history, session = await self.compactor.compact(session, history)
        except CompactionError as e:
            logger.warning("context compaction failed: %s", e)

        try:
            await self.chat_store.create_message(session.id, ROLE_USER, content)
        except Exception as e:
            logger.warning("failed to persist user message: %s", e)

        if is_first_message and session.title == DEFAULT_SESSION_TITLE:
            schedule_title_generation(self.chat_store, self.llm, session.uid, content)

        registry = build_registry(self.note_store, user_id, self.vector_index, tag_filter=tag_filter)
        agent = AgentOrchestrator(self.llm, registry, max_rounds=self.max_rounds, token_delay=self.token_delay)
        async for event in agent.stream(build_messages(session.summary, history, content)):
            yield event

        if self.persist_tool_results:
            for result in agent.tool_results:
                try:
                    await self.chat_store.create_message(session.id, ROLE_TOOL, result.content, tool_name=result.name)
                except Exception as e:
                    logger.warning("failed to persist tool result: %s", e)

        if agent.answer:
            try:
                await self.chat_store.create_message(session.id, ROLE_ASSISTANT, agent.answer)
            except Exception as e:
                logger.warning("failed to persist assistant message: %s", e)

        for event in await self._sources(user_id, content):
            yield event

        try:
            await self.chat_store.update_session(session.uid)
        except Exception as e:
            logger.warning("failed to touch session %s: %s", session.uid, e)

    async def _sources(self, user_id: int, content: str) -> list[ChatEvent]:
        """Citations from a similarity query on the user's message; failures mean no sources."""
        if self.vector_index is None:
            return []
        try:
            results = await asyncio.to_thread(self.vector_index.search, user_id, content, SOURCE_TOP_K)
        except Exception as e:
            logger.warning("source lookup failed: %s", e)
            return []
        return [source_event(r.doc_id, r.content) for r in results]
