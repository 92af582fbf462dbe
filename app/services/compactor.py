"""
Context compaction: fold old chat history into the session's running summary.

Responsibility: Before each chat turn, if the session's messages exceed the size threshold,
summarize everything but the most recent messages with one LLM call, append that to the
stored summary, and delete the summarized messages.
"""

import logging

from app.agent.llm import ChatLLM
from app.core.chat_store import ChatStore
from app.core.config import COMPACT_THRESHOLD, KEEP_RECENT_MESSAGES
from app.core.errors import CompactionError
from app.core.models import ChatMessage, ChatSession

logger = logging.getLogger(__name__)

SUMMARY_INSTRUCTION = "Summarise this conversation concisely, preserving key facts and decisions:\n\n"


def history_size(messages: list[ChatMessage]) -> int:
    """Total characters of message content."""
    return sum(len(m.content) for m in messages)


def build_summary_prompt(old: list[ChatMessage]) -> str:
    lines = [f"{m.role}: {m.content}\n" for m in old]
    return SUMMARY_INSTRUCTION + "".join(lines)


def merge_summary(existing: str, new: str) -> str:
    """Summaries accumulate: the new text is appended after a blank line."""
    return f"{existing}\n\n{new}" if existing else new


class ContextCompactor:
    def __init__(
        self,
        llm: ChatLLM,
        store: ChatStore,
        threshold: int = COMPACT_THRESHOLD,
        keep_recent: int = KEEP_RECENT_MESSAGES,
    ) -> None:
        self.llm = llm
        self.store = store
        self.threshold = threshold
        self.keep_recent = keep_recent

    async def compact(
        self, session: ChatSession, messages: list[ChatMessage]
    ) -> tuple[list[ChatMessage], ChatSession]:
        """
        Return (retained messages, session). Under the threshold, or with no more than
        keep_recent messages, the inputs come back unchanged. Raises CompactionError on
        failure, in which case nothing has been changed.
        """
        total = history_size(messages)
        if total <= self.threshold:
            return messages, session
        cut_at = len(messages) - self.keep_recent
        if cut_at <= 0:
            return messages, session

        old, recent = messages[:cut_at], messages[cut_at:]
        logger.info(
            "[compactor] IN  session=%s total_chars=%d old=%d recent=%d",
            session.uid,
            total,
            len(old),
            len(recent),
        )
        try:
            summary = await self.llm.complete(build_summary_prompt(old))
        except Exception as e:
            raise CompactionError(f"summarization failed: {e}") from e
        if not summary.strip():
            raise CompactionError("summarization returned an empty summary")

        full_summary = merge_summary(session.summary, summary)
        keep_from = recent[0].id if recent else old[-1].id + 1
        try:
            updated = await self.store.compact_history(session.uid, full_summary, keep_from)
        except Exception as e:
            raise CompactionError(f"persisting compacted history failed: {e}") from e

        logger.info(
            "[compactor] OUT session=%s summary_len=%d kept_messages=%d",
            session.uid,
            len(full_summary),
            len(recent),
        )
        return recent, updated
