"""Best-effort session titles generated from the first user message."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from app.agent.llm import ChatLLM
from app.core.chat_store import ChatStore

logger = logging.getLogger(__name__)

_MAX_TITLE_LENGTH = 80

# Strong references to in-flight title tasks so they are not garbage collected mid-run.
_background_tasks: set[asyncio.Task] = set()


def build_title_prompt(first_message: str) -> str:
    return (
        "Generate a short (5-7 word) title for a chat that starts with:\n"
        f'"{first_message}"\n'
        "Return only the title, no quotes."
    )


async def generate_session_title(store: ChatStore, llm: ChatLLM, uid: str, first_message: str) -> Optional[str]:
    """Ask the LLM for a title and store it. A blank reply or any failure leaves the title as is."""
    try:
        title = (await llm.complete(build_title_prompt(first_message))).strip().strip('"').strip()
    except Exception as exc:  # noqa: BLE001 - a title must never fail the chat
        logger.warning("Failed to generate session title via LLM: %s", exc)
        return None
    if not title:
        return None
    title = title[:_MAX_TITLE_LENGTH]
    try:
        await store.update_session(uid, title=title)
    except Exception as exc:  # noqa: BLE001
        logger.warning("Failed to store session title for %s: %s", uid, exc)
        return None
    logger.info("[title] session=%s title=%r", uid, title)
    return title


def schedule_title_generation(store: ChatStore, llm: ChatLLM, uid: str, first_message: str) -> asyncio.Task:
    """Fire and forget: the chat response never waits for the title."""
    task = asyncio.create_task(generate_session_title(store, llm, uid, first_message))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return task
