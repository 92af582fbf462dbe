"""
FastAPI dependencies: the caller's identity and the process-wide stores, index, and LLM.

Each collaborator is created lazily from config on first use; tests swap them in with the
set_* functions.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import Header, HTTPException, status

from app.agent.llm import ChatLLM, get_chat_llm
from app.core.chat_store import ChatStore
from app.core.config import CHAT_DB_PATH, NOTES_DB_PATH
from app.core.errors import ServiceUnavailableError
from app.core.note_store import NoteStore
from app.services.vector_store import VectorIndex, open_vector_index

logger = logging.getLogger(__name__)

_CHAT_STORE: Optional[ChatStore] = None
_NOTE_STORE: Optional[NoteStore] = None
_VECTOR_INDEX: Optional[VectorIndex] = None
_LLM: Optional[ChatLLM] = None
_LLM_LOADED = False


async def initialise_stores() -> None:
    """Create and initialise the SQLite stores if they are not set yet (app startup)."""
    global _CHAT_STORE, _NOTE_STORE
    if _CHAT_STORE is None:
        _CHAT_STORE = ChatStore(CHAT_DB_PATH)
        await _CHAT_STORE.init()
    if _NOTE_STORE is None:
        _NOTE_STORE = NoteStore(NOTES_DB_PATH)
        await _NOTE_STORE.init()


def set_chat_store(store: Optional[ChatStore]) -> None:
    global _CHAT_STORE
    _CHAT_STORE = store


def set_note_store(store: Optional[NoteStore]) -> None:
    global _NOTE_STORE
    _NOTE_STORE = store


def set_vector_index(index: Optional[VectorIndex]) -> None:
    global _VECTOR_INDEX
    _VECTOR_INDEX = index


def set_llm(llm: Optional[ChatLLM]) -> None:
    global _LLM, _LLM_LOADED
    _LLM = llm
    _LLM_LOADED = True


def get_chat_store() -> ChatStore:
    if _CHAT_STORE is None:
        raise RuntimeError("Chat store has not been initialised")
    return _CHAT_STORE


def get_note_store() -> NoteStore:
    if _NOTE_STORE is None:
        raise RuntimeError("Note store has not been initialised")
    return _NOTE_STORE


def get_vector_index() -> Optional[VectorIndex]:
    """The shared index, or None when Milvus cannot be opened (search tools then degrade)."""
    global _VECTOR_INDEX
    if _VECTOR_INDEX is None:
        try:
            _VECTOR_INDEX = open_vector_index()
        except Exception as e:
            logger.warning("Vector store unavailable: %s", e)
            return None
    return _VECTOR_INDEX


def get_llm() -> ChatLLM:
    global _LLM, _LLM_LOADED
    if not _LLM_LOADED:
        _LLM = get_chat_llm()
        _LLM_LOADED = True
    if _LLM is None:
        raise ServiceUnavailableError("AI chat is not configured (missing OPENAI_API_KEY)")
    return _LLM


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> int:
    """Identity is resolved upstream; this service trusts the X-User-Id header."""
    try:
        user_id = int(x_user_id) if x_user_id is not None else 0
    except ValueError:
        user_id = 0
    if user_id <= 0:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="unauthorized")
    return user_id
