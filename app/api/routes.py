"""
API route aggregator: register endpoints; no logic, only delegate to handlers and services.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Response, status
from fastapi.responses import StreamingResponse

from app.agent.llm import ChatLLM
from app.api.dependencies import (
    get_chat_store,
    get_current_user_id,
    get_llm,
    get_note_store,
    get_vector_index,
)
from app.api.handlers import load_owned_session, require_text
from app.api.streaming import sse_response
from app.core.chat_store import ChatStore
from app.core.config import DEFAULT_SESSION_TITLE
from app.core.errors import ServiceUnavailableError
from app.core.note_store import NoteStore
from app.schemas.chat import ChatRequest, IndexResponse, MessageResponse, SessionRequest, SessionResponse
from app.services.chat_service import ChatService
from app.services.indexing_service import index_user_notes
from app.services.vector_store import VectorIndex

logger = logging.getLogger(__name__)
router = APIRouter()
ai_router = APIRouter(prefix="/api/v1/ai")


# --- System ---

@router.get("/", tags=["system"])
def root():
    return {"status": "Notes assistant backend running"}


@router.get("/health", tags=["system"])
def health():
    return {"ok": True}


# --- Sessions ---

@ai_router.get("/sessions", tags=["sessions"], response_model=list[SessionResponse])
async def list_sessions(
    user_id: int = Depends(get_current_user_id),
    store: ChatStore = Depends(get_chat_store),
) -> list[SessionResponse]:
    sessions = await store.list_sessions(user_id)
    return [SessionResponse.from_session(s) for s in sessions]


@ai_router.post(
    "/sessions",
    tags=["sessions"],
    status_code=status.HTTP_201_CREATED,
    response_model=SessionResponse,
)
async def create_session(
    body: Optional[SessionRequest] = None,
    user_id: int = Depends(get_current_user_id),
    store: ChatStore = Depends(get_chat_store),
) -> SessionResponse:
    title = ((body.title if body else "") or "").strip() or DEFAULT_SESSION_TITLE
    session = await store.create_session(user_id, title)
    return SessionResponse.from_session(session)


@ai_router.patch("/sessions/{uid}", tags=["sessions"], response_model=SessionResponse)
async def rename_session(
    uid: str,
    body: SessionRequest,
    user_id: int = Depends(get_current_user_id),
    store: ChatStore = Depends(get_chat_store),
) -> SessionResponse:
    await load_owned_session(store, uid, user_id)
    title = require_text(body.title, "title")
    updated = await store.update_session(uid, title=title)
    return SessionResponse.from_session(updated)


@ai_router.delete("/sessions/{uid}", tags=["sessions"], status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(
    uid: str,
    user_id: int = Depends(get_current_user_id),
    store: ChatStore = Depends(get_chat_store),
) -> Response:
    await load_owned_session(store, uid, user_id)
    await store.delete_session(uid)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@ai_router.get("/sessions/{uid}/messages", tags=["sessions"], response_model=list[MessageResponse])
async def list_messages(
    uid: str,
    user_id: int = Depends(get_current_user_id),
    store: ChatStore = Depends(get_chat_store),
) -> list[MessageResponse]:
    session = await load_owned_session(store, uid, user_id)
    messages = await store.list_messages(session.id)
    return [MessageResponse.from_message(m) for m in messages]


# --- Chat (SSE) ---

@ai_router.post(
    "/sessions/{uid}/chat",
    tags=["chat"],
    summary="Chat with the notes agent (SSE stream)",
    description="Stream agent progress via Server-Sent Events. Events: tool_call, source, token, error, done.",
)
async def chat(
    uid: str,
    body: ChatRequest,
    user_id: int = Depends(get_current_user_id),
    store: ChatStore = Depends(get_chat_store),
    notes: NoteStore = Depends(get_note_store),
    index: Optional[VectorIndex] = Depends(get_vector_index),
    llm: ChatLLM = Depends(get_llm),
) -> StreamingResponse:
    content = require_text(body.content, "content")
    session = await load_owned_session(store, uid, user_id)
    logger.info("[api:chat] IN  session=%s user_id=%s tag_filter=%r", uid, user_id, body.tag_filter)
    service = ChatService(store, notes, llm, index)
    return sse_response(service.stream_chat(session, user_id, content, body.tag_filter.strip()))


# --- Indexing ---

@ai_router.post("/index", tags=["indexing"], response_model=IndexResponse, summary="Re-index the caller's notes")
async def reindex_notes(
    user_id: int = Depends(get_current_user_id),
    notes: NoteStore = Depends(get_note_store),
    index: Optional[VectorIndex] = Depends(get_vector_index),
) -> IndexResponse:
    if index is None:
        raise ServiceUnavailableError("Vector store is not available")
    indexed = await index_user_notes(notes, index, user_id)
    return IndexResponse(indexed=indexed)
