"""
API handlers: load request-scoped resources, call services, map results/errors to HTTP.

Responsibility: Bridge HTTP types and services. Ownership checks and exception-to-HTTP
mapping live here so services stay free of FastAPI/HTTP types.
"""

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import JSONResponse

from app.core.chat_store import ChatStore
from app.core.errors import ServiceUnavailableError, SessionNotFoundError
from app.core.models import ChatSession


async def load_owned_session(store: ChatStore, uid: str, user_id: int) -> ChatSession:
    """Return the session if it exists and belongs to user_id. Raises SessionNotFoundError otherwise."""
    session = await store.get_session(uid)
    if session is None or session.creator_id != user_id:
        raise SessionNotFoundError(uid)
    return session


def require_text(value: str, field: str) -> str:
    """Strip value; 400 when it is blank."""
    text = (value or "").strip()
    if not text:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"{field} required")
    return text


async def _session_not_found(_: Request, exc: SessionNotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": "session not found"})


async def _service_unavailable(_: Request, exc: ServiceUnavailableError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, content={"detail": exc.message})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(SessionNotFoundError, _session_not_found)
    app.add_exception_handler(ServiceUnavailableError, _service_unavailable)
