"""Schemas for the AI chat session and message endpoints."""

from pydantic import BaseModel, ConfigDict, Field

from app.core.models import ChatMessage, ChatSession


class SessionRequest(BaseModel):
    """Request body for POST/PATCH /sessions."""

    title: str = Field("", description="Session title. Defaults to 'New Chat' on create; required on rename.")


class ChatRequest(BaseModel):
    """Request body for POST /sessions/{uid}/chat. History is stored server-side per session."""

    model_config = ConfigDict(populate_by_name=True)

    content: str = Field("", description="User message text.")
    tag_filter: str = Field("", alias="tagFilter", description="Optional tag restriction for semantic search, e.g. '#work'.")


class SessionResponse(BaseModel):
    uid: str
    title: str
    createdTs: int
    updatedTs: int

    @classmethod
    def from_session(cls, session: ChatSession) -> "SessionResponse":
        return cls(uid=session.uid, title=session.title, createdTs=session.created_ts, updatedTs=session.updated_ts)


class MessageResponse(BaseModel):
    id: int
    role: str
    content: str
    toolName: str | None = None
    createdTs: int

    @classmethod
    def from_message(cls, message: ChatMessage) -> "MessageResponse":
        return cls(
            id=message.id,
            role=message.role,
            content=message.content,
            toolName=message.tool_name or None,
            createdTs=message.created_ts,
        )


class IndexResponse(BaseModel):
    """Response for POST /index."""

    indexed: int = Field(..., description="Number of notes upserted into the caller's vector collection.")
