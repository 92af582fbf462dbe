"""Records for chat sessions, chat messages, and notes as read back from SQLite."""

from __future__ import annotations

from dataclasses import dataclass

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLE_TOOL = "tool"
MESSAGE_ROLES = frozenset({ROLE_USER, ROLE_ASSISTANT, ROLE_TOOL})

NOTE_NORMAL = "NORMAL"
NOTE_ARCHIVED = "ARCHIVED"


@dataclass(slots=True)
class ChatSession:
    id: int
    uid: str
    creator_id: int
    title: str
    summary: str
    created_ts: int
    updated_ts: int


@dataclass(slots=True)
class ChatMessage:
    id: int
    session_id: int
    role: str
    content: str
    tool_name: str
    token_count: int
    created_ts: int


@dataclass(slots=True)
class Note:
    uid: str
    creator_id: int
    content: str
    row_status: str
    created_ts: int
    updated_ts: int
