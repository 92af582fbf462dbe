"""
SQLite store for AI chat sessions and their messages.

Creates data/chat.db by default. Tables: ai_chat_session, ai_chat_message (cascade on
session delete). Blocking sqlite3 calls run in a worker thread; writes are serialized
with an asyncio lock.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any, Optional

from app.core.config import CHARS_PER_TOKEN, DEFAULT_SESSION_TITLE
from app.core.models import MESSAGE_ROLES, ROLE_TOOL, ChatMessage, ChatSession

logger = logging.getLogger(__name__)

_SESSION_DDL = """
CREATE TABLE IF NOT EXISTS ai_chat_session (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    uid TEXT NOT NULL UNIQUE,
    creator_id INTEGER NOT NULL,
    title TEXT NOT NULL DEFAULT 'New Chat',
    summary TEXT NOT NULL DEFAULT '',
    created_ts INTEGER NOT NULL,
    updated_ts INTEGER NOT NULL
)
"""

_MESSAGE_DDL = """
CREATE TABLE IF NOT EXISTS ai_chat_message (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    session_id INTEGER NOT NULL REFERENCES ai_chat_session(id) ON DELETE CASCADE,
    role TEXT NOT NULL,
    content TEXT NOT NULL,
    tool_name TEXT NOT NULL DEFAULT '',
    token_count INTEGER NOT NULL DEFAULT 0,
    created_ts INTEGER NOT NULL
)
"""

_INDEXES = [
    "CREATE INDEX IF NOT EXISTS idx_ai_chat_message_session ON ai_chat_message(session_id)",
    "CREATE INDEX IF NOT EXISTS idx_ai_chat_session_creator ON ai_chat_session(creator_id)",
]

_SESSION_COLUMNS = "id, uid, creator_id, title, summary, created_ts, updated_ts"
_MESSAGE_COLUMNS = "id, session_id, role, content, tool_name, token_count, created_ts"


class ChatStore:
    """Keyed CRUD over chat sessions and messages."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._write_lock = asyncio.Lock()

    @property
    def db_path(self) -> str:
        return self._db_path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    def _fetchall(self, query: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(query, params).fetchall()
        finally:
            conn.close()

    def _fetchone(self, query: str, params: tuple[Any, ...] = ()) -> Optional[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(query, params).fetchone()
        finally:
            conn.close()

    def _execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        conn = self._connect()
        try:
            cur = conn.execute(query, params)
            conn.commit()
            return cur.lastrowid
        finally:
            conn.close()

    async def init(self) -> None:
        """Create tables if they do not exist."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)

        def _init() -> None:
            conn = self._connect()
            try:
                conn.execute(_SESSION_DDL)
                conn.execute(_MESSAGE_DDL)
                for statement in _INDEXES:
                    conn.execute(statement)
                conn.commit()
            finally:
                conn.close()

        await asyncio.to_thread(_init)
        logger.info("[chat_store] initialised db=%s", self._db_path)

    # --- Sessions ---

    async def create_session(self, creator_id: int, title: str = DEFAULT_SESSION_TITLE) -> ChatSession:
        uid = uuid.uuid4().hex[:8]
        now = int(time.time())
        title = title or DEFAULT_SESSION_TITLE
        async with self._write_lock:
            row_id = await asyncio.to_thread(
                self._execute,
                "INSERT INTO ai_chat_session (uid, creator_id, title, summary, created_ts, updated_ts)"
                " VALUES (?, ?, ?, '', ?, ?)",
                (uid, creator_id, title, now, now),
            )
        logger.info("[chat_store] created session uid=%s creator_id=%s", uid, creator_id)
        return ChatSession(
            id=row_id, uid=uid, creator_id=creator_id, title=title, summary="", created_ts=now, updated_ts=now
        )

    async def get_session(self, uid: str) -> Optional[ChatSession]:
        row = await asyncio.to_thread(
            self._fetchone, f"SELECT {_SESSION_COLUMNS} FROM ai_chat_session WHERE uid = ?", (uid,)
        )
        return _row_to_session(row) if row else None

    async def list_sessions(self, creator_id: int) -> list[ChatSession]:
        """Return the creator's sessions, most recently updated first."""
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_SESSION_COLUMNS} FROM ai_chat_session WHERE creator_id = ?"
            " ORDER BY updated_ts DESC, id DESC",
            (creator_id,),
        )
        return [_row_to_session(row) for row in rows]

    async def update_session(
        self, uid: str, *, title: Optional[str] = None, summary: Optional[str] = None
    ) -> Optional[ChatSession]:
        """Update title and/or summary; always bumps updated_ts. Returns None for an unknown uid."""
        assignments = ["updated_ts = ?"]
        params: list[Any] = [int(time.time())]
        if title is not None:
            assignments.append("title = ?")
            params.append(title)
        if summary is not None:
            assignments.append("summary = ?")
            params.append(summary)
        params.append(uid)
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                f"UPDATE ai_chat_session SET {', '.join(assignments)} WHERE uid = ?",
                tuple(params),
            )
        return await self.get_session(uid)

    async def delete_session(self, uid: str) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._execute, "DELETE FROM ai_chat_session WHERE uid = ?", (uid,))
        logger.info("[chat_store] deleted session uid=%s", uid)

    # --- Messages ---

    async def create_message(
        self, session_id: int, role: str, content: str, tool_name: str = ""
    ) -> ChatMessage:
        if role not in MESSAGE_ROLES:
            raise ValueError(f"invalid message role: {role!r}")
        if (role == ROLE_TOOL) != bool(tool_name):
            raise ValueError("tool_name must be set exactly when role is 'tool'")
        content = content or ""
        token_count = len(content) // CHARS_PER_TOKEN
        now = int(time.time())
        async with self._write_lock:
            row_id = await asyncio.to_thread(
                self._execute,
                "INSERT INTO ai_chat_message (session_id, role, content, tool_name, token_count, created_ts)"
                " VALUES (?, ?, ?, ?, ?, ?)",
                (session_id, role, content, tool_name, token_count, now),
            )
        logger.info("[chat_store] session_id=%s role=%s content_len=%d", session_id, role, len(content))
        return ChatMessage(
            id=row_id,
            session_id=session_id,
            role=role,
            content=content,
            tool_name=tool_name,
            token_count=token_count,
            created_ts=now,
        )

    async def list_messages(self, session_id: int) -> list[ChatMessage]:
        """Return the session's messages, oldest first."""
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_MESSAGE_COLUMNS} FROM ai_chat_message WHERE session_id = ? ORDER BY id ASC",
            (session_id,),
        )
        return [_row_to_message(row) for row in rows]

    async def compact_history(self, session_uid: str, summary: str, keep_from_message_id: int) -> ChatSession:
        """
        Store the new summary and drop every message older than keep_from_message_id, in one
        transaction. Messages from keep_from_message_id onward stay untouched.
        """

        def _compact() -> None:
            conn = self._connect()
            try:
                row = conn.execute("SELECT id FROM ai_chat_session WHERE uid = ?", (session_uid,)).fetchone()
                if row is None:
                    raise LookupError(f"session not found: {session_uid}")
                conn.execute(
                    "UPDATE ai_chat_session SET summary = ?, updated_ts = ? WHERE id = ?",
                    (summary, int(time.time()), row["id"]),
                )
                conn.execute(
                    "DELETE FROM ai_chat_message WHERE session_id = ? AND id < ?",
                    (row["id"], keep_from_message_id),
                )
                conn.commit()
            except Exception:
                conn.rollback()
                raise
            finally:
                conn.close()

        async with self._write_lock:
            await asyncio.to_thread(_compact)
        session = await self.get_session(session_uid)
        if session is None:
            raise LookupError(f"session not found: {session_uid}")
        return session


def _row_to_session(row: sqlite3.Row) -> ChatSession:
    return ChatSession(
        id=row["id"],
        uid=row["uid"],
        creator_id=row["creator_id"],
        title=row["title"],
        summary=row["summary"],
        created_ts=row["created_ts"],
        updated_ts=row["updated_ts"],
    )


def _row_to_message(row: sqlite3.Row) -> ChatMessage:
    return ChatMessage(
        id=row["id"],
        session_id=row["session_id"],
        role=row["role"],
        content=row["content"],
        tool_name=row["tool_name"],
        token_count=row["token_count"],
        created_ts=row["created_ts"],
    )
