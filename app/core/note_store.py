"""
Lightweight SQLite store for the user's notes.

Creates data/notes.db by default. Table: note (uid, creator_id, content, row_status,
created_ts, updated_ts). This is the document CRUD the agent tools act on.
"""

from __future__ import annotations

import asyncio
import logging
import sqlite3
import time
import uuid
from pathlib import Path
from typing import Any, Optional

from app.core.models import NOTE_NORMAL, Note

logger = logging.getLogger(__name__)

_TABLE = "note"
_COLUMNS = "uid, creator_id, content, row_status, created_ts, updated_ts"


class NoteStore:
    """Async facade over the note table; blocking calls run in a worker thread."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._write_lock = asyncio.Lock()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        return conn

    def _fetchall(self, query: str, params: tuple[Any, ...] = ()) -> list[sqlite3.Row]:
        conn = self._connect()
        try:
            return conn.execute(query, params).fetchall()
        finally:
            conn.close()

    def _execute(self, query: str, params: tuple[Any, ...] = ()) -> int:
        conn = self._connect()
        try:
            cur = conn.execute(query, params)
            conn.commit()
            return cur.rowcount
        finally:
            conn.close()

    async def init(self) -> None:
        """Create the note table if it does not exist."""
        Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(
            self._execute,
            f"""
            CREATE TABLE IF NOT EXISTS {_TABLE} (
                uid TEXT PRIMARY KEY,
                creator_id INTEGER NOT NULL,
                content TEXT NOT NULL,
                row_status TEXT NOT NULL DEFAULT 'NORMAL',
                created_ts INTEGER NOT NULL,
                updated_ts INTEGER NOT NULL
            )
            """,
        )
        await asyncio.to_thread(
            self._execute,
            f"CREATE INDEX IF NOT EXISTS idx_note_creator_created ON {_TABLE}(creator_id, created_ts)",
        )

    async def create_note(
        self, creator_id: int, content: str, created_ts: Optional[int] = None, row_status: str = NOTE_NORMAL
    ) -> Note:
        uid = uuid.uuid4().hex[:22]
        now = int(time.time())
        created = created_ts if created_ts is not None else now
        async with self._write_lock:
            await asyncio.to_thread(
                self._execute,
                f"INSERT INTO {_TABLE} ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?)",
                (uid, creator_id, content, row_status, created, now),
            )
        logger.info("[note_store] created note uid=%s creator_id=%s", uid, creator_id)
        return Note(
            uid=uid, creator_id=creator_id, content=content, row_status=row_status, created_ts=created, updated_ts=now
        )

    async def get_note(self, uid: str) -> Optional[Note]:
        rows = await asyncio.to_thread(self._fetchall, f"SELECT {_COLUMNS} FROM {_TABLE} WHERE uid = ?", (uid,))
        return _row_to_note(rows[0]) if rows else None

    async def update_note_content(self, uid: str, content: str) -> None:
        async with self._write_lock:
            changed = await asyncio.to_thread(
                self._execute,
                f"UPDATE {_TABLE} SET content = ?, updated_ts = ? WHERE uid = ?",
                (content, int(time.time()), uid),
            )
        if not changed:
            raise LookupError(f"note not found: {uid}")

    async def delete_note(self, uid: str) -> None:
        async with self._write_lock:
            await asyncio.to_thread(self._execute, f"DELETE FROM {_TABLE} WHERE uid = ?", (uid,))
        logger.info("[note_store] deleted note uid=%s", uid)

    async def list_notes(
        self,
        creator_id: int,
        *,
        contains: Optional[str] = None,
        created_from: Optional[int] = None,
        created_to: Optional[int] = None,
        row_status: Optional[str] = None,
    ) -> list[Note]:
        """
        Return the creator's notes, newest first. contains is a literal, case-sensitive
        substring match; created_from / created_to are inclusive unix-second bounds.
        """
        where = ["creator_id = ?"]
        params: list[Any] = [creator_id]
        if contains:
            where.append("instr(content, ?) > 0")
            params.append(contains)
        if created_from is not None:
            where.append("created_ts >= ?")
            params.append(created_from)
        if created_to is not None:
            where.append("created_ts <= ?")
            params.append(created_to)
        if row_status is not None:
            where.append("row_status = ?")
            params.append(row_status)
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT {_COLUMNS} FROM {_TABLE} WHERE {' AND '.join(where)} ORDER BY created_ts DESC, rowid DESC",
            tuple(params),
        )
        return [_row_to_note(row) for row in rows]

    async def count_notes(self, creator_id: int, row_status: str = NOTE_NORMAL) -> int:
        rows = await asyncio.to_thread(
            self._fetchall,
            f"SELECT COUNT(*) AS n FROM {_TABLE} WHERE creator_id = ? AND row_status = ?",
            (creator_id, row_status),
        )
        return int(rows[0]["n"]) if rows else 0


def _row_to_note(row: sqlite3.Row) -> Note:
    return Note(
        uid=row["uid"],
        creator_id=row["creator_id"],
        content=row["content"],
        row_status=row["row_status"],
        created_ts=row["created_ts"],
        updated_ts=row["updated_ts"],
    )
