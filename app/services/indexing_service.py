"""
Note indexing: push a user's notes into their vector collection.

Responsibility: Bulk (re)index active notes so semantic search and citations see them.
Called by the API and the seed script; no HTTP or FastAPI here.
"""

import asyncio
import logging

from app.agent.tools import extract_tags
from app.core.models import NOTE_NORMAL
from app.core.note_store import NoteStore
from app.services.vector_store import VectorIndex

logger = logging.getLogger(__name__)


async def index_user_notes(notes: NoteStore, index: VectorIndex, user_id: int) -> int:
    """
    Upsert every active note of user_id into the index. Returns the number indexed.
    Notes are keyed by uid, so re-running updates in place.
    """
    found = await notes.list_notes(user_id, row_status=NOTE_NORMAL)
    indexed = 0
    for note in found:
        if not note.content.strip():
            continue
        await asyncio.to_thread(index.upsert, user_id, note.uid, note.content, {"tags": extract_tags(note.content)})
        indexed += 1
    logger.info("[indexing] user_id=%s indexed=%d of %d notes", user_id, indexed, len(found))
    return indexed
