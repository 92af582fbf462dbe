"""
Agent tools: definitions and execution for tool-calling (agentic) mode.

Tools: search_notes, query_notes, create_note, append_to_note, update_note, update_note_tags,
delete_note, get_user_stats, list_notes_by_tag.

Every tool is built for one authenticated user and only ever touches that user's notes.
execute() reports bad input, missing notes and ownership mismatches as plain result text;
only transport-level faults raise, and the registry turns those into "Error: ..." text.
"""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Iterable
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from pydantic import BaseModel, ValidationError

from app.core.config import SEARCH_TOP_K
from app.core.models import NOTE_NORMAL, Note
from app.core.note_store import NoteStore
from app.services.vector_store import VectorIndex

logger = logging.getLogger(__name__)

PARSE_ERROR = "Error: failed to parse input JSON."
NOT_FOUND = "Error: note not found."

_TAG_RE = re.compile(r"#[\w/-]+")


def build_tool_def(
    name: str, description: str, properties: dict[str, Any], required: list[str]
) -> dict[str, Any]:
    """OpenAI function-calling format for one tool."""
    return {
        "type": "function",
        "function": {
            "name": name,
            "description": description,
            "parameters": {"type": "object", "properties": properties, "required": required},
        },
    }


def extract_tags(content: str) -> str:
    """Space-separated hashtags found in a note body, e.g. '#work #ideas'."""
    return " ".join(_TAG_RE.findall(content or ""))


def preview(content: str, limit: int) -> str:
    return content[:limit] + "..." if len(content) > limit else content


# --- Argument payloads (missing keys decode to defaults, like a lenient JSON unmarshal) ---


class QueryArgs(BaseModel):
    query: str = ""


class QueryNotesArgs(BaseModel):
    text_search: str = ""
    date_start: str = ""
    date_end: str = ""


class ContentArgs(BaseModel):
    content: str = ""


class UidArgs(BaseModel):
    uid: str = ""


class UidContentArgs(BaseModel):
    uid: str = ""
    content: str = ""


class UidTagsArgs(BaseModel):
    uid: str = ""
    new_tags: list[str] = []


class TagArgs(BaseModel):
    tag: str = ""


class NoteTool(ABC):
    """A named capability with a declared parameter schema, bound to one user."""

    name: str
    description: str
    properties: dict[str, Any] = {}
    required: list[str] = []

    def __init__(self, notes: NoteStore, user_id: int, index: Optional[VectorIndex] = None) -> None:
        self.notes = notes
        self.user_id = user_id
        self.index = index

    def schema(self) -> dict[str, Any]:
        return build_tool_def(self.name, self.description, self.properties, self.required)

    @abstractmethod
    async def execute(self, raw_arguments: str) -> str:
        """Run the tool on the model's raw JSON arguments and return text for the model."""

    @staticmethod
    def parse(model: type[BaseModel], raw_arguments: str) -> Optional[BaseModel]:
        try:
            return model.model_validate_json(raw_arguments or "{}")
        except ValidationError:
            return None

    async def owned_note(self, uid: str) -> tuple[Optional[Note], Optional[str]]:
        """Look up a note for mutation. Returns (note, None) or (None, error text)."""
        note = await self.notes.get_note(uid) if uid else None
        if note is None:
            return None, NOT_FOUND
        if note.creator_id != self.user_id:
            return None, "Error: unauthorized to modify this note."
        return note, None

    async def reindex(self, uid: str, content: str) -> None:
        if self.index is None:
            return
        try:
            await asyncio.to_thread(self.index.upsert, self.user_id, uid, content, {"tags": extract_tags(content)})
        except Exception as e:
            logger.warning("[tools] reindex failed uid=%s: %s", uid, e)

    async def unindex(self, uid: str) -> None:
        if self.index is None:
            return
        try:
            await asyncio.to_thread(self.index.delete, self.user_id, uid)
        except Exception as e:
            logger.warning("[tools] unindex failed uid=%s: %s", uid, e)


class SearchNotesTool(NoteTool):
    name = "search_notes"
    description = (
        "Search the user's notes semantically for a concept or topic. Use for general/conceptual questions."
    )
    properties = {"query": {"type": "string", "description": "The search query"}}
    required = ["query"]

    def __init__(
        self,
        notes: NoteStore,
        user_id: int,
        index: Optional[VectorIndex] = None,
        tag_filter: str = "",
        top_k: int = SEARCH_TOP_K,
    ) -> None:
        super().__init__(notes, user_id, index)
        self.tag_filter = tag_filter
        self.top_k = top_k

    async def execute(self, raw_arguments: str) -> str:
        if self.index is None:
            return "Vector store not available."
        args = self.parse(QueryArgs, raw_arguments)
        if args is None:
            return PARSE_ERROR
        query = args.query.strip()
        if not query:
            return "Error: query is required."
        results = await asyncio.to_thread(self.index.search, self.user_id, query, self.top_k, self.tag_filter or None)
        if not results:
            return "No relevant notes found."
        parts = []
        for i, r in enumerate(results, 1):
            parts.append(f"[{i}] Note {r.doc_id} (score {r.score:.2f}):\n{preview(r.content, 400)}\n\n")
        return "".join(parts)


class QueryNotesTool(NoteTool):
    name = "query_notes"
    description = (
        "Search the user's notes by exact date range or keyword. ALWAYS use this for date-specific "
        "questions like 'what did I post on Jan 26'."
    )
    properties = {
        "text_search": {"type": "string", "description": "Exact keyword to search (optional)"},
        "date_start": {"type": "string", "description": "Start date in YYYY-MM-DD (optional)"},
        "date_end": {"type": "string", "description": "End date in YYYY-MM-DD (optional)"},
    }

    @staticmethod
    def _parse_day(value: str) -> Optional[datetime]:
        try:
            return datetime.strptime(value.strip(), "%Y-%m-%d").replace(tzinfo=timezone.utc)
        except ValueError:
            return None

    async def execute(self, raw_arguments: str) -> str:
        args = self.parse(QueryNotesArgs, raw_arguments)
        if args is None:
            return PARSE_ERROR
        created_from = created_to = None
        if args.date_start:
            start = self._parse_day(args.date_start)
            if start is not None:
                created_from = int(start.timestamp())
        if args.date_end:
            end = self._parse_day(args.date_end)
            if end is not None:
                # through 24:00 of the end day
                created_to = int((end + timedelta(days=1)).timestamp())
        logger.info(
            "[tools:query_notes] text_search=%r created_from=%s created_to=%s",
            args.text_search,
            created_from,
            created_to,
        )
        found = await self.notes.list_notes(
            self.user_id,
            contains=args.text_search or None,
            created_from=created_from,
            created_to=created_to,
        )
        if not found:
            return "No notes found matching those criteria."
        parts = []
        for i, note in enumerate(found):
            if i >= 5:
                parts.append(f"... and {len(found) - 5} more notes skipped.")
                break
            created = datetime.fromtimestamp(note.created_ts, tz=timezone.utc).strftime("%Y-%m-%d %H:%M")
            parts.append(f"[{i + 1}] Note {note.uid} (Created: {created}):\n{preview(note.content, 400)}\n\n")
        return "".join(parts)


class CreateNoteTool(NoteTool):
    name = "create_note"
    description = "Create a new note for the user."
    properties = {"content": {"type": "string", "description": "The content of the new note"}}
    required = ["content"]

    async def execute(self, raw_arguments: str) -> str:
        args = self.parse(ContentArgs, raw_arguments)
        if args is None:
            return PARSE_ERROR
        try:
            note = await self.notes.create_note(self.user_id, args.content)
        except Exception as e:
            return f"Error creating note: {e}"
        await self.reindex(note.uid, note.content)
        return f"Note successfully created with UID: {note.uid}"


class AppendToNoteTool(NoteTool):
    name = "append_to_note"
    description = "Append text to an existing note without overwriting it."
    properties = {
        "uid": {"type": "string", "description": "Note UID"},
        "content": {"type": "string", "description": "Text to append"},
    }
    required = ["uid", "content"]

    async def execute(self, raw_arguments: str) -> str:
        args = self.parse(UidContentArgs, raw_arguments)
        if args is None:
            return PARSE_ERROR
        note, error = await self.owned_note(args.uid)
        if error:
            return error
        new_content = note.content + "\n\n" + args.content
        try:
            await self.notes.update_note_content(note.uid, new_content)
        except Exception as e:
            return f"Error appending to note: {e}"
        await self.reindex(note.uid, new_content)
        return "Content successfully appended to note."


class UpdateNoteTool(NoteTool):
    name = "update_note"
    description = "Fully rewrite the content of an existing note."
    properties = {
        "uid": {"type": "string", "description": "Note UID"},
        "content": {"type": "string", "description": "New content"},
    }
    required = ["uid", "content"]

    async def execute(self, raw_arguments: str) -> str:
        args = self.parse(UidContentArgs, raw_arguments)
        if args is None:
            return PARSE_ERROR
        note, error = await self.owned_note(args.uid)
        if error:
            return error
        try:
            await self.notes.update_note_content(note.uid, args.content)
        except Exception as e:
            return f"Error: {e}"
        await self.reindex(note.uid, args.content)
        return "Note successfully updated."


class UpdateNoteTagsTool(NoteTool):
    name = "update_note_tags"
    description = "Add hashtags to an existing note."
    properties = {
        "uid": {"type": "string", "description": "Note UID"},
        "new_tags": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Tags to add, e.g. ['#dev','#work']",
        },
    }
    required = ["uid", "new_tags"]

    async def execute(self, raw_arguments: str) -> str:
        args = self.parse(UidTagsArgs, raw_arguments)
        if args is None:
            return PARSE_ERROR
        note, error = await self.owned_note(args.uid)
        if error:
            return error
        # Appended verbatim: tags already in the body are duplicated.
        new_content = note.content + "\n\n" + " ".join(args.new_tags)
        try:
            await self.notes.update_note_content(note.uid, new_content)
        except Exception as e:
            return f"Error appending tags: {e}"
        await self.reindex(note.uid, new_content)
        return "Tags successfully added to the note body."


class DeleteNoteTool(NoteTool):
    name = "delete_note"
    description = "Permanently delete a note."
    properties = {"uid": {"type": "string", "description": "Note UID"}}
    required = ["uid"]

    async def execute(self, raw_arguments: str) -> str:
        args = self.parse(UidArgs, raw_arguments)
        if args is None:
            return PARSE_ERROR
        note, error = await self.owned_note(args.uid)
        if error:
            return error
        try:
            await self.notes.delete_note(note.uid)
        except Exception as e:
            return f"Error deleting note: {e}"
        await self.unindex(note.uid)
        return "Note successfully and permanently deleted."


class GetUserStatsTool(NoteTool):
    name = "get_user_stats"
    description = "Get note statistics (total count, etc). No parameters needed."

    async def execute(self, raw_arguments: str) -> str:
        try:
            total = await self.notes.count_notes(self.user_id, NOTE_NORMAL)
        except Exception as e:
            return f"Error retrieving stats: {e}"
        return f"User Statistics:\nTotal Active Notes: {total}"


class ListNotesByTagTool(NoteTool):
    name = "list_notes_by_tag"
    description = "List all notes tagged with a specific hashtag."
    properties = {"tag": {"type": "string", "description": "Tag including hash, e.g. '#work'"}}
    required = ["tag"]

    async def execute(self, raw_arguments: str) -> str:
        args = self.parse(TagArgs, raw_arguments)
        if args is None:
            return PARSE_ERROR
        if not args.tag:
            return "Error: tag is required."
        try:
            found = await self.notes.list_notes(self.user_id, contains=args.tag)
        except Exception as e:
            return f"Error searching tags: {e}"
        if not found:
            return f"No notes found with the tag {args.tag}."
        parts = []
        for i, note in enumerate(found):
            if i >= 10:
                parts.append(f"... and {len(found) - 10} more tagged notes.")
                break
            parts.append(f"[{i + 1}] Note {note.uid}:\n{preview(note.content, 300)}\n\n")
        return "".join(parts)


class ToolRegistry:
    """Name -> tool lookup plus dispatch. Does not validate arguments against the schemas."""

    def __init__(self, tools: Iterable[NoteTool]) -> None:
        self._tools = {t.name: t for t in tools}

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def schemas(self) -> list[dict[str, Any]]:
        return [t.schema() for t in self._tools.values()]

    async def dispatch(self, name: str, raw_arguments: str) -> str:
        """Execute a tool by name. Always returns text for the model."""
        logger.info("[tools] dispatch name=%r arguments=%r", name, raw_arguments)
        tool = self._tools.get(name)
        if tool is None:
            return f"Unknown tool: {name}"
        try:
            result = await tool.execute(raw_arguments)
        except Exception as e:
            logger.warning("[tools] %s failed: %s", name, e)
            result = f"Error: {e}"
        logger.info("[tools] result name=%r result_len=%d", name, len(result))
        return result


def build_registry(
    notes: NoteStore, user_id: int, index: Optional[VectorIndex] = None, tag_filter: str = ""
) -> ToolRegistry:
    """The canonical tool set for one user and request."""
    return ToolRegistry(
        [
            SearchNotesTool(notes, user_id, index, tag_filter=tag_filter),
            QueryNotesTool(notes, user_id, index),
            CreateNoteTool(notes, user_id, index),
            AppendToNoteTool(notes, user_id, index),
            UpdateNoteTool(notes, user_id, index),
            UpdateNoteTagsTool(notes, user_id, index),
            DeleteNoteTool(notes, user_id, index),
            GetUserStatsTool(notes, user_id, index),
            ListNotesByTagTool(notes, user_id, index),
        ]
    )
