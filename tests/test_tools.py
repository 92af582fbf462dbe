"""
Tests for the note tools and the registry: per-user scoping, error text, output formats.
"""

import json
from datetime import datetime, timezone

import pytest

from app.agent.tools import (
    NOT_FOUND,
    PARSE_ERROR,
    NoteTool,
    ToolRegistry,
    build_registry,
    extract_tags,
    preview,
)
from app.core.models import NOTE_ARCHIVED
from app.core.note_store import NoteStore
from app.services.vector_store import VectorIndex

OWNER = 1
OTHER = 2


def _ts(value: str) -> int:
    return int(datetime.strptime(value, "%Y-%m-%d %H:%M:%S").replace(tzinfo=timezone.utc).timestamp())


def _args(**kwargs) -> str:
    return json.dumps(kwargs)


class ExplodingTool(NoteTool):
    name = "explode"
    description = "Always fails."

    async def execute(self, raw_arguments: str) -> str:
        raise RuntimeError("boom")


def test_extract_tags_and_preview() -> None:
    """extract_tags stops at punctuation; preview truncates with an ellipsis."""
    assert extract_tags("plan #work and #ideas, done") == "#work #ideas"
    assert extract_tags("see #dev/api-v2.") == "#dev/api-v2"
    assert extract_tags("no tags here") == ""
    assert preview("abcdef", 3) == "abc..."
    assert preview("abc", 3) == "abc"


def test_registry_declares_all_tools(note_store: NoteStore) -> None:
    """The registry declares the nine note tools in function-calling format."""
    registry = build_registry(note_store, OWNER)

    assert registry.names == [
        "search_notes",
        "query_notes",
        "create_note",
        "append_to_note",
        "update_note",
        "update_note_tags",
        "delete_note",
        "get_user_stats",
        "list_notes_by_tag",
    ]
    schemas = registry.schemas()
    assert all(s["type"] == "function" for s in schemas)
    by_name = {s["function"]["name"]: s["function"]["parameters"] for s in schemas}
    assert by_name["update_note_tags"]["required"] == ["uid", "new_tags"]
    assert by_name["query_notes"]["required"] == []


@pytest.mark.asyncio
async def test_dispatch_unknown_tool(note_store: NoteStore) -> None:
    """An unknown tool name comes back as text, not an exception."""
    registry = build_registry(note_store, OWNER)
    assert await registry.dispatch("nope", "{}") == "Unknown tool: nope"


@pytest.mark.asyncio
async def test_dispatch_turns_exceptions_into_text(note_store: NoteStore) -> None:
    """A tool that raises is reported to the model as "Error: <message>"."""
    registry = ToolRegistry([ExplodingTool(note_store, OWNER)])
    assert await registry.dispatch("explode", "{}") == "Error: boom"


@pytest.mark.asyncio
async def test_malformed_arguments_return_parse_error(note_store: NoteStore) -> None:
    """Undecodable or mistyped arguments return the parse error and change nothing."""
    registry = build_registry(note_store, OWNER)

    assert await registry.dispatch("create_note", "{not json") == PARSE_ERROR
    assert await registry.dispatch("delete_note", '{"uid": 5}') == PARSE_ERROR
    assert await note_store.count_notes(OWNER) == 0


@pytest.mark.asyncio
async def test_create_note_persists_and_indexes(note_store: NoteStore, vector_index: VectorIndex) -> None:
    """create_note stores a note for the caller and makes it searchable."""
    registry = build_registry(note_store, OWNER, vector_index)

    result = await registry.dispatch("create_note", _args(content="buy oat milk #errands"))

    assert result.startswith("Note successfully created with UID: ")
    uid = result.rsplit(" ", 1)[-1]
    note = await note_store.get_note(uid)
    assert note.creator_id == OWNER
    assert note.content == "buy oat milk #errands"
    assert [r.doc_id for r in vector_index.search(OWNER, "buy oat milk #errands", 5)] == [uid]


@pytest.mark.asyncio
async def test_append_joins_with_blank_line(note_store: NoteStore) -> None:
    """append_to_note joins old and new content with a blank line."""
    note = await note_store.create_note(OWNER, "first line")
    registry = build_registry(note_store, OWNER)

    result = await registry.dispatch("append_to_note", _args(uid=note.uid, content="second line"))

    assert result == "Content successfully appended to note."
    assert (await note_store.get_note(note.uid)).content == "first line\n\nsecond line"


@pytest.mark.asyncio
async def test_update_note_rewrites_content(note_store: NoteStore) -> None:
    """update_note replaces the whole body."""
    note = await note_store.create_note(OWNER, "draft")
    registry = build_registry(note_store, OWNER)

    assert await registry.dispatch("update_note", _args(uid=note.uid, content="final")) == "Note successfully updated."
    assert (await note_store.get_note(note.uid)).content == "final"


@pytest.mark.asyncio
async def test_update_tags_appends_verbatim(note_store: NoteStore) -> None:
    """update_note_tags appends the tags as text, duplicates included."""
    note = await note_store.create_note(OWNER, "meeting notes #work")
    registry = build_registry(note_store, OWNER)

    result = await registry.dispatch("update_note_tags", _args(uid=note.uid, new_tags=["#work", "#q3"]))

    assert result == "Tags successfully added to the note body."
    # existing tags are not deduplicated
    assert (await note_store.get_note(note.uid)).content == "meeting notes #work\n\n#work #q3"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "tool, arguments",
    [
        ("append_to_note", {"content": "hijack"}),
        ("update_note", {"content": "hijack"}),
        ("update_note_tags", {"new_tags": ["#hijack"]}),
        ("delete_note", {}),
    ],
)
async def test_mutations_reject_other_users_notes(note_store: NoteStore, tool: str, arguments: dict) -> None:
    """Mutating another user's note is refused and the note is left unchanged."""
    note = await note_store.create_note(OWNER, "private")
    registry = build_registry(note_store, OTHER)

    result = await registry.dispatch(tool, _args(uid=note.uid, **arguments))

    assert result == "Error: unauthorized to modify this note."
    stored = await note_store.get_note(note.uid)
    assert stored is not None
    assert stored.content == "private"


@pytest.mark.asyncio
async def test_mutations_on_missing_note(note_store: NoteStore) -> None:
    """Mutating an unknown or empty uid reports note not found."""
    registry = build_registry(note_store, OWNER)

    assert await registry.dispatch("update_note", _args(uid="missing", content="x")) == NOT_FOUND
    assert await registry.dispatch("delete_note", _args()) == NOT_FOUND


@pytest.mark.asyncio
async def test_delete_note_removes_from_store_and_index(note_store: NoteStore, vector_index: VectorIndex) -> None:
    """delete_note removes the note from SQLite and from the vector index."""
    registry = build_registry(note_store, OWNER, vector_index)
    created = await registry.dispatch("create_note", _args(content="temporary note"))
    uid = created.rsplit(" ", 1)[-1]

    result = await registry.dispatch("delete_note", _args(uid=uid))

    assert result == "Note successfully and permanently deleted."
    assert await note_store.get_note(uid) is None
    assert vector_index.search(OWNER, "temporary note", 5) == []


@pytest.mark.asyncio
async def test_user_stats_counts_only_own_notes(note_store: NoteStore) -> None:
    """get_user_stats counts only the caller's notes."""
    await note_store.create_note(OWNER, "one")
    await note_store.create_note(OWNER, "two")
    await note_store.create_note(OTHER, "not mine")
    registry = build_registry(note_store, OWNER)

    assert await registry.dispatch("get_user_stats", "{}") == "User Statistics:\nTotal Active Notes: 2"


@pytest.mark.asyncio
async def test_user_stats_skips_archived_notes(note_store: NoteStore) -> None:
    """Archived notes are not counted as active."""
    await note_store.create_note(OWNER, "live")
    await note_store.create_note(OWNER, "old", row_status=NOTE_ARCHIVED)
    registry = build_registry(note_store, OWNER)

    assert await registry.dispatch("get_user_stats", "{}") == "User Statistics:\nTotal Active Notes: 1"


@pytest.mark.asyncio
async def test_query_notes_date_range_covers_whole_end_day(note_store: NoteStore) -> None:
    """A single-day range includes 00:00:00 through 23:59:59 UTC of that day only."""
    await note_store.create_note(OWNER, "day before", created_ts=_ts("2024-01-25 23:59:59"))
    await note_store.create_note(OWNER, "morning post", created_ts=_ts("2024-01-26 00:00:00"))
    await note_store.create_note(OWNER, "late post", created_ts=_ts("2024-01-26 23:59:59"))
    await note_store.create_note(OWNER, "day after", created_ts=_ts("2024-01-27 00:00:01"))
    await note_store.create_note(OTHER, "someone else", created_ts=_ts("2024-01-26 12:00:00"))
    registry = build_registry(note_store, OWNER)

    result = await registry.dispatch("query_notes", _args(date_start="2024-01-26", date_end="2024-01-26"))

    assert "morning post" in result
    assert "late post" in result
    assert "day before" not in result
    assert "day after" not in result
    assert "someone else" not in result
    assert "(Created: 2024-01-26 23:59)" in result


@pytest.mark.asyncio
async def test_query_notes_keyword_and_overflow(note_store: NoteStore) -> None:
    """Keyword matches list five newest notes, then a count of the skipped ones."""
    for i in range(7):
        await note_store.create_note(OWNER, f"alpha entry {i}", created_ts=_ts("2024-02-01 10:00:00") + i)
    await note_store.create_note(OWNER, "beta entry")
    registry = build_registry(note_store, OWNER)

    result = await registry.dispatch("query_notes", _args(text_search="alpha"))

    assert result.count("Note ") == 5
    assert result.endswith("... and 2 more notes skipped.")
    assert "beta" not in result
    # newest first
    assert result.index("alpha entry 6") < result.index("alpha entry 5")


@pytest.mark.asyncio
async def test_query_notes_no_match(note_store: NoteStore) -> None:
    """No match returns the fixed no-results text."""
    registry = build_registry(note_store, OWNER)
    assert await registry.dispatch("query_notes", _args(text_search="zzz")) == "No notes found matching those criteria."


@pytest.mark.asyncio
async def test_list_notes_by_tag(note_store: NoteStore) -> None:
    """Tag listing shows ten notes, then a count of the rest; unknown tags say so."""
    for i in range(12):
        await note_store.create_note(OWNER, f"tagged {i} #work", created_ts=1_700_000_000 + i)
    await note_store.create_note(OWNER, "untagged")
    registry = build_registry(note_store, OWNER)

    result = await registry.dispatch("list_notes_by_tag", _args(tag="#work"))

    assert result.count("Note ") == 10
    assert result.endswith("... and 2 more tagged notes.")
    assert await registry.dispatch("list_notes_by_tag", _args(tag="#none")) == "No notes found with the tag #none."


@pytest.mark.asyncio
async def test_search_notes_without_index(note_store: NoteStore) -> None:
    """Without a vector store the search tool degrades to a text message."""
    registry = build_registry(note_store, OWNER)
    assert await registry.dispatch("search_notes", _args(query="anything")) == "Vector store not available."


@pytest.mark.asyncio
async def test_search_notes_formats_hits(note_store: NoteStore, vector_index: VectorIndex) -> None:
    """Hits are numbered with uid, two-decimal score and a preview."""
    vector_index.upsert(OWNER, "n1", "dentist appointment at 3pm")
    registry = build_registry(note_store, OWNER, vector_index)

    result = await registry.dispatch("search_notes", _args(query="dentist appointment at 3pm"))

    assert result.startswith("[1] Note n1 (score 1.00):\ndentist appointment at 3pm")


@pytest.mark.asyncio
async def test_search_notes_empty_and_tag_filtered(note_store: NoteStore, vector_index: VectorIndex) -> None:
    """An empty index reports no notes; the bound tag filter excludes other tags."""
    registry = build_registry(note_store, OWNER, vector_index, tag_filter="#work")
    assert await registry.dispatch("search_notes", _args(query="plan")) == "No relevant notes found."

    vector_index.upsert(OWNER, "w", "plan #work", {"tags": "#work"})
    vector_index.upsert(OWNER, "p", "plan #personal", {"tags": "#personal"})

    result = await registry.dispatch("search_notes", _args(query="plan"))

    assert "Note w" in result
    assert "Note p" not in result
