"""
Shared fakes and fixtures.

The LLM, the Milvus client and the embedding call are replaced with in-process fakes so
tests need neither network access nor a Milvus Lite file.
"""

import asyncio
import math
import re
import zlib
from collections.abc import Callable
from pathlib import Path
from typing import Any, Optional, Union

import pytest
from pymilvus import MilvusException

from app.agent.llm import AssistantTurn, ToolCall
from app.core.chat_store import ChatStore
from app.core.note_store import NoteStore
from app.services.compactor import SUMMARY_INSTRUCTION
from app.services.vector_store import VectorIndex

FAKE_DIM = 256

ScriptedTurn = Union[AssistantTurn, Exception, Callable[[int], AssistantTurn]]


def fake_embed(texts: list[str]) -> list[list[float]]:
    """Bag-of-words hashed into FAKE_DIM buckets, L2-normalized."""
    out = []
    for text in texts:
        vec = [0.0] * FAKE_DIM
        for word in re.findall(r"\w+", text.lower()):
            vec[zlib.crc32(word.encode()) % FAKE_DIM] += 1.0
        norm = math.sqrt(sum(x * x for x in vec)) or 1.0
        out.append([x / norm for x in vec])
    return out


def _like_to_regex(quoted: str) -> re.Pattern:
    """Milvus LIKE semantics: unquote the string literal, then % and _ are wildcards unless escaped."""
    pattern = re.sub(r"\\(.)", r"\1", quoted)
    out, i = [], 0
    while i < len(pattern):
        ch = pattern[i]
        if ch == "\\" and i + 1 < len(pattern):
            out.append(re.escape(pattern[i + 1]))
            i += 2
            continue
        out.append(".*" if ch == "%" else "." if ch == "_" else re.escape(ch))
        i += 1
    return re.compile("".join(out), re.DOTALL)


class FakeMilvusClient:
    """
    Dict-backed stand-in for MilvusClient. Limits above max_limit are rejected the way a
    lagging row count makes Milvus reject them.
    """

    def __init__(self, max_limit: Optional[int] = None) -> None:
        self.collections: dict[str, dict[str, dict[str, Any]]] = {}
        self.max_limit = max_limit
        self.search_limits: list[int] = []
        self.search_filters: list[str] = []

    def has_collection(self, collection_name: str) -> bool:
        return collection_name in self.collections

    def create_collection(self, collection_name: str, **kwargs: Any) -> None:
        self.collections[collection_name] = {}

    def upsert(self, collection_name: str, data: list[dict[str, Any]]) -> None:
        for row in data:
            self.collections[collection_name][row["id"]] = dict(row)

    def delete(self, collection_name: str, ids: list[str]) -> None:
        for doc_id in ids:
            self.collections[collection_name].pop(doc_id, None)

    def flush(self, collection_name: str) -> None:
        pass

    def get_collection_stats(self, collection_name: str) -> dict[str, int]:
        return {"row_count": len(self.collections.get(collection_name, {}))}

    def search(
        self,
        collection_name: str,
        data: list[list[float]],
        limit: int,
        filter: str = "",
        output_fields: Optional[list[str]] = None,
    ) -> list[list[dict[str, Any]]]:
        self.search_limits.append(limit)
        self.search_filters.append(filter)
        if self.max_limit is not None and limit > self.max_limit:
            raise MilvusException(message=f"limit {limit} exceeds available entities")
        rows = list(self.collections[collection_name].values())
        match = re.fullmatch(r'tags like "(.*)"', filter or "")
        if match:
            pattern = _like_to_regex(match.group(1))
            rows = [r for r in rows if pattern.fullmatch(r.get("tags", ""))]
        query = data[0]
        scored = sorted(
            ((sum(a * b for a, b in zip(query, r["vector"])), r) for r in rows),
            key=lambda pair: pair[0],
            reverse=True,
        )
        return [
            [{"id": r["id"], "distance": score, "entity": {"content": r["content"]}} for score, r in scored[:limit]]
        ]


class FakeLLM:
    """
    Scripted ChatLLM. Each chat_with_tools call consumes the next scripted item: an
    AssistantTurn is returned, an exception is raised, a callable gets the call number.
    Once the script runs out the model answers "Done.".
    """

    def __init__(
        self,
        turns: Optional[list[ScriptedTurn]] = None,
        *,
        summary: str = "Earlier the user discussed their notes.",
        title: str = "Notes Chat",
        complete_error: Optional[Exception] = None,
    ) -> None:
        self.turns = list(turns or [])
        self.summary = summary
        self.title = title
        self.complete_error = complete_error
        self.calls: list[list[dict[str, Any]]] = []
        self.prompts: list[str] = []

    async def chat_with_tools(self, messages: list[dict[str, Any]], tools: list[dict[str, Any]]) -> AssistantTurn:
        self.calls.append(list(messages))
        if not self.turns:
            return AssistantTurn(content="Done.")
        item = self.turns.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(len(self.calls))
        return item

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.complete_error is not None:
            raise self.complete_error
        if prompt.startswith(SUMMARY_INSTRUCTION):
            return self.summary
        return self.title


def tool_turn(*calls: tuple[str, str, str], content: str = "") -> AssistantTurn:
    """AssistantTurn requesting (id, name, arguments) tool calls."""
    return AssistantTurn(content=content, tool_calls=[ToolCall(id=i, name=n, arguments=a) for i, n, a in calls])


@pytest.fixture
def chat_store(tmp_path: Path) -> ChatStore:
    store = ChatStore(str(tmp_path / "chat.db"))
    asyncio.run(store.init())
    return store


@pytest.fixture
def note_store(tmp_path: Path) -> NoteStore:
    store = NoteStore(str(tmp_path / "notes.db"))
    asyncio.run(store.init())
    return store


@pytest.fixture
def milvus() -> FakeMilvusClient:
    return FakeMilvusClient()


@pytest.fixture
def vector_index(milvus: FakeMilvusClient) -> VectorIndex:
    return VectorIndex(milvus, embed_fn=fake_embed, dim=FAKE_DIM)
