"""
Vector store: per-user Milvus collections, embeddings (HF Inference API), and note search.

Responsibility: Keep one similarity-searchable collection per user, upsert notes by uid,
and answer top-k queries. Persists through Milvus (Milvus Lite file or server).
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import httpx
from pymilvus import MilvusClient, MilvusException

from app.core.config import (
    COLLECTION_NAME_TEMPLATE,
    EMBED_API_TIMEOUT,
    EMBED_BATCH_SIZE,
    HF_API_KEY,
    HF_EMBED_MODEL,
    MILVUS_TOKEN,
    MILVUS_URI,
    VECTOR_DIM,
)
from app.core.errors import VectorSearchError

logger = logging.getLogger(__name__)

HF_API_URL = (
    "https://router.huggingface.co/hf-inference/models/"
    f"{HF_EMBED_MODEL}/pipeline/feature-extraction"
)

EmbedFn = Callable[[list[str]], list[list[float]]]


@dataclass(slots=True)
class SearchResult:
    """A single semantic-search hit."""

    doc_id: str
    content: str
    score: float


def embed_texts(texts: list[str], batch_size: int | None = None) -> list[list[float]]:
    """
    Batch embed texts using Hugging Face Inference API (all-MiniLM-L6-v2).

    Returns list of 384-dim vectors (normalized for cosine similarity).
    """
    batch_size = batch_size if batch_size is not None else EMBED_BATCH_SIZE
    if not texts:
        return []
    if not HF_API_KEY:
        raise ValueError(
            "HF_API_KEY must be set in .env. Get a token from https://huggingface.co/settings/tokens"
        )

    headers = {
        "Authorization": f"Bearer {HF_API_KEY}",
        "Content-Type": "application/json",
    }
    all_embeddings: list[list[float]] = []

    with httpx.Client(timeout=EMBED_API_TIMEOUT) as client:
        for i in range(0, len(texts), batch_size):
            batch = texts[i : i + batch_size]
            payload = {"inputs": batch, "options": {"wait_for_model": True}}
            response = client.post(HF_API_URL, json=payload, headers=headers)
            if response.status_code == 503:
                raise RuntimeError(f"HF model is loading. Retry later. {response.text}")
            if response.status_code == 401:
                raise ValueError(
                    "Invalid HF API key. Check HF_API_KEY at https://huggingface.co/settings/tokens"
                )
            if response.status_code != 200:
                raise RuntimeError(f"HF API error {response.status_code}: {response.text[:200]}")

            result = response.json()
            if isinstance(result, list) and result and isinstance(result[0], list):
                batch_emb = result
            else:
                batch_emb = [result]

            # Normalize for cosine similarity (Milvus COSINE)
            for vec in batch_emb:
                norm = sum(x * x for x in vec) ** 0.5
                if norm == 0:
                    norm = 1.0
                all_embeddings.append([x / norm for x in vec])

    return all_embeddings


def limit_attempts(k: int, count: int) -> list[int]:
    """
    Limits to try for a top-k query against a collection holding count rows:
    k clamped to count, then each smaller value down to 1.

    Milvus can still reject a limit equal to its reported row count (stats lag behind
    upserts and deletes), so callers step down until a query is accepted.
    """
    top = min(k, count)
    return list(range(top, 0, -1))


def collection_name(user_id: int) -> str:
    """Per-user collection name; the namespace keeps users' notes apart."""
    return COLLECTION_NAME_TEMPLATE.format(user_id=user_id)


def _quote(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def contains_filter(field: str, value: str) -> str:
    """Milvus expression matching value as a literal substring of field (% and _ escaped)."""
    literal = value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f'{field} like "%{_quote(literal)}%"'


class ReadWriteLock:
    """Many concurrent readers or one writer."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if self._readers == 0:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._readers:
                self._cond.wait()
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


class VectorIndex:
    """
    Per-user note index over a single Milvus client handle.

    Mutations hold the write side of one reader/writer lock, searches the read side.
    Collections are created on first access and remembered for the process lifetime.
    """

    def __init__(self, client: Any, embed_fn: EmbedFn = embed_texts, dim: int = VECTOR_DIM) -> None:
        self._client = client
        self._embed_fn = embed_fn
        self._dim = dim
        self._lock = ReadWriteLock()
        self._known: set[str] = set()
        self._known_lock = threading.Lock()

    def _ensure_collection(self, user_id: int) -> str:
        name = collection_name(user_id)
        with self._known_lock:
            if name in self._known:
                return name
            if not self._client.has_collection(name):
                self._client.create_collection(
                    collection_name=name,
                    dimension=self._dim,
                    primary_field_name="id",
                    id_type="string",
                    max_length=64,
                    vector_field_name="vector",
                    metric_type="COSINE",
                    auto_id=False,
                )
                logger.info("[vector_store] collection %s created (dim=%s)", name, self._dim)
            self._known.add(name)
        return name

    def _count(self, name: str) -> int:
        stats = self._client.get_collection_stats(collection_name=name) or {}
        return int(stats.get("row_count", 0))

    def upsert(self, user_id: int, doc_id: str, content: str, metadata: dict[str, str] | None = None) -> None:
        """Index (or re-index) one document; the same doc_id updates in place."""
        vectors = self._embed_fn([content])
        if not vectors:
            raise ValueError("embedding function returned no vector")
        row: dict[str, Any] = {"id": doc_id, "vector": vectors[0], "content": content}
        for key, value in (metadata or {}).items():
            row[key] = value
        with self._lock.write():
            name = self._ensure_collection(user_id)
            self._client.upsert(collection_name=name, data=[row])
            self._client.flush(collection_name=name)
        logger.info("[vector_store:upsert] user_id=%s doc_id=%s content_len=%d", user_id, doc_id, len(content))

    def delete(self, user_id: int, doc_id: str) -> None:
        with self._lock.write():
            name = self._ensure_collection(user_id)
            self._client.delete(collection_name=name, ids=[doc_id])
            self._client.flush(collection_name=name)
        logger.info("[vector_store:delete] user_id=%s doc_id=%s", user_id, doc_id)

    def search(self, user_id: int, query: str, k: int, tag_filter: str | None = None) -> list[SearchResult]:
        """
        Return up to k notes most similar to query. An empty collection yields [];
        if every step-down attempt fails the last Milvus error is raised as VectorSearchError.
        """
        logger.info("[vector_store:search] IN  user_id=%s query=%r k=%d tag_filter=%r", user_id, query, k, tag_filter)
        with self._lock.read():
            name = self._ensure_collection(user_id)
            count = self._count(name)
            attempts = limit_attempts(k, count)
            if not attempts:
                logger.info("[vector_store:search] OUT empty collection or k=%d", k)
                return []

            query_vec = self._embed_fn([query])
            filter_expr = contains_filter("tags", tag_filter) if tag_filter else ""

            hits: list[dict[str, Any]] | None = None
            last_error: Exception | None = None
            for limit in attempts:
                try:
                    results = self._client.search(
                        collection_name=name,
                        data=query_vec,
                        limit=limit,
                        filter=filter_expr,
                        output_fields=["content"],
                    )
                except MilvusException as e:
                    last_error = e
                    logger.info("[vector_store:search] limit=%d rejected: %s", limit, e)
                    continue
                hits = results[0] if results else []
                break
            if hits is None:
                raise VectorSearchError(f"vector search failed for {name}: {last_error}") from last_error

        out = []
        for h in hits:
            entity = h.get("entity") or {}
            out.append(
                SearchResult(
                    doc_id=str(h.get("id", entity.get("id", ""))),
                    content=entity.get("content", h.get("content", "")),
                    score=float(h.get("distance", h.get("score", 0.0))),
                )
            )
        logger.info("[vector_store:search] OUT hits=%d scores=%s", len(out), [round(r.score, 4) for r in out])
        return out


def open_vector_index(embed_fn: EmbedFn = embed_texts) -> VectorIndex:
    """
    Connect to Milvus (Milvus Lite when MILVUS_URI is a file path) and return the shared index.
    """
    if not MILVUS_URI:
        raise ValueError("MILVUS_URI must be set in .env")
    if not MILVUS_URI.startswith(("http://", "https://")):
        Path(MILVUS_URI).parent.mkdir(parents=True, exist_ok=True)
    if MILVUS_TOKEN:
        client = MilvusClient(uri=MILVUS_URI, token=MILVUS_TOKEN)
    else:
        client = MilvusClient(uri=MILVUS_URI)
    logger.info("Milvus connection established uri=%s", MILVUS_URI)
    return VectorIndex(client, embed_fn=embed_fn)
