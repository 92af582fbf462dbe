"""
Unit tests for the per-user vector index: k clamping, step-down retries, isolation, locking.
"""

import threading

import pytest

from app.core.errors import VectorSearchError
from app.services.vector_store import (
    ReadWriteLock,
    VectorIndex,
    collection_name,
    contains_filter,
    limit_attempts,
)

from conftest import FAKE_DIM, FakeMilvusClient, fake_embed


class TestLimitAttempts:
    """Tests for limit_attempts()."""

    def test_clamps_to_count_then_steps_down(self) -> None:
        """k above the row count starts at the count and walks down to 1."""
        assert limit_attempts(5, 3) == [3, 2, 1]

    def test_k_below_count(self) -> None:
        """k below the row count starts at k."""
        assert limit_attempts(2, 10) == [2, 1]

    def test_empty_collection_means_no_attempts(self) -> None:
        """An empty collection yields no limits to try."""
        assert limit_attempts(5, 0) == []

    def test_non_positive_k_means_no_attempts(self) -> None:
        """k of zero or below yields no limits to try."""
        assert limit_attempts(0, 4) == []
        assert limit_attempts(-1, 4) == []


def test_collection_name_is_per_user() -> None:
    """Each user id maps to its own collection name."""
    assert collection_name(7) == "user_7_notes"
    assert collection_name(7) != collection_name(8)


def test_contains_filter_escapes_like_wildcards() -> None:
    """% and _ in the value are escaped so they match literally."""
    assert contains_filter("tags", "#work") == 'tags like "%#work%"'
    assert contains_filter("tags", "#my_tag") == 'tags like "%#my\\\\_tag%"'
    assert contains_filter("tags", "50%") == 'tags like "%50\\\\%%"'


def test_search_on_empty_collection_returns_empty(vector_index: VectorIndex, milvus: FakeMilvusClient) -> None:
    """Searching a fresh collection returns [] without querying Milvus."""
    assert vector_index.search(1, "anything", 5) == []
    assert milvus.search_limits == []
    assert milvus.has_collection("user_1_notes")


def test_search_clamps_k_to_row_count(vector_index: VectorIndex, milvus: FakeMilvusClient) -> None:
    """k=5 over two rows queries with limit 2 and ranks the exact match first."""
    vector_index.upsert(1, "a", "coffee beans and oat milk")
    vector_index.upsert(1, "b", "billing cron migration")

    results = vector_index.search(1, "coffee beans and oat milk", 5)

    assert milvus.search_limits == [2]
    assert len(results) == 2
    assert results[0].doc_id == "a"
    assert results[0].content == "coffee beans and oat milk"
    assert results[0].score >= results[1].score


def test_search_steps_down_until_limit_is_accepted() -> None:
    """Rejected limits are retried with strictly smaller ones until one succeeds."""
    milvus = FakeMilvusClient(max_limit=2)
    index = VectorIndex(milvus, embed_fn=fake_embed, dim=FAKE_DIM)
    for i in range(5):
        index.upsert(1, f"n{i}", f"note number {i}")

    results = index.search(1, "note", 5)

    assert milvus.search_limits == [5, 4, 3, 2]
    assert len(results) == 2


def test_search_raises_when_every_attempt_fails() -> None:
    """When every limit down to 1 is rejected, VectorSearchError is raised."""
    milvus = FakeMilvusClient(max_limit=0)
    index = VectorIndex(milvus, embed_fn=fake_embed, dim=FAKE_DIM)
    index.upsert(1, "a", "first")
    index.upsert(1, "b", "second")

    with pytest.raises(VectorSearchError):
        index.search(1, "first", 3)
    assert milvus.search_limits == [2, 1]


def test_users_never_see_each_others_notes(vector_index: VectorIndex) -> None:
    """A note indexed for one user is invisible to another user's search."""
    vector_index.upsert(1, "mine", "secret project plan")

    assert vector_index.search(2, "secret project plan", 5) == []
    assert [r.doc_id for r in vector_index.search(1, "secret project plan", 5)] == ["mine"]


def test_upsert_same_id_updates_in_place(vector_index: VectorIndex, milvus: FakeMilvusClient) -> None:
    """Re-upserting a doc id replaces its content instead of adding a row."""
    vector_index.upsert(1, "a", "old text")
    vector_index.upsert(1, "a", "new text")

    assert milvus.get_collection_stats("user_1_notes") == {"row_count": 1}
    assert vector_index.search(1, "text", 5)[0].content == "new text"


def test_delete_removes_document(vector_index: VectorIndex) -> None:
    """A deleted doc id no longer appears in results."""
    vector_index.upsert(1, "a", "to be removed")
    vector_index.delete(1, "a")

    assert vector_index.search(1, "removed", 5) == []


def test_tag_filter_restricts_hits(vector_index: VectorIndex, milvus: FakeMilvusClient) -> None:
    """A tag filter keeps only notes whose tags contain it."""
    vector_index.upsert(1, "w", "quarterly plan #work", {"tags": "#work"})
    vector_index.upsert(1, "p", "quarterly plan #personal", {"tags": "#personal"})

    results = vector_index.search(1, "quarterly plan", 5, tag_filter="#work")

    assert [r.doc_id for r in results] == ["w"]
    assert milvus.search_filters[-1] == 'tags like "%#work%"'


def test_tag_filter_underscore_is_literal(vector_index: VectorIndex) -> None:
    """An underscore in the tag filter does not act as a single-character wildcard."""
    vector_index.upsert(1, "exact", "plan #my_tag", {"tags": "#my_tag"})
    vector_index.upsert(1, "other", "plan #myXtag", {"tags": "#myXtag"})

    results = vector_index.search(1, "plan", 5, tag_filter="#my_tag")

    assert [r.doc_id for r in results] == ["exact"]


class TestReadWriteLock:
    """Tests for ReadWriteLock exclusion."""

    def test_nested_readers_do_not_deadlock(self) -> None:
        """A reader may take the read side again while already holding it."""
        lock = ReadWriteLock()
        with lock.read():
            with lock.read():
                pass
        with lock.write():
            pass

    def test_readers_share_the_lock(self) -> None:
        """A second thread can read while another reader holds the lock."""
        lock = ReadWriteLock()
        entered = threading.Event()

        def reader() -> None:
            with lock.read():
                entered.set()

        with lock.read():
            t = threading.Thread(target=reader)
            t.start()
            assert entered.wait(1.0)
        t.join(1.0)

    def test_writer_waits_for_reader(self) -> None:
        """write() blocks while a reader holds the lock and proceeds once it is released."""
        lock = ReadWriteLock()
        entered = threading.Event()

        def writer() -> None:
            with lock.write():
                entered.set()

        with lock.read():
            t = threading.Thread(target=writer)
            t.start()
            assert not entered.wait(0.2)
        assert entered.wait(1.0)
        t.join(1.0)
        assert not t.is_alive()

    def test_reader_waits_for_writer(self) -> None:
        """read() blocks while a writer holds the lock and proceeds once it is released."""
        lock = ReadWriteLock()
        entered = threading.Event()

        def reader() -> None:
            with lock.read():
                entered.set()

        with lock.write():
            t = threading.Thread(target=reader)
            t.start()
            assert not entered.wait(0.2)
        assert entered.wait(1.0)
        t.join(1.0)
        assert not t.is_alive()

    def test_writers_exclude_each_other(self) -> None:
        """A second writer waits for the first to finish."""
        lock = ReadWriteLock()
        entered = threading.Event()

        def writer() -> None:
            with lock.write():
                entered.set()

        with lock.write():
            t = threading.Thread(target=writer)
            t.start()
            assert not entered.wait(0.2)
        assert entered.wait(1.0)
        t.join(1.0)
