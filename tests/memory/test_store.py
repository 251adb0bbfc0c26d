"""Tests for KnowledgeStore."""

import sqlite3
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta
from pathlib import Path

import pytest

from memhub.errors import StoreError
from memhub.memory import KnowledgeStore, MemoryType
from memhub.memory.store import MergedValues, format_timestamp, parse_timestamp


def save(store: KnowledgeStore, topic="pricing", content="Base plan costs 49 EUR",
         source="website", tags=None, confidence=1.0, user_id="unknown",
         memory_type=MemoryType.PATTERN) -> int:
    return store.upsert(topic, content, source, tags or [], confidence, user_id, memory_type)


class TestInitDb:
    """Tests for schema creation."""

    def test_creates_tables(self, store: KnowledgeStore):
        """init_db creates the table and the full-text index."""
        conn = sqlite3.connect(store.db_path)
        names = {
            row[0]
            for row in conn.execute("SELECT name FROM sqlite_master").fetchall()
        }
        conn.close()
        assert "knowledge" in names
        assert "knowledge_fts" in names

    def test_idempotent(self, store: KnowledgeStore):
        """init_db can be called repeatedly without losing data."""
        entry_id = save(store)
        store.init_db()
        assert store.get(entry_id) is not None

    def test_creates_parent_directory(self, tmp_path: Path):
        store = KnowledgeStore(tmp_path / "nested" / "dir" / "memory.db")
        store.init_db()
        assert store.db_path.exists()

    def test_gives_up_after_retries(self, tmp_path: Path):
        """A path that can never be created fails with StoreError."""
        blocker = tmp_path / "blocker"
        blocker.write_text("not a directory")
        store = KnowledgeStore(blocker / "memory.db")
        with pytest.raises(StoreError):
            store.init_db(retries=2, retry_delay=0)


class TestUpsert:
    """Tests for the natural-key upsert."""

    def test_insert_returns_id(self, store: KnowledgeStore):
        entry_id = save(store)
        entry = store.get(entry_id)
        assert entry.topic == "pricing"
        assert entry.content == "Base plan costs 49 EUR"
        assert entry.source == "website"
        assert entry.access_count == 0
        assert entry.last_accessed is None
        assert entry.created_at == entry.updated_at

    def test_same_key_keeps_id(self, store: KnowledgeStore, clock):
        """Saving the same (topic, source, content) updates in place."""
        first = save(store, tags=["a"], confidence=0.5, user_id="cpg")
        created = store.get(first).created_at
        clock.advance(hours=1)

        second = save(store, tags=["b"], confidence=0.9, user_id="ana")

        assert second == first
        assert store.count() == 1
        entry = store.get(first)
        assert entry.tags == ["b"]
        assert entry.confidence == 0.9
        assert entry.user_id == "ana"
        assert entry.created_at == created
        assert entry.updated_at > created

    def test_different_source_is_new_entry(self, store: KnowledgeStore):
        a = save(store, source="website")
        b = save(store, source="stripe")
        assert a != b
        assert store.count() == 2

    def test_upsert_preserves_access_stats(self, store: KnowledgeStore):
        entry_id = save(store)
        store.record_access([entry_id])
        save(store, tags=["again"])
        assert store.get(entry_id).access_count == 1

    def test_check_constraint_maps_to_store_error(self, store: KnowledgeStore):
        with pytest.raises(StoreError):
            save(store, confidence=2.0)

    def test_concurrent_saves_of_same_key(self, store: KnowledgeStore):
        """Racing saves of one natural key produce a single row."""
        with ThreadPoolExecutor(max_workers=8) as pool:
            ids = list(pool.map(lambda _: save(store), range(16)))
        assert len(set(ids)) == 1
        assert store.count() == 1


class TestDelete:
    """Tests for deletes."""

    def test_delete_existing(self, store: KnowledgeStore):
        entry_id = save(store)
        assert store.delete(entry_id) is True
        assert store.get(entry_id) is None

    def test_delete_missing(self, store: KnowledgeStore):
        assert store.delete(999) is False

    def test_delete_many(self, store: KnowledgeStore):
        ids = [save(store, content=f"fact {i}") for i in range(3)]
        assert store.delete_many(ids[:2] + [999]) == 2
        assert store.count() == 1
        assert store.delete_many([]) == 0

    def test_delete_removes_from_full_text_index(self, store: KnowledgeStore):
        entry_id = save(store, content="webhook secret rotated")
        store.delete(entry_id)
        assert store.full_text_search('"webhook"*') == []


class TestRecordAccess:
    """Tests for access statistics."""

    def test_increments_and_stamps(self, store: KnowledgeStore, clock):
        entry_id = save(store)
        clock.advance(days=2)
        assert store.record_access([entry_id]) == 1
        entry = store.get(entry_id)
        assert entry.access_count == 1
        assert entry.last_accessed == clock()

    def test_duplicate_ids_count_once(self, store: KnowledgeStore):
        entry_id = save(store)
        store.record_access([entry_id, entry_id])
        assert store.get(entry_id).access_count == 1

    def test_missing_ids_ignored(self, store: KnowledgeStore):
        assert store.record_access([42]) == 0
        assert store.record_access([]) == 0


class TestMergeEntries:
    """Tests for the transactional merge primitive."""

    def test_missing_entry_changes_nothing(self, store: KnowledgeStore):
        entry_id = save(store)
        called = []

        def combine(keep, dropped):
            called.append(True)
            return MergedValues(keep.content, keep.tags, 0, 1.0)

        assert store.merge_entries(entry_id, 999, combine) is False
        assert called == []
        assert store.get(entry_id) is not None

    def test_failure_in_combine_rolls_back(self, store: KnowledgeStore):
        a = save(store, content="first")
        b = save(store, content="second")

        def combine(keep, dropped):
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError):
            store.merge_entries(a, b, combine)
        assert store.count() == 2

    def test_unique_violation_rolls_back(self, store: KnowledgeStore):
        """Merged content colliding with another entry leaves everything intact."""
        a = save(store, content="A")
        b = save(store, content="B")
        save(store, content="C")

        with pytest.raises(StoreError):
            store.merge_entries(
                a, b, lambda keep, dropped: MergedValues("C", [], 0, 1.0)
            )
        assert store.get(a).content == "A"
        assert store.get(b) is not None
        assert store.count() == 3


class TestReads:
    """Tests for read queries."""

    def test_get_all_filters(self, store: KnowledgeStore):
        save(store, content="one", source="website")
        save(store, content="two", source="stripe", memory_type=MemoryType.CORE)
        assert len(store.get_all()) == 2
        assert [e.content for e in store.get_all(source="stripe")] == ["two"]
        assert [e.content for e in store.get_all(exclude_type=MemoryType.CORE)] == ["one"]

    def test_full_text_search_weights_topic(self, store: KnowledgeStore):
        """A match in the topic outranks a match in the content."""
        in_content = save(store, topic="notes", content="deploy steps")
        in_topic = save(store, topic="deploy", content="notes")
        results = store.full_text_search('"deploy"*')
        assert [r.id for r in results] == [in_topic, in_content]
        assert results[0].rank > results[1].rank

    def test_full_text_search_indexes_tags(self, store: KnowledgeStore):
        entry_id = save(store, topic="notes", content="misc", tags=["billing"])
        assert [r.id for r in store.full_text_search('"billing"*')] == [entry_id]

    def test_tag_filter_is_overlap(self, store: KnowledgeStore):
        a = save(store, content="alpha fact", tags=["config"])
        b = save(store, content="alpha thing", tags=["breaking-change", "other"])
        save(store, content="alpha rest", tags=["unrelated"])
        results = store.full_text_search(
            '"alpha"*', tags=["config", "breaking-change"]
        )
        assert sorted(r.id for r in results) == [a, b]

    def test_substring_search_ranks_by_fraction(self, store: KnowledgeStore):
        full = save(store, topic="alpha", content="bravo and charlie here")
        partial = save(store, topic="bravo notes", content="nothing else")
        save(store, topic="zulu", content="unrelated")
        results = store.substring_search(["alpha", "bravo", "charlie"])
        assert [r.id for r in results] == [full, partial]
        assert results[0].rank == pytest.approx(1.0)
        assert results[1].rank == pytest.approx(1 / 3)

    def test_substring_search_is_case_insensitive(self, store: KnowledgeStore):
        entry_id = save(store, content="Webhook SECRET")
        assert [r.id for r in store.substring_search(["secret"])] == [entry_id]

    def test_recent(self, store: KnowledgeStore, clock):
        old = save(store, content="old")
        clock.advance(hours=10)
        new = save(store, content="new")
        since = clock() - timedelta(hours=5)
        assert [e.id for e in store.recent(since)] == [new]
        assert old not in [e.id for e in store.recent(since)]

    def test_count_by(self, store: KnowledgeStore):
        save(store, content="one", source="website")
        save(store, content="two", source="website")
        save(store, content="three", source="stripe")
        assert store.count_by("source") == {"website": 2, "stripe": 1}
        assert store.count_by("memory_type") == {"pattern": 3}

    def test_sql_functions_registered(self, store: KnowledgeStore):
        with store._session() as conn:
            row = conn.execute(
                "SELECT similarity('pricing v2', 'pricing-v2'), icontains('ABC', 'b')"
            ).fetchone()
        assert tuple(row) == (1.0, 1)

    def test_similar_pairs(self, store: KnowledgeStore):
        a = save(store, topic="webhook", content="rotate the stripe webhook secret")
        b = save(store, topic="webhook", content="rotate the stripe webhook secrets")
        save(store, topic="godot", content="tablet build settings")

        pairs = store.similar_pairs(0.6, 50)

        assert len(pairs) == 1
        id_a, topic_a, id_b, topic_b, score = pairs[0]
        assert (id_a, topic_a, id_b, topic_b) == (a, "webhook", b, "webhook")
        assert 0.6 < score < 1.0

    def test_similar_pairs_limit(self, store: KnowledgeStore):
        for i in range(4):
            save(store, topic="deploy", content=f"release notes {i}")
        assert len(store.similar_pairs(0.3, 2)) == 2

    def test_count_by_rejects_other_columns(self, store: KnowledgeStore):
        with pytest.raises(ValueError):
            store.count_by("content")

    def test_never_and_most_accessed(self, store: KnowledgeStore, clock):
        a = save(store, content="one")
        clock.advance(hours=1)
        b = save(store, content="two")
        store.record_access([b])
        store.record_access([b])
        assert [e.id for e in store.never_accessed()] == [a]
        assert [e.id for e in store.most_accessed()] == [b, a]


class TestTimestamps:
    """Tests for timestamp serialization."""

    def test_round_trip_is_utc(self, clock):
        value = clock()
        assert parse_timestamp(format_timestamp(value)) == value
        assert format_timestamp(value).endswith("+00:00")

    def test_none(self):
        assert parse_timestamp(None) is None
