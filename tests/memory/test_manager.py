"""Tests for KnowledgeManager."""

import json
from pathlib import Path

import pytest

from memhub.errors import ValidationError
from memhub.logging import JSONLLogger
from memhub.memory import KnowledgeManager, KnowledgeStore, MemoryType


class TestSave:
    """Tests for KnowledgeManager.save."""

    def test_save_classifies(self, manager: KnowledgeManager):
        entry_id = manager.save("sheet-ids", "Orders sheet is 1AbC", "gas")
        assert manager.get(entry_id).memory_type is MemoryType.CORE

    def test_core_tag(self, manager: KnowledgeManager):
        """A 'core' tag overrides the topic."""
        entry_id = manager.save(
            "stripe-config", "Webhook secret rotated monthly", "stripe", tags=["core"]
        )
        entry = manager.get(entry_id)
        assert entry.memory_type is MemoryType.CORE
        assert entry.tags == ["core"]

    def test_explicit_memory_type(self, manager: KnowledgeManager):
        entry_id = manager.save("pricing", "Plans changed", "website", memory_type="decision")
        assert manager.get(entry_id).memory_type is MemoryType.DECISION

    def test_defaults(self, manager: KnowledgeManager):
        entry = manager.get(manager.save("notes", "misc", "devops"))
        assert entry.user_id == "unknown"
        assert entry.confidence == 1.0
        assert entry.tags == []

    def test_tags_are_cleaned(self, manager: KnowledgeManager):
        entry_id = manager.save("notes", "misc", "devops", tags=[" config ", "config", "x"])
        assert manager.get(entry_id).tags == ["config", "x"]

    def test_resave_is_idempotent(self, manager: KnowledgeManager):
        first = manager.save("notes", "misc", "devops", confidence=0.5)
        second = manager.save("notes", "misc", "devops", confidence=0.7)
        assert first == second
        assert manager.get(first).confidence == 0.7

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"topic": ""},
            {"topic": "   "},
            {"topic": "t" * 101},
            {"content": "c" * 2001},
            {"source": "nowhere"},
            {"tags": ["t"] * 11},
            {"tags": "config"},
            {"tags": [""]},
            {"confidence": 1.5},
            {"confidence": -0.1},
            {"confidence": float("nan")},
            {"confidence": True},
            {"user_id": "u" * 51},
            {"memory_type": "ephemeral"},
        ],
    )
    def test_rejects_invalid_input(self, manager: KnowledgeManager, kwargs):
        args = {"topic": "notes", "content": "misc", "source": "devops", **kwargs}
        with pytest.raises(ValidationError):
            manager.save(**args)
        assert manager.store.count() == 0

    def test_length_limits_are_inclusive(self, manager: KnowledgeManager):
        entry_id = manager.save("t" * 100, "c" * 2000, "devops", tags=[f"t{i}" for i in range(10)])
        assert manager.get(entry_id) is not None


class TestSearch:
    """Tests for KnowledgeManager.search."""

    def test_search_records_access(self, manager: KnowledgeManager):
        entry_id = manager.save("stripe-webhooks", "Webhook secret rotated", "stripe")
        results = manager.search("webhook")
        manager.flush()
        assert [r.id for r in results] == [entry_id]
        assert manager.get(entry_id).access_count == 1

    def test_get_does_not_record_access(self, manager: KnowledgeManager):
        entry_id = manager.save("notes", "misc", "devops")
        manager.get(entry_id)
        manager.flush()
        assert manager.get(entry_id).access_count == 0

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"query": ""},
            {"query": None},
            {"source": "nowhere"},
            {"limit": 0},
            {"limit": 51},
            {"limit": "5"},
        ],
    )
    def test_rejects_invalid_input(self, manager: KnowledgeManager, kwargs):
        args = {"query": "notes", **kwargs}
        with pytest.raises(ValidationError):
            manager.search(**args)

    def test_empty_tag_list_means_no_filter(self, manager: KnowledgeManager):
        manager.save("notes", "misc", "devops", tags=["a"])
        assert len(manager.search("notes", tags=[])) == 1


class TestRecentChanges:
    """Tests for KnowledgeManager.recent_changes."""

    def test_window_and_order(self, manager: KnowledgeManager, clock):
        old = manager.save("notes", "old", "devops")
        clock.advance(hours=50)
        first = manager.save("notes", "first", "devops")
        clock.advance(hours=1)
        second = manager.save("notes", "second", "website")

        assert [e.id for e in manager.recent_changes()] == [second, first]
        assert [e.id for e in manager.recent_changes(hours=72)] == [second, first, old]
        assert [e.id for e in manager.recent_changes(source="devops")] == [first]
        assert [e.id for e in manager.recent_changes(limit=1)] == [second]

    @pytest.mark.parametrize("kwargs", [{"hours": 0}, {"hours": 721}, {"limit": 51}])
    def test_rejects_invalid_input(self, manager: KnowledgeManager, kwargs):
        with pytest.raises(ValidationError):
            manager.recent_changes(**kwargs)


class TestListTopics:
    """Tests for KnowledgeManager.list_topics."""

    def test_groups_by_topic(self, manager: KnowledgeManager, clock):
        manager.save("deploy", "step one", "devops")
        manager.save("deploy", "step two", "website")
        clock.advance(hours=1)
        manager.save("notes", "misc", "devops")

        topics = manager.list_topics()

        assert [t.topic for t in topics] == ["notes", "deploy"]
        deploy = topics[1]
        assert deploy.count == 2
        assert deploy.sources == ["devops", "website"]
        assert deploy.avg_retention == 0.7

    def test_source_filter(self, manager: KnowledgeManager):
        manager.save("deploy", "step one", "devops")
        manager.save("pricing", "plans", "website")
        assert [t.topic for t in manager.list_topics(source="website")] == ["pricing"]


class TestDelete:
    """Tests for KnowledgeManager.delete."""

    def test_delete(self, manager: KnowledgeManager):
        entry_id = manager.save("notes", "misc", "devops")
        assert manager.delete(entry_id) is True
        assert manager.delete(entry_id) is False

    @pytest.mark.parametrize("value", [0, -1, "1", True, None])
    def test_rejects_invalid_id(self, manager: KnowledgeManager, value):
        with pytest.raises(ValidationError):
            manager.delete(value)


class TestLifecycleOperations:
    """Tests for duplicates, merge, prune and reclassify."""

    def test_find_duplicates_threshold_range(self, manager: KnowledgeManager):
        with pytest.raises(ValidationError):
            manager.find_duplicates(0.2)
        with pytest.raises(ValidationError):
            manager.find_duplicates(0.96)
        assert manager.find_duplicates(0.3) == []

    def test_merge(self, manager: KnowledgeManager):
        a = manager.save("pricing-v2", "monthly plan costs forty euros", "website")
        b = manager.save("pricing v2", "monthly plan costs fifty euros", "website")
        assert manager.merge(a, b, "monthly plan costs 45 euros") is True
        assert manager.get(b) is None
        assert manager.get(a).content == "monthly plan costs 45 euros"

    def test_merge_same_id_rejected(self, manager: KnowledgeManager):
        entry_id = manager.save("notes", "misc", "devops")
        with pytest.raises(ValidationError):
            manager.merge(entry_id, entry_id)
        assert manager.get(entry_id) is not None

    def test_merge_missing(self, manager: KnowledgeManager):
        entry_id = manager.save("notes", "misc", "devops")
        assert manager.merge(entry_id, 999) is False

    def test_merge_rejects_empty_content(self, manager: KnowledgeManager):
        a = manager.save("notes", "one", "devops")
        b = manager.save("notes", "two", "devops")
        with pytest.raises(ValidationError):
            manager.merge(a, b, "")

    def test_prune_requires_bool(self, manager: KnowledgeManager):
        with pytest.raises(ValidationError):
            manager.prune(dry_run="no")

    def test_prune(self, manager: KnowledgeManager, clock):
        stale = manager.save("build-cache", "clear weekly", "devops")
        core = manager.save("agent-rules", "never push to main", "devops")
        clock.advance(days=365)
        result = manager.prune(dry_run=False)
        assert [s.id for s in result.deleted] == [stale]
        assert manager.get(core) is not None

    def test_reclassify(self, manager: KnowledgeManager):
        promoted = manager.save("stripe-api-key", "rotated", "stripe", memory_type="pattern")
        kept = manager.save("notes", "misc", "devops", memory_type="pattern")
        decision = manager.save("pricing", "chose yearly", "website", memory_type="decision")

        assert manager.reclassify() == 1
        assert manager.get(promoted).memory_type is MemoryType.CORE
        assert manager.get(kept).memory_type is MemoryType.PATTERN
        assert manager.get(decision).memory_type is MemoryType.DECISION
        assert manager.reclassify() == 0


class TestEventLog:
    """Tests for structured events."""

    def test_mutations_are_logged(self, store: KnowledgeStore, tmp_path: Path):
        event_log = JSONLLogger(log_dir=tmp_path / "logs")
        manager = KnowledgeManager(store, event_log=event_log)
        try:
            a = manager.save("notes", "one", "devops")
            b = manager.save("notes", "two", "devops")
            manager.merge(a, b)
            manager.delete(a)
            manager.delete(a)
            manager.prune()
        finally:
            manager.close()

        lines = event_log.log_path.read_text().strip().split("\n")
        events = [json.loads(line) for line in lines]
        assert [e["event"] for e in events] == [
            "knowledge_saved",
            "knowledge_saved",
            "knowledge_merged",
            "knowledge_deleted",
            "prune_run",
        ]
        assert events[0]["entry_id"] == a
        assert events[0]["extra"]["memory_type"] == "pattern"
        assert events[-1]["extra"]["dry_run"] is True

    def test_log_write_failure_keeps_result(self, store: KnowledgeStore, tmp_path: Path, caplog):
        """Operations report their outcome even when the event log cannot be written."""
        # Parent directory of the log file does not exist, so every append fails
        event_log = JSONLLogger(log_dir=tmp_path / "logs", filename="missing/events.jsonl")
        manager = KnowledgeManager(store, event_log=event_log)
        try:
            a = manager.save("deploy", "notes", "website")
            b = manager.save("deploy", "more notes", "website")
            assert isinstance(a, int)
            assert manager.merge(a, b) is True
            assert manager.delete(a) is True
            assert manager.prune().dry_run is True
        finally:
            manager.close()

        assert store.get(a) is None
        assert not event_log.log_path.exists()
        assert "Could not write knowledge_saved event" in caplog.text
