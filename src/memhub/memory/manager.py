"""Knowledge manager: the operation set exposed to agents and tools."""

from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import timedelta
from typing import TYPE_CHECKING, Any

from ..errors import ValidationError
from .classifier import classify
from .duplicates import DEFAULT_THRESHOLD, DuplicateDetector
from .merge import MergeEngine
from .models import (
    KNOWN_SOURCES,
    DuplicatePair,
    HealthReport,
    KnowledgeEntry,
    MemoryType,
    PruneResult,
    TopicSummary,
)
from .pruning import PruningSweeper
from .retention import DEFAULT_POLICY, RetentionPolicy, score_entry
from .search import MAX_SEARCH_LIMIT, AccessRecorder, SearchEngine
from .store import KnowledgeStore

if TYPE_CHECKING:
    from ..logging import JSONLLogger

logger = logging.getLogger(__name__)

MAX_TOPIC_LENGTH = 100
MAX_CONTENT_LENGTH = 2000
MAX_USER_LENGTH = 50
MAX_TAGS = 10
MAX_RECENT_HOURS = 720
MAX_RECENT_LIMIT = 50
MIN_DUPLICATE_THRESHOLD = 0.3
MAX_DUPLICATE_THRESHOLD = 0.95


def _require_text(name: str, value: Any, max_length: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"'{name}' must be a non-empty string")
    if len(value) > max_length:
        raise ValidationError(f"'{name}' must be at most {max_length} characters")
    return value


def _require_int(name: str, value: Any, minimum: int, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f"'{name}' must be an integer")
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ValidationError(f"'{name}' must be {bounds}")
    return value


def _require_number(name: str, value: Any, minimum: float, maximum: float) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"'{name}' must be a number")
    if not math.isfinite(value) or not minimum <= value <= maximum:
        raise ValidationError(f"'{name}' must be between {minimum} and {maximum}")
    return float(value)


def _require_source(value: Any, name: str = "source") -> str:
    if value not in KNOWN_SOURCES:
        raise ValidationError(
            f"'{name}' must be one of: {', '.join(KNOWN_SOURCES)}"
        )
    return value


def _require_tags(value: Any) -> list[str]:
    """Validate tags and drop duplicates, keeping first occurrence order."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple)):
        raise ValidationError("'tags' must be a list of strings")
    if len(value) > MAX_TAGS:
        raise ValidationError(f"'tags' must contain at most {MAX_TAGS} items")
    tags: list[str] = []
    for tag in value:
        if not isinstance(tag, str) or not tag.strip():
            raise ValidationError("'tags' must contain non-empty strings")
        tag = tag.strip()
        if tag not in tags:
            tags.append(tag)
    return tags


def _require_memory_type(value: Any) -> MemoryType:
    if isinstance(value, MemoryType):
        return value
    try:
        return MemoryType(value)
    except ValueError:
        options = ", ".join(t.value for t in MemoryType)
        raise ValidationError(f"'memory_type' must be one of: {options}") from None


class KnowledgeManager:
    """Orchestrates the knowledge store and the retention lifecycle.

    Every public method validates its input before touching the store
    and raises ValidationError on bad input. Store failures surface as
    StoreError. Missing entries are reported as False, not raised.
    """

    def __init__(
        self,
        store: KnowledgeStore,
        policy: RetentionPolicy = DEFAULT_POLICY,
        recorder: AccessRecorder | None = None,
        event_log: JSONLLogger | None = None,
    ) -> None:
        """Initialize the manager.

        Args:
            store: The KnowledgeStore for persistence.
            policy: Retention parameters used for scoring and pruning.
            recorder: Access recorder for search hits (one is created if None).
            event_log: Optional structured log for mutating operations.
        """
        self.store = store
        self.policy = policy
        self.recorder = recorder or AccessRecorder(store)
        self.event_log = event_log
        self.search_engine = SearchEngine(store, self.recorder)
        self.detector = DuplicateDetector(store)
        self.merger = MergeEngine(store)
        self.sweeper = PruningSweeper(store, policy)

    def _log(self, event: str, **fields: Any) -> None:
        # Runs after the store commit; a log write failure must not fail the call
        if self.event_log is None:
            return
        try:
            self.event_log.log(event, **fields)
        except OSError as e:
            logger.warning("Could not write %s event: %s", event, e)

    def save(
        self,
        topic: str,
        content: str,
        source: str,
        tags: list[str] | None = None,
        confidence: float = 1.0,
        user_id: str = "unknown",
        memory_type: MemoryType | str | None = None,
    ) -> int:
        """Save knowledge, updating in place if (topic, source, content) exists.

        Args:
            topic: Topic label (1-100 chars).
            content: Knowledge text (1-2000 chars).
            source: Known provenance tag.
            tags: Up to 10 tags.
            confidence: Confidence in [0, 1].
            user_id: Developer identifier (up to 50 chars).
            memory_type: Explicit decay class; classified from topic/tags if None.

        Returns:
            The entry id.
        """
        topic = _require_text("topic", topic, MAX_TOPIC_LENGTH)
        content = _require_text("content", content, MAX_CONTENT_LENGTH)
        source = _require_source(source)
        tags = _require_tags(tags)
        confidence = _require_number("confidence", confidence, 0.0, 1.0)
        user_id = _require_text("user", user_id, MAX_USER_LENGTH)
        resolved = (
            _require_memory_type(memory_type)
            if memory_type is not None
            else classify(topic, tags)
        )

        entry_id = self.store.upsert(
            topic, content, source, tags, confidence, user_id, resolved
        )
        self._log(
            "knowledge_saved",
            entry_id=entry_id,
            topic=topic,
            source=source,
            memory_type=resolved.value,
        )
        return entry_id

    def get(self, entry_id: int) -> KnowledgeEntry | None:
        """Get an entry by id without recording an access."""
        return self.store.get(_require_int("id", entry_id, 1))

    def search(
        self,
        query: str,
        source: str | None = None,
        tags: list[str] | None = None,
        limit: int = 10,
    ) -> list[KnowledgeEntry]:
        """Search entries by relevance; see SearchEngine.search."""
        if not isinstance(query, str) or not query.strip():
            raise ValidationError("'query' must be a non-empty string")
        if source is not None:
            _require_source(source)
        tags = _require_tags(tags) or None
        limit = _require_int("limit", limit, 1, MAX_SEARCH_LIMIT)
        return self.search_engine.search(query, source, tags, limit)

    def recent_changes(
        self, hours: float = 48, source: str | None = None, limit: int = 20
    ) -> list[KnowledgeEntry]:
        """Entries created within the last ``hours``, newest first."""
        hours = _require_number("hours", hours, 1, MAX_RECENT_HOURS)
        if source is not None:
            _require_source(source)
        limit = _require_int("limit", limit, 1, MAX_RECENT_LIMIT)
        since = self.store.now() - timedelta(hours=hours)
        return self.store.recent(since, source, limit)

    def list_topics(self, source: str | None = None) -> list[TopicSummary]:
        """Group entries by topic with counts, sources and average retention.

        Topics are ordered by their most recent update, newest first.
        """
        if source is not None:
            _require_source(source)
        now = self.store.now()
        groups: dict[str, list[KnowledgeEntry]] = defaultdict(list)
        for entry in self.store.get_all(source=source):
            groups[entry.topic].append(entry)

        summaries = []
        for topic, entries in groups.items():
            scores = [score_entry(e, now=now, policy=self.policy) for e in entries]
            summaries.append(
                TopicSummary(
                    topic=topic,
                    count=len(entries),
                    last_updated=max(e.updated_at for e in entries),
                    sources=sorted({e.source for e in entries}),
                    avg_retention=round(sum(scores) / len(scores), 2),
                )
            )
        summaries.sort(key=lambda s: s.last_updated, reverse=True)
        return summaries

    def delete(self, entry_id: int) -> bool:
        """Delete an entry; False if it did not exist."""
        entry_id = _require_int("id", entry_id, 1)
        deleted = self.store.delete(entry_id)
        if deleted:
            self._log("knowledge_deleted", entry_id=entry_id)
        return deleted

    def health_report(self) -> HealthReport:
        """Diagnostic snapshot; see PruningSweeper.health_report."""
        return self.sweeper.health_report()

    def find_duplicates(self, threshold: float = DEFAULT_THRESHOLD) -> list[DuplicatePair]:
        """Near-duplicate pairs above ``threshold`` (0.3-0.95)."""
        threshold = _require_number(
            "threshold", threshold, MIN_DUPLICATE_THRESHOLD, MAX_DUPLICATE_THRESHOLD
        )
        return self.detector.find_duplicates(threshold)

    def merge(
        self, keep_id: int, delete_id: int, merged_content: str | None = None
    ) -> bool:
        """Merge ``delete_id`` into ``keep_id``; False if either is missing."""
        keep_id = _require_int("keep_id", keep_id, 1)
        delete_id = _require_int("delete_id", delete_id, 1)
        if keep_id == delete_id:
            raise ValidationError("'keep_id' and 'delete_id' must differ")
        if merged_content is not None:
            merged_content = _require_text(
                "merged_content", merged_content, MAX_CONTENT_LENGTH
            )

        merged = self.merger.merge(keep_id, delete_id, merged_content)
        if merged:
            self._log("knowledge_merged", keep_id=keep_id, delete_id=delete_id)
        return merged

    def prune(self, dry_run: bool = True) -> PruneResult:
        """Sweep stale entries; see PruningSweeper.prune."""
        if not isinstance(dry_run, bool):
            raise ValidationError("'dry_run' must be a boolean")
        result = self.sweeper.prune(dry_run=dry_run)
        self._log(
            "prune_run",
            dry_run=dry_run,
            deleted=[s.id for s in result.deleted],
            flagged=[s.id for s in result.flagged],
        )
        return result

    def reclassify(self) -> int:
        """Promote 'pattern' entries whose topic now matches a stronger class.

        Only core and architecture promotions are applied, so entries
        saved with an explicit class are left alone unless they are
        still at the default.

        Returns:
            Number of entries changed.
        """
        updates: dict[int, MemoryType] = {}
        for entry in self.store.get_all():
            if entry.memory_type is not MemoryType.PATTERN:
                continue
            resolved = classify(entry.topic, [])
            if resolved in (MemoryType.CORE, MemoryType.ARCHITECTURE):
                updates[entry.id] = resolved
        changed = self.store.set_memory_types(updates)
        if changed:
            self._log("knowledge_reclassified", count=changed)
        return changed

    def flush(self) -> None:
        """Wait for background access updates."""
        self.recorder.flush()

    def close(self) -> None:
        """Stop background work."""
        self.recorder.close()
