"""Retention sweeps and health reporting.

The sweeper scores every entry that is neither core nor protected.
Entries below the delete threshold are removed (unless dry run); entries
in the band between the delete and flag thresholds are only reported.

Scoring and deletion are separate steps without a lock between them, so
an entry written in between may be deleted on a stale score. The window
is short and the sweep is an advisory, bulk operation.
"""

import logging
from collections.abc import Callable
from datetime import datetime
from typing import Any

from ..errors import StoreError
from .models import HealthReport, KnowledgeEntry, MemoryType, PruneResult, ScoredEntry
from .retention import DEFAULT_POLICY, RetentionPolicy, health_bucket, score_entry
from .store import KnowledgeStore

logger = logging.getLogger(__name__)

HEALTH_BUCKETS = ("healthy", "aging", "stale", "decay")
REPORT_LIST_LIMIT = 10


class PruningSweeper:
    """Scores the store and removes entries that decayed away."""

    def __init__(
        self, store: KnowledgeStore, policy: RetentionPolicy = DEFAULT_POLICY
    ) -> None:
        """Initialize the sweeper.

        Args:
            store: The KnowledgeStore to sweep.
            policy: Retention parameters, including the thresholds.
        """
        self.store = store
        self.policy = policy

    def _score(self, entry: KnowledgeEntry, now: datetime) -> ScoredEntry:
        return ScoredEntry(
            id=entry.id,
            topic=entry.topic,
            source=entry.source,
            memory_type=entry.memory_type,
            score=score_entry(entry, now=now, policy=self.policy),
        )

    def score_candidates(self) -> list[ScoredEntry]:
        """Score all prunable entries, lowest score first.

        Core and protected entries are never candidates.
        """
        now = self.store.now()
        entries = self.store.get_all(exclude_type=MemoryType.CORE)
        scored = [self._score(e, now) for e in entries if not e.is_protected]
        scored.sort(key=lambda s: (s.score, s.id))
        return scored

    def prune(self, dry_run: bool = True) -> PruneResult:
        """Run a sweep.

        Args:
            dry_run: Only report; delete nothing.

        Returns:
            PruneResult with the deletion candidates and flagged entries.
        """
        result = PruneResult(dry_run=dry_run)
        for scored in self.score_candidates():
            if scored.score < self.policy.delete_threshold:
                result.deleted.append(scored)
            elif scored.score < self.policy.flag_threshold:
                result.flagged.append(scored)

        if not dry_run and result.deleted:
            removed = self.store.delete_many([s.id for s in result.deleted])
            logger.info("Pruned %d stale entries", removed)

        return result

    def health_report(self) -> HealthReport:
        """Diagnostic snapshot of the store.

        Every section is computed on its own; a failing section is left
        at its empty default and named in ``report.errors``.
        """
        report = HealthReport()

        def section(name: str, compute: Callable[[], Any]) -> Any:
            try:
                return compute()
            except StoreError as e:
                logger.warning("Health report section %s failed: %s", name, e)
                report.errors.append(name)
                return None

        total = section("total", self.store.count)
        if total is not None:
            report.total = total

        by_type = section("by_type", lambda: self.store.count_by("memory_type"))
        if by_type is not None:
            report.by_type = by_type

        by_source = section("by_source", lambda: self.store.count_by("source"))
        if by_source is not None:
            report.by_source = by_source

        distribution = section("score_distribution", self._score_distribution)
        if distribution is not None:
            report.score_distribution = distribution

        never = section(
            "never_accessed", lambda: self.store.never_accessed(REPORT_LIST_LIMIT)
        )
        if never is not None:
            report.never_accessed = [
                {
                    "id": e.id,
                    "topic": e.topic,
                    "source": e.source,
                    "created_at": e.created_at.isoformat(),
                }
                for e in never
            ]

        top = section("top_accessed", lambda: self.store.most_accessed(REPORT_LIST_LIMIT))
        if top is not None:
            report.top_accessed = [
                {
                    "id": e.id,
                    "topic": e.topic,
                    "access_count": e.access_count,
                    "memory_type": e.memory_type.value,
                }
                for e in top
            ]

        stale = section("stale_candidates", self.score_candidates)
        if stale is not None:
            report.stale_candidates = [
                s for s in stale if s.score < self.policy.flag_threshold
            ][:REPORT_LIST_LIMIT]

        return report

    def _score_distribution(self) -> dict[str, int]:
        now = self.store.now()
        counts = dict.fromkeys(HEALTH_BUCKETS, 0)
        for entry in self.store.get_all():
            score = score_entry(entry, now=now, policy=self.policy)
            counts[health_bucket(score, self.policy)] += 1
        return counts
