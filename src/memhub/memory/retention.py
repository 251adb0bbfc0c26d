"""Retention scoring.

A retention score in [0, 1] says how trustworthy and relevant an entry
still is. It is computed on demand from the entry's decay class,
confidence, age and access history, and is never stored.

Formula for non-immune entries:

    importance = confidence * exp(-decay_rate * days_since_created)
    access     = min(ln(access_count + 1) / ln(50), 1.0)
    recency    = max(1 - days_since_access / 180, 0.0)
    score      = clamp(0.4 * importance + 0.3 * access + 0.3 * recency, 0, 1)

Entries tagged 'protected' always score 1.0 and core entries never
fall below 0.9.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone

from .models import PROTECTED_TAG, KnowledgeEntry, MemoryType, has_tag

SECONDS_PER_DAY = 24 * 60 * 60

DEFAULT_DECAY_RATES: dict[MemoryType, float] = {
    MemoryType.ARCHITECTURE: 0.001,
    MemoryType.PATTERN: 0.005,
    MemoryType.DECISION: 0.01,
}


@dataclass
class RetentionPolicy:
    """Tunable parameters of the retention model.

    The defaults are the reference policy; changing them changes which
    entries get pruned.

    Attributes:
        importance_weight: Weight of decayed confidence.
        access_weight: Weight of access frequency.
        recency_weight: Weight of access recency.
        recency_window_days: Days after the last access at which recency hits 0.
        access_saturation: Access count at which frequency saturates at 1.0.
        core_floor: Minimum score of core entries.
        decay_rates: Per-day decay rate of each non-core class.
        delete_threshold: Sweep deletes entries scoring below this.
        flag_threshold: Sweep flags entries scoring below this.
        healthy_threshold: Health report lower bound of the 'healthy' bucket.
    """

    importance_weight: float = 0.4
    access_weight: float = 0.3
    recency_weight: float = 0.3
    recency_window_days: float = 180.0
    access_saturation: int = 50
    core_floor: float = 0.9
    decay_rates: dict[MemoryType, float] = field(
        default_factory=lambda: dict(DEFAULT_DECAY_RATES)
    )
    delete_threshold: float = 0.1
    flag_threshold: float = 0.3
    healthy_threshold: float = 0.7

    def __post_init__(self) -> None:
        """Validate policy values."""
        weights = self.importance_weight + self.access_weight + self.recency_weight
        if not math.isclose(weights, 1.0, abs_tol=1e-9):
            raise ValueError("retention weights must sum to 1.0")
        if self.recency_window_days <= 0:
            raise ValueError("recency_window_days must be positive")
        if self.access_saturation < 2:
            raise ValueError("access_saturation must be at least 2")
        if not 0.0 <= self.delete_threshold <= self.flag_threshold <= self.healthy_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 <= delete <= flag <= healthy <= 1"
            )
        if any(rate < 0 for rate in self.decay_rates.values()):
            raise ValueError("decay rates must be non-negative")

    def decay_rate(self, memory_type: MemoryType) -> float:
        """Per-day decay rate for a class (pattern rate for unknown classes)."""
        return self.decay_rates.get(
            memory_type, self.decay_rates.get(MemoryType.PATTERN, 0.005)
        )


DEFAULT_POLICY = RetentionPolicy()


def _days_between(earlier: datetime, now: datetime) -> float:
    # Clock skew can put timestamps slightly in the future
    return max((now - earlier).total_seconds() / SECONDS_PER_DAY, 0.0)


def retention_score(
    confidence: float,
    access_count: int,
    last_accessed: datetime | None,
    memory_type: MemoryType,
    tags: list[str],
    created_at: datetime,
    now: datetime | None = None,
    policy: RetentionPolicy = DEFAULT_POLICY,
) -> float:
    """Compute the retention score of an entry.

    Args:
        confidence: Entry confidence in [0, 1].
        access_count: Number of recorded accesses.
        last_accessed: Last access time, falls back to created_at if None.
        memory_type: Decay class.
        tags: Entry tags ('protected' makes the entry immune).
        created_at: Creation time.
        now: Reference time (defaults to current UTC time).
        policy: Scoring parameters.

    Returns:
        Score between 0.0 and 1.0.

    Example:
        >>> from datetime import datetime, timezone
        >>> now = datetime.now(timezone.utc)
        >>> round(retention_score(1.0, 0, None, MemoryType.PATTERN, [], now, now=now), 2)
        0.7
    """
    if has_tag(tags, PROTECTED_TAG):
        return 1.0

    if memory_type is MemoryType.CORE:
        return max(confidence, policy.core_floor)

    now = now or datetime.now(timezone.utc)
    decay_rate = policy.decay_rate(memory_type)

    days_since_created = _days_between(created_at, now)
    days_since_access = _days_between(last_accessed or created_at, now)

    importance = confidence * math.exp(-decay_rate * days_since_created)
    access_frequency = min(
        math.log(max(access_count, 0) + 1) / math.log(policy.access_saturation), 1.0
    )
    recency = max(1.0 - days_since_access / policy.recency_window_days, 0.0)

    score = (
        policy.importance_weight * importance
        + policy.access_weight * access_frequency
        + policy.recency_weight * recency
    )
    return max(0.0, min(1.0, score))


def score_entry(
    entry: KnowledgeEntry,
    now: datetime | None = None,
    policy: RetentionPolicy = DEFAULT_POLICY,
) -> float:
    """Retention score of a stored entry."""
    return retention_score(
        entry.confidence,
        entry.access_count,
        entry.last_accessed,
        entry.memory_type,
        entry.tags,
        entry.created_at,
        now=now,
        policy=policy,
    )


def health_bucket(score: float, policy: RetentionPolicy = DEFAULT_POLICY) -> str:
    """Name the health bucket a score falls in."""
    if score >= policy.healthy_threshold:
        return "healthy"
    if score >= policy.flag_threshold:
        return "aging"
    if score >= policy.delete_threshold:
        return "stale"
    return "decay"
