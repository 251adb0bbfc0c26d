"""Data models for the knowledge store."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

# Provenance tags accepted for the source field
KNOWN_SOURCES: tuple[str, ...] = (
    "website",
    "godot-pay",
    "godot-tablet",
    "godot-mgmt",
    "gas",
    "devops",
    "stripe",
    "infrastructure",
    "unknown",
)

# Sentinel tags
PROTECTED_TAG = "protected"
CORE_TAG = "core"
ARCHITECTURE_TAG = "architecture"
DECISION_TAG = "decision"


class MemoryType(Enum):
    """Decay class of a knowledge entry.

    Fixed per entry; determines how fast its retention score decays.
    """

    CORE = "core"
    ARCHITECTURE = "architecture"
    PATTERN = "pattern"
    DECISION = "decision"


def has_tag(tags: list[str], tag: str) -> bool:
    """Case-insensitive tag membership."""
    wanted = tag.lower()
    return any(t.lower() == wanted for t in tags)


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass(frozen=True)
class KnowledgeEntry:
    """A single knowledge entry written by an agent or project.

    Attributes:
        id: Database ID, assigned on insert and never changed.
        topic: Short topic label (e.g. 'pricing', 'stripe-config').
        content: The knowledge itself.
        source: Provenance tag of the writing project.
        user_id: Developer identifier, 'unknown' when not given.
        tags: Free tags, may include sentinel tags like 'protected'.
        confidence: Writer's confidence in [0, 1].
        memory_type: Decay class.
        access_count: Number of times the entry was returned by a search.
        last_accessed: When the entry was last returned, None if never.
        created_at: Creation time (UTC).
        updated_at: Last mutation time (UTC).
        rank: Search relevance, only set on search results.
    """

    id: int
    topic: str
    content: str
    source: str
    created_at: datetime
    updated_at: datetime
    user_id: str = "unknown"
    tags: list[str] = field(default_factory=list)
    confidence: float = 1.0
    memory_type: MemoryType = MemoryType.PATTERN
    access_count: int = 0
    last_accessed: datetime | None = None
    rank: float | None = None

    @property
    def is_protected(self) -> bool:
        return has_tag(self.tags, PROTECTED_TAG)

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        data: dict[str, Any] = {
            "id": self.id,
            "topic": self.topic,
            "content": self.content,
            "source": self.source,
            "user": self.user_id,
            "tags": list(self.tags),
            "confidence": self.confidence,
            "memory_type": self.memory_type.value,
            "access_count": self.access_count,
            "last_accessed": _iso(self.last_accessed),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if self.rank is not None:
            data["rank"] = self.rank
        return data


@dataclass(frozen=True)
class DuplicatePair:
    """Two entries whose topic+content are similar enough to merge."""

    id_a: int
    topic_a: str
    id_b: int
    topic_b: str
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id_a": self.id_a,
            "topic_a": self.topic_a,
            "id_b": self.id_b,
            "topic_b": self.topic_b,
            "similarity": self.similarity,
        }


@dataclass(frozen=True)
class ScoredEntry:
    """An entry reference with its retention score at sweep time."""

    id: int
    topic: str
    source: str
    memory_type: MemoryType
    score: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "topic": self.topic,
            "source": self.source,
            "memory_type": self.memory_type.value,
            "score": round(self.score, 3),
        }


@dataclass
class PruneResult:
    """Outcome of a pruning sweep.

    Attributes:
        deleted: Entries below the deletion threshold (removed unless dry run).
        flagged: Entries in the review band, never removed automatically.
        dry_run: Whether deletion was skipped.
    """

    deleted: list[ScoredEntry] = field(default_factory=list)
    flagged: list[ScoredEntry] = field(default_factory=list)
    dry_run: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "deleted": [e.to_dict() for e in self.deleted],
            "flagged": [e.to_dict() for e in self.flagged],
            "dry_run": self.dry_run,
        }


@dataclass(frozen=True)
class TopicSummary:
    """Aggregate view of all entries sharing a topic."""

    topic: str
    count: int
    last_updated: datetime
    sources: list[str]
    avg_retention: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "topic": self.topic,
            "count": self.count,
            "last_updated": _iso(self.last_updated),
            "sources": list(self.sources),
            "avg_retention": self.avg_retention,
        }


@dataclass
class HealthReport:
    """Diagnostic snapshot of the whole store.

    Sections are computed independently; a section that failed is left
    empty and its name is listed in ``errors``.
    """

    total: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    by_source: dict[str, int] = field(default_factory=dict)
    score_distribution: dict[str, int] = field(default_factory=dict)
    never_accessed: list[dict[str, Any]] = field(default_factory=list)
    top_accessed: list[dict[str, Any]] = field(default_factory=list)
    stale_candidates: list[ScoredEntry] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "total": self.total,
            "by_type": dict(self.by_type),
            "by_source": dict(self.by_source),
            "score_distribution": dict(self.score_distribution),
            "never_accessed": list(self.never_accessed),
            "top_accessed": list(self.top_accessed),
            "stale_candidates": [e.to_dict() for e in self.stale_candidates],
        }
        if self.errors:
            data["errors"] = list(self.errors)
        return data
