"""Knowledge store and retention lifecycle engine."""

from .classifier import classify
from .duplicates import DuplicateDetector
from .manager import KnowledgeManager
from .merge import MergeEngine, combine_entries
from .models import (
    KNOWN_SOURCES,
    DuplicatePair,
    HealthReport,
    KnowledgeEntry,
    MemoryType,
    PruneResult,
    ScoredEntry,
    TopicSummary,
)
from .pruning import PruningSweeper
from .retention import RetentionPolicy, retention_score, score_entry
from .search import AccessRecorder, SearchEngine
from .store import KnowledgeStore
from .tools import (
    DeleteKnowledgeTool,
    FindDuplicatesTool,
    ListTopicsTool,
    MemoryHealthTool,
    MergeKnowledgeTool,
    PruneStaleTool,
    RecentChangesTool,
    SaveKnowledgeTool,
    SearchKnowledgeTool,
    knowledge_tools,
)

__all__ = [
    "KNOWN_SOURCES",
    "AccessRecorder",
    "DeleteKnowledgeTool",
    "DuplicateDetector",
    "DuplicatePair",
    "FindDuplicatesTool",
    "HealthReport",
    "KnowledgeEntry",
    "KnowledgeManager",
    "KnowledgeStore",
    "ListTopicsTool",
    "MemoryHealthTool",
    "MemoryType",
    "MergeEngine",
    "MergeKnowledgeTool",
    "PruneResult",
    "PruneStaleTool",
    "PruningSweeper",
    "RecentChangesTool",
    "RetentionPolicy",
    "SaveKnowledgeTool",
    "ScoredEntry",
    "SearchEngine",
    "SearchKnowledgeTool",
    "TopicSummary",
    "classify",
    "combine_entries",
    "knowledge_tools",
    "retention_score",
    "score_entry",
]
