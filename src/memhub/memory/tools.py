"""Knowledge tools exposed to agents.

Each tool wraps one KnowledgeManager operation and answers with a JSON
text body. Input errors raise ValidationError, which the ToolRegistry
turns into an unsuccessful ToolResult.
"""

from typing import Any

from ..tools.base import Tool, ToolResult
from .duplicates import DEFAULT_THRESHOLD
from .manager import KnowledgeManager
from .models import KNOWN_SOURCES, MemoryType


class KnowledgeTool(Tool):
    """Base class for tools backed by a KnowledgeManager."""

    def __init__(self, manager: KnowledgeManager) -> None:
        """Initialize with a knowledge manager.

        Args:
            manager: The KnowledgeManager that performs the operation.
        """
        self.manager = manager


class SaveKnowledgeTool(KnowledgeTool):
    """Tool for saving knowledge to the shared store."""

    @property
    def name(self) -> str:
        return "save_knowledge"

    @property
    def description(self) -> str:
        return (
            "Save knowledge to the shared team memory. Use this after significant "
            "code changes, architecture decisions, or when you learn something "
            "that other agents should know."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "topic": {
                    "type": "string",
                    "description": (
                        "Topic category (e.g. 'pricing', 'booking-api', 'stripe-config')"
                    ),
                },
                "content": {
                    "type": "string",
                    "description": "The knowledge to save (max 2000 chars)",
                },
                "source": {
                    "type": "string",
                    "enum": list(KNOWN_SOURCES),
                    "description": "Agent/project ID that produced this knowledge",
                },
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Optional tags for filtering (max 10)",
                },
                "confidence": {
                    "type": "number",
                    "description": "Confidence score 0-1 (default 1.0)",
                },
                "user": {
                    "type": "string",
                    "description": "Developer identifier. Defaults to 'unknown'.",
                },
                "memory_type": {
                    "type": "string",
                    "enum": [t.value for t in MemoryType],
                    "description": (
                        "core (never decays), architecture (slow decay), pattern "
                        "(medium decay), decision (fast decay). "
                        "Auto-classified if omitted."
                    ),
                },
            },
            "required": ["topic", "content", "source"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        """Save an entry.

        Returns:
            ToolResult with the entry id and the resolved memory type.
        """
        entry_id = self.manager.save(
            kwargs.get("topic"),
            kwargs.get("content"),
            kwargs.get("source"),
            tags=kwargs.get("tags"),
            confidence=kwargs.get("confidence", 1.0),
            user_id=kwargs.get("user", "unknown"),
            memory_type=kwargs.get("memory_type"),
        )
        entry = self.manager.get(entry_id)
        return ToolResult.json(
            {
                "id": entry_id,
                "message": "Saved",
                "topic": kwargs.get("topic"),
                "source": kwargs.get("source"),
                "memory_type": entry.memory_type.value if entry else None,
                "user": kwargs.get("user", "unknown"),
            }
        )


class SearchKnowledgeTool(KnowledgeTool):
    """Tool for searching the shared store."""

    @property
    def name(self) -> str:
        return "search_knowledge"

    @property
    def description(self) -> str:
        return (
            "Search the shared team memory using full-text search. Use this to "
            "find relevant knowledge from other agents/projects before making changes."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Search query"},
                "source": {
                    "type": "string",
                    "description": "Filter by agent/project source (e.g. 'website')",
                },
                "tags": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Only entries with at least one of these tags",
                },
                "limit": {
                    "type": "integer",
                    "description": "Max results 1-50 (default 10)",
                },
            },
            "required": ["query"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        results = self.manager.search(
            kwargs.get("query"),
            source=kwargs.get("source"),
            tags=kwargs.get("tags"),
            limit=kwargs.get("limit", 10),
        )
        formatted = [
            {
                "id": r.id,
                "topic": r.topic,
                "content": r.content,
                "source": r.source,
                "user": r.user_id,
                "tags": r.tags,
                "confidence": r.confidence,
                "created_at": r.created_at.isoformat(),
                "rank": r.rank,
            }
            for r in results
        ]
        return ToolResult.json({"results": formatted, "count": len(formatted)})


class RecentChangesTool(KnowledgeTool):
    """Tool for listing recently created entries."""

    @property
    def name(self) -> str:
        return "get_recent_changes"

    @property
    def description(self) -> str:
        return (
            "Get recent knowledge entries from the shared team memory. Use at "
            "session start or before working on cross-cutting concerns."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "hours": {
                    "type": "number",
                    "description": "Look back N hours, 1-720 (default 48)",
                },
                "source": {
                    "type": "string",
                    "description": "Filter by agent/project source",
                },
                "limit": {
                    "type": "integer",
                    "description": "Max results 1-50 (default 20)",
                },
            },
            "required": [],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        changes = self.manager.recent_changes(
            hours=kwargs.get("hours", 48),
            source=kwargs.get("source"),
            limit=kwargs.get("limit", 20),
        )
        formatted = [
            {
                "id": r.id,
                "topic": r.topic,
                "content": r.content,
                "source": r.source,
                "user": r.user_id,
                "tags": r.tags,
                "memory_type": r.memory_type.value,
                "access_count": r.access_count,
                "created_at": r.created_at.isoformat(),
            }
            for r in changes
        ]
        return ToolResult.json({"changes": formatted, "count": len(formatted)})


class ListTopicsTool(KnowledgeTool):
    """Tool for listing topics with counts and contributors."""

    @property
    def name(self) -> str:
        return "list_topics"

    @property
    def description(self) -> str:
        return (
            "List all knowledge topics in the shared team memory, grouped with "
            "counts and which agents contributed."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "source": {
                    "type": "string",
                    "description": "Filter by agent/project source",
                },
            },
            "required": [],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        topics = self.manager.list_topics(source=kwargs.get("source"))
        return ToolResult.json(
            {"topics": [t.to_dict() for t in topics], "count": len(topics)}
        )


class DeleteKnowledgeTool(KnowledgeTool):
    """Tool for deleting a single entry."""

    @property
    def name(self) -> str:
        return "delete_knowledge"

    @property
    def description(self) -> str:
        return (
            "Delete a specific knowledge entry by ID. Use for cleaning up "
            "outdated or incorrect entries."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "id": {
                    "type": "integer",
                    "description": "The ID of the knowledge entry to delete",
                },
            },
            "required": ["id"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        entry_id = kwargs.get("id")
        deleted = self.manager.delete(entry_id)
        return ToolResult.json(
            {"message": "Deleted" if deleted else "Not found", "id": entry_id}
        )


class MemoryHealthTool(KnowledgeTool):
    """Tool for the store health report."""

    @property
    def name(self) -> str:
        return "memory_health"

    @property
    def description(self) -> str:
        return (
            "Get a health report of the team memory: score distribution, stale "
            "candidates, top-accessed entries, and type/source breakdown."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {"type": "object", "properties": {}, "required": []}

    async def execute(self, **kwargs: Any) -> ToolResult:
        return ToolResult.json(self.manager.health_report().to_dict())


class FindDuplicatesTool(KnowledgeTool):
    """Tool for finding near-duplicate entries."""

    @property
    def name(self) -> str:
        return "find_duplicates"

    @property
    def description(self) -> str:
        return (
            "Find duplicate or near-duplicate entries using fuzzy text similarity. "
            "Returns pairs with similarity scores; use them as merge candidates."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "threshold": {
                    "type": "number",
                    "description": (
                        "Similarity threshold 0.3-0.95 (default 0.6). "
                        "Lower = more results."
                    ),
                },
            },
            "required": [],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        pairs = self.manager.find_duplicates(kwargs.get("threshold", DEFAULT_THRESHOLD))
        return ToolResult.json(
            {"pairs": [p.to_dict() for p in pairs], "count": len(pairs)}
        )


class MergeKnowledgeTool(KnowledgeTool):
    """Tool for merging two entries."""

    @property
    def name(self) -> str:
        return "merge_knowledge"

    @property
    def description(self) -> str:
        return (
            "Merge two knowledge entries into one. Keeps the first entry, combines "
            "access counts and tags from both, takes the higher confidence, and "
            "deletes the second entry. Optionally provide merged content."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "keep_id": {
                    "type": "integer",
                    "description": "ID of the entry to keep",
                },
                "delete_id": {
                    "type": "integer",
                    "description": "ID of the entry to delete (merged into keep_id)",
                },
                "merged_content": {
                    "type": "string",
                    "description": (
                        "Optional merged content. If omitted, keeps content from keep_id."
                    ),
                },
            },
            "required": ["keep_id", "delete_id"],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        keep_id = kwargs.get("keep_id")
        delete_id = kwargs.get("delete_id")
        success = self.manager.merge(keep_id, delete_id, kwargs.get("merged_content"))
        return ToolResult.json(
            {
                "message": (
                    "Merged successfully" if success else "One or both entries not found"
                ),
                "keep_id": keep_id,
                "delete_id": delete_id,
                "success": success,
            }
        )


class PruneStaleTool(KnowledgeTool):
    """Tool for sweeping decayed entries."""

    @property
    def name(self) -> str:
        return "prune_stale"

    @property
    def description(self) -> str:
        return (
            "Find entries whose retention score decayed. Scores below 0.1 are "
            "deleted (unless dry_run), scores below 0.3 are flagged for review. "
            "Core and protected entries are never touched."
        )

    @property
    def parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "dry_run": {
                    "type": "boolean",
                    "description": "Only report, do not delete (default true)",
                },
            },
            "required": [],
        }

    async def execute(self, **kwargs: Any) -> ToolResult:
        result = self.manager.prune(dry_run=kwargs.get("dry_run", True))
        return ToolResult.json(result.to_dict())


def knowledge_tools(manager: KnowledgeManager) -> list[KnowledgeTool]:
    """All knowledge tools bound to one manager."""
    return [
        SaveKnowledgeTool(manager),
        SearchKnowledgeTool(manager),
        RecentChangesTool(manager),
        ListTopicsTool(manager),
        DeleteKnowledgeTool(manager),
        MemoryHealthTool(manager),
        FindDuplicatesTool(manager),
        MergeKnowledgeTool(manager),
        PruneStaleTool(manager),
    ]
