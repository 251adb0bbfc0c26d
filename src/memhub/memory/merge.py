"""Consolidation of duplicate entries."""

import logging

from .models import KnowledgeEntry
from .store import KnowledgeStore, MergedValues

logger = logging.getLogger(__name__)


def combine_entries(
    keep: KnowledgeEntry, dropped: KnowledgeEntry, merged_content: str | None = None
) -> MergedValues:
    """Compute the values of the surviving entry.

    Tags are unioned (kept entry's order first), access counts summed and
    the higher confidence wins. The union is not capped, so a merged entry
    can carry more tags than save accepts. Content is ``merged_content``
    when given, otherwise the kept entry's content.
    """
    tags = list(keep.tags)
    seen = set(tags)
    for tag in dropped.tags:
        if tag not in seen:
            seen.add(tag)
            tags.append(tag)

    return MergedValues(
        content=merged_content if merged_content is not None else keep.content,
        tags=tags,
        access_count=keep.access_count + dropped.access_count,
        confidence=max(keep.confidence, dropped.confidence),
    )


class MergeEngine:
    """Folds one entry into another, atomically and irreversibly."""

    def __init__(self, store: KnowledgeStore) -> None:
        self.store = store

    def merge(
        self, keep_id: int, delete_id: int, merged_content: str | None = None
    ) -> bool:
        """Merge ``delete_id`` into ``keep_id``.

        Args:
            keep_id: Entry that survives.
            delete_id: Entry that is removed.
            merged_content: Replacement content for the surviving entry.

        Returns:
            True on success, False if either entry does not exist.

        Raises:
            StoreError: If the transaction failed; nothing was changed.
        """
        merged = self.store.merge_entries(
            keep_id,
            delete_id,
            lambda keep, dropped: combine_entries(keep, dropped, merged_content),
        )
        if not merged:
            logger.info("Merge %d <- %d skipped: entry not found", keep_id, delete_id)
        return merged
