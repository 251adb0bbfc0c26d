"""Near-duplicate detection.

Compares every unordered pair of entries by trigram similarity of their
topic and content and reports the most similar pairs. Read-only; the
pairwise scan runs in the store through its ``similarity`` SQL function.
"""

from .models import DuplicatePair
from .store import KnowledgeStore

DEFAULT_THRESHOLD = 0.6
MAX_PAIRS = 50


class DuplicateDetector:
    """Finds consolidation candidates among stored entries.

    Example:
        >>> detector = DuplicateDetector(store)
        >>> for pair in detector.find_duplicates(0.6):
        ...     print(pair.id_a, pair.id_b, pair.similarity)
    """

    def __init__(self, store: KnowledgeStore, max_pairs: int = MAX_PAIRS) -> None:
        self.store = store
        self.max_pairs = max_pairs

    def find_duplicates(self, threshold: float = DEFAULT_THRESHOLD) -> list[DuplicatePair]:
        """Find entry pairs more similar than ``threshold``.

        Args:
            threshold: Pairs must score strictly above this similarity.

        Returns:
            Pairs sorted by similarity, most similar first, at most
            ``max_pairs`` of them. Within a pair id_a < id_b.
        """
        return [
            DuplicatePair(
                id_a=id_a,
                topic_a=topic_a,
                id_b=id_b,
                topic_b=topic_b,
                similarity=round(score, 3),
            )
            for id_a, topic_a, id_b, topic_b, score in self.store.similar_pairs(
                threshold, self.max_pairs
            )
        ]
