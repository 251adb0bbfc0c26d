"""Two-tier knowledge search.

The primary tier is a full-text prefix query in which every query word
must match. When it finds nothing, a fallback tier splits the query into
words of at least three characters and ranks entries by the fraction of
those words found anywhere in their topic or content.

Every entry returned is reported to an AccessRecorder, which updates
access statistics in the background.
"""

import logging
import re
from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Lock

from ..errors import StoreError
from .models import KnowledgeEntry
from .store import KnowledgeStore

logger = logging.getLogger(__name__)

MAX_SEARCH_LIMIT = 50
MIN_FALLBACK_QUERY_LENGTH = 2
MIN_FALLBACK_TOKEN_LENGTH = 3

_WORD_CHAR_RE = re.compile(r"[^\W_]")
_FALLBACK_SPLIT_RE = re.compile(r"[\W_]+")


def build_match_query(query: str) -> str | None:
    """Build an FTS5 expression requiring every word as a prefix.

    Words are quoted so user input can never produce a syntax error;
    words without any letter or digit are dropped.

    Example:
        >>> build_match_query("stripe web")
        '"stripe"* AND "web"*'
    """
    parts = []
    for word in query.split():
        if not _WORD_CHAR_RE.search(word):
            continue
        escaped = word.replace('"', '""')
        parts.append(f'"{escaped}"*')
    return " AND ".join(parts) or None


def fallback_tokens(query: str) -> list[str]:
    """Split a query into words long enough for substring matching.

    Repeated words are kept, so each occurrence counts towards the
    matched fraction.
    """
    return [
        token
        for token in _FALLBACK_SPLIT_RE.split(query)
        if len(token) >= MIN_FALLBACK_TOKEN_LENGTH
    ]


class AccessRecorder:
    """Records search hits without blocking the search.

    Updates run on a single background thread. A failed update is logged
    and dropped; access counts are eventually, not exactly, consistent.
    """

    def __init__(
        self, store: KnowledgeStore, executor: ThreadPoolExecutor | None = None
    ) -> None:
        self.store = store
        self._executor = executor or ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="memhub-access"
        )
        self._pending: set[Future] = set()
        self._lock = Lock()

    def record(self, entry_ids: list[int]) -> None:
        """Schedule an access update for the given entries."""
        if not entry_ids:
            return
        try:
            future = self._executor.submit(self._apply, list(entry_ids))
        except RuntimeError:
            logger.warning("Access recorder closed, dropping %d hits", len(entry_ids))
            return
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(self._done)

    def _apply(self, entry_ids: list[int]) -> None:
        try:
            self.store.record_access(entry_ids)
        except StoreError as e:
            logger.warning("Failed to record access for %s: %s", entry_ids, e)

    def _done(self, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        error = future.exception()
        if error is not None:
            logger.warning("Access recording crashed: %r", error)

    def flush(self, timeout: float | None = None) -> None:
        """Wait until scheduled updates have finished."""
        with self._lock:
            pending = list(self._pending)
        if pending:
            wait(pending, timeout=timeout)

    def close(self) -> None:
        """Finish pending updates and stop the worker."""
        self._executor.shutdown(wait=True)


class SearchEngine:
    """Ranks knowledge entries against free-text queries."""

    def __init__(
        self, store: KnowledgeStore, recorder: AccessRecorder | None = None
    ) -> None:
        """Initialize the engine.

        Args:
            store: The KnowledgeStore to search.
            recorder: Receives the ids of returned entries; None disables
                access tracking.
        """
        self.store = store
        self.recorder = recorder

    def search(
        self,
        query: str,
        source: str | None = None,
        tags: list[str] | None = None,
        limit: int = 10,
    ) -> list[KnowledgeEntry]:
        """Search entries, falling back to substring matching.

        Args:
            query: Free-text query.
            source: Only return entries from this source.
            tags: Only return entries carrying at least one of these tags.
            limit: Maximum number of results (capped at 50).

        Returns:
            Entries ordered by relevance, best first.
        """
        limit = max(1, min(limit, MAX_SEARCH_LIMIT))
        results: list[KnowledgeEntry] = []

        match_query = build_match_query(query)
        if match_query:
            results = self.store.full_text_search(match_query, source, tags, limit)

        if not results and len(query.strip()) >= MIN_FALLBACK_QUERY_LENGTH:
            tokens = fallback_tokens(query)
            if tokens:
                logger.debug("No full-text hits for %r, trying %s", query, tokens)
                results = self.store.substring_search(tokens, source, tags, limit)

        if results and self.recorder is not None:
            self.recorder.record([entry.id for entry in results])

        return results
