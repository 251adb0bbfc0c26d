"""SQLite storage for knowledge entries.

Entries are deduplicated on their natural key (topic, source, content)
with an atomic upsert. Full-text ranking uses an FTS5 index kept in sync
by triggers; case-insensitive substring matching and trigram similarity
are registered as SQL functions on every connection, so the search
fallback and the duplicate scan both run inside the database.

Each unit of work opens its own short-lived connection, so a store
handle can be shared freely between threads.
"""

import json
import logging
import sqlite3
import time
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from ..errors import StoreError
from .models import KnowledgeEntry, MemoryType
from .similarity import icontains, similarity

logger = logging.getLogger(__name__)

# Column weights for bm25(): topic, content, tags
FTS_WEIGHTS = (1.0, 0.4, 0.2)

_SCHEMA = """
CREATE TABLE IF NOT EXISTS knowledge (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    topic         TEXT NOT NULL CHECK (length(topic) > 0),
    content       TEXT NOT NULL CHECK (length(content) > 0),
    source        TEXT NOT NULL,
    user_id       TEXT NOT NULL DEFAULT 'unknown',
    tags          TEXT NOT NULL DEFAULT '[]',
    confidence    REAL NOT NULL DEFAULT 1.0 CHECK (confidence BETWEEN 0 AND 1),
    memory_type   TEXT NOT NULL DEFAULT 'pattern'
                  CHECK (memory_type IN ('core', 'architecture', 'pattern', 'decision')),
    access_count  INTEGER NOT NULL DEFAULT 0 CHECK (access_count >= 0),
    last_accessed TEXT,
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL,
    UNIQUE (topic, source, content)
);

CREATE INDEX IF NOT EXISTS idx_knowledge_source ON knowledge(source);
CREATE INDEX IF NOT EXISTS idx_knowledge_topic ON knowledge(topic);
CREATE INDEX IF NOT EXISTS idx_knowledge_created ON knowledge(created_at DESC);
CREATE INDEX IF NOT EXISTS idx_knowledge_last_accessed ON knowledge(last_accessed DESC);
CREATE INDEX IF NOT EXISTS idx_knowledge_memory_type ON knowledge(memory_type);

CREATE VIRTUAL TABLE IF NOT EXISTS knowledge_fts USING fts5(
    topic, content, tags,
    content='knowledge', content_rowid='id',
    tokenize='unicode61 remove_diacritics 2'
);

CREATE TRIGGER IF NOT EXISTS knowledge_fts_insert AFTER INSERT ON knowledge BEGIN
    INSERT INTO knowledge_fts(rowid, topic, content, tags)
    VALUES (new.id, new.topic, new.content, new.tags);
END;

CREATE TRIGGER IF NOT EXISTS knowledge_fts_delete AFTER DELETE ON knowledge BEGIN
    INSERT INTO knowledge_fts(knowledge_fts, rowid, topic, content, tags)
    VALUES ('delete', old.id, old.topic, old.content, old.tags);
END;

CREATE TRIGGER IF NOT EXISTS knowledge_fts_update
AFTER UPDATE OF topic, content, tags ON knowledge BEGIN
    INSERT INTO knowledge_fts(knowledge_fts, rowid, topic, content, tags)
    VALUES ('delete', old.id, old.topic, old.content, old.tags);
    INSERT INTO knowledge_fts(rowid, topic, content, tags)
    VALUES (new.id, new.topic, new.content, new.tags);
END;
"""

_GROUPABLE_COLUMNS = frozenset({"memory_type", "source"})


def utcnow() -> datetime:
    """Current time in UTC."""
    return datetime.now(timezone.utc)


def format_timestamp(value: datetime) -> str:
    """Serialize a timestamp so that string order equals time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse a stored timestamp."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class MergedValues:
    """Values written to the surviving entry of a merge."""

    content: str
    tags: list[str]
    access_count: int
    confidence: float


class KnowledgeStore:
    """Persistent storage for knowledge entries using SQLite.

    The store is the only place state lives; it holds no connection
    between calls.
    """

    def __init__(
        self,
        db_path: Path,
        timeout: float = 10.0,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            db_path: Path to the SQLite database file.
            timeout: Seconds to wait on a locked database before failing.
            clock: Source of the current time (defaults to UTC now).
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._clock = clock or utcnow

    def now(self) -> datetime:
        """Current time as seen by the store."""
        return self._clock()

    # -- connection handling -------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        """Open a new connection with the custom SQL functions registered."""
        conn = sqlite3.connect(
            self.db_path, timeout=self.timeout, isolation_level=None
        )
        conn.row_factory = sqlite3.Row
        conn.create_function("icontains", 2, icontains, deterministic=True)
        conn.create_function("similarity", 2, similarity, deterministic=True)
        return conn

    @contextmanager
    def _session(self) -> Iterator[sqlite3.Connection]:
        """Connection for reads and single-statement writes."""
        conn: sqlite3.Connection | None = None
        try:
            conn = self._connect()
            yield conn
        except sqlite3.Error as e:
            raise StoreError(f"Store operation failed: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """Connection inside a write transaction.

        Commits on normal exit, rolls back on any exception.
        """
        conn: sqlite3.Connection | None = None
        try:
            conn = self._connect()
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise StoreError(f"Store transaction failed: {e}") from e
        finally:
            if conn is not None:
                conn.close()

    def init_db(self, retries: int = 5, retry_delay: float = 3.0) -> None:
        """Create the schema if it doesn't exist.

        Retried with linear backoff because the database may not be
        reachable yet at startup. Safe to call repeatedly.

        Args:
            retries: Maximum number of attempts.
            retry_delay: Base delay in seconds between attempts.

        Raises:
            StoreError: If every attempt failed.
        """
        for attempt in range(1, retries + 1):
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
                with self._session() as conn:
                    conn.execute("PRAGMA journal_mode=WAL")
                    conn.executescript(_SCHEMA)
                logger.debug("Database ready at %s", self.db_path)
                return
            except (StoreError, OSError) as e:
                logger.warning(
                    "Database init attempt %d/%d failed: %s", attempt, retries, e
                )
                if attempt == retries:
                    if isinstance(e, StoreError):
                        raise
                    raise StoreError(f"Cannot prepare database: {e}") from e
                time.sleep(retry_delay * attempt)

    # -- writes ----------------------------------------------------------------

    def upsert(
        self,
        topic: str,
        content: str,
        source: str,
        tags: list[str],
        confidence: float,
        user_id: str,
        memory_type: MemoryType,
    ) -> int:
        """Insert an entry, or update the one with the same natural key.

        On conflict the tags, confidence, user and memory type are
        overwritten and updated_at is refreshed; the id is preserved.

        Returns:
            The id of the inserted or updated entry.
        """
        now = format_timestamp(self.now())
        with self._transaction() as conn:
            rows = conn.execute(
                """
                INSERT INTO knowledge
                    (topic, content, source, tags, confidence, user_id,
                     memory_type, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(topic, source, content) DO UPDATE SET
                    tags = excluded.tags,
                    confidence = excluded.confidence,
                    user_id = excluded.user_id,
                    memory_type = excluded.memory_type,
                    updated_at = excluded.updated_at
                RETURNING id
                """,
                (
                    topic,
                    content,
                    source,
                    json.dumps(tags),
                    confidence,
                    user_id,
                    memory_type.value,
                    now,
                    now,
                ),
            ).fetchall()
        return rows[0]["id"]

    def delete(self, entry_id: int) -> bool:
        """Delete an entry by id.

        Returns:
            True if an entry was deleted, False otherwise.
        """
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM knowledge WHERE id = ?", (entry_id,))
            return cursor.rowcount > 0

    def delete_many(self, entry_ids: list[int]) -> int:
        """Delete several entries in one transaction.

        Returns:
            Number of entries deleted.
        """
        if not entry_ids:
            return 0
        placeholders = ", ".join("?" for _ in entry_ids)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"DELETE FROM knowledge WHERE id IN ({placeholders})",
                list(entry_ids),
            )
            return cursor.rowcount

    def record_access(self, entry_ids: list[int]) -> int:
        """Increment access_count and set last_accessed for the given ids.

        Returns:
            Number of entries updated.
        """
        ids = sorted(set(entry_ids))
        if not ids:
            return 0
        placeholders = ", ".join("?" for _ in ids)
        with self._transaction() as conn:
            cursor = conn.execute(
                f"""
                UPDATE knowledge
                SET access_count = access_count + 1, last_accessed = ?
                WHERE id IN ({placeholders})
                """,
                [format_timestamp(self.now()), *ids],
            )
            return cursor.rowcount

    def set_memory_types(self, updates: dict[int, MemoryType]) -> int:
        """Change the memory type of several entries in one transaction."""
        if not updates:
            return 0
        count = 0
        with self._transaction() as conn:
            for entry_id, memory_type in updates.items():
                cursor = conn.execute(
                    "UPDATE knowledge SET memory_type = ? WHERE id = ?",
                    (memory_type.value, entry_id),
                )
                count += cursor.rowcount
        return count

    def merge_entries(
        self,
        keep_id: int,
        delete_id: int,
        combine: Callable[[KnowledgeEntry, KnowledgeEntry], MergedValues],
    ) -> bool:
        """Fold one entry into another inside a single transaction.

        Both rows are read, ``combine`` computes the surviving values, the
        kept row is updated and the other row deleted. Any failure rolls
        the whole transaction back.

        Returns:
            False if either entry does not exist (nothing is changed).
        """
        with self._transaction() as conn:
            keep = self._fetch(conn, keep_id)
            dropped = self._fetch(conn, delete_id)
            if keep is None or dropped is None:
                return False

            merged = combine(keep, dropped)
            conn.execute(
                """
                UPDATE knowledge
                SET content = ?, tags = ?, access_count = ?, confidence = ?,
                    updated_at = ?
                WHERE id = ?
                """,
                (
                    merged.content,
                    json.dumps(merged.tags),
                    merged.access_count,
                    merged.confidence,
                    format_timestamp(self.now()),
                    keep_id,
                ),
            )
            conn.execute("DELETE FROM knowledge WHERE id = ?", (delete_id,))
        return True

    # -- reads -----------------------------------------------------------------

    def get(self, entry_id: int) -> KnowledgeEntry | None:
        """Get an entry by id."""
        with self._session() as conn:
            return self._fetch(conn, entry_id)

    def get_all(
        self,
        source: str | None = None,
        exclude_type: MemoryType | None = None,
    ) -> list[KnowledgeEntry]:
        """Get all entries, optionally filtered by source or excluding a type."""
        sql = "SELECT * FROM knowledge WHERE 1 = 1"
        params: list[object] = []
        if source:
            sql += " AND source = ?"
            params.append(source)
        if exclude_type is not None:
            sql += " AND memory_type != ?"
            params.append(exclude_type.value)
        sql += " ORDER BY id"
        with self._session() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def full_text_search(
        self,
        match_query: str,
        source: str | None = None,
        tags: list[str] | None = None,
        limit: int = 10,
    ) -> list[KnowledgeEntry]:
        """Rank entries against an FTS5 match expression.

        Relevance is the negated bm25 score with topic weighted highest,
        then content, then tags; higher is better.
        """
        where, params = self._filters(source, tags)
        weights = ", ".join(str(w) for w in FTS_WEIGHTS)
        sql = f"""
            SELECT k.*, -bm25(knowledge_fts, {weights}) AS relevance
            FROM knowledge_fts
            JOIN knowledge k ON k.id = knowledge_fts.rowid
            WHERE knowledge_fts MATCH ?{where}
            ORDER BY relevance DESC, k.updated_at DESC
            LIMIT ?
        """
        with self._session() as conn:
            rows = conn.execute(sql, [match_query, *params, limit]).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def substring_search(
        self,
        tokens: list[str],
        source: str | None = None,
        tags: list[str] | None = None,
        limit: int = 10,
    ) -> list[KnowledgeEntry]:
        """Rank entries by the fraction of tokens found in topic or content.

        Matching is case-insensitive; entries matching no token are excluded.
        """
        if not tokens:
            return []
        match_expr = "(icontains(k.topic, ?) OR icontains(k.content, ?))"
        token_params = [p for token in tokens for p in (token, token)]
        rank_sql = " + ".join(match_expr for _ in tokens)
        any_sql = " OR ".join(match_expr for _ in tokens)
        where, filter_params = self._filters(source, tags)
        sql = f"""
            SELECT k.*, CAST(({rank_sql}) AS REAL) / ? AS relevance
            FROM knowledge k
            WHERE ({any_sql}){where}
            ORDER BY relevance DESC, k.updated_at DESC
            LIMIT ?
        """
        params = [
            *token_params,
            float(len(tokens)),
            *token_params,
            *filter_params,
            limit,
        ]
        with self._session() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def similar_pairs(
        self, threshold: float, limit: int
    ) -> list[tuple[int, str, int, str, float]]:
        """Pairs of entries whose topic and content are more similar than ``threshold``.

        Each unordered pair appears once, as (id_a, topic_a, id_b, topic_b,
        similarity) with id_a < id_b, most similar first.
        """
        sql = """
            WITH pairs AS (
                SELECT a.id AS id_a, a.topic AS topic_a,
                       b.id AS id_b, b.topic AS topic_b,
                       similarity(a.topic || ' ' || a.content,
                                  b.topic || ' ' || b.content) AS score
                FROM knowledge a
                JOIN knowledge b ON a.id < b.id
            )
            SELECT id_a, topic_a, id_b, topic_b, score
            FROM pairs
            WHERE score > ?
            ORDER BY score DESC, id_a, id_b
            LIMIT ?
        """
        with self._session() as conn:
            rows = conn.execute(sql, (threshold, limit)).fetchall()
        return [tuple(row) for row in rows]

    def recent(
        self, since: datetime, source: str | None = None, limit: int = 20
    ) -> list[KnowledgeEntry]:
        """Entries created after ``since``, newest first."""
        sql = "SELECT * FROM knowledge WHERE created_at > ?"
        params: list[object] = [format_timestamp(since)]
        if source:
            sql += " AND source = ?"
            params.append(source)
        sql += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)
        with self._session() as conn:
            rows = conn.execute(sql, params).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def count(self) -> int:
        """Total number of entries."""
        with self._session() as conn:
            return conn.execute("SELECT COUNT(*) FROM knowledge").fetchone()[0]

    def count_by(self, column: str) -> dict[str, int]:
        """Entry counts grouped by memory_type or source, largest first."""
        if column not in _GROUPABLE_COLUMNS:
            raise ValueError(f"Cannot group by {column!r}")
        with self._session() as conn:
            rows = conn.execute(
                f"""
                SELECT {column} AS grp, COUNT(*) AS n
                FROM knowledge GROUP BY {column}
                ORDER BY n DESC, grp
                """
            ).fetchall()
        return {row["grp"]: row["n"] for row in rows}

    def never_accessed(self, limit: int = 10) -> list[KnowledgeEntry]:
        """Oldest entries that were never returned by a search."""
        with self._session() as conn:
            rows = conn.execute(
                """
                SELECT * FROM knowledge WHERE access_count = 0
                ORDER BY created_at ASC LIMIT ?
                """,
                (limit,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    def most_accessed(self, limit: int = 10) -> list[KnowledgeEntry]:
        """Entries with the highest access counts."""
        with self._session() as conn:
            rows = conn.execute(
                "SELECT * FROM knowledge ORDER BY access_count DESC, id LIMIT ?",
                (limit,),
            ).fetchall()
        return [self._row_to_entry(row) for row in rows]

    # -- helpers ---------------------------------------------------------------

    def _fetch(self, conn: sqlite3.Connection, entry_id: int) -> KnowledgeEntry | None:
        row = conn.execute(
            "SELECT * FROM knowledge WHERE id = ?", (entry_id,)
        ).fetchone()
        return self._row_to_entry(row) if row is not None else None

    @staticmethod
    def _filters(
        source: str | None, tags: list[str] | None
    ) -> tuple[str, list[object]]:
        """SQL fragment for the source filter and the tag overlap filter."""
        sql = ""
        params: list[object] = []
        if source:
            sql += " AND k.source = ?"
            params.append(source)
        if tags:
            placeholders = ", ".join("?" for _ in tags)
            sql += (
                " AND EXISTS (SELECT 1 FROM json_each(k.tags) AS t"
                f" WHERE t.value IN ({placeholders}))"
            )
            params.extend(tags)
        return sql, params

    def _row_to_entry(self, row: sqlite3.Row) -> KnowledgeEntry:
        """Convert a database row to a KnowledgeEntry."""
        keys = row.keys()
        return KnowledgeEntry(
            id=row["id"],
            topic=row["topic"],
            content=row["content"],
            source=row["source"],
            user_id=row["user_id"],
            tags=json.loads(row["tags"]),
            confidence=row["confidence"],
            memory_type=MemoryType(row["memory_type"]),
            access_count=row["access_count"],
            last_accessed=parse_timestamp(row["last_accessed"]),
            created_at=parse_timestamp(row["created_at"]),
            updated_at=parse_timestamp(row["updated_at"]),
            rank=row["relevance"] if "relevance" in keys else None,
        )
