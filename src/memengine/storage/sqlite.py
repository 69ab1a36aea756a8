"""SQLite storage layer for facts, supersession state and full-text search.

This module provides the persistent store for memengine with support for:
- Fact records (owner, category, content, relevance, usage, timestamps)
- Supersession state (is_current, superseded_by, fact fingerprints)
- Embedding lifecycle status (pending -> ready | failed)
- FTS5 full-text index with porter stemming for lexical lookups
- Schema versioning and migrations
- Explicit BEGIN IMMEDIATE transactions for the reconcile step

Records are never hard-deleted by the engine. Superseding a fact flips
is_current and links the replacement, and a partial unique index guarantees
at most one current record per (owner, fingerprint).
"""

import hashlib
import json
import logging
import re
import secrets
import sqlite3
import time
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from memengine.errors import StorageError
from memengine.memory.types import EmbeddingStatus

logger = logging.getLogger(__name__)

# Schema version migrations
# Each migration has a description and up SQL (can be a list of statements)
MIGRATIONS: dict[int, dict[str, Any]] = {
    1: {
        "description": "Add supersession columns to memories",
        "up": [
            "ALTER TABLE memories ADD COLUMN is_current INTEGER NOT NULL DEFAULT 1",
            "ALTER TABLE memories ADD COLUMN superseded_by TEXT",
            "ALTER TABLE memories ADD COLUMN superseded_at REAL",
            "ALTER TABLE memories ADD COLUMN fact_fingerprint TEXT",
            "ALTER TABLE memories ADD COLUMN fingerprint_confidence REAL",
            "CREATE INDEX IF NOT EXISTS idx_memories_current ON memories(owner_id, category, is_current)",
            "CREATE INDEX IF NOT EXISTS idx_memories_fingerprint ON memories(owner_id, fact_fingerprint)",
        ],
    },
    2: {
        "description": "Add embedding status tracking",
        "up": [
            "ALTER TABLE memories ADD COLUMN embedding_status TEXT NOT NULL DEFAULT 'pending'",
            "ALTER TABLE memories ADD COLUMN embedding_error TEXT",
            "ALTER TABLE memories ADD COLUMN embedded_at REAL",
            "CREATE INDEX IF NOT EXISTS idx_memories_embedding_status ON memories(embedding_status)",
        ],
    },
    3: {
        "description": "Enforce one current fact per owner fingerprint",
        "up": [
            """CREATE UNIQUE INDEX IF NOT EXISTS idx_memories_current_fingerprint
               ON memories(owner_id, fact_fingerprint)
               WHERE is_current = 1 AND fact_fingerprint IS NOT NULL""",
        ],
    },
}

MEMORY_COLUMNS = (
    "id, owner_id, category, subcategory, content, content_hash, token_count, "
    "relevance_score, usage_frequency, created_at, last_accessed_at, metadata, "
    "is_current, superseded_by, superseded_at, fact_fingerprint, "
    "fingerprint_confidence, embedding_status, embedding_error, embedded_at"
)

_MATCH_TERM_RE = re.compile(r"\w+", re.UNICODE)


def generate_memory_id() -> str:
    """Generate unique, sortable ID: mem_<microseconds>_<random>."""
    timestamp = int(time.time() * 1000000)
    return f"mem_{timestamp}_{secrets.token_hex(4)}"


class SQLiteStoreError(StorageError):
    """Custom exception for SQLite storage-related errors."""

    pass


class StoreBusyError(SQLiteStoreError):
    """The database was locked by another writer; the operation may be retried."""

    pass


class FingerprintConflictError(SQLiteStoreError):
    """A second current record for the same (owner, fingerprint) was rejected."""

    pass


def build_match_query(terms: Iterable[str], prefix: bool = True) -> Optional[str]:
    """Build an FTS5 OR query from free-text terms.

    Each term is reduced to word characters and quoted; prefix=True adds a
    trailing * so "drive" also matches "driving".

    Returns:
        The MATCH expression, or None when no usable term remains
    """
    parts: list[str] = []
    for term in terms:
        for word in _MATCH_TERM_RE.findall(term.lower()):
            quoted = f'"{word}"' + ("*" if prefix else "")
            if quoted not in parts:
                parts.append(quoted)
    return " OR ".join(parts) if parts else None


class SQLiteStore:
    """SQLite storage for fact records and their FTS index.

    Args:
        db_path: Path to SQLite database file.
                 Defaults to ~/.memengine/memengine.db
        ephemeral: If True, use in-memory storage for testing (default: False)
        busy_timeout: Seconds to wait on a locked database before failing

    Attributes:
        db_path: Path to database file (None if ephemeral)
        ephemeral: Whether using ephemeral storage
        _conn: SQLite connection instance
    """

    def __init__(
        self,
        db_path: Optional[Path] = None,
        ephemeral: bool = False,
        busy_timeout: float = 5.0,
    ):
        self.ephemeral = ephemeral
        self._in_transaction = False

        if ephemeral:
            self.db_path = None
        else:
            self.db_path = db_path or Path.home() / ".memengine" / "memengine.db"

        try:
            if ephemeral:
                self._conn = sqlite3.connect(
                    ":memory:", check_same_thread=False, timeout=busy_timeout
                )
            else:
                if self.db_path is not None:
                    self.db_path.parent.mkdir(parents=True, exist_ok=True)
                self._conn = sqlite3.connect(
                    str(self.db_path), check_same_thread=False, timeout=busy_timeout
                )
                self._conn.execute("PRAGMA journal_mode = WAL")

            self._conn.row_factory = sqlite3.Row
            self._init_schema()

        except sqlite3.Error as e:
            raise SQLiteStoreError(f"Failed to initialize SQLite storage: {e}") from e

    def _init_schema(self) -> None:
        """Create the memories table, its indexes and the FTS5 index.

        Raises:
            SQLiteStoreError: If schema initialization fails
        """
        try:
            cursor = self._conn.cursor()

            cursor.execute("""
                CREATE TABLE IF NOT EXISTS memories (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    category TEXT NOT NULL,
                    subcategory TEXT,
                    content TEXT NOT NULL,
                    content_hash TEXT NOT NULL,
                    token_count INTEGER NOT NULL DEFAULT 0,
                    relevance_score REAL NOT NULL DEFAULT 0.5,
                    usage_frequency INTEGER NOT NULL DEFAULT 0,
                    created_at REAL NOT NULL,
                    last_accessed_at REAL NOT NULL,
                    metadata TEXT
                )
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_memories_owner
                ON memories(owner_id)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_memories_created_at
                ON memories(created_at)
            """)
            cursor.execute("""
                CREATE INDEX IF NOT EXISTS idx_memories_content_hash
                ON memories(owner_id, content_hash)
            """)

            # FTS5 tables don't support IF NOT EXISTS reliably; check first
            cursor.execute("""
                SELECT name FROM sqlite_master
                WHERE type='table' AND name='memories_fts'
            """)
            if cursor.fetchone() is None:
                cursor.execute("""
                    CREATE VIRTUAL TABLE memories_fts USING fts5(
                        id UNINDEXED,
                        content,
                        owner_id UNINDEXED,
                        category UNINDEXED,
                        content='memories',
                        content_rowid='rowid',
                        tokenize='porter unicode61'
                    )
                """)
                cursor.execute("""
                    CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON memories BEGIN
                        INSERT INTO memories_fts(rowid, id, content, owner_id, category)
                        VALUES (NEW.rowid, NEW.id, NEW.content, NEW.owner_id, NEW.category);
                    END
                """)
                cursor.execute("""
                    CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON memories BEGIN
                        INSERT INTO memories_fts(memories_fts, rowid, id, content, owner_id, category)
                        VALUES ('delete', OLD.rowid, OLD.id, OLD.content, OLD.owner_id, OLD.category);
                    END
                """)
                cursor.execute("""
                    CREATE TRIGGER IF NOT EXISTS memories_au AFTER UPDATE OF content ON memories BEGIN
                        INSERT INTO memories_fts(memories_fts, rowid, id, content, owner_id, category)
                        VALUES ('delete', OLD.rowid, OLD.id, OLD.content, OLD.owner_id, OLD.category);
                        INSERT INTO memories_fts(rowid, id, content, owner_id, category)
                        VALUES (NEW.rowid, NEW.id, NEW.content, NEW.owner_id, NEW.category);
                    END
                """)

            self._conn.commit()
            self._run_migrations()

        except sqlite3.Error as e:
            self._conn.rollback()
            raise SQLiteStoreError(f"Failed to initialize schema: {e}") from e

    def _get_schema_version(self) -> int:
        """Get the current schema version (0 if no migrations applied)."""
        cursor = self._conn.cursor()
        cursor.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at REAL NOT NULL,
                description TEXT
            )
        """)
        self._conn.commit()
        cursor.execute("SELECT MAX(version) FROM schema_version")
        result = cursor.fetchone()
        return result[0] if result and result[0] is not None else 0

    def _run_migrations(self) -> None:
        """Apply pending migrations in order, each in its own transaction.

        Raises:
            SQLiteStoreError: If a migration fails
        """
        current_version = self._get_schema_version()
        max_version = max(MIGRATIONS.keys()) if MIGRATIONS else 0

        if current_version >= max_version:
            return

        logger.info(f"Running migrations from v{current_version} to v{max_version}")

        for version in range(current_version + 1, max_version + 1):
            if version not in MIGRATIONS:
                continue

            migration = MIGRATIONS[version]
            description = migration.get("description", f"Migration {version}")
            up_sql = migration.get("up", [])
            if isinstance(up_sql, str):
                up_sql = [up_sql]

            try:
                cursor = self._conn.cursor()
                for sql in up_sql:
                    cursor.execute(sql)
                cursor.execute(
                    "INSERT INTO schema_version (version, applied_at, description) VALUES (?, ?, ?)",
                    (version, time.time(), description),
                )
                self._conn.commit()
                logger.info(f"Applied migration v{version}: {description}")

            except sqlite3.Error as e:
                self._conn.rollback()
                raise SQLiteStoreError(
                    f"Migration v{version} failed ({description}): {e}"
                ) from e

    # =========================================================================
    # Transactions
    # =========================================================================

    @contextmanager
    def transaction(self) -> Iterator["SQLiteStore"]:
        """Run several store calls as one BEGIN IMMEDIATE transaction.

        The write lock is taken up front, so a read-decide-write sequence
        inside the block cannot interleave with another writer. Store methods
        called inside the block do not commit on their own.

        Raises:
            StoreBusyError: If the write lock could not be acquired
            SQLiteStoreError: On nested use or other SQLite failures
        """
        if self._in_transaction:
            raise SQLiteStoreError("Nested transactions are not supported")
        try:
            if self._conn.in_transaction:
                self._conn.commit()
            self._conn.execute("BEGIN IMMEDIATE")
        except sqlite3.OperationalError as e:
            if "locked" in str(e) or "busy" in str(e):
                raise StoreBusyError(f"Database is busy: {e}") from e
            raise SQLiteStoreError(f"Failed to begin transaction: {e}") from e

        self._in_transaction = True
        try:
            yield self
            self._conn.commit()
        except BaseException:
            self._conn.rollback()
            raise
        finally:
            self._in_transaction = False

    def _commit(self) -> None:
        if not self._in_transaction:
            self._conn.commit()

    def _rollback(self) -> None:
        if not self._in_transaction:
            self._conn.rollback()

    def _raise_write_error(self, action: str, e: sqlite3.Error) -> None:
        self._rollback()
        if isinstance(e, sqlite3.IntegrityError) and "fact_fingerprint" in str(e):
            raise FingerprintConflictError(f"Failed to {action}: {e}") from e
        if isinstance(e, sqlite3.OperationalError) and "locked" in str(e):
            raise StoreBusyError(f"Failed to {action}: {e}") from e
        raise SQLiteStoreError(f"Failed to {action}: {e}") from e

    # =========================================================================
    # Helpers
    # =========================================================================

    @staticmethod
    def _compute_content_hash(content: str) -> str:
        """SHA-256 of the normalized content."""
        normalized = " ".join(content.lower().split())
        return hashlib.sha256(normalized.encode("utf-8")).hexdigest()

    def _generate_id(self) -> str:
        return generate_memory_id()

    @staticmethod
    def _row_to_dict(row: sqlite3.Row) -> dict[str, Any]:
        data = dict(row)
        data["metadata"] = json.loads(data["metadata"]) if data.get("metadata") else {}
        data["is_current"] = bool(data.get("is_current", 1))
        return data

    # =========================================================================
    # Record operations
    # =========================================================================

    def add_memory(
        self,
        owner_id: str,
        category: str,
        content: str,
        token_count: int = 0,
        subcategory: Optional[str] = None,
        relevance_score: float = 0.5,
        metadata: Optional[dict[str, Any]] = None,
        fact_fingerprint: Optional[str] = None,
        fingerprint_confidence: Optional[float] = None,
        memory_id: Optional[str] = None,
    ) -> str:
        """Insert a new current record.

        Args:
            owner_id: Owner the fact belongs to
            category: Taxonomy category
            content: Fact text
            token_count: Estimated tokens of content
            subcategory: Optional finer label
            relevance_score: Importance from 0.0 to 1.0
            metadata: Optional metadata dict (stored as JSON)
            fact_fingerprint: Canonical attribute key when this record owns it
            fingerprint_confidence: Confidence of the fingerprint detection
            memory_id: Optional custom ID (auto-generated if not provided)

        Returns:
            The ID of the created record

        Raises:
            ValueError: If content or owner is empty, or relevance is out of range
            FingerprintConflictError: If another current record holds the fingerprint
            SQLiteStoreError: If the insert fails
        """
        if not content or not content.strip():
            raise ValueError("Content cannot be empty")
        if not owner_id:
            raise ValueError("Owner ID cannot be empty")
        if relevance_score < 0.0 or relevance_score > 1.0:
            raise ValueError("Relevance must be between 0.0 and 1.0")

        now = time.time()
        mem_id = memory_id or self._generate_id()
        try:
            self._conn.execute(
                """
                INSERT INTO memories (
                    id, owner_id, category, subcategory, content, content_hash,
                    token_count, relevance_score, usage_frequency, created_at,
                    last_accessed_at, metadata, is_current, fact_fingerprint,
                    fingerprint_confidence, embedding_status
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 0, ?, ?, ?, 1, ?, ?, 'pending')
                """,
                (
                    mem_id,
                    owner_id,
                    category,
                    subcategory,
                    content,
                    self._compute_content_hash(content),
                    token_count,
                    relevance_score,
                    now,
                    now,
                    json.dumps(metadata) if metadata else None,
                    fact_fingerprint,
                    fingerprint_confidence,
                ),
            )
            self._commit()
            return mem_id
        except sqlite3.Error as e:
            self._raise_write_error("add memory", e)
            raise  # unreachable, keeps type checkers quiet

    def get_memory(self, memory_id: str) -> Optional[dict[str, Any]]:
        """Get a record by ID, current or superseded.

        Raises:
            SQLiteStoreError: If the lookup fails
        """
        try:
            cursor = self._conn.execute(
                f"SELECT {MEMORY_COLUMNS} FROM memories WHERE id = ?", (memory_id,)
            )
            row = cursor.fetchone()
            return self._row_to_dict(row) if row else None
        except sqlite3.Error as e:
            raise SQLiteStoreError(f"Failed to get memory: {e}") from e

    def get_memories(self, memory_ids: list[str]) -> list[dict[str, Any]]:
        """Get several records by ID, preserving the requested order."""
        if not memory_ids:
            return []
        placeholders = ",".join("?" for _ in memory_ids)
        try:
            cursor = self._conn.execute(
                f"SELECT {MEMORY_COLUMNS} FROM memories WHERE id IN ({placeholders})",
                memory_ids,
            )
            by_id = {row["id"]: self._row_to_dict(row) for row in cursor.fetchall()}
        except sqlite3.Error as e:
            raise SQLiteStoreError(f"Failed to get memories: {e}") from e
        return [by_id[mid] for mid in memory_ids if mid in by_id]

    def list_memories(
        self,
        owner_id: str,
        category: Optional[str] = None,
        current_only: bool = True,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """List an owner's records, newest first.

        Args:
            owner_id: Owner to list
            category: Restrict to one category (optional)
            current_only: Exclude superseded records (default: True)
            limit: Maximum number of records

        Raises:
            SQLiteStoreError: If the query fails
        """
        query = f"SELECT {MEMORY_COLUMNS} FROM memories WHERE owner_id = ?"
        params: list[Any] = [owner_id]
        if category is not None:
            query += " AND category = ?"
            params.append(category)
        if current_only:
            query += " AND is_current = 1"
        query += " ORDER BY created_at DESC, id DESC LIMIT ?"
        params.append(limit)
        try:
            cursor = self._conn.execute(query, params)
            return [self._row_to_dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise SQLiteStoreError(f"Failed to list memories: {e}") from e

    def search_fts(
        self,
        query: str,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
        exclude_category: Optional[str] = None,
        current_only: bool = True,
        min_relevance: Optional[float] = None,
        limit: int = 10,
    ) -> list[dict[str, Any]]:
        """Full-text search over record content.

        Args:
            query: FTS5 MATCH expression (see build_match_query)
            owner_id: Restrict to one owner (optional)
            category: Restrict to one category (optional)
            exclude_category: Skip one category (optional)
            current_only: Exclude superseded records (default: True)
            min_relevance: Only records with relevance_score above this (optional)
            limit: Maximum number of results (default: 10)

        Returns:
            Matching record dicts with their bm25 "rank" (lower is better)

        Raises:
            SQLiteStoreError: If the search fails
        """
        columns = ", ".join(f"m.{col.strip()}" for col in MEMORY_COLUMNS.split(","))
        query_sql = f"""
            SELECT {columns}, bm25(memories_fts) AS rank
            FROM memories_fts
            JOIN memories m ON memories_fts.rowid = m.rowid
            WHERE memories_fts MATCH ?
        """
        params: list[Any] = [query]
        if owner_id is not None:
            query_sql += " AND m.owner_id = ?"
            params.append(owner_id)
        if category is not None:
            query_sql += " AND m.category = ?"
            params.append(category)
        if exclude_category is not None:
            query_sql += " AND m.category != ?"
            params.append(exclude_category)
        if current_only:
            query_sql += " AND m.is_current = 1"
        if min_relevance is not None:
            query_sql += " AND m.relevance_score > ?"
            params.append(min_relevance)
        query_sql += " ORDER BY rank, m.created_at DESC, m.id LIMIT ?"
        params.append(limit)

        try:
            cursor = self._conn.execute(query_sql, params)
            results = []
            for row in cursor.fetchall():
                data = self._row_to_dict(row)
                data["rank"] = row["rank"]
                results.append(data)
            return results
        except sqlite3.Error as e:
            raise SQLiteStoreError(f"Failed to search memories: {e}") from e

    def find_current_by_fingerprint(
        self, owner_id: str, fingerprint: str
    ) -> list[dict[str, Any]]:
        """Current records of an owner carrying a fingerprint (at most one)."""
        try:
            cursor = self._conn.execute(
                f"""
                SELECT {MEMORY_COLUMNS} FROM memories
                WHERE owner_id = ? AND fact_fingerprint = ? AND is_current = 1
                ORDER BY created_at DESC
                """,
                (owner_id, fingerprint),
            )
            return [self._row_to_dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise SQLiteStoreError(f"Failed to look up fingerprint: {e}") from e

    def fingerprint_history(self, owner_id: str, fingerprint: str) -> list[dict[str, Any]]:
        """Every record (current and superseded) of an owner's fingerprint, oldest first."""
        try:
            cursor = self._conn.execute(
                f"""
                SELECT {MEMORY_COLUMNS} FROM memories
                WHERE owner_id = ? AND fact_fingerprint = ?
                ORDER BY created_at ASC, id ASC
                """,
                (owner_id, fingerprint),
            )
            return [self._row_to_dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise SQLiteStoreError(f"Failed to read fingerprint history: {e}") from e

    def find_by_ordinal_subject(
        self, owner_id: str, subject: str, limit: int = 20
    ) -> list[dict[str, Any]]:
        """Current records tagged with an ordinal subject, in ordinal order."""
        try:
            cursor = self._conn.execute(
                f"""
                SELECT {MEMORY_COLUMNS} FROM memories
                WHERE owner_id = ? AND is_current = 1
                  AND lower(json_extract(metadata, '$.ordinal_subject')) = lower(?)
                ORDER BY CAST(json_extract(metadata, '$.ordinal') AS INTEGER) ASC,
                         created_at DESC
                LIMIT ?
                """,
                (owner_id, subject, limit),
            )
            return [self._row_to_dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise SQLiteStoreError(f"Failed to look up ordinal subject: {e}") from e

    def boost_memory(self, memory_id: str, relevance_increment: float = 0.05) -> bool:
        """Record a duplicate hit: usage + 1, relevance bumped (max 1.0), accessed now.

        Returns:
            True if the record was found and updated
        """
        try:
            cursor = self._conn.execute(
                """
                UPDATE memories
                SET usage_frequency = usage_frequency + 1,
                    relevance_score = MIN(relevance_score + ?, 1.0),
                    last_accessed_at = ?
                WHERE id = ?
                """,
                (relevance_increment, time.time(), memory_id),
            )
            self._commit()
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            self._raise_write_error("boost memory", e)
            raise

    def touch_memories(self, memory_ids: list[str]) -> int:
        """Record retrieval hits: usage + 1 and accessed now for each record.

        Returns:
            Number of records updated
        """
        if not memory_ids:
            return 0
        placeholders = ",".join("?" for _ in memory_ids)
        try:
            cursor = self._conn.execute(
                f"""
                UPDATE memories
                SET usage_frequency = usage_frequency + 1, last_accessed_at = ?
                WHERE id IN ({placeholders})
                """,
                [time.time(), *memory_ids],
            )
            self._commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            self._raise_write_error("touch memories", e)
            raise

    def supersede_memories(self, memory_ids: list[str], superseded_by: str) -> int:
        """Mark records as no longer current, linking their replacement.

        Returns:
            Number of records superseded
        """
        if not memory_ids:
            return 0
        placeholders = ",".join("?" for _ in memory_ids)
        try:
            cursor = self._conn.execute(
                f"""
                UPDATE memories
                SET is_current = 0, superseded_by = ?, superseded_at = ?
                WHERE id IN ({placeholders}) AND is_current = 1
                """,
                [superseded_by, time.time(), *memory_ids],
            )
            self._commit()
            return cursor.rowcount
        except sqlite3.Error as e:
            self._raise_write_error("supersede memories", e)
            raise

    def set_embedding_status(
        self,
        memory_id: str,
        status: EmbeddingStatus,
        error: Optional[str] = None,
    ) -> bool:
        """Move a record out of PENDING. Other transitions are refused.

        Returns:
            True if the status changed, False if the record was not pending
        """
        if not EmbeddingStatus.PENDING.can_transition_to(status):
            raise ValueError(f"Invalid embedding status transition to {status.value}")
        try:
            cursor = self._conn.execute(
                """
                UPDATE memories
                SET embedding_status = ?, embedding_error = ?, embedded_at = ?
                WHERE id = ? AND embedding_status = 'pending'
                """,
                (status.value, error, time.time(), memory_id),
            )
            self._commit()
            return cursor.rowcount > 0
        except sqlite3.Error as e:
            self._raise_write_error("set embedding status", e)
            raise

    def list_pending_embeddings(self, limit: int = 100) -> list[dict[str, Any]]:
        """Records still waiting for an embedding, oldest first."""
        try:
            cursor = self._conn.execute(
                f"""
                SELECT {MEMORY_COLUMNS} FROM memories
                WHERE embedding_status = 'pending'
                ORDER BY created_at ASC
                LIMIT ?
                """,
                (limit,),
            )
            return [self._row_to_dict(row) for row in cursor.fetchall()]
        except sqlite3.Error as e:
            raise SQLiteStoreError(f"Failed to list pending embeddings: {e}") from e

    def category_token_usage(self, owner_id: str, category: str) -> int:
        """Sum of token counts of an owner's current records in a category."""
        try:
            cursor = self._conn.execute(
                """
                SELECT COALESCE(SUM(token_count), 0) FROM memories
                WHERE owner_id = ? AND category = ? AND is_current = 1
                """,
                (owner_id, category),
            )
            result = cursor.fetchone()
            return int(result[0]) if result else 0
        except sqlite3.Error as e:
            raise SQLiteStoreError(f"Failed to compute category usage: {e}") from e

    def count_memories(
        self,
        owner_id: Optional[str] = None,
        category: Optional[str] = None,
        current_only: bool = False,
    ) -> int:
        """Count records with optional filtering."""
        query = "SELECT COUNT(*) FROM memories"
        conditions = []
        params: list[Any] = []
        if owner_id is not None:
            conditions.append("owner_id = ?")
            params.append(owner_id)
        if category is not None:
            conditions.append("category = ?")
            params.append(category)
        if current_only:
            conditions.append("is_current = 1")
        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        try:
            result = self._conn.execute(query, params).fetchone()
            return int(result[0]) if result else 0
        except sqlite3.Error as e:
            raise SQLiteStoreError(f"Failed to count memories: {e}") from e

    def clear(self) -> int:
        """Delete all records. Returns the number deleted."""
        try:
            count = self.count_memories()
            self._conn.execute("DELETE FROM memories")
            self._commit()
            return count
        except sqlite3.Error as e:
            self._raise_write_error("clear database", e)
            raise

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()

    def __enter__(self) -> "SQLiteStore":
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
