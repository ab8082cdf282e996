"""
SQLite-backed relational store for memory feedback bookkeeping.

Tables:
- memory_effectiveness: memory id → retrieval/feedback counters and score
- memory_usage_feedback: one row per retrieval batch, memory ids as JSON array

Timestamps are stored as ISO-8601 UTC strings.
"""

import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, List, Optional, Sequence, Union


SCHEMA = [
    """
    CREATE TABLE IF NOT EXISTS memory_effectiveness (
        memory_id TEXT PRIMARY KEY,
        times_retrieved INTEGER NOT NULL DEFAULT 0,
        times_helpful INTEGER NOT NULL DEFAULT 0,
        times_unhelpful INTEGER NOT NULL DEFAULT 0,
        effectiveness_score REAL NOT NULL DEFAULT 0.5,
        last_used TEXT,
        last_feedback TEXT
    )
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_memory_effectiveness_score
    ON memory_effectiveness(effectiveness_score)
    """,
    """
    CREATE TABLE IF NOT EXISTS memory_usage_feedback (
        id TEXT PRIMARY KEY,
        conversation_id TEXT,
        memory_ids TEXT NOT NULL,
        rating TEXT CHECK(rating IN ('positive', 'negative', 'neutral')),
        task_completed INTEGER NOT NULL DEFAULT 0,
        feedback_text TEXT,
        created_at TEXT NOT NULL
    )
    """,
]


class SQLiteStore:
    """
    File-backed SQLite database for effectiveness tracking.

    WAL mode so readers (ranking) do not block the feedback writer.
    """

    def __init__(self, db_path: Union[str, Path]):
        """
        Initialize store at given path.

        Args:
            db_path: Path to SQLite database file, or ``:memory:``
        """
        self.db_path = str(db_path)
        if self.db_path != ":memory:":
            Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            self.db_path,
            check_same_thread=False,  # Allow multi-threaded access
            timeout=10.0,
        )
        self._conn.row_factory = sqlite3.Row

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")

        self._init_tables()

    def _init_tables(self) -> None:
        """Create tables if they don't exist."""
        for statement in SCHEMA:
            self._conn.execute(statement)
        self._conn.commit()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Run several statements atomically."""
        try:
            yield self._conn
            self._conn.commit()
        except Exception:
            self._conn.rollback()
            raise

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """
        Execute a single write statement and commit.

        Returns:
            Number of affected rows
        """
        with self.transaction() as conn:
            cursor = conn.execute(sql, params)
            return cursor.rowcount

    def fetchone(self, sql: str, params: Sequence[Any] = ()) -> Optional[sqlite3.Row]:
        return self._conn.execute(sql, params).fetchone()

    def fetchall(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        return self._conn.execute(sql, params).fetchall()

    def count(self, table: str) -> int:
        """Row count of a table."""
        row = self._conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()
        return row[0] or 0

    def close(self) -> None:
        """Close database connection."""
        self._conn.close()

    def __enter__(self):
        """Context manager entry."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.close()
