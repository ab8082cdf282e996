"""
Effectiveness feedback loop.

Counts how often each memory is retrieved and how often the batches it was
part of were rated helpful, and keeps a Laplace-smoothed success ratio that
the relevance scorer reads back on the next query.
"""

import json
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, Iterable, Iterator, List, Optional

from memory_engine.config.settings import EffectivenessCfg
from memory_engine.exceptions import EffectivenessStoreError
from memory_engine.persist.sqlite_store import SQLiteStore
from memory_engine.telemetry import get_logger

from .schemas import (
    EffectivenessRecord,
    FeedbackRating,
    UsageFeedbackEvent,
    utc_now,
)

logger = get_logger(__name__)

RATINGS = ("positive", "negative", "neutral")

# Keeps IN (...) lists under SQLite's bound-parameter limit
_CHUNK = 500


def smoothed_score(times_helpful: int, times_retrieved: int) -> float:
    """Laplace-smoothed helpfulness ratio, clamped to [0, 1]."""
    score = times_helpful / (times_retrieved + 2)
    return max(0.0, min(1.0, score))


def _iso(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


@contextmanager
def _db_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as e:
        logger.error("effectiveness_store_error", action=action, error=str(e))
        raise EffectivenessStoreError(f"{action} failed: {e}") from e


class EffectivenessStore:
    """
    Relational bookkeeping of retrieval and feedback counts per memory.

    Records are created lazily on first retrieval with the neutral 0.5
    prior and are never deleted.
    """

    def __init__(
        self,
        db: SQLiteStore,
        cfg: Optional[EffectivenessCfg] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize effectiveness store.

        Args:
            db: Relational store holding both feedback tables
            cfg: Evidence thresholds for effectiveness queries
            clock: Time source for ``last_used`` / ``last_feedback``
        """
        self.db = db
        self.cfg = cfg or EffectivenessCfg()
        self.clock = clock

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def record_usage(
        self,
        memory_ids: Iterable[str],
        conversation_id: Optional[str] = None,
    ) -> str:
        """
        Record that a batch of memories was shown to the model.

        Args:
            memory_ids: Memories retrieved together
            conversation_id: Optional conversation the batch belongs to

        Returns:
            Id of the created UsageFeedbackEvent
        """
        ids = list(dict.fromkeys(memory_ids))
        event_id = str(uuid.uuid4())
        now = _iso(self.clock())

        with _db_errors("record_usage"), self.db.transaction() as conn:
            conn.execute(
                """
                INSERT INTO memory_usage_feedback
                (id, conversation_id, memory_ids, task_completed, created_at)
                VALUES (?, ?, ?, 0, ?)
                """,
                (event_id, conversation_id, json.dumps(ids), now),
            )
            for memory_id in ids:
                conn.execute(
                    """
                    INSERT INTO memory_effectiveness (memory_id, times_retrieved, last_used)
                    VALUES (?, 1, ?)
                    ON CONFLICT(memory_id) DO UPDATE SET
                        times_retrieved = times_retrieved + 1,
                        last_used = excluded.last_used
                    """,
                    (memory_id, now),
                )

        logger.info("memory_usage_recorded", event_id=event_id, memories=len(ids))
        return event_id

    async def record_feedback(
        self,
        event_id: str,
        rating: FeedbackRating,
        task_completed: bool = False,
        feedback_text: Optional[str] = None,
    ) -> bool:
        """
        Apply a rating to every memory in a usage event.

        Args:
            event_id: Id returned by ``record_usage``
            rating: positive, negative or neutral
            task_completed: Whether the user's task was completed
            feedback_text: Optional free-text comment

        Returns:
            False if the event does not exist
        """
        if rating not in RATINGS:
            raise ValueError(f"invalid rating: {rating!r}")

        now = _iso(self.clock())
        helpful_inc = 1 if rating == "positive" else 0
        unhelpful_inc = 1 if rating == "negative" else 0

        with _db_errors("record_feedback"), self.db.transaction() as conn:
            row = conn.execute(
                "SELECT memory_ids FROM memory_usage_feedback WHERE id = ?",
                (event_id,),
            ).fetchone()
            if row is None:
                logger.warning("feedback_event_not_found", event_id=event_id)
                return False

            conn.execute(
                """
                UPDATE memory_usage_feedback
                SET rating = ?, task_completed = ?, feedback_text = ?
                WHERE id = ?
                """,
                (rating, int(task_completed), feedback_text, event_id),
            )

            memory_ids = json.loads(row["memory_ids"] or "[]")
            for memory_id in memory_ids:
                current = conn.execute(
                    """
                    SELECT times_retrieved, times_helpful, times_unhelpful
                    FROM memory_effectiveness WHERE memory_id = ?
                    """,
                    (memory_id,),
                ).fetchone()
                retrieved = current["times_retrieved"] if current else 0
                helpful = (current["times_helpful"] if current else 0) + helpful_inc
                unhelpful = (current["times_unhelpful"] if current else 0) + unhelpful_inc
                score = smoothed_score(helpful, retrieved)

                conn.execute(
                    """
                    INSERT INTO memory_effectiveness
                    (memory_id, times_retrieved, times_helpful, times_unhelpful,
                     effectiveness_score, last_feedback)
                    VALUES (?, ?, ?, ?, ?, ?)
                    ON CONFLICT(memory_id) DO UPDATE SET
                        times_helpful = excluded.times_helpful,
                        times_unhelpful = excluded.times_unhelpful,
                        effectiveness_score = excluded.effectiveness_score,
                        last_feedback = excluded.last_feedback
                    """,
                    (memory_id, retrieved, helpful, unhelpful, score, now),
                )

        logger.info(
            "memory_feedback_recorded",
            event_id=event_id,
            rating=rating,
            task_completed=task_completed,
            memories=len(memory_ids),
        )
        return True

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, memory_id: str) -> Optional[EffectivenessRecord]:
        """Effectiveness counters for one memory, None if never retrieved."""
        with _db_errors("get_effectiveness"):
            row = self.db.fetchone(
                "SELECT * FROM memory_effectiveness WHERE memory_id = ?",
                (memory_id,),
            )
        return self._to_record(row) if row is not None else None

    async def get_many(self, memory_ids: Iterable[str]) -> Dict[str, EffectivenessRecord]:
        """Effectiveness counters for several memories keyed by id."""
        ids = list(dict.fromkeys(memory_ids))
        records: Dict[str, EffectivenessRecord] = {}

        with _db_errors("get_effectiveness"):
            for start in range(0, len(ids), _CHUNK):
                chunk = ids[start:start + _CHUNK]
                placeholders = ",".join("?" for _ in chunk)
                rows = self.db.fetchall(
                    f"SELECT * FROM memory_effectiveness WHERE memory_id IN ({placeholders})",
                    chunk,
                )
                for row in rows:
                    records[row["memory_id"]] = self._to_record(row)
        return records

    async def get_event(self, event_id: str) -> Optional[UsageFeedbackEvent]:
        with _db_errors("get_event"):
            row = self.db.fetchone(
                "SELECT * FROM memory_usage_feedback WHERE id = ?", (event_id,)
            )
        if row is None:
            return None
        return UsageFeedbackEvent(
            id=row["id"],
            conversation_id=row["conversation_id"],
            memory_ids=json.loads(row["memory_ids"] or "[]"),
            rating=row["rating"],
            task_completed=bool(row["task_completed"]),
            feedback_text=row["feedback_text"],
            created_at=row["created_at"],
        )

    async def most_effective(self, limit: int = 50) -> List[str]:
        """Ids with enough retrievals, best score first."""
        with _db_errors("most_effective"):
            rows = self.db.fetchall(
                """
                SELECT memory_id FROM memory_effectiveness
                WHERE times_retrieved >= ?
                ORDER BY effectiveness_score DESC, times_retrieved DESC
                LIMIT ?
                """,
                (self.cfg.most_effective_min_retrievals, limit),
            )
        return [row["memory_id"] for row in rows]

    async def least_effective(self, limit: int = 50) -> List[str]:
        """Ids with enough retrievals and a low score, worst first."""
        with _db_errors("least_effective"):
            rows = self.db.fetchall(
                """
                SELECT memory_id FROM memory_effectiveness
                WHERE times_retrieved >= ? AND effectiveness_score < ?
                ORDER BY effectiveness_score ASC, times_retrieved DESC
                LIMIT ?
                """,
                (
                    self.cfg.least_effective_min_retrievals,
                    self.cfg.least_effective_threshold,
                    limit,
                ),
            )
        return [row["memory_id"] for row in rows]

    async def has_feedback(self) -> bool:
        """True once at least one memory has received a rating."""
        with _db_errors("has_feedback"):
            row = self.db.fetchone(
                "SELECT 1 FROM memory_effectiveness WHERE last_feedback IS NOT NULL LIMIT 1"
            )
        return row is not None

    @staticmethod
    def _to_record(row: sqlite3.Row) -> EffectivenessRecord:
        return EffectivenessRecord(
            memory_id=row["memory_id"],
            times_retrieved=row["times_retrieved"],
            times_helpful=row["times_helpful"],
            times_unhelpful=row["times_unhelpful"],
            effectiveness_score=row["effectiveness_score"],
            last_used=row["last_used"],
            last_feedback=row["last_feedback"],
        )
