"""
Relevance ranking for memory retrieval.

Blends four signals per record:
- semantic: position in the remote search results
- recency: linear decay over a one-week window
- importance: constant placeholder
- effectiveness: smoothed feedback ratio from the effectiveness store
"""

import asyncio
from datetime import datetime
from typing import Callable, Dict, List, Literal, Optional, Set

from memory_engine.config.settings import ScoringCfg, WeightProfile
from memory_engine.exceptions import EffectivenessStoreError
from memory_engine.remote.resilience import ResilientMemoryService
from memory_engine.telemetry import get_logger, preview

from .effectiveness import EffectivenessStore
from .schemas import (
    EffectivenessRecord,
    MemoryRecord,
    ScoreBreakdown,
    ScoredMemory,
    utc_now,
)

logger = get_logger(__name__)

ScoringProfile = Literal["base", "feedback"]

SECONDS_PER_DAY = 86400.0


def semantic_scores(hits: List[MemoryRecord]) -> Dict[str, float]:
    """Map search hits to ``1 - rank / count``; the first hit scores 1."""
    scores: Dict[str, float] = {}
    count = max(len(hits), 1)
    for index, hit in enumerate(hits):
        scores.setdefault(hit.id, 1.0 - index / count)
    return scores


def recency_score(created_at: Optional[datetime], now: datetime, window_days: float) -> float:
    """1 for brand-new records, falling linearly to 0 at ``window_days``."""
    if created_at is None:
        return 0.0
    age_days = (now - created_at).total_seconds() / SECONDS_PER_DAY
    return max(0.0, min(1.0, 1.0 - age_days / window_days))


def combine(breakdown: ScoreBreakdown, weights: WeightProfile) -> float:
    return (
        weights.semantic * breakdown.semantic
        + weights.recency * breakdown.recency
        + weights.importance * breakdown.importance
        + weights.effectiveness * breakdown.effectiveness
    )


class RelevanceScorer:
    """
    Multi-factor ranking over the full corpus of a namespace.

    Records missing from the search hits are still ranked; they simply get
    no semantic credit.
    """

    def __init__(
        self,
        service: ResilientMemoryService,
        namespace: str,
        effectiveness: Optional[EffectivenessStore] = None,
        cfg: Optional[ScoringCfg] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize scorer.

        Args:
            service: Resilient remote memory service
            namespace: Default namespace to rank
            effectiveness: Feedback store (feedback profile falls back to defaults without it)
            cfg: Scoring weights and constants
            clock: Time source for recency
        """
        self.service = service
        self.namespace = namespace
        self.effectiveness = effectiveness
        self.cfg = cfg or ScoringCfg()
        self.clock = clock

    def weights(self, profile: ScoringProfile) -> WeightProfile:
        return self.cfg.feedback if profile == "feedback" else self.cfg.base

    async def rank(
        self,
        query: str,
        limit: int = 5,
        profile: ScoringProfile = "feedback",
        namespace: Optional[str] = None,
    ) -> List[ScoredMemory]:
        """
        Rank memories for a query.

        Args:
            query: Query text
            limit: Maximum results
            profile: ``base`` or ``feedback`` weight profile
            namespace: Namespace to rank (default: scorer namespace)

        Returns:
            Scored memories, best first
        """
        namespace = namespace or self.namespace
        use_feedback = profile == "feedback"
        logger.info("memory_rank_started", query=preview(query), limit=limit, profile=profile)

        hits, corpus, effective_ids = await asyncio.gather(
            self.service.search(query, namespace),
            self.service.list_all(namespace),
            self._effective_ids() if use_feedback else _empty_set(),
        )
        hits = hits or []

        if corpus is None:
            # Listing failed: rank what the search returned
            candidates = hits
        else:
            candidates = corpus

        if not candidates:
            return []

        effectiveness: Dict[str, EffectivenessRecord] = {}
        if use_feedback:
            effectiveness = await self._effectiveness_for([r.id for r in candidates])

        semantic = semantic_scores(hits)
        now = self.clock()
        weights = self.weights(profile)

        scored = []
        for record in candidates:
            breakdown = ScoreBreakdown(
                semantic=semantic.get(record.id, 0.0),
                recency=recency_score(record.created_at, now, self.cfg.recency_window_days),
                importance=self.cfg.importance,
                effectiveness=self._effectiveness_value(record.id, effectiveness, effective_ids),
            )
            scored.append(ScoredMemory(
                record=record,
                score=combine(breakdown, weights),
                breakdown=breakdown,
                profile=profile,
            ))

        scored.sort(key=lambda s: s.score, reverse=True)
        result = scored[:limit]

        logger.info(
            "memory_rank_completed",
            scored=len(scored),
            returned=len(result),
            top_score=result[0].score if result else 0.0,
        )
        return result

    def _effectiveness_value(
        self,
        memory_id: str,
        effectiveness: Dict[str, EffectivenessRecord],
        effective_ids: Set[str],
    ) -> float:
        record = effectiveness.get(memory_id)
        if record is not None:
            return record.effectiveness_score
        if memory_id in effective_ids:
            return self.cfg.effective_boost
        return self.cfg.default_effectiveness

    async def _effective_ids(self) -> Set[str]:
        if self.effectiveness is None:
            return set()
        try:
            return set(await self.effectiveness.most_effective(self.cfg.effective_pool_size))
        except EffectivenessStoreError as e:
            logger.warning("effective_ids_unavailable", error=str(e))
            return set()

    async def _effectiveness_for(self, memory_ids: List[str]) -> Dict[str, EffectivenessRecord]:
        if self.effectiveness is None:
            return {}
        try:
            return await self.effectiveness.get_many(memory_ids)
        except EffectivenessStoreError as e:
            logger.warning("effectiveness_unavailable", error=str(e))
            return {}


async def _empty_set() -> Set[str]:
    return set()


def format_memory_context(memories: List[ScoredMemory]) -> str:
    """
    Format ranked memories for injection into a prompt.

    Args:
        memories: Ranked memories

    Returns:
        Formatted context string (empty when there is nothing to inject)
    """
    if not memories:
        return ""

    lines = ["[MEMORY NOTES]"]
    total_chars = 0

    for scored in memories:
        lines.append(f"- {scored.record.content}")
        total_chars += len(scored.record.content)

    lines.append(f"(used {len(memories)} notes, {total_chars} chars)")
    lines.append("")

    return "\n".join(lines)
