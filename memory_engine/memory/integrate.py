"""
Memory engine facade for the conversation pipeline.

Wires the resilient remote service, effectiveness store, scorer, fact
layer, maintenance engine and catalog together, and exposes the operations
the pipeline and operational tooling call.
"""

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional

from memory_engine.config.settings import Settings
from memory_engine.exceptions import EffectivenessStoreError
from memory_engine.persist.sqlite_store import SQLiteStore
from memory_engine.remote.client import Mem0HttpClient, MemoryServiceClient
from memory_engine.remote.local import LocalMemoryService
from memory_engine.remote.resilience import ResilientMemoryService, Sleep
from memory_engine.telemetry import get_logger

from .categories import MemoryCatalog
from .effectiveness import EffectivenessStore
from .maintenance import MaintenanceEngine
from .schemas import (
    EffectivenessRecord,
    FactUpsertResult,
    FailedOperationRecord,
    FeedbackRating,
    MaintenanceResult,
    MemoryRecord,
    PruneCandidates,
    ScoredMemory,
    SimilarGroup,
    utc_now,
)
from .scoring import RelevanceScorer, ScoringProfile
from .temporal import TemporalFactLayer

logger = get_logger(__name__)


class MemoryEngine:
    """
    Upward interface of the memory subsystem.

    Every component is injected; use ``create_memory_engine`` for the
    default wiring.
    """

    def __init__(
        self,
        settings: Settings,
        service: ResilientMemoryService,
        effectiveness: EffectivenessStore,
        scorer: RelevanceScorer,
        facts: TemporalFactLayer,
        maintenance: MaintenanceEngine,
        catalog: MemoryCatalog,
    ):
        self.settings = settings
        self.service = service
        self.effectiveness = effectiveness
        self.scorer = scorer
        self.facts = facts
        self.maintenance = maintenance
        self.catalog = catalog

    @property
    def user_namespace(self) -> str:
        return self.settings.remote.user_namespace

    @property
    def self_namespace(self) -> str:
        return self.settings.remote.self_namespace

    # ------------------------------------------------------------------
    # Ranking
    # ------------------------------------------------------------------

    async def rank(
        self,
        query: str,
        limit: int = 5,
        profile: Optional[ScoringProfile] = None,
        namespace: Optional[str] = None,
    ) -> List[ScoredMemory]:
        """
        Rank memories for a query.

        Without an explicit profile the feedback-aware weights are used once
        any memory has been rated, and the base weights before that.
        """
        if profile is None:
            profile = "feedback" if await self.feedback_ready() else "base"
        return await self.scorer.rank(query, limit=limit, profile=profile, namespace=namespace)

    async def feedback_ready(self) -> bool:
        try:
            return await self.effectiveness.has_feedback()
        except EffectivenessStoreError:
            return False

    # ------------------------------------------------------------------
    # Temporal facts
    # ------------------------------------------------------------------

    async def upsert_fact(
        self,
        content: str,
        category: str,
        entity: Optional[str] = None,
        fact_key: Optional[str] = None,
        valid_from: Optional[datetime] = None,
        metadata: Optional[Dict[str, Any]] = None,
        namespace: Optional[str] = None,
    ) -> FactUpsertResult:
        return await self.facts.upsert_fact(
            content,
            category,
            entity=entity,
            fact_key=fact_key,
            valid_from=valid_from,
            metadata=metadata,
            namespace=namespace,
        )

    async def get_current_fact(
        self, query: str, category: Optional[str] = None, namespace: Optional[str] = None
    ) -> Optional[MemoryRecord]:
        return await self.facts.get_current_fact(query, category, namespace)

    async def get_fact_history(
        self, query: str, category: Optional[str] = None, namespace: Optional[str] = None
    ) -> List[MemoryRecord]:
        return await self.facts.get_fact_history(query, category, namespace)

    async def invalidate_fact(
        self, memory_id: str, reason: Optional[str] = None, namespace: Optional[str] = None
    ) -> Optional[str]:
        return await self.facts.invalidate_fact(memory_id, reason, namespace)

    # ------------------------------------------------------------------
    # Feedback loop
    # ------------------------------------------------------------------

    async def record_usage(
        self, memory_ids: Iterable[str], conversation_id: Optional[str] = None
    ) -> str:
        return await self.effectiveness.record_usage(memory_ids, conversation_id)

    async def record_feedback(
        self,
        event_id: str,
        rating: FeedbackRating,
        task_completed: bool = False,
        feedback_text: Optional[str] = None,
    ) -> bool:
        return await self.effectiveness.record_feedback(
            event_id, rating, task_completed, feedback_text
        )

    async def get_effectiveness(self, memory_id: str) -> Optional[EffectivenessRecord]:
        return await self.effectiveness.get(memory_id)

    async def most_effective(self, limit: int = 50) -> List[str]:
        return await self.effectiveness.most_effective(limit)

    async def least_effective(self, limit: int = 50) -> List[str]:
        return await self.effectiveness.least_effective(limit)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    async def identify_candidates(self, namespace: Optional[str] = None) -> PruneCandidates:
        return await self.maintenance.identify_candidates(namespace)

    async def find_similar(
        self, threshold: Optional[float] = None, namespace: Optional[str] = None
    ) -> List[SimilarGroup]:
        return await self.maintenance.find_similar(threshold, namespace)

    async def archive(
        self, memory_id: str, reason: str, namespace: Optional[str] = None
    ) -> Optional[str]:
        return await self.maintenance.archive(memory_id, reason, namespace)

    async def run_maintenance(
        self, dry_run: bool = True, namespace: Optional[str] = None
    ) -> MaintenanceResult:
        return await self.maintenance.run_maintenance(dry_run, namespace)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def failed_operations(self) -> List[FailedOperationRecord]:
        return self.service.failed_operations()

    def clear_failed(self) -> int:
        return self.service.clear_failed()

    async def replay_failed(self) -> int:
        return await self.service.replay_failed()

    async def health(self) -> Dict[str, Any]:
        return await self.service.health(self.user_namespace)

    async def aclose(self) -> None:
        await self.service.client.aclose()
        self.effectiveness.db.close()


def build_client(settings: Settings) -> MemoryServiceClient:
    """Remote client for the configured backend."""
    remote = settings.remote
    if remote.backend == "local":
        return LocalMemoryService()
    return Mem0HttpClient(
        base_url=remote.base_url,
        api_key=remote.api_key,
        timeout=remote.timeout,
        assistant_namespaces=[remote.self_namespace],
    )


def create_memory_engine(
    settings: Optional[Settings] = None,
    client: Optional[MemoryServiceClient] = None,
    db: Optional[SQLiteStore] = None,
    clock: Callable[[], datetime] = utc_now,
    sleep: Sleep = asyncio.sleep,
) -> MemoryEngine:
    """
    Factory function to create the memory engine.

    Args:
        settings: Settings (default: ``Settings.from_env()``)
        client: Remote client (default: built from ``settings.remote``)
        db: Relational store (default: sqlite file from ``settings.paths``)
        clock: Time source shared by all components
        sleep: Awaitable used between retry attempts

    Returns:
        Wired MemoryEngine
    """
    settings = settings or Settings.from_env()
    client = client or build_client(settings)
    db = db or SQLiteStore(Path(settings.paths.effectiveness_db))
    namespace = settings.remote.user_namespace

    service = ResilientMemoryService(client, settings.retry, sleep=sleep)
    effectiveness = EffectivenessStore(db, settings.effectiveness, clock=clock)

    engine = MemoryEngine(
        settings=settings,
        service=service,
        effectiveness=effectiveness,
        scorer=RelevanceScorer(service, namespace, effectiveness, settings.scoring, clock=clock),
        facts=TemporalFactLayer(service, namespace, clock=clock),
        maintenance=MaintenanceEngine(
            service, namespace, effectiveness, settings.maintenance, clock=clock
        ),
        catalog=MemoryCatalog(service, namespace),
    )
    logger.info("memory_engine_created", backend=client.name, namespace=namespace)
    return engine
