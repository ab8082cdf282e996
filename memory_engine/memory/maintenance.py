"""
Memory maintenance: pruning candidates, near-duplicate groups and archival.

The remote store cannot delete, so archival appends a tombstone record that
references the archived id. Tombstones and records that already have one are
skipped by every pass, which keeps repeated runs from stacking tombstones.
"""

from datetime import datetime
from typing import Callable, Dict, List, Optional, Set

from memory_engine.config.settings import MaintenanceCfg
from memory_engine.exceptions import EffectivenessStoreError
from memory_engine.remote.resilience import ResilientMemoryService
from memory_engine.telemetry import get_logger

from .effectiveness import EffectivenessStore
from .schemas import (
    SYSTEM_CATEGORY,
    EffectivenessRecord,
    MaintenanceResult,
    MemoryMetadata,
    MemoryRecord,
    PruneCandidates,
    SimilarGroup,
    utc_now,
)
from .temporal import forward_pointers

logger = get_logger(__name__)

SECONDS_PER_DAY = 86400.0

REASON_SUPERSEDED = "superseded by newer information"
REASON_LOW_EFFECTIVENESS = "consistently low effectiveness"
REASON_STALE = "stale - never retrieved"


def archived_ids(records: List[MemoryRecord]) -> Set[str]:
    """Ids that already have an archival tombstone."""
    return {
        r.metadata.archived_memory_id
        for r in records
        if r.metadata.archived_memory_id
    }


def live_records(records: List[MemoryRecord]) -> List[MemoryRecord]:
    """Drop tombstones and records that were already archived."""
    archived = archived_ids(records)
    return [
        r for r in records
        if not r.metadata.is_tombstone and r.id not in archived
    ]


class MaintenanceEngine:
    """Keeps the append-only corpus bounded."""

    def __init__(
        self,
        service: ResilientMemoryService,
        namespace: str,
        effectiveness: Optional[EffectivenessStore] = None,
        cfg: Optional[MaintenanceCfg] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize maintenance engine.

        Args:
            service: Resilient remote memory service
            namespace: Default namespace to maintain
            effectiveness: Feedback store consulted for low-effectiveness and staleness
            cfg: Pruning thresholds
            clock: Time source for record age
        """
        self.service = service
        self.namespace = namespace
        self.effectiveness = effectiveness
        self.cfg = cfg or MaintenanceCfg()
        self.clock = clock

    async def identify_candidates(self, namespace: Optional[str] = None) -> PruneCandidates:
        """
        Partition the corpus into superseded, low-effectiveness and stale records.

        Each record lands in at most one bucket, checked in that order.
        Without effectiveness data only the superseded bucket is filled.
        """
        namespace = namespace or self.namespace
        corpus = await self.service.list_all(namespace)
        candidates = PruneCandidates()
        if not corpus:
            return candidates

        replaced = forward_pointers(corpus)
        records = live_records(corpus)
        effectiveness = await self._effectiveness_for([r.id for r in records])

        now = self.clock()
        stale_after_s = self.cfg.stale_after_days * SECONDS_PER_DAY

        for record in records:
            meta = record.metadata
            if meta.is_current is False or meta.superseded_by or record.id in replaced:
                candidates.superseded.append(record)
                continue

            if effectiveness is None:
                continue

            eff = effectiveness.get(record.id)
            if (
                eff is not None
                and eff.times_retrieved >= self.cfg.low_effectiveness_min_retrievals
                and eff.effectiveness_score < self.cfg.low_effectiveness_threshold
            ):
                candidates.low_effectiveness.append(record)
                continue

            age_s = now.timestamp() - record.created_ts()
            if age_s > stale_after_s and (eff is None or eff.times_retrieved == 0):
                candidates.stale.append(record)

        logger.info("prune_candidates_identified", **candidates.summary())
        return candidates

    async def find_similar(
        self,
        threshold: Optional[float] = None,
        namespace: Optional[str] = None,
        exclude: Optional[Set[str]] = None,
    ) -> List[SimilarGroup]:
        """
        Group near-duplicate records.

        The corpus is walked newest first, so each group's primary is newer
        than its duplicates. A record joins at most one group. Ids in
        ``exclude`` are treated like archived records.
        """
        namespace = namespace or self.namespace
        threshold = self.cfg.similarity_threshold if threshold is None else threshold
        logger.info("similar_search_started", threshold=threshold)

        corpus = await self.service.list_all(namespace)
        if not corpus:
            return []

        skip = exclude or set()
        records = [r for r in live_records(corpus) if r.id not in skip]
        eligible = {r.id for r in records}
        records.sort(key=lambda r: r.created_ts(), reverse=True)

        groups: List[SimilarGroup] = []
        processed: Set[str] = set()

        for record in records:
            if record.id in processed:
                continue

            matches = await self.service.search(record.content, namespace) or []
            duplicates = []
            for match in matches:
                if match.id == record.id or match.id in processed or match.id not in eligible:
                    continue
                if match.similarity >= threshold:
                    duplicates.append(match)
                    processed.add(match.id)

            if duplicates:
                processed.add(record.id)
                groups.append(SimilarGroup(primary=record, duplicates=duplicates))

        logger.info("similar_groups_found", groups=len(groups))
        return groups

    async def archive(
        self,
        memory_id: str,
        reason: str,
        namespace: Optional[str] = None,
    ) -> Optional[str]:
        """
        Append a tombstone for ``memory_id``.

        Returns:
            Id of the tombstone, None if the write failed
        """
        logger.info("memory_archive", memory_id=memory_id, reason=reason)
        meta = MemoryMetadata(
            category=SYSTEM_CATEGORY,
            archived_memory_id=memory_id,
            archive_reason=reason,
            ingested_at=self.clock(),
            is_current=False,
        )
        return await self.service.add(
            f"[ARCHIVED] Memory {memory_id} archived. Reason: {reason}",
            namespace or self.namespace,
            meta,
        )

    async def run_maintenance(
        self,
        dry_run: bool = True,
        namespace: Optional[str] = None,
    ) -> MaintenanceResult:
        """
        Archive pruning candidates and consolidate near-duplicates.

        Args:
            dry_run: Only count what would be archived
            namespace: Namespace to maintain

        Returns:
            MaintenanceResult; per-item failures are listed in ``errors``
        """
        namespace = namespace or self.namespace
        logger.info("maintenance_started", dry_run=dry_run, namespace=namespace)
        result = MaintenanceResult()

        candidates = await self.identify_candidates(namespace)
        result.analyzed = candidates.total

        if not dry_run:
            buckets = (
                (candidates.superseded, REASON_SUPERSEDED),
                (candidates.low_effectiveness, REASON_LOW_EFFECTIVENESS),
                (candidates.stale, REASON_STALE),
            )
            for records, reason in buckets:
                for record in records:
                    if await self.archive(record.id, reason, namespace) is not None:
                        result.pruned += 1
                    else:
                        result.errors.append(f"Failed to archive {record.id}")

        # Candidates are already archived in execute mode
        pending: Set[str] = set()
        if dry_run:
            pending = {
                r.id
                for r in candidates.superseded + candidates.low_effectiveness + candidates.stale
            }
        groups = await self.find_similar(namespace=namespace, exclude=pending)

        if dry_run:
            result.consolidated = sum(len(g.duplicates) for g in groups)
        else:
            for group in groups:
                members = [group.primary, *group.duplicates]
                members.sort(key=lambda r: r.created_ts(), reverse=True)
                keep = members[0]
                for duplicate in members[1:]:
                    if await self.archive(duplicate.id, f"duplicate of {keep.id}", namespace) is not None:
                        result.consolidated += 1
                    else:
                        result.errors.append(f"Failed to archive duplicate {duplicate.id}")

        logger.info(
            "maintenance_completed",
            dry_run=dry_run,
            analyzed=result.analyzed,
            pruned=result.pruned,
            consolidated=result.consolidated,
            errors=len(result.errors),
        )
        return result

    async def _effectiveness_for(
        self, memory_ids: List[str]
    ) -> Optional[Dict[str, EffectivenessRecord]]:
        if self.effectiveness is None:
            return None
        try:
            return await self.effectiveness.get_many(memory_ids)
        except EffectivenessStoreError as e:
            logger.warning("maintenance_effectiveness_unavailable", error=str(e))
            return None
