"""
Temporal facts over immutable memory records.

A fact that changes is written as a new record pointing back at the record
it replaces (``supersedes_id``). The old record is never touched; it is
treated as non-current wherever the newer record is visible, and the
maintenance engine archives it later.

Supersession assumes a single writer per process. Upserts for the same
(entity, fact_key, category) are serialized in-process; concurrent writers
in different processes can still leave two current records until the next
maintenance pass.
"""

import asyncio
import weakref
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

from memory_engine.remote.resilience import ResilientMemoryService
from memory_engine.telemetry import get_logger, preview

from .schemas import (
    SYSTEM_CATEGORY,
    FactUpsertResult,
    MemoryMetadata,
    MemoryRecord,
    utc_now,
)

logger = get_logger(__name__)


def forward_pointers(records: List[MemoryRecord]) -> Set[str]:
    """Ids that some record in ``records`` declares as replaced or invalidated."""
    pointers = set()
    for record in records:
        meta = record.metadata
        if meta.supersedes_id:
            pointers.add(meta.supersedes_id)
        if meta.invalidates_memory_id:
            pointers.add(meta.invalidates_memory_id)
    return pointers


def is_current(record: MemoryRecord, replaced: Set[str], now: datetime) -> bool:
    """Current = not flagged, not replaced, not a tombstone, not expired."""
    meta = record.metadata
    if meta.is_current is False or meta.superseded_by or meta.is_tombstone:
        return False
    if record.id in replaced:
        return False
    if meta.valid_until is not None and meta.valid_until <= now:
        return False
    return True


class TemporalFactLayer:
    """Supersession chain over append-only memory records."""

    def __init__(
        self,
        service: ResilientMemoryService,
        namespace: str,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize fact layer.

        Args:
            service: Resilient remote memory service
            namespace: Default namespace for facts
            clock: Time source for ingestion/validity timestamps
        """
        self.service = service
        self.namespace = namespace
        self.clock = clock
        # Entries vanish once no upsert holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[Tuple[Optional[str], Optional[str], str], asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )

    def _lock_for(self, entity: Optional[str], fact_key: Optional[str], category: str) -> asyncio.Lock:
        key = ((entity or "").lower() or None, fact_key, category)
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

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
        """
        Write a new version of a fact.

        Args:
            content: Fact text
            category: Memory category
            entity: Entity the fact is about (matched against record text)
            fact_key: Stable key for this kind of fact, e.g. ``user.theme``
            valid_from: When the fact became true (default: now)
            metadata: Extra metadata fields merged into the record
            namespace: Target namespace (default: layer namespace)

        Returns:
            FactUpsertResult with the new id and the superseded id, if any
        """
        namespace = namespace or self.namespace
        logger.info(
            "fact_upsert_started",
            category=category,
            entity=entity,
            fact_key=fact_key,
        )

        async with self._lock_for(entity, fact_key, category):
            superseded_id = None
            if entity or fact_key:
                superseded_id = await self._find_current(
                    category, entity, fact_key, namespace
                )
                if superseded_id:
                    logger.info("fact_supersedes", old_id=superseded_id)

            now = self.clock()
            fields: Dict[str, Any] = dict(metadata or {})
            fields.update({
                "category": category,
                "valid_from": valid_from or now,
                "ingested_at": now,
                "is_current": True,
                "supersedes_id": superseded_id,
                "fact_type": fields.get("fact_type", "dynamic"),
            })
            if entity:
                fields["related_entities"] = [entity]
            if fact_key:
                fields["fact_key"] = fact_key

            meta = MemoryMetadata.from_wire(fields)
            new_id = await self.service.add(content, namespace, meta)

        result = FactUpsertResult(new_id=new_id or None, superseded_id=superseded_id)
        logger.info(
            "fact_upserted",
            new_id=result.new_id,
            superseded_id=superseded_id,
        )
        return result

    async def _search_with_pointers(
        self, query: str, namespace: str
    ) -> Tuple[List[MemoryRecord], Set[str]]:
        """Search hits plus every id replaced anywhere in the namespace.

        Invalidation records rarely match the query of the fact they point
        at, so pointers come from the full listing as well as the hits.
        """
        results, corpus = await asyncio.gather(
            self.service.search(query, namespace),
            self.service.list_all(namespace),
        )
        results = results or []
        return results, forward_pointers(results + (corpus or []))

    async def _find_current(
        self,
        category: str,
        entity: Optional[str],
        fact_key: Optional[str],
        namespace: str,
    ) -> Optional[str]:
        query = fact_key or f"{entity} {category}"
        results, replaced = await self._search_with_pointers(query, namespace)
        now = self.clock()

        for record in results:
            meta = record.metadata
            if meta.category != category or not is_current(record, replaced, now):
                continue
            if entity and entity.lower() in record.content.lower():
                return record.id
            if fact_key and meta.fact_key == fact_key:
                return record.id
        return None

    async def get_current_fact(
        self,
        query: str,
        category: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> Optional[MemoryRecord]:
        """
        First search hit that is still a current, unexpired fact.

        Search order is preserved; no re-ranking.
        """
        results, replaced = await self._search_with_pointers(
            query, namespace or self.namespace
        )
        now = self.clock()

        for record in results:
            if category and record.metadata.category != category:
                continue
            if is_current(record, replaced, now):
                return record
        return None

    async def get_fact_history(
        self,
        query: str,
        category: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> List[MemoryRecord]:
        """All versions of a fact, oldest first by validity start."""
        results = await self.service.search(query, namespace or self.namespace) or []

        history = [
            r for r in results
            if not r.metadata.is_tombstone
            and (not category or r.metadata.category == category)
        ]

        def valid_ts(record: MemoryRecord) -> float:
            if record.metadata.valid_from is not None:
                return record.metadata.valid_from.timestamp()
            return record.created_ts()

        history.sort(key=valid_ts)
        return history

    async def invalidate_fact(
        self,
        memory_id: str,
        reason: Optional[str] = None,
        namespace: Optional[str] = None,
    ) -> Optional[str]:
        """
        Mark a fact as no longer valid by appending an invalidation record.

        Returns:
            Id of the invalidation record, None if the write failed
        """
        meta = MemoryMetadata(
            category=SYSTEM_CATEGORY,
            invalidates_memory_id=memory_id,
            archive_reason=reason,
            ingested_at=self.clock(),
            is_current=False,
        )
        new_id = await self.service.add(
            f"[INVALIDATED] Memory {memory_id} was marked as invalid. "
            f"Reason: {reason or 'Not specified'}",
            namespace or self.namespace,
            meta,
        )
        logger.info("fact_invalidated", memory_id=memory_id, reason=preview(reason))
        return new_id
