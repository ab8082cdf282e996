"""
Categorized memory catalog.

Plain writes and lookups over the remote service, filtered by the fixed
category enumeration.
"""

from typing import Any, Dict, List, Optional

from memory_engine.remote.resilience import ResilientMemoryService
from memory_engine.telemetry import get_logger, preview

from .schemas import (
    CATEGORIES,
    UNCATEGORIZED,
    MemoryMetadata,
    MemoryRecord,
    is_valid_category,
)

logger = get_logger(__name__)


def newest_first(records: List[MemoryRecord]) -> List[MemoryRecord]:
    return sorted(records, key=lambda r: r.created_ts(), reverse=True)


class MemoryCatalog:
    """Category-aware reads and writes for one default namespace."""

    def __init__(self, service: ResilientMemoryService, namespace: str):
        self.service = service
        self.namespace = namespace

    async def add_memory(
        self,
        content: str,
        metadata: Optional[Dict[str, Any]] = None,
        namespace: Optional[str] = None,
    ) -> Optional[str]:
        """Store a memory with free-form metadata; returns its id or None."""
        meta = MemoryMetadata.from_wire(metadata or {})
        return await self.service.add(content, namespace or self.namespace, meta)

    async def add_categorized(
        self,
        content: str,
        category: str,
        namespace: Optional[str] = None,
        **fields: Any,
    ) -> Optional[str]:
        """
        Store a memory under one of the fixed categories.

        Args:
            content: Memory text
            category: One of ``CATEGORIES``
            namespace: Target namespace
            **fields: subcategory, confidence, source, related_entities, tags

        Raises:
            ValueError: Unknown category
        """
        if not is_valid_category(category):
            raise ValueError(f"invalid category: {category!r}")

        data = {k: v for k, v in fields.items() if v is not None}
        data["category"] = category
        logger.info("categorized_memory_add", category=category, content_length=len(content))
        return await self.add_memory(content, data, namespace)

    async def search_memories(
        self, query: str, namespace: Optional[str] = None
    ) -> List[MemoryRecord]:
        return await self.service.search(query, namespace or self.namespace) or []

    async def search_by_category(
        self,
        query: str,
        category: str,
        limit: int = 10,
        namespace: Optional[str] = None,
    ) -> List[MemoryRecord]:
        """Search hits restricted to one category, in search order."""
        results = await self.search_memories(query, namespace)
        filtered = [r for r in results if r.metadata.category == category]
        logger.info(
            "category_search_completed",
            query=preview(query),
            category=category,
            total=len(results),
            filtered=len(filtered),
        )
        return filtered[:limit]

    async def memories_by_category(
        self,
        category: str,
        limit: int = 20,
        namespace: Optional[str] = None,
    ) -> List[MemoryRecord]:
        """All memories of one category, newest first."""
        corpus = await self.service.list_all(namespace or self.namespace) or []
        matching = [r for r in corpus if r.metadata.category == category]
        return newest_first(matching)[:limit]

    async def recent_memories(
        self, limit: int = 5, namespace: Optional[str] = None
    ) -> List[MemoryRecord]:
        """Newest memories regardless of category."""
        corpus = await self.service.list_all(namespace or self.namespace) or []
        return newest_first(corpus)[:limit]

    async def category_stats(self, namespace: Optional[str] = None) -> Dict[str, int]:
        """
        Count memories per category.

        Every known category appears (possibly with 0); records without a
        category are counted as ``uncategorized``.
        """
        stats = {category: 0 for category in CATEGORIES}
        stats[UNCATEGORIZED] = 0

        corpus = await self.service.list_all(namespace or self.namespace) or []
        for record in corpus:
            stats[record.category] = stats.get(record.category, 0) + 1
        return stats
