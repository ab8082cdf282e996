"""
In-process semantic-memory service.

Append-only store with token-overlap similarity, for offline development
and as the backend when no hosted service is configured.
"""

import re
import uuid
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set

from memory_engine.memory.schemas import MemoryMetadata, MemoryRecord, utc_now

from .client import MemoryServiceClient


STOP_WORDS = {
    'the', 'a', 'an', 'is', 'are', 'was', 'were', 'in', 'on', 'at', 'to',
    'for', 'of', 'and', 'or', 'but',
}


def tokenize(text: str) -> List[str]:
    """
    Simple tokenization.

    Args:
        text: Input text

    Returns:
        List of tokens
    """
    text = re.sub(r'[^\w\s]', ' ', text.lower())
    tokens = text.split()

    # Filter stop words and short tokens
    return [t for t in tokens if len(t) > 2 and t not in STOP_WORDS]


def token_overlap(text1: str, text2: str) -> float:
    """
    Jaccard similarity between the token sets of two texts.

    Returns:
        Overlap score [0.0, 1.0]
    """
    tokens1 = set(tokenize(text1))
    tokens2 = set(tokenize(text2))

    if not tokens1 or not tokens2:
        return 0.0

    return len(tokens1 & tokens2) / len(tokens1 | tokens2)


class LocalMemoryService(MemoryServiceClient):
    """
    Append-only memory service kept in process memory.

    Search scores every record in the namespace by token overlap with the
    query and returns the non-zero matches, best first (newer first on ties).
    """

    name = "local"

    def __init__(
        self,
        records: Optional[Dict[str, Iterable[MemoryRecord]]] = None,
        clock: Callable[[], datetime] = utc_now,
        search_limit: int = 100,
    ):
        """
        Initialize local service.

        Args:
            records: Optional preloaded records per namespace
            clock: Time source for ``created_at`` of new records
            search_limit: Maximum search results
        """
        self.clock = clock
        self.search_limit = search_limit
        self._records: Dict[str, List[MemoryRecord]] = {}

        for namespace, items in (records or {}).items():
            self._records[namespace] = [r.model_copy(update={"score": None}) for r in items]

    async def add(
        self,
        text: str,
        namespace: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        record = MemoryRecord(
            id=f"mem_{uuid.uuid4().hex[:12]}",
            content=text,
            created_at=self.clock(),
            metadata=MemoryMetadata.from_wire(metadata or {}),
        )
        self._records.setdefault(namespace, []).append(record)
        return record.id

    async def search(self, query: str, namespace: str) -> List[MemoryRecord]:
        scored = []
        for record in self._records.get(namespace, []):
            score = token_overlap(query, record.content)
            if score > 0:
                scored.append(record.model_copy(update={"score": score}))

        scored.sort(key=lambda r: (r.similarity, r.created_ts()), reverse=True)
        return scored[:self.search_limit]

    async def list_all(self, namespace: str) -> List[MemoryRecord]:
        return list(self._records.get(namespace, []))

    def namespaces(self) -> Set[str]:
        return set(self._records)

    def count(self, namespace: str) -> int:
        return len(self._records.get(namespace, []))
