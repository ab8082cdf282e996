"""
Clients for the remote semantic-memory service.

The service is append-only: records can be added, searched semantically and
listed, but never updated or deleted.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Optional

import httpx

from memory_engine.exceptions import MemoryServiceError
from memory_engine.memory.schemas import MemoryMetadata, MemoryRecord
from memory_engine.telemetry import get_logger

logger = get_logger(__name__)


class MemoryServiceClient(ABC):
    """
    Abstract interface for a semantic-memory backend.

    Implementations raise on failure; retries and degradation are handled
    by ``ResilientMemoryService``.
    """

    name: str = "abstract"

    @abstractmethod
    async def add(
        self,
        text: str,
        namespace: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Store one memory and return its id.

        Returns an empty string when the service accepted the write but did
        not report an id.
        """

    @abstractmethod
    async def search(self, query: str, namespace: str) -> List[MemoryRecord]:
        """Return memories ranked by the service's own relevance."""

    @abstractmethod
    async def list_all(self, namespace: str) -> List[MemoryRecord]:
        """Return every memory in the namespace, unranked."""

    async def aclose(self) -> None:
        """Release network resources, if any."""
        return None


def parse_memory(raw: Any) -> Optional[MemoryRecord]:
    """
    Convert one raw service item into a MemoryRecord.

    Returns None for items without usable text or id.
    """
    if not isinstance(raw, dict):
        return None

    content = raw.get("memory") or raw.get("content") or raw.get("text")
    if content is None and isinstance(raw.get("data"), dict):
        content = raw["data"].get("memory")
    content = str(content or "").strip()
    mem_id = str(raw.get("id") or raw.get("memory_id") or "")
    if not content or not mem_id:
        return None

    score = raw.get("score")
    try:
        score = float(score) if score is not None else None
    except (TypeError, ValueError):
        score = None

    created_at = raw.get("created_at") or raw.get("createdAt")
    try:
        record = MemoryRecord(
            id=mem_id,
            content=content,
            created_at=created_at,
            metadata=MemoryMetadata.from_wire(raw.get("metadata")),
            score=score,
        )
    except ValueError:
        # Unparseable timestamp
        record = MemoryRecord(
            id=mem_id,
            content=content,
            metadata=MemoryMetadata.from_wire(raw.get("metadata")),
            score=score,
        )
    return record


def parse_memory_list(data: Any) -> List[MemoryRecord]:
    """Parse a list-shaped (or wrapped list) service response."""
    if data is None:
        return []

    items: List[Any] = []
    if isinstance(data, list):
        items = data
    elif isinstance(data, dict):
        for key in ("results", "memories", "items", "data"):
            if key in data and isinstance(data[key], list):
                items = data[key]
                break
        else:
            # Single memory object
            if any(k in data for k in ("memory", "content", "text")):
                items = [data]

    records = []
    for raw in items:
        record = parse_memory(raw)
        if record is not None:
            records.append(record)
    return records


class Mem0HttpClient(MemoryServiceClient):
    """MemoryServiceClient backed by the mem0 HTTP API.

    Namespaces map to mem0 ``user_id`` values. Writes into any of
    ``assistant_namespaces`` are sent with the assistant role.
    """

    name = "mem0"

    def __init__(
        self,
        base_url: str = "https://api.mem0.ai",
        api_key: Optional[str] = None,
        timeout: float = 30.0,
        assistant_namespaces: Iterable[str] = (),
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.assistant_namespaces = set(assistant_namespaces)
        self._client = http_client
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def add(
        self,
        text: str,
        namespace: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> str:
        role = "assistant" if namespace in self.assistant_namespaces else "user"
        payload: Dict[str, Any] = {
            "messages": [{"role": role, "content": text}],
            "user_id": namespace,
        }
        if metadata:
            payload["metadata"] = metadata

        data = await self._request("POST", "/v1/memories/", json=payload)
        return self._extract_id(data)

    async def search(self, query: str, namespace: str) -> List[MemoryRecord]:
        data = await self._request(
            "POST",
            "/v1/memories/search/",
            json={"query": query, "user_id": namespace},
        )
        return parse_memory_list(data)

    async def list_all(self, namespace: str) -> List[MemoryRecord]:
        data = await self._request(
            "GET", "/v1/memories/", params={"user_id": namespace}
        )
        return parse_memory_list(data)

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Token {self.api_key}"
        return headers

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        if not self.api_key:
            raise MemoryServiceError("memory service API key is not configured")

        url = f"{self.base_url}{path}"
        try:
            resp = await self._http().request(
                method, url, headers=self._headers(), **kwargs
            )
        except httpx.HTTPError as e:
            raise MemoryServiceError(f"{method} {path} failed: {e}") from e

        if resp.status_code >= 400:
            raise MemoryServiceError(
                f"{method} {path} returned {resp.status_code}: {resp.text[:200]}"
            )

        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError as e:
            raise MemoryServiceError(f"{method} {path} returned invalid JSON") from e

    @staticmethod
    def _extract_id(data: Any) -> str:
        """Find the id of the first stored memory in an add response."""
        if isinstance(data, dict):
            if data.get("id"):
                return str(data["id"])
            for key in ("results", "memories", "data"):
                if isinstance(data.get(key), list):
                    data = data[key]
                    break
        if isinstance(data, list):
            for item in data:
                if isinstance(item, dict) and item.get("id"):
                    return str(item["id"])
        logger.warning("memory_add_without_id")
        return ""
