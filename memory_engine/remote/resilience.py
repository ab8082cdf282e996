"""
Retry/backoff wrapper around the remote memory service.

Every remote call goes through ``ResilientMemoryService``. A call that keeps
failing is logged, snapshotted into a bounded in-process queue and answered
with ``None``; nothing here raises to the caller. The queue is diagnostic
only and is lost on restart.
"""

import asyncio
import uuid
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional, TypeVar, Union

from memory_engine.config.settings import RetryCfg
from memory_engine.memory.schemas import (
    FailedOperationRecord,
    MemoryMetadata,
    MemoryRecord,
    OperationKind,
)
from memory_engine.telemetry import get_logger, preview

from .client import MemoryServiceClient

logger = get_logger(__name__)

T = TypeVar("T")
Sleep = Callable[[float], Awaitable[Any]]


class FailedOperationQueue:
    """Bounded FIFO of failed operations; the oldest entry is evicted first."""

    def __init__(self, capacity: int = 100):
        self.capacity = capacity
        self._items: Deque[FailedOperationRecord] = deque(maxlen=capacity)

    def push(self, record: FailedOperationRecord) -> None:
        if len(self._items) == self.capacity:
            evicted = self._items[0]
            logger.warning("failed_queue_evicted", operation_id=evicted.id)
        self._items.append(record)

    def snapshot(self) -> List[FailedOperationRecord]:
        return list(self._items)

    def remove(self, operation_id: str) -> bool:
        for item in self._items:
            if item.id == operation_id:
                self._items.remove(item)
                return True
        return False

    def clear(self) -> int:
        count = len(self._items)
        self._items.clear()
        return count

    def __len__(self) -> int:
        return len(self._items)


def backoff_delay(attempt: int, cfg: RetryCfg) -> float:
    """Delay before retry number ``attempt + 1`` (attempt is zero-based)."""
    return min(cfg.base_delay_s * (2 ** attempt), cfg.max_delay_s)


class ResilientMemoryService:
    """
    Availability-first facade over a MemoryServiceClient.

    ``add`` returns the new id, ``search``/``list_all`` return records;
    each returns ``None`` once retries are exhausted.
    """

    def __init__(
        self,
        client: MemoryServiceClient,
        cfg: Optional[RetryCfg] = None,
        queue: Optional[FailedOperationQueue] = None,
        sleep: Sleep = asyncio.sleep,
    ):
        """
        Initialize the wrapper.

        Args:
            client: Backend that raises on failure
            cfg: Retry policy
            queue: Failure queue (a new bounded queue by default)
            sleep: Awaitable used between attempts
        """
        self.client = client
        self.cfg = cfg or RetryCfg()
        self.queue = queue if queue is not None else FailedOperationQueue(self.cfg.failed_queue_size)
        self.sleep = sleep
        self.last_error: Optional[str] = None

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        kind: OperationKind,
        namespace: str,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Optional[T]:
        """
        Run ``operation`` with retries.

        Args:
            operation: Zero-argument coroutine factory
            kind: Operation kind recorded on failure
            namespace: Target namespace recorded on failure
            payload: Snapshot needed to replay the operation

        Returns:
            Operation result, or None after the final failed attempt
        """
        error: Optional[Exception] = None

        for attempt in range(self.cfg.max_attempts):
            try:
                result = await operation()
                if attempt > 0:
                    logger.info(
                        "memory_operation_recovered",
                        operation=kind,
                        attempts=attempt + 1,
                    )
                return result
            except Exception as e:
                error = e
                delay = backoff_delay(attempt, self.cfg)
                logger.warning(
                    "memory_operation_failed",
                    operation=kind,
                    attempt=attempt + 1,
                    max_attempts=self.cfg.max_attempts,
                    error=str(e),
                    next_retry_s=delay,
                )
                if attempt < self.cfg.max_attempts - 1:
                    await self.sleep(delay)

        self.last_error = str(error) if error else "unknown error"
        logger.error(
            "memory_operation_exhausted",
            operation=kind,
            namespace=namespace,
            error=self.last_error,
        )

        record = FailedOperationRecord(
            id=str(uuid.uuid4()),
            operation=kind,
            namespace=namespace,
            payload=dict(payload or {}),
            error=self.last_error,
            retry_count=self.cfg.max_attempts,
        )
        self.queue.push(record)
        logger.warning(
            "memory_operation_queued",
            operation_id=record.id,
            operation=kind,
            queue_size=len(self.queue),
        )
        return None

    # ------------------------------------------------------------------
    # Remote operations
    # ------------------------------------------------------------------

    async def add(
        self,
        text: str,
        namespace: str,
        metadata: Union[MemoryMetadata, Dict[str, Any], None] = None,
    ) -> Optional[str]:
        wire = metadata.to_wire() if isinstance(metadata, MemoryMetadata) else (metadata or {})
        logger.info("memory_add", namespace=namespace, content_length=len(text))
        return await self.call(
            lambda: self.client.add(text, namespace, wire),
            "add",
            namespace,
            {"text": text, "metadata": wire},
        )

    async def search(self, query: str, namespace: str) -> Optional[List[MemoryRecord]]:
        result = await self.call(
            lambda: self.client.search(query, namespace),
            "search",
            namespace,
            {"query": query},
        )
        logger.info(
            "memory_search_completed",
            namespace=namespace,
            query=preview(query),
            results=len(result) if result is not None else None,
        )
        return result

    async def list_all(self, namespace: str) -> Optional[List[MemoryRecord]]:
        return await self.call(
            lambda: self.client.list_all(namespace),
            "list",
            namespace,
        )

    # ------------------------------------------------------------------
    # Failure queue
    # ------------------------------------------------------------------

    def failed_operations(self) -> List[FailedOperationRecord]:
        return self.queue.snapshot()

    def clear_failed(self) -> int:
        count = self.queue.clear()
        logger.info("failed_queue_cleared", cleared=count)
        return count

    async def replay_failed(self) -> int:
        """
        Re-attempt every queued failure once.

        Successful entries are removed; failures stay queued with their
        original retry count.

        Returns:
            Number of operations that succeeded
        """
        pending = self.queue.snapshot()
        if not pending:
            return 0

        logger.info("failed_queue_replay_started", queue_size=len(pending))
        succeeded = 0
        for op in pending:
            try:
                await self._dispatch(op)
            except Exception as e:
                logger.warning("failed_queue_replay_error", operation_id=op.id, error=str(e))
                continue
            self.queue.remove(op.id)
            succeeded += 1
            logger.info("failed_queue_replay_succeeded", operation_id=op.id)

        logger.info(
            "failed_queue_replay_completed",
            attempted=len(pending),
            succeeded=succeeded,
            remaining=len(self.queue),
        )
        return succeeded

    async def _dispatch(self, op: FailedOperationRecord) -> Any:
        if op.operation == "add":
            return await self.client.add(
                op.payload.get("text", ""), op.namespace, op.payload.get("metadata") or {}
            )
        if op.operation == "search":
            return await self.client.search(op.payload.get("query", ""), op.namespace)
        return await self.client.list_all(op.namespace)

    async def health(self, namespace: str) -> Dict[str, Any]:
        """Probe the backend once, bypassing retries."""
        status: Dict[str, Any] = {
            "healthy": False,
            "backend": self.client.name,
            "failed_queue_size": len(self.queue),
            "last_error": self.last_error,
        }
        try:
            await self.client.list_all(namespace)
            status["healthy"] = True
        except Exception as e:
            status["last_error"] = str(e)
            logger.error("memory_health_check_failed", error=str(e))
        return status
