"""Test configuration and fixtures."""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest

from memory_engine.config.settings import RemoteCfg, Settings
from memory_engine.exceptions import MemoryServiceError
from memory_engine.memory.integrate import create_memory_engine
from memory_engine.memory.schemas import MemoryMetadata, MemoryRecord
from memory_engine.persist.sqlite_store import SQLiteStore
from memory_engine.remote.client import MemoryServiceClient
from memory_engine.remote.local import LocalMemoryService


FIXED_NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)
NAMESPACE = "echo_user"


class FakeClock:
    """Settable time source shared by the components under test."""

    def __init__(self, now: datetime = FIXED_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class RecordingSleep:
    """Async sleep replacement that only records the requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FlakyClient(MemoryServiceClient):
    """Wraps a client and fails the first N calls of each operation."""

    name = "flaky"

    def __init__(self, inner: MemoryServiceClient, failures: Optional[Dict[str, int]] = None):
        self.inner = inner
        self.failures = dict(failures or {})
        self.calls = {"add": 0, "search": 0, "list": 0}

    def _maybe_fail(self, op: str) -> None:
        self.calls[op] += 1
        if self.failures.get(op, 0) > 0:
            self.failures[op] -= 1
            raise MemoryServiceError(f"{op} unavailable")

    async def add(self, text, namespace, metadata=None):
        self._maybe_fail("add")
        return await self.inner.add(text, namespace, metadata)

    async def search(self, query, namespace):
        self._maybe_fail("search")
        return await self.inner.search(query, namespace)

    async def list_all(self, namespace):
        self._maybe_fail("list")
        return await self.inner.list_all(namespace)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


@pytest.fixture
def local_service(clock) -> LocalMemoryService:
    return LocalMemoryService(clock=clock)


@pytest.fixture
def db(tmp_path):
    """Temporary effectiveness database."""
    store = SQLiteStore(tmp_path / "effectiveness.db")
    yield store
    store.close()


@pytest.fixture
def settings() -> Settings:
    return Settings(remote=RemoteCfg(backend="local"))


@pytest.fixture
def engine(settings, local_service, db, clock, sleep):
    """MemoryEngine over the local service and a temporary database."""
    return create_memory_engine(
        settings, client=local_service, db=db, clock=clock, sleep=sleep
    )


@pytest.fixture
def make_record():
    """Build a MemoryRecord created ``days_old`` days before FIXED_NOW."""

    def _make(
        record_id: str,
        content: str,
        days_old: float = 0.0,
        **metadata: Any,
    ) -> MemoryRecord:
        return MemoryRecord(
            id=record_id,
            content=content,
            created_at=FIXED_NOW - timedelta(days=days_old),
            metadata=MemoryMetadata(**metadata),
        )

    return _make


@pytest.fixture
def flaky_client(local_service):
    """Factory for a client that fails the first N calls per operation."""

    def _make(inner: Optional[MemoryServiceClient] = None, **failures: int) -> FlakyClient:
        return FlakyClient(inner or local_service, failures)

    return _make
