"""
Unit tests for the categorized memory catalog.
"""

import pytest

from memory_engine.memory.categories import MemoryCatalog
from memory_engine.memory.schemas import CATEGORIES


@pytest.fixture
def catalog(service, namespace):
    return MemoryCatalog(service, namespace)


async def test_add_categorized_stores_fields(catalog, local_service, namespace):
    memory_id = await catalog.add_categorized(
        "Run tests with pytest -q",
        "workflow_pattern",
        subcategory="testing",
        confidence=0.8,
        tags=["ci"],
        source=None,
    )

    [stored] = await local_service.list_all(namespace)
    assert stored.id == memory_id
    assert stored.category == "workflow_pattern"
    assert stored.metadata.subcategory == "testing"
    assert stored.metadata.confidence == 0.8
    assert stored.metadata.tags == ["ci"]
    assert stored.metadata.source is None


async def test_add_categorized_rejects_unknown_category(catalog, local_service, namespace):
    with pytest.raises(ValueError):
        await catalog.add_categorized("anything", "gossip")
    assert local_service.count(namespace) == 0


async def test_search_by_category_filters(catalog):
    await catalog.add_categorized("User prefers dark theme", "preference")
    await catalog.add_categorized("Dark theme CSS lives in theme.css", "implementation_detail")

    results = await catalog.search_by_category("dark theme", "preference")

    assert [r.content for r in results] == ["User prefers dark theme"]


async def test_memories_by_category_newest_first(catalog, clock):
    for i in range(3):
        await catalog.add_categorized(f"Fixed bug {i}", "troubleshooting")
        clock.advance(minutes=5)
    await catalog.add_categorized("User prefers tea", "preference")

    results = await catalog.memories_by_category("troubleshooting", limit=2)

    assert [r.content for r in results] == ["Fixed bug 2", "Fixed bug 1"]


async def test_recent_memories(catalog, clock):
    for i in range(7):
        await catalog.add_memory(f"note {i}")
        clock.advance(minutes=1)

    recent = await catalog.recent_memories()

    assert [r.content for r in recent] == [f"note {i}" for i in (6, 5, 4, 3, 2)]


async def test_category_stats(catalog):
    await catalog.add_categorized("User prefers tea", "preference")
    await catalog.add_categorized("User prefers dark theme", "preference")
    await catalog.add_categorized("Deploy with make release", "workflow_pattern")
    await catalog.add_memory("plain note")

    stats = await catalog.category_stats()

    assert set(CATEGORIES) <= set(stats)
    assert stats["preference"] == 2
    assert stats["workflow_pattern"] == 1
    assert stats["uncategorized"] == 1
    assert stats["task_history"] == 0


async def test_other_namespace_is_isolated(catalog):
    await catalog.add_memory("assistant observation", namespace="echo_self")

    assert await catalog.recent_memories() == []
    assert len(await catalog.recent_memories(namespace="echo_self")) == 1
