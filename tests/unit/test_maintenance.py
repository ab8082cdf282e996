"""
Unit tests for the maintenance engine.

Tests:
- identify_candidates(): disjoint buckets, degraded effectiveness
- find_similar(): near-duplicate grouping, tombstones excluded
- run_maintenance(): dry run is side-effect free, archival, error collection
"""

import pytest

from memory_engine.config.settings import MaintenanceCfg, RetryCfg
from memory_engine.memory.maintenance import MaintenanceEngine
from memory_engine.remote.local import LocalMemoryService
from memory_engine.remote.resilience import ResilientMemoryService


@pytest.fixture
def corpus(make_record):
    return [
        make_record("flagged", "Old build command was make all", days_old=3, is_current=False),
        make_record("replaced", "User lives in Berlin", days_old=5, category="entity_fact"),
        make_record("newer", "User lives in Lisbon", days_old=2, category="entity_fact",
                    supersedes_id="replaced"),
        make_record("low", "Deploys happen on Fridays", days_old=40),
        make_record("stale", "Printer on floor three jams", days_old=40),
        make_record("fresh", "Standup moved to ten", days_old=1),
    ]


@pytest.fixture
def store(corpus, clock, namespace):
    return LocalMemoryService(records={namespace: corpus}, clock=clock)


@pytest.fixture
def build_engine(sleep, clock, namespace):
    def _build(client, effectiveness=None, cfg=None):
        service = ResilientMemoryService(client, RetryCfg(), sleep=sleep)
        return MaintenanceEngine(service, namespace, effectiveness, cfg or MaintenanceCfg(), clock=clock)

    return _build


def _set_effectiveness(db, memory_id, retrieved, score):
    db.execute(
        "INSERT INTO memory_effectiveness (memory_id, times_retrieved, effectiveness_score) VALUES (?, ?, ?)",
        (memory_id, retrieved, score),
    )


def _ids(records):
    return sorted(r.id for r in records)


async def test_candidates_are_disjoint(build_engine, store, effectiveness, db):
    _set_effectiveness(db, "low", retrieved=5, score=0.1)
    engine = build_engine(store, effectiveness)

    candidates = await engine.identify_candidates()

    assert _ids(candidates.superseded) == ["flagged", "replaced"]
    assert _ids(candidates.low_effectiveness) == ["low"]
    assert _ids(candidates.stale) == ["stale"]
    assert candidates.total == 4

    seen = _ids(candidates.superseded + candidates.low_effectiveness + candidates.stale)
    assert len(seen) == len(set(seen))


async def test_retrieved_old_memory_is_not_stale(build_engine, store, effectiveness, db):
    _set_effectiveness(db, "stale", retrieved=1, score=0.5)
    engine = build_engine(store, effectiveness)

    candidates = await engine.identify_candidates()

    assert "stale" not in _ids(candidates.stale)
    # Never retrieved and old, so it is stale rather than low-effectiveness
    assert "low" in _ids(candidates.stale)


async def test_low_effectiveness_needs_evidence(build_engine, store, effectiveness, db):
    _set_effectiveness(db, "fresh", retrieved=4, score=0.0)
    engine = build_engine(store, effectiveness)

    candidates = await engine.identify_candidates()

    assert "fresh" not in _ids(candidates.low_effectiveness)


async def test_without_effectiveness_only_superseded(build_engine, store):
    engine = build_engine(store, effectiveness=None)

    candidates = await engine.identify_candidates()

    assert _ids(candidates.superseded) == ["flagged", "replaced"]
    assert candidates.low_effectiveness == []
    assert candidates.stale == []


async def test_listing_failure_gives_empty_candidates(build_engine, store, flaky_client):
    engine = build_engine(flaky_client(store, list=3))
    candidates = await engine.identify_candidates()
    assert candidates.total == 0


async def test_dry_run_writes_nothing(build_engine, store, effectiveness, db, namespace):
    _set_effectiveness(db, "low", retrieved=5, score=0.1)
    engine = build_engine(store, effectiveness)
    before = store.count(namespace)

    first = await engine.run_maintenance(dry_run=True)
    second = await engine.run_maintenance(dry_run=True)

    assert store.count(namespace) == before
    assert first == second
    assert first.analyzed == 4
    assert first.pruned == 0
    assert first.errors == []


async def test_execute_archives_every_bucket(build_engine, store, effectiveness, db, namespace):
    _set_effectiveness(db, "low", retrieved=5, score=0.1)
    engine = build_engine(store, effectiveness)

    result = await engine.run_maintenance(dry_run=False)

    assert result.analyzed == 4
    assert result.pruned == 4
    assert result.errors == []

    tombstones = [r for r in await store.list_all(namespace) if r.metadata.archived_memory_id]
    assert sorted(t.metadata.archived_memory_id for t in tombstones) == [
        "flagged", "low", "replaced", "stale",
    ]
    flagged = next(t for t in tombstones if t.metadata.archived_memory_id == "flagged")
    assert flagged.content == (
        "[ARCHIVED] Memory flagged archived. Reason: superseded by newer information"
    )
    assert flagged.metadata.category == "system"
    assert flagged.metadata.is_current is False


async def test_second_run_finds_nothing_new(build_engine, store, effectiveness, namespace):
    engine = build_engine(store, effectiveness)
    await engine.run_maintenance(dry_run=False)
    count = store.count(namespace)

    again = await engine.run_maintenance(dry_run=False)

    assert again.analyzed == 0
    assert again.pruned == 0
    assert store.count(namespace) == count


async def test_archive_failures_are_collected(build_engine, store, flaky_client):
    engine = build_engine(flaky_client(store, add=100))

    result = await engine.run_maintenance(dry_run=False)

    assert result.pruned == 0
    assert sorted(result.errors) == [
        "Failed to archive flagged",
        "Failed to archive replaced",
    ]


async def test_find_similar_pairs_newer_with_older(build_engine, make_record, clock, namespace):
    older = make_record("older", "User prefers the dark theme for the code editor", days_old=5)
    newer = make_record("newer", "User prefers dark theme for code editor", days_old=1)
    other = make_record("other", "Standup moved to ten", days_old=1)
    store = LocalMemoryService(records={namespace: [older, newer, other]}, clock=clock)
    engine = build_engine(store)

    groups = await engine.find_similar()

    assert len(groups) == 1
    assert groups[0].primary.id == "newer"
    assert [d.id for d in groups[0].duplicates] == ["older"]
    assert groups[0].duplicates[0].similarity >= 0.85


async def test_find_similar_respects_threshold(build_engine, make_record, clock, namespace):
    a = make_record("a", "User prefers dark theme", days_old=2)
    b = make_record("b", "User prefers dark theme today", days_old=1)
    store = LocalMemoryService(records={namespace: [a, b]}, clock=clock)
    engine = build_engine(store)

    assert await engine.find_similar(threshold=0.85) == []
    assert len(await engine.find_similar(threshold=0.5)) == 1


async def test_find_similar_skips_tombstones(build_engine, make_record, clock, namespace):
    a = make_record("a", "Memory x archived", days_old=2, archived_memory_id="x")
    b = make_record("b", "Memory x archived", days_old=1, archived_memory_id="x")
    store = LocalMemoryService(records={namespace: [a, b]}, clock=clock)
    engine = build_engine(store)

    assert await engine.find_similar() == []


async def test_consolidation_keeps_newest(build_engine, make_record, clock, namespace):
    older = make_record("older", "User prefers the dark theme for the code editor", days_old=5)
    newer = make_record("newer", "User prefers dark theme for code editor", days_old=1)
    store = LocalMemoryService(records={namespace: [older, newer]}, clock=clock)
    engine = build_engine(store)

    dry = await engine.run_maintenance(dry_run=True)
    assert dry.consolidated == 1
    assert store.count(namespace) == 2

    result = await engine.run_maintenance(dry_run=False)

    assert result.consolidated == 1
    tombstones = [r for r in await store.list_all(namespace) if r.metadata.archived_memory_id]
    assert len(tombstones) == 1
    assert tombstones[0].metadata.archived_memory_id == "older"
    assert tombstones[0].metadata.archive_reason == "duplicate of newer"


async def test_dry_run_counts_match_execute(build_engine, effectiveness, make_record, clock, namespace):
    """A stale record is pruned, not also counted as a consolidation."""
    old = make_record("old", "User prefers the dark theme for the code editor", days_old=40)
    recent = make_record("recent", "User prefers dark theme for code editor", days_old=1)
    store = LocalMemoryService(records={namespace: [old, recent]}, clock=clock)
    engine = build_engine(store, effectiveness)

    dry = await engine.run_maintenance(dry_run=True)
    executed = await engine.run_maintenance(dry_run=False)

    assert dry.analyzed == executed.pruned == 1
    assert dry.consolidated == executed.consolidated == 0
    assert executed.errors == []


async def test_archive_returns_tombstone_id(build_engine, store, namespace):
    engine = build_engine(store)
    tombstone_id = await engine.archive("fresh", "manual cleanup")

    assert tombstone_id is not None
    tombstone = next(r for r in await store.list_all(namespace) if r.id == tombstone_id)
    assert tombstone.metadata.archive_reason == "manual cleanup"
