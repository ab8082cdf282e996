"""
Unit tests for the MemoryEngine facade and factory.
"""

from memory_engine.config.settings import Paths, RemoteCfg, Settings
from memory_engine.memory.integrate import MemoryEngine, build_client, create_memory_engine
from memory_engine.remote.client import Mem0HttpClient
from memory_engine.remote.local import LocalMemoryService


def test_build_client_by_backend():
    local = build_client(Settings(remote=RemoteCfg(backend="local")))
    assert isinstance(local, LocalMemoryService)

    remote = build_client(Settings(remote=RemoteCfg(api_key="k", self_namespace="bot")))
    assert isinstance(remote, Mem0HttpClient)
    assert remote.assistant_namespaces == {"bot"}
    assert remote.api_key == "k"


async def test_factory_creates_database_from_settings(tmp_path, clock):
    db_path = tmp_path / "nested" / "eff.db"
    settings = Settings(
        remote=RemoteCfg(backend="local"),
        paths=Paths(effectiveness_db=str(db_path)),
    )

    engine = create_memory_engine(settings, clock=clock)

    assert isinstance(engine, MemoryEngine)
    assert db_path.exists()
    assert engine.user_namespace == "echo_user"
    assert engine.self_namespace == "echo_self"
    await engine.aclose()


async def test_profile_switches_after_first_feedback(engine, clock):
    await engine.catalog.add_categorized("User prefers dark theme", "preference")
    clock.advance(hours=1)

    before = await engine.rank("dark theme")
    assert before[0].profile == "base"

    event_id = await engine.record_usage([m.record.id for m in before], "conv1")
    assert await engine.record_feedback(event_id, "positive", task_completed=True)

    after = await engine.rank("dark theme")
    assert after[0].profile == "feedback"
    assert after[0].breakdown.effectiveness == (await engine.get_effectiveness(after[0].record.id)).effectiveness_score


async def test_explicit_profile_wins(engine):
    await engine.catalog.add_memory("User drinks tea")
    [scored] = await engine.rank("tea", profile="feedback")
    assert scored.profile == "feedback"


async def test_feedback_loop_changes_ranking(engine, clock):
    """Without search hits, effectiveness decides between equally recent memories."""
    await engine.catalog.add_memory("Deploy script lives in tools/deploy.sh")
    await engine.catalog.add_memory("Deploy checklist is in the wiki")
    clock.advance(hours=2)

    ranked = await engine.rank("kubernetes", limit=2)
    assert all(m.breakdown.semantic == 0.0 for m in ranked)
    loser_id = ranked[1].record.id

    # Rate the second memory helpful a few times
    for _ in range(4):
        event_id = await engine.record_usage([loser_id])
        await engine.record_feedback(event_id, "positive")

    assert loser_id in await engine.most_effective()
    reranked = await engine.rank("kubernetes", limit=2)
    assert reranked[0].record.id == loser_id


async def test_fact_lifecycle(engine, clock):
    first = await engine.upsert_fact("User lives in Berlin", "entity_fact", entity="User")
    clock.advance(days=1)
    second = await engine.upsert_fact("User lives in Lisbon", "entity_fact", entity="User")

    assert second.superseded_id == first.new_id
    assert (await engine.get_current_fact("User lives", "entity_fact")).id == second.new_id
    assert len(await engine.get_fact_history("User lives", "entity_fact")) == 2

    candidates = await engine.identify_candidates()
    assert [r.id for r in candidates.superseded] == [first.new_id]

    result = await engine.run_maintenance(dry_run=False)
    assert result.pruned == 1

    assert await engine.invalidate_fact(second.new_id, "moved again") is not None
    assert await engine.get_current_fact("User lives", "entity_fact") is None


async def test_health_and_failed_queue(engine):
    status = await engine.health()
    assert status["healthy"] is True
    assert status["backend"] == "local"
    assert engine.failed_operations() == []
    assert await engine.replay_failed() == 0
    assert engine.clear_failed() == 0
