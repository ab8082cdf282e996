"""
Unit tests for the effectiveness store (feedback loop).

Tests:
- record_usage(): lazy creation, retrieval counts, dedupe
- record_feedback(): smoothed score, counters, unknown events
- most_effective() / least_effective(): evidence thresholds
- Error wrapping
"""

import pytest

from memory_engine.exceptions import EffectivenessStoreError
from memory_engine.memory.effectiveness import smoothed_score


def test_smoothed_score_formula():
    assert smoothed_score(0, 0) == 0.0
    assert smoothed_score(1, 1) == pytest.approx(1 / 3)
    assert smoothed_score(3, 3) == pytest.approx(0.6)
    assert smoothed_score(50, 1) == 1.0


async def test_record_usage_creates_records(effectiveness):
    event_id = await effectiveness.record_usage(["m1", "m2"], conversation_id="conv1")

    record = await effectiveness.get("m1")
    assert record.times_retrieved == 1
    assert record.times_helpful == 0
    assert record.effectiveness_score == 0.5
    assert record.last_used is not None

    event = await effectiveness.get_event(event_id)
    assert event.memory_ids == ["m1", "m2"]
    assert event.conversation_id == "conv1"
    assert event.rating is None


async def test_record_usage_dedupes_ids(effectiveness):
    await effectiveness.record_usage(["m1", "m1", "m1"])
    record = await effectiveness.get("m1")
    assert record.times_retrieved == 1


async def test_record_usage_increments(effectiveness):
    for _ in range(3):
        await effectiveness.record_usage(["m1"])
    assert (await effectiveness.get("m1")).times_retrieved == 3


async def test_positive_feedback_updates_score(effectiveness):
    event_id = await effectiveness.record_usage(["m1"])

    applied = await effectiveness.record_feedback(event_id, "positive", task_completed=True)

    assert applied is True
    record = await effectiveness.get("m1")
    assert record.times_helpful == 1
    assert record.times_unhelpful == 0
    assert record.effectiveness_score == pytest.approx(1 / 3)
    assert record.last_feedback is not None

    event = await effectiveness.get_event(event_id)
    assert event.rating == "positive"
    assert event.task_completed is True


async def test_repeated_positive_feedback(effectiveness):
    for _ in range(3):
        event_id = await effectiveness.record_usage(["m1"])
        await effectiveness.record_feedback(event_id, "positive")

    record = await effectiveness.get("m1")
    assert record.times_retrieved == 3
    assert record.times_helpful == 3
    assert record.effectiveness_score == pytest.approx(0.6)


async def test_negative_feedback(effectiveness):
    event_id = await effectiveness.record_usage(["m1"])
    await effectiveness.record_feedback(event_id, "negative", feedback_text="wrong")

    record = await effectiveness.get("m1")
    assert record.times_unhelpful == 1
    assert record.times_helpful == 0
    assert record.effectiveness_score == 0.0


async def test_neutral_feedback_leaves_counters(effectiveness):
    event_id = await effectiveness.record_usage(["m1"])
    await effectiveness.record_feedback(event_id, "neutral")

    record = await effectiveness.get("m1")
    assert record.times_helpful == 0
    assert record.times_unhelpful == 0
    assert record.effectiveness_score == 0.0


async def test_feedback_applies_to_whole_batch(effectiveness):
    event_id = await effectiveness.record_usage(["m1", "m2", "m3"])
    await effectiveness.record_feedback(event_id, "positive")

    records = await effectiveness.get_many(["m1", "m2", "m3", "unknown"])
    assert set(records) == {"m1", "m2", "m3"}
    assert all(r.times_helpful == 1 for r in records.values())


async def test_unknown_event_returns_false(effectiveness):
    assert await effectiveness.record_feedback("no-such-event", "positive") is False
    assert await effectiveness.has_feedback() is False


async def test_invalid_rating_raises(effectiveness):
    event_id = await effectiveness.record_usage(["m1"])
    with pytest.raises(ValueError):
        await effectiveness.record_feedback(event_id, "great")


async def test_score_stays_in_bounds(effectiveness):
    """Mixed ratings never push the score outside [0, 1]."""
    ratings = ["positive", "negative", "neutral", "positive", "positive", "negative"]
    for i in range(30):
        event_id = await effectiveness.record_usage(["m1", f"m{i % 4}"])
        await effectiveness.record_feedback(event_id, ratings[i % len(ratings)])
        # Same event rated twice
        if i % 5 == 0:
            await effectiveness.record_feedback(event_id, "positive")

    records = await effectiveness.get_many([f"m{i}" for i in range(4)])
    for record in records.values():
        assert 0.0 <= record.effectiveness_score <= 1.0


async def test_most_effective_requires_two_retrievals(effectiveness):
    once = await effectiveness.record_usage(["once"])
    await effectiveness.record_feedback(once, "positive")

    for _ in range(2):
        event_id = await effectiveness.record_usage(["twice"])
        await effectiveness.record_feedback(event_id, "positive")

    for _ in range(3):
        event_id = await effectiveness.record_usage(["mixed"])
        await effectiveness.record_feedback(event_id, "negative")

    assert await effectiveness.most_effective() == ["twice", "mixed"]
    assert await effectiveness.most_effective(limit=1) == ["twice"]


async def test_least_effective_thresholds(effectiveness):
    for _ in range(2):
        event_id = await effectiveness.record_usage(["few"])
        await effectiveness.record_feedback(event_id, "negative")

    for _ in range(3):
        event_id = await effectiveness.record_usage(["bad"])
        await effectiveness.record_feedback(event_id, "negative")

    for _ in range(3):
        event_id = await effectiveness.record_usage(["good"])
        await effectiveness.record_feedback(event_id, "positive")

    assert await effectiveness.least_effective() == ["bad"]


async def test_has_feedback(effectiveness):
    event_id = await effectiveness.record_usage(["m1"])
    assert await effectiveness.has_feedback() is False
    await effectiveness.record_feedback(event_id, "neutral")
    assert await effectiveness.has_feedback() is True


async def test_get_missing_record(effectiveness):
    assert await effectiveness.get("never-seen") is None


async def test_database_errors_are_wrapped(effectiveness, db):
    db.close()
    with pytest.raises(EffectivenessStoreError):
        await effectiveness.get("m1")
    with pytest.raises(EffectivenessStoreError):
        await effectiveness.record_usage(["m1"])
