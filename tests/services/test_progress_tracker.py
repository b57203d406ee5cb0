"""Progress read model: computation and the read-through cache.

Cache counters are process-global, so assertions use deltas.
"""

from __future__ import annotations

import asyncio
import datetime
from decimal import Decimal
from uuid import uuid4

import pytest
from prometheus_client import REGISTRY

from learning_trails.models.trail import Lesson, LessonType
from learning_trails.repos.progress_repo import InMemoryProgressRepo
from learning_trails.repos.trail_repo import InMemoryTrailRepo
from learning_trails.services.cache import InMemoryCacheService
from learning_trails.services.progress_tracker import (
    ProgressTracker,
    cache_key,
    compute_progress,
)

NOW = datetime.datetime(2026, 1, 1, tzinfo=datetime.UTC)


def _sample(operation: str) -> float:
    value = REGISTRY.get_sample_value(
        "cache_operations_total", labels={"operation": operation}
    )
    return value or 0.0


def _lesson(**fields) -> Lesson:
    return Lesson(
        id=uuid4(),
        module_id=uuid4(),
        title="L",
        type=LessonType.READING,
        order_index=1,
        **fields,
    )


def test_compute_progress_for_empty_trail() -> None:
    p = compute_progress(uuid4(), [], now=NOW)
    assert p.total_lessons == 0
    assert p.progress_percentage == Decimal("0")
    assert p.average_score is None
    assert p.is_completed is False


def test_compute_progress_percentages_scores_and_time() -> None:
    done = NOW - datetime.timedelta(hours=1)
    lessons = [
        _lesson(completed_at=done, score=Decimal("80"), time_spent_seconds=60),
        _lesson(score=Decimal("90"), time_spent_seconds=90),
        _lesson(time_spent_seconds=30),
    ]
    p = compute_progress(uuid4(), lessons, now=NOW)
    assert p.total_lessons == 3
    assert p.lessons_completed == 1
    assert p.progress_percentage == Decimal("33.33")
    assert p.average_score == Decimal("85.00")
    assert p.time_spent_minutes == 3
    assert p.last_activity_at == done
    assert p.remaining_lessons == 2
    assert p.updated_at == NOW


def test_compute_progress_complete_trail() -> None:
    lessons = [_lesson(completed_at=NOW), _lesson(completed_at=NOW)]
    p = compute_progress(uuid4(), lessons, now=NOW)
    assert p.progress_percentage == Decimal("100.00")
    assert p.is_completed is True


def _tracker() -> tuple[ProgressTracker, InMemoryCacheService]:
    cache = InMemoryCacheService()
    tracker = ProgressTracker(
        InMemoryTrailRepo(), InMemoryProgressRepo(), cache, cache_ttl_seconds=60
    )
    return tracker, cache


def test_get_is_miss_then_hit() -> None:
    tracker, _ = _tracker()
    trail_id = uuid4()

    misses, hits = _sample("miss"), _sample("hit")
    first = asyncio.run(tracker.get(trail_id))
    second = asyncio.run(tracker.get(trail_id))

    assert first == second
    assert _sample("miss") - misses == 1
    assert _sample("hit") - hits == 1


def _ticking_clock():
    ticks = iter(range(1000))
    return lambda: NOW + datetime.timedelta(minutes=next(ticks))


def test_recalculate_replaces_cached_snapshot() -> None:
    invalidated: list[str] = []
    cache = InMemoryCacheService(on_invalidate=[invalidated.append])
    tracker = ProgressTracker(
        InMemoryTrailRepo(), InMemoryProgressRepo(), cache, clock=_ticking_clock()
    )
    trail_id = uuid4()

    first = asyncio.run(tracker.get(trail_id))
    assert invalidated == []
    second = asyncio.run(tracker.recalculate(trail_id))

    assert invalidated == [cache_key(trail_id)]
    assert second.updated_at > first.updated_at
    assert asyncio.run(tracker.get(trail_id)) == second


def test_late_reader_cannot_recache_an_older_snapshot(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    progress = InMemoryProgressRepo()
    cache = InMemoryCacheService()
    tracker = ProgressTracker(
        InMemoryTrailRepo(), progress, cache, clock=_ticking_clock()
    )
    trail_id = uuid4()
    older = asyncio.run(tracker.recalculate(trail_id))
    asyncio.run(tracker.forget(trail_id))

    load = progress.get
    recomputed = []

    async def load_then_recompute(tid):
        # The recompute lands between the reader's load and its cache fill
        snapshot = await load(tid)
        recomputed.append(await tracker.recalculate(tid))
        return snapshot

    monkeypatch.setattr(progress, "get", load_then_recompute)
    assert asyncio.run(tracker.get(trail_id)) == older

    (newer,) = recomputed
    assert newer.updated_at > older.updated_at
    assert asyncio.run(tracker.get(trail_id)) == newer


def test_forget_drops_cached_snapshot() -> None:
    tracker, cache = _tracker()
    trail_id = uuid4()
    asyncio.run(tracker.recalculate(trail_id))
    asyncio.run(tracker.forget(trail_id))
    assert asyncio.run(cache.get(cache_key(trail_id))) is None


def test_cached_snapshot_round_trips_decimals_and_dates() -> None:
    tracker, _ = _tracker()
    trail_id = uuid4()
    stored = asyncio.run(tracker.recalculate(trail_id))

    asyncio.run(tracker.get(trail_id))  # populate
    cached = asyncio.run(tracker.get(trail_id))  # hit
    assert cached == stored
