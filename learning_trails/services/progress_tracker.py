"""Trail progress read model.

A snapshot is always recomputed from the full lesson set, never
adjusted by deltas.  Structure building, content generation and student
activity can touch the same trail at the same time; recomputation makes
the last writer correct regardless of interleaving.
"""

from __future__ import annotations

import datetime
import json
import logging
from collections.abc import Callable, Sequence
from decimal import ROUND_HALF_UP, Decimal
from uuid import UUID

from learning_trails.core.metrics import CACHE_OPERATIONS
from learning_trails.models.trail import Lesson, TrailProgress, utcnow
from learning_trails.repos.progress_repo import ProgressRepo
from learning_trails.repos.trail_repo import TrailRepo
from learning_trails.services.cache import CacheService

logger = logging.getLogger(__name__)

_TWO_PLACES = Decimal("0.01")


def compute_progress(
    trail_id: UUID, lessons: Sequence[Lesson], *, now: datetime.datetime
) -> TrailProgress:
    total = len(lessons)
    completed = [x for x in lessons if x.completed_at is not None]

    if total:
        percentage = (Decimal(len(completed)) * 100 / Decimal(total)).quantize(
            _TWO_PLACES, rounding=ROUND_HALF_UP
        )
    else:
        percentage = Decimal("0")

    scores = [x.score for x in lessons if x.score is not None]
    average = (
        (sum(scores, Decimal(0)) / len(scores)).quantize(
            _TWO_PLACES, rounding=ROUND_HALF_UP
        )
        if scores
        else None
    )

    return TrailProgress(
        trail_id=trail_id,
        total_lessons=total,
        lessons_completed=len(completed),
        progress_percentage=percentage,
        average_score=average,
        time_spent_minutes=sum(x.time_spent_seconds for x in lessons) // 60,
        last_activity_at=max(
            (x.completed_at for x in completed if x.completed_at), default=None
        ),
        updated_at=now,
    )


def cache_key(trail_id: UUID) -> str:
    return f"progress:{trail_id}"


class ProgressTracker:
    def __init__(
        self,
        trails: TrailRepo,
        progress: ProgressRepo,
        cache: CacheService,
        *,
        cache_ttl_seconds: int = 300,
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._trails = trails
        self._progress = progress
        self._cache = cache
        self._ttl = cache_ttl_seconds
        self._clock = clock

    async def recalculate(self, trail_id: UUID) -> TrailProgress:
        lessons = await self._trails.list_lessons(trail_id)
        snapshot = compute_progress(trail_id, lessons, now=self._clock())
        await self._progress.save(snapshot)
        await self._cache.set(cache_key(trail_id), _encode(snapshot), self._ttl)
        logger.debug(
            "Progress for trail %s: %d/%d (%s%%)",
            trail_id,
            snapshot.lessons_completed,
            snapshot.total_lessons,
            snapshot.progress_percentage,
        )
        return snapshot

    async def initialize(self, trail_id: UUID) -> TrailProgress:
        """First snapshot for a freshly built or cloned trail."""
        return await self.recalculate(trail_id)

    async def get(self, trail_id: UUID) -> TrailProgress:
        """Cached read; recomputes when no snapshot has been stored yet."""
        key = cache_key(trail_id)
        cached = await self._cache.get(key)
        if cached is not None:
            CACHE_OPERATIONS.labels(operation="hit").inc()
            return _decode(cached)

        CACHE_OPERATIONS.labels(operation="miss").inc()
        snapshot = await self._progress.get(trail_id)
        if snapshot is None:
            return await self.recalculate(trail_id)
        # Never overwrite: a recompute may have cached a newer snapshot since
        await self._cache.set_if_absent(key, _encode(snapshot), self._ttl)
        return snapshot

    async def forget(self, trail_id: UUID) -> None:
        await self._cache.delete(cache_key(trail_id))


def _encode(p: TrailProgress) -> str:
    return json.dumps(
        {
            "trail_id": str(p.trail_id),
            "total_lessons": p.total_lessons,
            "lessons_completed": p.lessons_completed,
            "progress_percentage": str(p.progress_percentage),
            "average_score": _str_or_none(p.average_score),
            "time_spent_minutes": p.time_spent_minutes,
            "last_activity_at": _iso_or_none(p.last_activity_at),
            "updated_at": _iso_or_none(p.updated_at),
        }
    )


def _decode(raw: str) -> TrailProgress:
    d = json.loads(raw)
    return TrailProgress(
        trail_id=UUID(d["trail_id"]),
        total_lessons=d["total_lessons"],
        lessons_completed=d["lessons_completed"],
        progress_percentage=Decimal(d["progress_percentage"]),
        average_score=(
            Decimal(d["average_score"]) if d["average_score"] is not None else None
        ),
        time_spent_minutes=d["time_spent_minutes"],
        last_activity_at=_parse_dt(d["last_activity_at"]),
        updated_at=_parse_dt(d["updated_at"]),
    )


def _parse_dt(value: str | None) -> datetime.datetime | None:
    return datetime.datetime.fromisoformat(value) if value else None


def _iso_or_none(value: datetime.datetime | None) -> str | None:
    return value.isoformat() if value else None


def _str_or_none(value: Decimal | None) -> str | None:
    return str(value) if value is not None else None
