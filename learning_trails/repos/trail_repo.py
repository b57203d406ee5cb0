from __future__ import annotations

import datetime
from collections.abc import Collection, Sequence
from dataclasses import replace
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from learning_trails.models.trail import (
    Lesson,
    ModuleStatus,
    Trail,
    TrailModule,
    TrailStatus,
    utcnow,
)


class DuplicateActiveTrailError(ValueError):
    """Raised by add() when the student already has an active trail for the
    language."""


class TrailRepo(Protocol):
    async def add(self, trail: Trail) -> None: ...
    async def get(self, trail_id: UUID) -> Trail | None: ...
    async def find_active(
        self, student_id: str, language_code: str
    ) -> Trail | None: ...
    async def list_active(self, student_id: str) -> list[Trail]: ...
    async def count_active(self, student_id: str) -> int: ...
    async def find_ready_by_hash(self, content_hash: str) -> Trail | None: ...

    async def transition(
        self,
        trail_id: UUID,
        from_statuses: Collection[TrailStatus],
        to_status: TrailStatus,
        **fields: Any,
    ) -> Trail | None:
        """Move a trail to `to_status` if it is currently in one of
        `from_statuses`, writing `fields` in the same update.  Returns the
        updated trail, or None when the trail is missing or in another
        status."""
        ...

    async def add_modules(self, modules: Sequence[TrailModule]) -> None: ...
    async def get_module(self, module_id: UUID) -> TrailModule | None: ...
    async def list_modules(self, trail_id: UUID) -> list[TrailModule]: ...
    async def set_module_status(
        self, module_id: UUID, status: ModuleStatus
    ) -> None: ...

    async def add_lessons(self, lessons: Sequence[Lesson]) -> None: ...
    async def get_lesson(self, lesson_id: UUID) -> Lesson | None: ...
    async def list_module_lessons(self, module_id: UUID) -> list[Lesson]: ...
    async def list_lessons(self, trail_id: UUID) -> list[Lesson]: ...

    async def set_lesson_content(
        self, lesson_id: UUID, content: str, *, is_placeholder: bool
    ) -> None:
        """Write generation-owned fields only."""
        ...

    async def record_lesson_progress(
        self,
        lesson_id: UUID,
        *,
        completed_at: datetime.datetime | None = None,
        score: Decimal | None = None,
        add_seconds: int = 0,
    ) -> Lesson | None:
        """Write student-owned fields only.  time_spent_seconds accumulates;
        completed_at and score are left alone when None."""
        ...


class InMemoryTrailRepo:
    def __init__(self) -> None:
        self._trails: dict[UUID, Trail] = {}
        self._modules: dict[UUID, TrailModule] = {}
        self._lessons: dict[UUID, Lesson] = {}

    async def add(self, trail: Trail) -> None:
        if trail.is_active and await self.find_active(
            trail.student_id, trail.language_code
        ):
            raise DuplicateActiveTrailError(trail.student_id, trail.language_code)
        self._trails[trail.id] = trail

    async def get(self, trail_id: UUID) -> Trail | None:
        return self._trails.get(trail_id)

    async def find_active(self, student_id: str, language_code: str) -> Trail | None:
        for t in self._trails.values():
            if (
                t.student_id == student_id
                and t.language_code == language_code
                and t.is_active
            ):
                return t
        return None

    async def list_active(self, student_id: str) -> list[Trail]:
        active = [
            t
            for t in self._trails.values()
            if t.student_id == student_id and t.is_active
        ]
        return sorted(active, key=lambda t: t.created_at, reverse=True)

    async def count_active(self, student_id: str) -> int:
        return len(await self.list_active(student_id))

    async def find_ready_by_hash(self, content_hash: str) -> Trail | None:
        for t in self._trails.values():
            if t.content_hash == content_hash and t.status is TrailStatus.READY:
                return t
        return None

    async def transition(
        self,
        trail_id: UUID,
        from_statuses: Collection[TrailStatus],
        to_status: TrailStatus,
        **fields: Any,
    ) -> Trail | None:
        t = self._trails.get(trail_id)
        if t is None or t.status not in from_statuses:
            return None
        updated = replace(t, status=to_status, updated_at=utcnow(), **fields)
        self._trails[trail_id] = updated
        return updated

    async def add_modules(self, modules: Sequence[TrailModule]) -> None:
        for m in modules:
            self._modules[m.id] = m

    async def get_module(self, module_id: UUID) -> TrailModule | None:
        return self._modules.get(module_id)

    async def list_modules(self, trail_id: UUID) -> list[TrailModule]:
        mods = [m for m in self._modules.values() if m.trail_id == trail_id]
        return sorted(mods, key=lambda m: m.order_index)

    async def set_module_status(self, module_id: UUID, status: ModuleStatus) -> None:
        m = self._modules.get(module_id)
        if m is None:
            raise KeyError("module not found")
        self._modules[module_id] = replace(m, status=status)

    async def add_lessons(self, lessons: Sequence[Lesson]) -> None:
        for lesson in lessons:
            self._lessons[lesson.id] = lesson

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        return self._lessons.get(lesson_id)

    async def list_module_lessons(self, module_id: UUID) -> list[Lesson]:
        lessons = [x for x in self._lessons.values() if x.module_id == module_id]
        return sorted(lessons, key=lambda x: x.order_index)

    async def list_lessons(self, trail_id: UUID) -> list[Lesson]:
        result: list[Lesson] = []
        for m in await self.list_modules(trail_id):
            result.extend(await self.list_module_lessons(m.id))
        return result

    async def set_lesson_content(
        self, lesson_id: UUID, content: str, *, is_placeholder: bool
    ) -> None:
        lesson = self._lessons.get(lesson_id)
        if lesson is None:
            raise KeyError("lesson not found")
        self._lessons[lesson_id] = replace(
            lesson, content=content, is_placeholder=is_placeholder
        )

    async def record_lesson_progress(
        self,
        lesson_id: UUID,
        *,
        completed_at: datetime.datetime | None = None,
        score: Decimal | None = None,
        add_seconds: int = 0,
    ) -> Lesson | None:
        lesson = self._lessons.get(lesson_id)
        if lesson is None:
            return None
        updated = replace(
            lesson,
            completed_at=completed_at or lesson.completed_at,
            score=score if score is not None else lesson.score,
            time_spent_seconds=lesson.time_spent_seconds + add_seconds,
        )
        self._lessons[lesson_id] = updated
        return updated
