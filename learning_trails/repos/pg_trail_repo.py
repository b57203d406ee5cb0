"""PostgreSQL implementation of TrailRepo."""

from __future__ import annotations

import datetime
from collections.abc import Collection, Sequence
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learning_trails.db.tables import LessonRow, TrailModuleRow, TrailRow
from learning_trails.models.trail import (
    Lesson,
    LessonType,
    ModuleStatus,
    RefreshReason,
    Trail,
    TrailModule,
    TrailStatus,
    utcnow,
)
from learning_trails.repos.trail_repo import DuplicateActiveTrailError

_ARCHIVED = TrailStatus.ARCHIVED.value


class PgTrailRepo:
    """Satisfies the TrailRepo Protocol using PostgreSQL via SQLAlchemy.

    Each call runs in its own short transaction so the worker never keeps
    a connection checked out while it waits on the content generator.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def add(self, trail: Trail) -> None:
        try:
            async with self._sessions.begin() as session:
                session.add(_trail_to_row(trail))
        except IntegrityError as e:
            # uq_trails_active_student_language
            raise DuplicateActiveTrailError(
                trail.student_id, trail.language_code
            ) from e

    async def get(self, trail_id: UUID) -> Trail | None:
        async with self._sessions() as session:
            row = await session.get(TrailRow, trail_id)
            return _row_to_trail(row) if row is not None else None

    async def find_active(self, student_id: str, language_code: str) -> Trail | None:
        stmt = select(TrailRow).where(
            TrailRow.student_id == student_id,
            TrailRow.language_code == language_code,
            TrailRow.status != _ARCHIVED,
        )
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalars().first()
            return _row_to_trail(row) if row is not None else None

    async def list_active(self, student_id: str) -> list[Trail]:
        stmt = (
            select(TrailRow)
            .where(TrailRow.student_id == student_id, TrailRow.status != _ARCHIVED)
            .order_by(TrailRow.created_at.desc())
        )
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_trail(r) for r in rows]

    async def count_active(self, student_id: str) -> int:
        stmt = select(func.count()).where(
            TrailRow.student_id == student_id, TrailRow.status != _ARCHIVED
        )
        async with self._sessions() as session:
            return (await session.execute(stmt)).scalar_one()

    async def find_ready_by_hash(self, content_hash: str) -> Trail | None:
        stmt = (
            select(TrailRow)
            .where(
                TrailRow.content_hash == content_hash,
                TrailRow.status == TrailStatus.READY.value,
            )
            .order_by(TrailRow.created_at.desc())
            .limit(1)
        )
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_trail(row) if row is not None else None

    async def transition(
        self,
        trail_id: UUID,
        from_statuses: Collection[TrailStatus],
        to_status: TrailStatus,
        **fields: Any,
    ) -> Trail | None:
        values = {k: v.value if isinstance(v, Enum) else v for k, v in fields.items()}
        stmt = (
            update(TrailRow)
            .where(
                TrailRow.id == trail_id,
                TrailRow.status.in_([s.value for s in from_statuses]),
            )
            .values(status=to_status.value, updated_at=utcnow(), **values)
            .returning(TrailRow)
            .execution_options(synchronize_session=False)
        )
        async with self._sessions.begin() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_trail(row) if row is not None else None

    # --- modules ---

    async def add_modules(self, modules: Sequence[TrailModule]) -> None:
        async with self._sessions.begin() as session:
            session.add_all(
                TrailModuleRow(
                    id=m.id,
                    trail_id=m.trail_id,
                    competency_code=m.competency_code,
                    title=m.title,
                    description=m.description,
                    order_index=m.order_index,
                    status=m.status.value,
                )
                for m in modules
            )

    async def get_module(self, module_id: UUID) -> TrailModule | None:
        async with self._sessions() as session:
            row = await session.get(TrailModuleRow, module_id)
            return _row_to_module(row) if row is not None else None

    async def list_modules(self, trail_id: UUID) -> list[TrailModule]:
        stmt = (
            select(TrailModuleRow)
            .where(TrailModuleRow.trail_id == trail_id)
            .order_by(TrailModuleRow.order_index)
        )
        async with self._sessions() as session:
            return [_row_to_module(r) for r in (await session.execute(stmt)).scalars()]

    async def set_module_status(self, module_id: UUID, status: ModuleStatus) -> None:
        stmt = (
            update(TrailModuleRow)
            .where(TrailModuleRow.id == module_id)
            .values(status=status.value)
        )
        async with self._sessions.begin() as session:
            await session.execute(stmt)

    # --- lessons ---

    async def add_lessons(self, lessons: Sequence[Lesson]) -> None:
        async with self._sessions.begin() as session:
            session.add_all(_lesson_to_row(lesson) for lesson in lessons)

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        async with self._sessions() as session:
            row = await session.get(LessonRow, lesson_id)
            return _row_to_lesson(row) if row is not None else None

    async def list_module_lessons(self, module_id: UUID) -> list[Lesson]:
        stmt = (
            select(LessonRow)
            .where(LessonRow.module_id == module_id)
            .order_by(LessonRow.order_index)
        )
        async with self._sessions() as session:
            return [_row_to_lesson(r) for r in (await session.execute(stmt)).scalars()]

    async def list_lessons(self, trail_id: UUID) -> list[Lesson]:
        stmt = (
            select(LessonRow)
            .join(TrailModuleRow, LessonRow.module_id == TrailModuleRow.id)
            .where(TrailModuleRow.trail_id == trail_id)
            .order_by(TrailModuleRow.order_index, LessonRow.order_index)
        )
        async with self._sessions() as session:
            return [_row_to_lesson(r) for r in (await session.execute(stmt)).scalars()]

    async def set_lesson_content(
        self, lesson_id: UUID, content: str, *, is_placeholder: bool
    ) -> None:
        stmt = (
            update(LessonRow)
            .where(LessonRow.id == lesson_id)
            .values(content=content, is_placeholder=is_placeholder)
        )
        async with self._sessions.begin() as session:
            await session.execute(stmt)

    async def record_lesson_progress(
        self,
        lesson_id: UUID,
        *,
        completed_at: datetime.datetime | None = None,
        score: Decimal | None = None,
        add_seconds: int = 0,
    ) -> Lesson | None:
        values: dict[str, Any] = {
            "time_spent_seconds": LessonRow.time_spent_seconds + add_seconds
        }
        if completed_at is not None:
            values["completed_at"] = completed_at
        if score is not None:
            values["score"] = score
        stmt = (
            update(LessonRow)
            .where(LessonRow.id == lesson_id)
            .values(**values)
            .returning(LessonRow)
            .execution_options(synchronize_session=False)
        )
        async with self._sessions.begin() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_lesson(row) if row is not None else None


def _trail_to_row(trail: Trail) -> TrailRow:
    return TrailRow(
        id=trail.id,
        student_id=trail.student_id,
        language_code=trail.language_code,
        level_code=trail.level_code,
        status=trail.status.value,
        content_hash=trail.content_hash,
        curriculum_version=trail.curriculum_version,
        estimated_duration_hours=trail.estimated_duration_hours,
        blueprint_id=trail.blueprint_id,
        previous_trail_id=trail.previous_trail_id,
        refresh_reason=trail.refresh_reason.value if trail.refresh_reason else None,
        preferences_json=trail.preferences_json,
        archived_at=trail.archived_at,
        created_at=trail.created_at,
        updated_at=trail.updated_at,
    )


def _row_to_trail(row: TrailRow) -> Trail:
    return Trail(
        id=row.id,
        student_id=row.student_id,
        language_code=row.language_code,
        level_code=row.level_code,
        status=TrailStatus(row.status),
        content_hash=row.content_hash,
        curriculum_version=row.curriculum_version,
        created_at=row.created_at,
        updated_at=row.updated_at,
        estimated_duration_hours=row.estimated_duration_hours,
        blueprint_id=row.blueprint_id,
        previous_trail_id=row.previous_trail_id,
        refresh_reason=(
            RefreshReason(row.refresh_reason) if row.refresh_reason else None
        ),
        preferences_json=row.preferences_json,
        archived_at=row.archived_at,
    )


def _row_to_module(row: TrailModuleRow) -> TrailModule:
    return TrailModule(
        id=row.id,
        trail_id=row.trail_id,
        competency_code=row.competency_code,
        title=row.title,
        description=row.description or "",
        order_index=row.order_index,
        status=ModuleStatus(row.status),
    )


def _lesson_to_row(lesson: Lesson) -> LessonRow:
    return LessonRow(
        id=lesson.id,
        module_id=lesson.module_id,
        title=lesson.title,
        type=lesson.type.value,
        order_index=lesson.order_index,
        duration_minutes=lesson.duration_minutes,
        content=lesson.content,
        is_placeholder=lesson.is_placeholder,
        descriptor_code=lesson.descriptor_code,
        completed_at=lesson.completed_at,
        score=lesson.score,
        time_spent_seconds=lesson.time_spent_seconds,
    )


def _row_to_lesson(row: LessonRow) -> Lesson:
    return Lesson(
        id=row.id,
        module_id=row.module_id,
        title=row.title,
        type=LessonType(row.type),
        order_index=row.order_index,
        duration_minutes=row.duration_minutes,
        content=row.content,
        is_placeholder=row.is_placeholder,
        descriptor_code=row.descriptor_code,
        completed_at=row.completed_at,
        score=row.score,
        time_spent_seconds=row.time_spent_seconds or 0,
    )
