"""PostgreSQL implementation of ProgressRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learning_trails.db.tables import TrailProgressRow
from learning_trails.models.trail import TrailProgress


class PgProgressRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def get(self, trail_id: UUID) -> TrailProgress | None:
        async with self._sessions() as session:
            row = await session.get(TrailProgressRow, trail_id)
            if row is None:
                return None
            return TrailProgress(
                trail_id=row.trail_id,
                total_lessons=row.total_lessons,
                lessons_completed=row.lessons_completed,
                progress_percentage=row.progress_percentage,
                average_score=row.average_score,
                time_spent_minutes=row.time_spent_minutes,
                last_activity_at=row.last_activity_at,
                updated_at=row.updated_at,
            )

    async def save(self, progress: TrailProgress) -> None:
        values = {
            "total_lessons": progress.total_lessons,
            "lessons_completed": progress.lessons_completed,
            "progress_percentage": progress.progress_percentage,
            "average_score": progress.average_score,
            "time_spent_minutes": progress.time_spent_minutes,
            "last_activity_at": progress.last_activity_at,
            "updated_at": progress.updated_at,
        }
        stmt = (
            insert(TrailProgressRow)
            .values(trail_id=progress.trail_id, **values)
            .on_conflict_do_update(index_elements=["trail_id"], set_=values)
        )
        async with self._sessions.begin() as session:
            await session.execute(stmt)
