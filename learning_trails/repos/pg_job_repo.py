"""PostgreSQL implementation of JobRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learning_trails.db.tables import GenerationJobRow
from learning_trails.models.trail import (
    ACTIVE_JOB_STATUSES,
    JobStatus,
    JobType,
    TrailGenerationJob,
)


class PgJobRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def save(self, job: TrailGenerationJob) -> None:
        async with self._sessions.begin() as session:
            # merge() inserts or updates by primary key
            await session.merge(_job_to_row(job))

    async def get(self, job_id: UUID) -> TrailGenerationJob | None:
        async with self._sessions() as session:
            row = await session.get(GenerationJobRow, job_id)
            return _row_to_job(row) if row is not None else None

    async def find_active(self, trail_id: UUID) -> TrailGenerationJob | None:
        stmt = (
            select(GenerationJobRow)
            .where(
                GenerationJobRow.trail_id == trail_id,
                GenerationJobRow.status.in_([s.value for s in ACTIVE_JOB_STATUSES]),
            )
            .order_by(GenerationJobRow.queued_at.desc())
            .limit(1)
        )
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_job(row) if row is not None else None

    async def latest(self, trail_id: UUID) -> TrailGenerationJob | None:
        stmt = (
            select(GenerationJobRow)
            .where(GenerationJobRow.trail_id == trail_id)
            .order_by(GenerationJobRow.queued_at.desc())
            .limit(1)
        )
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_job(row) if row is not None else None


def _job_to_row(job: TrailGenerationJob) -> GenerationJobRow:
    return GenerationJobRow(
        id=job.id,
        trail_id=job.trail_id,
        student_id=job.student_id,
        status=job.status.value,
        job_type=job.job_type.value,
        attempt_count=job.attempt_count,
        max_attempts=job.max_attempts,
        last_error=job.last_error,
        worker_id=job.worker_id,
        queued_at=job.queued_at,
        started_at=job.started_at,
        completed_at=job.completed_at,
        failed_at=job.failed_at,
        processing_time_ms=job.processing_time_ms,
    )


def _row_to_job(row: GenerationJobRow) -> TrailGenerationJob:
    return TrailGenerationJob(
        id=row.id,
        trail_id=row.trail_id,
        student_id=row.student_id,
        status=JobStatus(row.status),
        job_type=JobType(row.job_type),
        max_attempts=row.max_attempts,
        queued_at=row.queued_at,
        attempt_count=row.attempt_count,
        last_error=row.last_error,
        worker_id=row.worker_id,
        started_at=row.started_at,
        completed_at=row.completed_at,
        failed_at=row.failed_at,
        processing_time_ms=row.processing_time_ms,
    )
