from __future__ import annotations

from typing import Protocol
from uuid import UUID

from learning_trails.models.trail import TrailGenerationJob


class JobRepo(Protocol):
    async def save(self, job: TrailGenerationJob) -> None: ...
    async def get(self, job_id: UUID) -> TrailGenerationJob | None: ...
    async def find_active(self, trail_id: UUID) -> TrailGenerationJob | None: ...
    async def latest(self, trail_id: UUID) -> TrailGenerationJob | None: ...


class InMemoryJobRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, TrailGenerationJob] = {}

    async def save(self, job: TrailGenerationJob) -> None:
        self._by_id[job.id] = job

    async def get(self, job_id: UUID) -> TrailGenerationJob | None:
        return self._by_id.get(job_id)

    async def find_active(self, trail_id: UUID) -> TrailGenerationJob | None:
        for job in self._for_trail(trail_id):
            if job.is_active:
                return job
        return None

    async def latest(self, trail_id: UUID) -> TrailGenerationJob | None:
        jobs = self._for_trail(trail_id)
        return jobs[0] if jobs else None

    def _for_trail(self, trail_id: UUID) -> list[TrailGenerationJob]:
        jobs = [j for j in self._by_id.values() if j.trail_id == trail_id]
        return sorted(jobs, key=lambda j: j.queued_at, reverse=True)
