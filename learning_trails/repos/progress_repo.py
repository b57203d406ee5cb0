from __future__ import annotations

from typing import Protocol
from uuid import UUID

from learning_trails.models.trail import TrailProgress


class ProgressRepo(Protocol):
    async def get(self, trail_id: UUID) -> TrailProgress | None: ...
    async def save(self, progress: TrailProgress) -> None: ...


class InMemoryProgressRepo:
    def __init__(self) -> None:
        self._by_trail: dict[UUID, TrailProgress] = {}

    async def get(self, trail_id: UUID) -> TrailProgress | None:
        return self._by_trail.get(trail_id)

    async def save(self, progress: TrailProgress) -> None:
        # Upsert: one row per trail, always a full snapshot
        self._by_trail[progress.trail_id] = progress
