"""PostgreSQL implementation of BlueprintRepo."""

from __future__ import annotations

from typing import Any
from uuid import UUID

from sqlalchemy import Select, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learning_trails.db.tables import BlueprintRow
from learning_trails.models.curriculum import Blueprint


class PgBlueprintRepo:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._sessions = session_factory

    async def get(self, blueprint_id: UUID) -> Blueprint | None:
        async with self._sessions() as session:
            row = await session.get(BlueprintRow, blueprint_id)
            return _row_to_blueprint(row) if row is not None else None

    async def find_preference_matches(
        self, language_code: str, level_code: str, preferences: dict[str, Any]
    ) -> list[Blueprint]:
        stmt = _approved(language_code, level_code).where(
            BlueprintRow.preferences_pattern.contains(preferences)  # jsonb @>
        )
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).scalars().all()
            return [_row_to_blueprint(r) for r in rows]

    async def most_used_approved(
        self, language_code: str, level_code: str
    ) -> Blueprint | None:
        stmt = _approved(language_code, level_code).limit(1)
        async with self._sessions() as session:
            row = (await session.execute(stmt)).scalar_one_or_none()
            return _row_to_blueprint(row) if row is not None else None

    async def increment_usage(self, blueprint_id: UUID) -> None:
        stmt = (
            update(BlueprintRow)
            .where(BlueprintRow.id == blueprint_id)
            .values(usage_count=BlueprintRow.usage_count + 1)
        )
        async with self._sessions.begin() as session:
            await session.execute(stmt)


def _approved(language_code: str, level_code: str) -> Select[tuple[BlueprintRow]]:
    return (
        select(BlueprintRow)
        .where(
            BlueprintRow.language_code == language_code,
            BlueprintRow.level_code == level_code,
            BlueprintRow.is_approved.is_(True),
        )
        .order_by(
            BlueprintRow.usage_count.desc(),
            BlueprintRow.avg_completion_rate.desc().nulls_last(),
        )
    )


def _row_to_blueprint(row: BlueprintRow) -> Blueprint:
    return Blueprint(
        id=row.id,
        language_code=row.language_code,
        level_code=row.level_code,
        name=row.name,
        preferences_pattern=dict(row.preferences_pattern or {}),
        structure=dict(row.structure or {}),
        is_approved=row.is_approved,
        usage_count=row.usage_count,
        avg_completion_rate=row.avg_completion_rate,
    )
