"""PostgreSQL implementation of CurriculumRepo."""

from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learning_trails.db.tables import (
    CompetencyRow,
    DescriptorRow,
    LanguageRow,
    LevelCompetencyRow,
    LevelRow,
)
from learning_trails.models.curriculum import (
    Competency,
    Descriptor,
    Language,
    Level,
    WeightedCompetency,
)
from learning_trails.repos.curriculum_repo import DEFAULT_CURRICULUM_VERSION


class PgCurriculumRepo:
    """Reference tables are read-only here.  The curriculum version is
    supplied by configuration, not stored in the schema."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        version: str = DEFAULT_CURRICULUM_VERSION,
    ) -> None:
        self._sessions = session_factory
        self._version = version

    async def current_version(self) -> str:
        return self._version

    async def get_language(self, code: str) -> Language | None:
        async with self._sessions() as session:
            row = await session.get(LanguageRow, code)
            return Language(code=row.code, name=row.name) if row is not None else None

    async def get_level(self, code: str) -> Level | None:
        async with self._sessions() as session:
            row = await session.get(LevelRow, code)
            if row is None:
                return None
            return Level(code=row.code, name=row.name, order_index=row.order_index)

    async def level_competencies(self, level_code: str) -> list[WeightedCompetency]:
        stmt = (
            select(CompetencyRow, LevelCompetencyRow.weight)
            .join(
                LevelCompetencyRow,
                LevelCompetencyRow.competency_code == CompetencyRow.code,
            )
            .where(LevelCompetencyRow.level_code == level_code)
            .order_by(LevelCompetencyRow.weight.desc(), CompetencyRow.code)
        )
        async with self._sessions() as session:
            rows = (await session.execute(stmt)).all()
            return [
                WeightedCompetency(Competency(code=c.code, name=c.name), weight)
                for c, weight in rows
            ]

    async def core_descriptors(
        self, level_code: str, competency_code: str
    ) -> list[Descriptor]:
        stmt = (
            select(DescriptorRow)
            .where(
                DescriptorRow.level_code == level_code,
                DescriptorRow.competency_code == competency_code,
                DescriptorRow.is_core.is_(True),
            )
            .order_by(DescriptorRow.order_index, DescriptorRow.code)
        )
        async with self._sessions() as session:
            return [
                Descriptor(
                    code=r.code,
                    level_code=r.level_code,
                    competency_code=r.competency_code,
                    description=r.description,
                    is_core=r.is_core,
                    order_index=r.order_index,
                )
                for r in (await session.execute(stmt)).scalars()
            ]
