from __future__ import annotations

import logging

from learning_trails.models.curriculum import Blueprint
from learning_trails.models.trail import Lesson, LessonType, Trail, TrailModule
from learning_trails.repos.curriculum_repo import CurriculumRepo
from learning_trails.repos.trail_repo import TrailRepo

logger = logging.getLogger(__name__)

LESSON_TYPE_BY_COMPETENCY: dict[str, LessonType] = {
    "speaking": LessonType.CONVERSATION,
    "listening": LessonType.VIDEO,
    "reading": LessonType.READING,
    "writing": LessonType.EXERCISE,
    "vocabulary": LessonType.FLASHCARD,
    "grammar": LessonType.INTERACTIVE,
}

# Lessons synthesised for a competency that has no core descriptors
GENERIC_LESSONS_PER_MODULE = 3


def lesson_type_for(competency_code: str) -> LessonType:
    return LESSON_TYPE_BY_COMPETENCY.get(competency_code, LessonType.INTERACTIVE)


class StructureBuilder:
    """Creates the module/lesson skeleton of a trail as placeholders."""

    def __init__(self, curriculum: CurriculumRepo, trails: TrailRepo) -> None:
        self._curriculum = curriculum
        self._trails = trails

    async def build(self, trail: Trail, blueprint: Blueprint | None = None) -> int:
        """Persist modules and placeholder lessons; return the lesson count."""
        if blueprint is not None:
            # TODO: drive module/lesson shape from blueprint.structure once its
            # schema is agreed with the curriculum team.
            logger.debug(
                "Blueprint %s matched; building trail %s from curriculum",
                blueprint.id,
                trail.id,
            )

        modules: list[TrailModule] = []
        lessons: list[Lesson] = []
        weighted = await self._curriculum.level_competencies(trail.level_code)

        for position, wc in enumerate(weighted, start=1):
            competency = wc.competency
            module = TrailModule.new(
                trail_id=trail.id,
                competency_code=competency.code,
                title=competency.name,
                description=f"Module: {competency.name}",
                order_index=position,
            )
            modules.append(module)
            lessons.extend(await self._lessons_for(module, trail.level_code))

        await self._trails.add_modules(modules)
        await self._trails.add_lessons(lessons)
        logger.info(
            "Built trail %s: %d modules, %d lessons",
            trail.id,
            len(modules),
            len(lessons),
            extra={"trail_id": str(trail.id)},
        )
        return len(lessons)

    async def _lessons_for(self, module: TrailModule, level_code: str) -> list[Lesson]:
        lesson_type = lesson_type_for(module.competency_code)
        descriptors = await self._curriculum.core_descriptors(
            level_code, module.competency_code
        )
        if descriptors:
            return [
                Lesson.new(
                    module_id=module.id,
                    title=d.description,
                    type=lesson_type,
                    order_index=i,
                    descriptor_code=d.code,
                )
                for i, d in enumerate(descriptors, start=1)
            ]
        return [
            Lesson.new(
                module_id=module.id,
                title=f"Lesson {i} - {module.title}",
                type=lesson_type,
                order_index=i,
            )
            for i in range(1, GENERIC_LESSONS_PER_MODULE + 1)
        ]
