"""Trail orchestration: creation, caching, refresh and archival.

Creation is the interesting path.  A trail is first persisted as
GENERATING, its placeholder skeleton is built, and it moves to PARTIAL
before generation is handed to the dispatcher.  A READY trail with the
same content hash short-circuits all of that: its structure and content
are cloned for the student and no content generation happens.

State changes go through TrailRepo.transition(), which only applies when
the trail is still in one of the expected source statuses.  An archive
that lands while the worker is generating therefore wins, and the worker
sees the trail ARCHIVED and stops.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from learning_trails.core.metrics import TRAILS_CREATED
from learning_trails.models.trail import (
    JobStatus,
    JobType,
    Lesson,
    ModuleStatus,
    RefreshReason,
    Trail,
    TrailGenerationJob,
    TrailModule,
    TrailProgress,
    TrailStatus,
    sources_for,
    utcnow,
)
from learning_trails.repos.curriculum_repo import CurriculumRepo
from learning_trails.repos.job_repo import JobRepo
from learning_trails.repos.trail_repo import DuplicateActiveTrailError, TrailRepo
from learning_trails.services.blueprint_matcher import BlueprintMatcher
from learning_trails.services.errors import (
    ActiveTrailExistsError,
    InvalidTrailTransitionError,
    LanguageNotFoundError,
    LessonNotFoundError,
    LevelNotFoundError,
    TrailLimitExceededError,
    TrailNotFoundError,
)
from learning_trails.services.generation_dispatcher import GenerationDispatcher
from learning_trails.services.progress_tracker import ProgressTracker
from learning_trails.services.structure_builder import StructureBuilder
from learning_trails.services.trail_hasher import (
    EMPTY_PREFERENCES,
    TrailHasher,
    canonical_preferences,
)

logger = logging.getLogger(__name__)

Drain = Callable[[], Awaitable[object]]


@dataclass(frozen=True, slots=True)
class ModuleWithLessons:
    module: TrailModule
    lessons: list[Lesson]


@dataclass(frozen=True, slots=True)
class GenerationStatus:
    """Pollable view of where a trail's generation stands."""

    trail: Trail
    job: TrailGenerationJob | None
    total_modules: int
    modules_generated: int
    total_lessons: int
    lessons_generated: int
    progress_percentage: int
    current_step: str
    message: str
    error_message: str | None = None


class TrailService:
    def __init__(
        self,
        *,
        trails: TrailRepo,
        curriculum: CurriculumRepo,
        jobs: JobRepo,
        hasher: TrailHasher,
        matcher: BlueprintMatcher,
        builder: StructureBuilder,
        tracker: ProgressTracker,
        dispatcher: GenerationDispatcher,
        drain: Drain | None = None,
        max_active_trails: int = 3,
        default_level_code: str = "A1",
        clock: Callable[[], datetime.datetime] = utcnow,
    ) -> None:
        self._trails = trails
        self._curriculum = curriculum
        self._jobs = jobs
        self._hasher = hasher
        self._matcher = matcher
        self._builder = builder
        self._tracker = tracker
        self._dispatcher = dispatcher
        self._drain = drain
        self._max_active = max_active_trails
        self._default_level = default_level_code
        self._clock = clock

    # --- creation ---

    async def get_or_create(self, student_id: str, language_code: str) -> Trail:
        existing = await self._trails.find_active(student_id, language_code)
        if existing is not None:
            return existing
        return await self.create(student_id, language_code)

    async def create(
        self,
        student_id: str,
        language_code: str,
        preferences: str | dict | None = None,
        *,
        level_code: str | None = None,
        previous_trail_id: UUID | None = None,
        refresh_reason: RefreshReason | None = None,
    ) -> Trail:
        if await self._trails.count_active(student_id) >= self._max_active:
            raise TrailLimitExceededError(student_id, self._max_active)
        if await self._trails.find_active(student_id, language_code) is not None:
            raise ActiveTrailExistsError(student_id, language_code)

        if await self._curriculum.get_language(language_code) is None:
            raise LanguageNotFoundError(language_code)
        level_code = level_code or self._default_level
        if await self._curriculum.get_level(level_code) is None:
            raise LevelNotFoundError(level_code)

        canonical = canonical_preferences(preferences)
        preferences_json = canonical if canonical != EMPTY_PREFERENCES else None
        version = await self._curriculum.current_version()
        content_hash = self._hasher.fingerprint(
            student_id, language_code, level_code, canonical, version
        )

        # The student's own READY trail for this language was rejected above,
        # so a source can only be another student's trail.  The default
        # TrailHasher mixes in student_id and never matches one; cloning
        # needs a hasher that leaves the student out.
        source = await self._trails.find_ready_by_hash(content_hash)
        if source is not None:
            return await self._clone(
                source,
                student_id=student_id,
                preferences_json=preferences_json,
                previous_trail_id=previous_trail_id,
                refresh_reason=refresh_reason,
            )

        blueprint = await self._matcher.find_matching(
            language_code, level_code, preferences_json
        )
        trail = Trail.new(
            student_id=student_id,
            language_code=language_code,
            level_code=level_code,
            content_hash=content_hash,
            curriculum_version=version,
            blueprint_id=blueprint.id if blueprint else None,
            previous_trail_id=previous_trail_id,
            refresh_reason=refresh_reason,
            preferences_json=preferences_json,
        )
        await self._persist(trail)
        TRAILS_CREATED.labels(source="generated").inc()
        if blueprint is not None:
            await self._matcher.record_usage(blueprint.id)

        try:
            await self._builder.build(trail, blueprint)
        except Exception:
            logger.exception(
                "Structure build failed for trail %s",
                trail.id,
                extra={"trail_id": str(trail.id)},
            )
            await self._trails.transition(
                trail.id,
                {TrailStatus.GENERATING},
                TrailStatus.ARCHIVED,
                archived_at=self._clock(),
            )
            raise

        trail = await self._move(trail.id, TrailStatus.PARTIAL)
        await self._tracker.initialize(trail.id)
        job_type = JobType.REFRESH if previous_trail_id else JobType.FULL_GENERATION
        await self._dispatcher.enqueue(trail, job_type)
        logger.info(
            "Created trail %s for student %s (%s/%s)",
            trail.id,
            student_id,
            language_code,
            level_code,
            extra={"trail_id": str(trail.id)},
        )

        if self._drain is not None:
            await self._drain()
        return await self.get_trail(trail.id)

    async def generate(
        self,
        student_id: str,
        language_code: str,
        *,
        force_regenerate: bool = False,
        preferences: str | dict | None = None,
    ) -> Trail:
        if force_regenerate:
            existing = await self._trails.find_active(student_id, language_code)
            if existing is not None:
                logger.info(
                    "Force regenerate: archiving trail %s",
                    existing.id,
                    extra={"trail_id": str(existing.id)},
                )
                await self.archive(existing.id)
        return await self.create(student_id, language_code, preferences)

    async def refresh(
        self,
        trail_id: UUID,
        reason: RefreshReason,
        new_level_code: str | None = None,
    ) -> Trail:
        old = await self.get_trail(trail_id)
        level_code = old.level_code
        if reason is RefreshReason.LEVEL_CHANGE and new_level_code:
            if await self._curriculum.get_level(new_level_code) is None:
                raise LevelNotFoundError(new_level_code)
            level_code = new_level_code

        await self.archive(trail_id)
        logger.info(
            "Refreshing trail %s (%s)",
            trail_id,
            reason.value,
            extra={"trail_id": str(trail_id)},
        )
        return await self.create(
            old.student_id,
            old.language_code,
            old.preferences_json,
            level_code=level_code,
            previous_trail_id=old.id,
            refresh_reason=reason,
        )

    async def archive(self, trail_id: UUID) -> Trail:
        """Soft delete.  Cancels the trail's active generation job."""
        trail = await self._move(
            trail_id, TrailStatus.ARCHIVED, archived_at=self._clock()
        )
        await self._dispatcher.cancel(trail_id)
        await self._tracker.forget(trail_id)
        logger.info("Archived trail %s", trail_id, extra={"trail_id": str(trail_id)})
        return trail

    # --- reads ---

    async def get_trail(self, trail_id: UUID) -> Trail:
        trail = await self._trails.get(trail_id)
        if trail is None:
            raise TrailNotFoundError(trail_id)
        return trail

    async def list_active(self, student_id: str) -> list[Trail]:
        return await self._trails.list_active(student_id)

    async def list_modules(self, trail_id: UUID) -> list[ModuleWithLessons]:
        await self.get_trail(trail_id)
        return [
            ModuleWithLessons(m, await self._trails.list_module_lessons(m.id))
            for m in await self._trails.list_modules(trail_id)
        ]

    async def get_lesson(self, lesson_id: UUID) -> Lesson:
        lesson = await self._trails.get_lesson(lesson_id)
        if lesson is None:
            raise LessonNotFoundError(lesson_id)
        return lesson

    async def lesson_owner(self, lesson_id: UUID) -> Trail:
        """The trail a lesson belongs to."""
        lesson = await self.get_lesson(lesson_id)
        module = await self._trails.get_module(lesson.module_id)
        if module is None:
            raise LessonNotFoundError(lesson_id)
        return await self.get_trail(module.trail_id)

    async def next_lesson(self, trail_id: UUID) -> Lesson | None:
        """First incomplete lesson in module order, then lesson order."""
        await self.get_trail(trail_id)
        for lesson in await self._trails.list_lessons(trail_id):
            if not lesson.is_completed:
                return lesson
        return None

    async def get_progress(self, trail_id: UUID) -> TrailProgress:
        await self.get_trail(trail_id)
        return await self._tracker.get(trail_id)

    async def generation_status(self, trail_id: UUID) -> GenerationStatus:
        trail = await self.get_trail(trail_id)
        job = await self._jobs.latest(trail_id)
        modules = await self._trails.list_modules(trail_id)
        ready_ids = {m.id for m in modules if m.status is ModuleStatus.READY}
        lessons = await self._trails.list_lessons(trail_id)
        generated = sum(1 for x in lessons if x.module_id in ready_ids)

        if trail.status is TrailStatus.READY:
            percentage = 100
        else:
            percentage = generated * 100 // max(len(lessons), 1)
        step, message = _describe(trail, job)

        return GenerationStatus(
            trail=trail,
            job=job,
            total_modules=len(modules),
            modules_generated=len(ready_ids),
            total_lessons=len(lessons),
            lessons_generated=generated,
            progress_percentage=percentage,
            current_step=step,
            message=message,
            error_message=job.last_error if job else None,
        )

    # --- student activity ---

    async def update_lesson_progress(
        self,
        lesson_id: UUID,
        *,
        completed: bool | None = None,
        score: Decimal | None = None,
        time_spent_seconds: int | None = None,
    ) -> TrailProgress:
        trail = await self.lesson_owner(lesson_id)
        lesson = await self.get_lesson(lesson_id)
        completed_at = (
            self._clock() if completed and lesson.completed_at is None else None
        )
        await self._trails.record_lesson_progress(
            lesson_id,
            completed_at=completed_at,
            score=score,
            add_seconds=time_spent_seconds or 0,
        )
        return await self._tracker.recalculate(trail.id)

    # --- internals ---

    async def _persist(self, trail: Trail) -> None:
        try:
            await self._trails.add(trail)
        except DuplicateActiveTrailError as e:
            raise ActiveTrailExistsError(
                trail.student_id, trail.language_code
            ) from e

    async def _move(self, trail_id: UUID, target: TrailStatus, **fields) -> Trail:
        updated = await self._trails.transition(
            trail_id, sources_for(target), target, **fields
        )
        if updated is None:
            current = await self.get_trail(trail_id)
            raise InvalidTrailTransitionError(
                trail_id, current.status.value, target.value
            )
        return updated

    async def _clone(
        self,
        source: Trail,
        *,
        student_id: str,
        preferences_json: str | None,
        previous_trail_id: UUID | None,
        refresh_reason: RefreshReason | None,
    ) -> Trail:
        trail = Trail.new(
            student_id=student_id,
            language_code=source.language_code,
            level_code=source.level_code,
            content_hash=source.content_hash,
            curriculum_version=source.curriculum_version,
            status=TrailStatus.READY,
            blueprint_id=source.blueprint_id,
            previous_trail_id=previous_trail_id,
            refresh_reason=refresh_reason,
            preferences_json=preferences_json,
            estimated_duration_hours=source.estimated_duration_hours,
        )
        await self._persist(trail)

        modules: list[TrailModule] = []
        lessons: list[Lesson] = []
        for m in await self._trails.list_modules(source.id):
            module = TrailModule.new(
                trail_id=trail.id,
                competency_code=m.competency_code,
                title=m.title,
                description=m.description,
                order_index=m.order_index,
                status=ModuleStatus.READY,
            )
            modules.append(module)
            lessons.extend(
                Lesson.new(
                    module_id=module.id,
                    title=x.title,
                    type=x.type,
                    order_index=x.order_index,
                    duration_minutes=x.duration_minutes,
                    content=x.content,
                    is_placeholder=x.is_placeholder,
                    descriptor_code=x.descriptor_code,
                )
                for x in await self._trails.list_module_lessons(m.id)
            )
        await self._trails.add_modules(modules)
        await self._trails.add_lessons(lessons)
        await self._tracker.initialize(trail.id)

        TRAILS_CREATED.labels(source="cloned").inc()
        logger.info(
            "Cloned trail %s from READY trail %s (hash %s)",
            trail.id,
            source.id,
            source.content_hash,
            extra={"trail_id": str(trail.id)},
        )
        return trail


def _describe(trail: Trail, job: TrailGenerationJob | None) -> tuple[str, str]:
    if trail.status is TrailStatus.READY:
        return "completed", "Trail is ready"
    if trail.status is TrailStatus.ARCHIVED:
        return "archived", "Trail was archived"
    if trail.status is TrailStatus.GENERATING:
        return "building_structure", "Building trail structure"
    if job is None:
        return "pending", "Waiting for generation to be scheduled"
    if job.status is JobStatus.FAILED:
        return "failed", "Content generation failed"
    if job.status is JobStatus.PROCESSING:
        return "generating_content", "Generating lesson content"
    if job.status is JobStatus.QUEUED and job.attempt_count > 1:
        return "retrying", f"Retrying generation (attempt {job.attempt_count})"
    return "queued", "Waiting for a worker"

