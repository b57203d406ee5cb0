"""Learning trail endpoints.

  GET    /v1/trails?lang=en                 get or create the active trail
  GET    /v1/trails/active                  all active trails of the caller
  GET    /v1/trails/{id}                    one trail
  POST   /v1/trails/generate                create (optionally replacing)
  POST   /v1/trails/{id}/refresh            archive and rebuild
  DELETE /v1/trails/{id}                    archive
  GET    /v1/trails/{id}/modules            modules with their lessons
  GET    /v1/trails/{id}/next-lesson        first incomplete lesson
  GET    /v1/trails/{id}/progress           cached progress snapshot
  GET    /v1/trails/{id}/generation         generation job status
  POST   /v1/trails/lessons/{id}/progress   record lesson activity

Trails that belong to another student are reported as 404 so their ids
cannot be probed.
"""

from __future__ import annotations

import datetime
import json
import logging
from decimal import Decimal
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from pydantic import BaseModel, Field

from learning_trails.api.dependencies import get_trail_service, require_user
from learning_trails.models.principal import Principal
from learning_trails.models.trail import (
    Lesson,
    RefreshReason,
    Trail,
    TrailProgress,
)
from learning_trails.services.errors import (
    ActiveTrailExistsError,
    InvalidTrailTransitionError,
    LanguageNotFoundError,
    LessonNotFoundError,
    LevelNotFoundError,
    TrailError,
    TrailLimitExceededError,
    TrailNotFoundError,
)
from learning_trails.services.trail_service import (
    GenerationStatus,
    ModuleWithLessons,
    TrailService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/trails", tags=["trails"])

Service = Annotated[TrailService, Depends(get_trail_service)]
Caller = Annotated[Principal, Depends(require_user)]

_STATUS_BY_ERROR: dict[type[TrailError], int] = {
    TrailNotFoundError: status.HTTP_404_NOT_FOUND,
    LessonNotFoundError: status.HTTP_404_NOT_FOUND,
    TrailLimitExceededError: status.HTTP_409_CONFLICT,
    ActiveTrailExistsError: status.HTTP_409_CONFLICT,
    InvalidTrailTransitionError: status.HTTP_409_CONFLICT,
    LanguageNotFoundError: status.HTTP_422_UNPROCESSABLE_CONTENT,
    LevelNotFoundError: status.HTTP_422_UNPROCESSABLE_CONTENT,
}


def _http_error(e: TrailError) -> HTTPException:
    code = _STATUS_BY_ERROR.get(type(e), status.HTTP_500_INTERNAL_SERVER_ERROR)
    return HTTPException(status_code=code, detail=str(e))


def _lesson_content(raw: str) -> Any:
    # Rows written before content was normalised may hold plain text
    try:
        return json.loads(raw)
    except ValueError:
        return {"text": raw}


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class TrailOut(BaseModel):
    id: UUID
    student_id: str
    language_code: str
    level_code: str
    status: str
    curriculum_version: str
    estimated_duration_hours: Decimal | None
    blueprint_id: UUID | None
    previous_trail_id: UUID | None
    refresh_reason: str | None
    created_at: datetime.datetime
    updated_at: datetime.datetime
    archived_at: datetime.datetime | None

    @classmethod
    def of(cls, t: Trail) -> TrailOut:
        return cls(
            id=t.id,
            student_id=t.student_id,
            language_code=t.language_code,
            level_code=t.level_code,
            status=t.status.value,
            curriculum_version=t.curriculum_version,
            estimated_duration_hours=t.estimated_duration_hours,
            blueprint_id=t.blueprint_id,
            previous_trail_id=t.previous_trail_id,
            refresh_reason=t.refresh_reason.value if t.refresh_reason else None,
            created_at=t.created_at,
            updated_at=t.updated_at,
            archived_at=t.archived_at,
        )


class LessonOut(BaseModel):
    id: UUID
    module_id: UUID
    title: str
    type: str
    order_index: int
    duration_minutes: int
    is_placeholder: bool
    content: Any
    completed_at: datetime.datetime | None
    score: Decimal | None
    time_spent_seconds: int

    @classmethod
    def of(cls, x: Lesson) -> LessonOut:
        return cls(
            id=x.id,
            module_id=x.module_id,
            title=x.title,
            type=x.type.value,
            order_index=x.order_index,
            duration_minutes=x.duration_minutes,
            is_placeholder=x.is_placeholder,
            content=_lesson_content(x.content),
            completed_at=x.completed_at,
            score=x.score,
            time_spent_seconds=x.time_spent_seconds,
        )


class ModuleOut(BaseModel):
    id: UUID
    competency_code: str
    title: str
    description: str
    order_index: int
    status: str
    lessons: list[LessonOut]

    @classmethod
    def of(cls, mw: ModuleWithLessons) -> ModuleOut:
        m = mw.module
        return cls(
            id=m.id,
            competency_code=m.competency_code,
            title=m.title,
            description=m.description,
            order_index=m.order_index,
            status=m.status.value,
            lessons=[LessonOut.of(x) for x in mw.lessons],
        )


class ProgressOut(BaseModel):
    trail_id: UUID
    total_lessons: int
    lessons_completed: int
    progress_percentage: Decimal
    average_score: Decimal | None
    time_spent_minutes: int
    last_activity_at: datetime.datetime | None
    is_completed: bool

    @classmethod
    def of(cls, p: TrailProgress) -> ProgressOut:
        return cls(
            trail_id=p.trail_id,
            total_lessons=p.total_lessons,
            lessons_completed=p.lessons_completed,
            progress_percentage=p.progress_percentage,
            average_score=p.average_score,
            time_spent_minutes=p.time_spent_minutes,
            last_activity_at=p.last_activity_at,
            is_completed=p.is_completed,
        )


class GenerationStatusOut(BaseModel):
    trail_id: UUID
    trail_status: str
    job_id: UUID | None
    job_status: str | None
    attempt: int | None
    max_attempts: int | None
    total_modules: int
    modules_generated: int
    total_lessons: int
    lessons_generated: int
    progress_percentage: int
    current_step: str
    message: str
    error_message: str | None

    @classmethod
    def of(cls, s: GenerationStatus) -> GenerationStatusOut:
        return cls(
            trail_id=s.trail.id,
            trail_status=s.trail.status.value,
            job_id=s.job.id if s.job else None,
            job_status=s.job.status.value if s.job else None,
            attempt=s.job.attempt_count if s.job else None,
            max_attempts=s.job.max_attempts if s.job else None,
            total_modules=s.total_modules,
            modules_generated=s.modules_generated,
            total_lessons=s.total_lessons,
            lessons_generated=s.lessons_generated,
            progress_percentage=s.progress_percentage,
            current_step=s.current_step,
            message=s.message,
            error_message=s.error_message,
        )


class GenerateTrailIn(BaseModel):
    language_code: str = Field(min_length=2, max_length=10)
    force_regenerate: bool = False
    preferences: dict[str, Any] | None = None


class RefreshTrailIn(BaseModel):
    reason: RefreshReason
    new_level_code: str | None = None


class LessonProgressIn(BaseModel):
    completed: bool | None = None
    score: Decimal | None = Field(default=None, ge=0, le=100)
    time_spent_seconds: int | None = Field(default=None, ge=0)


async def _owned_trail(
    service: TrailService, trail_id: UUID, caller: Principal
) -> Trail:
    try:
        trail = await service.get_trail(trail_id)
    except TrailNotFoundError as e:
        raise _http_error(e) from None
    if trail.student_id != caller.user_id:
        raise HTTPException(status_code=404, detail=f"trail {trail_id} not found")
    return trail


# ---------------------------------------------------------------------------
# Trails
# ---------------------------------------------------------------------------


@router.get("", response_model=TrailOut)
async def get_or_create_trail(
    service: Service,
    caller: Caller,
    lang: Annotated[str, Query(min_length=2, max_length=10)],
) -> TrailOut:
    try:
        trail = await service.get_or_create(caller.user_id, lang)
    except TrailError as e:
        raise _http_error(e) from None
    return TrailOut.of(trail)


@router.get("/active", response_model=list[TrailOut])
async def list_active_trails(service: Service, caller: Caller) -> list[TrailOut]:
    return [TrailOut.of(t) for t in await service.list_active(caller.user_id)]


@router.post("/generate", response_model=TrailOut, status_code=201)
async def generate_trail(
    body: GenerateTrailIn, service: Service, caller: Caller
) -> TrailOut:
    try:
        trail = await service.generate(
            caller.user_id,
            body.language_code,
            force_regenerate=body.force_regenerate,
            preferences=body.preferences,
        )
    except TrailError as e:
        raise _http_error(e) from None
    return TrailOut.of(trail)


@router.get("/{trail_id}", response_model=TrailOut)
async def get_trail(trail_id: UUID, service: Service, caller: Caller) -> TrailOut:
    return TrailOut.of(await _owned_trail(service, trail_id, caller))


@router.post("/{trail_id}/refresh", response_model=TrailOut, status_code=201)
async def refresh_trail(
    trail_id: UUID, body: RefreshTrailIn, service: Service, caller: Caller
) -> TrailOut:
    await _owned_trail(service, trail_id, caller)
    try:
        trail = await service.refresh(trail_id, body.reason, body.new_level_code)
    except TrailError as e:
        raise _http_error(e) from None
    return TrailOut.of(trail)


@router.delete("/{trail_id}", status_code=status.HTTP_204_NO_CONTENT)
async def archive_trail(trail_id: UUID, service: Service, caller: Caller) -> Response:
    await _owned_trail(service, trail_id, caller)
    try:
        await service.archive(trail_id)
    except TrailError as e:
        raise _http_error(e) from None
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ---------------------------------------------------------------------------
# Trail contents and status
# ---------------------------------------------------------------------------


@router.get("/{trail_id}/modules", response_model=list[ModuleOut])
async def list_modules(
    trail_id: UUID, service: Service, caller: Caller
) -> list[ModuleOut]:
    await _owned_trail(service, trail_id, caller)
    return [ModuleOut.of(m) for m in await service.list_modules(trail_id)]


@router.get("/{trail_id}/next-lesson", response_model=LessonOut | None)
async def next_lesson(
    trail_id: UUID, service: Service, caller: Caller
) -> LessonOut | None:
    await _owned_trail(service, trail_id, caller)
    lesson = await service.next_lesson(trail_id)
    return LessonOut.of(lesson) if lesson is not None else None


@router.get("/{trail_id}/progress", response_model=ProgressOut)
async def get_progress(
    trail_id: UUID, service: Service, caller: Caller
) -> ProgressOut:
    await _owned_trail(service, trail_id, caller)
    return ProgressOut.of(await service.get_progress(trail_id))


@router.get("/{trail_id}/generation", response_model=GenerationStatusOut)
async def get_generation_status(
    trail_id: UUID, service: Service, caller: Caller
) -> GenerationStatusOut:
    await _owned_trail(service, trail_id, caller)
    return GenerationStatusOut.of(await service.generation_status(trail_id))


# ---------------------------------------------------------------------------
# Lesson activity
# ---------------------------------------------------------------------------


@router.post("/lessons/{lesson_id}/progress", response_model=ProgressOut)
async def record_lesson_progress(
    lesson_id: UUID, body: LessonProgressIn, service: Service, caller: Caller
) -> ProgressOut:
    try:
        trail = await service.lesson_owner(lesson_id)
    except TrailError as e:
        raise _http_error(e) from None
    if trail.student_id != caller.user_id:
        raise HTTPException(status_code=404, detail=f"lesson {lesson_id} not found")

    progress = await service.update_lesson_progress(
        lesson_id,
        completed=body.completed,
        score=body.score,
        time_spent_seconds=body.time_spent_seconds,
    )
    logger.info(
        "Lesson %s progress recorded: %s%% of trail %s",
        lesson_id,
        progress.progress_percentage,
        trail.id,
        extra={"trail_id": str(trail.id)},
    )
    return ProgressOut.of(progress)
