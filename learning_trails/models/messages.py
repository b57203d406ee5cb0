"""Wire messages exchanged over the task queue.

GenerationRequest goes on the generation queue and is consumed by the
worker.  NotificationEvent goes on the notification queue and is read by
whatever presents progress to the student; it carries no state the
pipeline depends on.

Both are immutable pydantic models so they round-trip through the JSON
task payloads without hand-written (de)serialisation.
"""

from __future__ import annotations

import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from learning_trails.models.trail import JobStatus, Trail, TrailStatus, utcnow

DEFAULT_MAX_ATTEMPTS = 3


class GenerationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    trail_id: UUID
    student_id: str
    language_code: str
    level_code: str
    blueprint_id: UUID | None = None
    preferences_json: str | None = None
    curriculum_version: str
    requested_at: datetime.datetime = Field(default_factory=utcnow)
    attempt_number: int = Field(default=1, ge=1)
    max_attempts: int = Field(default=DEFAULT_MAX_ATTEMPTS, ge=1)

    @property
    def can_retry(self) -> bool:
        return self.attempt_number < self.max_attempts

    def retry(self) -> GenerationRequest:
        """Copy of this request for the next attempt."""
        return self.model_copy(update={"attempt_number": self.attempt_number + 1})

    @classmethod
    def for_trail(cls, trail: Trail, *, max_attempts: int) -> GenerationRequest:
        return cls(
            trail_id=trail.id,
            student_id=trail.student_id,
            language_code=trail.language_code,
            level_code=trail.level_code,
            blueprint_id=trail.blueprint_id,
            preferences_json=trail.preferences_json,
            curriculum_version=trail.curriculum_version,
            max_attempts=max_attempts,
        )


class NotificationKind(str, Enum):
    STARTED = "started"
    MODULE_GENERATED = "module_generated"
    COMPLETED = "completed"
    FAILED = "failed"


class NotificationEvent(BaseModel):
    model_config = ConfigDict(frozen=True)

    trail_id: UUID
    student_id: str
    kind: NotificationKind
    trail_status: TrailStatus
    job_status: JobStatus | None = None
    progress_percentage: int = 0
    current_step: str
    message: str
    modules_generated: int | None = None
    total_modules: int | None = None
    lessons_generated: int | None = None
    total_lessons: int | None = None
    error_message: str | None = None
    timestamp: datetime.datetime = Field(default_factory=utcnow)

    @classmethod
    def started(cls, request: GenerationRequest) -> NotificationEvent:
        return cls(
            trail_id=request.trail_id,
            student_id=request.student_id,
            kind=NotificationKind.STARTED,
            trail_status=TrailStatus.GENERATING,
            job_status=JobStatus.PROCESSING,
            progress_percentage=0,
            current_step="Starting content generation",
            message="Your learning trail is being prepared",
        )

    @classmethod
    def module_generated(
        cls,
        request: GenerationRequest,
        *,
        modules_generated: int,
        total_modules: int,
        lessons_generated: int,
        total_lessons: int,
    ) -> NotificationEvent:
        return cls(
            trail_id=request.trail_id,
            student_id=request.student_id,
            kind=NotificationKind.MODULE_GENERATED,
            trail_status=TrailStatus.PARTIAL,
            job_status=JobStatus.PROCESSING,
            progress_percentage=(modules_generated * 100) // max(total_modules, 1),
            current_step=f"Module {modules_generated} of {total_modules} generated",
            message="New lessons are available",
            modules_generated=modules_generated,
            total_modules=total_modules,
            lessons_generated=lessons_generated,
            total_lessons=total_lessons,
        )

    @classmethod
    def completed(
        cls,
        request: GenerationRequest,
        *,
        total_modules: int,
        total_lessons: int,
    ) -> NotificationEvent:
        return cls(
            trail_id=request.trail_id,
            student_id=request.student_id,
            kind=NotificationKind.COMPLETED,
            trail_status=TrailStatus.READY,
            job_status=JobStatus.COMPLETED,
            progress_percentage=100,
            current_step="Generation complete",
            message="Your learning trail is ready",
            modules_generated=total_modules,
            total_modules=total_modules,
            lessons_generated=total_lessons,
            total_lessons=total_lessons,
        )

    @classmethod
    def failed(cls, request: GenerationRequest, error: str) -> NotificationEvent:
        return cls(
            trail_id=request.trail_id,
            student_id=request.student_id,
            kind=NotificationKind.FAILED,
            trail_status=TrailStatus.PARTIAL,
            job_status=JobStatus.FAILED,
            current_step="Generation failed",
            message="We could not finish preparing your trail",
            error_message=error,
        )
