"""Trail aggregate: the trail itself, its modules and lessons, the
progress read model, and the generation job record.

All of these are frozen dataclasses; repos hand out copies and callers
build new values with dataclasses.replace() instead of mutating.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

DEFAULT_LESSON_DURATION_MINUTES = 15


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class TrailStatus(str, Enum):
    GENERATING = "GENERATING"
    PARTIAL = "PARTIAL"
    READY = "READY"
    ARCHIVED = "ARCHIVED"


# Legal moves of the trail state machine. ARCHIVED is terminal.
TRAIL_TRANSITIONS: dict[TrailStatus, frozenset[TrailStatus]] = {
    TrailStatus.GENERATING: frozenset({TrailStatus.PARTIAL, TrailStatus.ARCHIVED}),
    TrailStatus.PARTIAL: frozenset({TrailStatus.READY, TrailStatus.ARCHIVED}),
    TrailStatus.READY: frozenset({TrailStatus.ARCHIVED}),
    TrailStatus.ARCHIVED: frozenset(),
}


def sources_for(target: TrailStatus) -> frozenset[TrailStatus]:
    """Statuses from which `target` may be entered."""
    return frozenset(s for s, dests in TRAIL_TRANSITIONS.items() if target in dests)


class ModuleStatus(str, Enum):
    PENDING = "PENDING"
    READY = "READY"


class LessonType(str, Enum):
    INTERACTIVE = "interactive"
    VIDEO = "video"
    READING = "reading"
    EXERCISE = "exercise"
    CONVERSATION = "conversation"
    FLASHCARD = "flashcard"
    GAME = "game"


class RefreshReason(str, Enum):
    LEVEL_CHANGE = "level_change"
    PREFERENCES_UPDATE = "preferences_update"
    CURRICULUM_UPDATE = "curriculum_update"
    MANUAL_REQUEST = "manual_request"


class JobStatus(str, Enum):
    QUEUED = "QUEUED"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


ACTIVE_JOB_STATUSES = frozenset({JobStatus.QUEUED, JobStatus.PROCESSING})


class JobType(str, Enum):
    FULL_GENERATION = "full_generation"
    REFRESH = "refresh"


@dataclass(frozen=True, slots=True)
class Trail:
    """One student's learning path for one language."""

    id: UUID
    student_id: str
    language_code: str
    level_code: str
    status: TrailStatus
    content_hash: str
    curriculum_version: str
    created_at: datetime.datetime
    updated_at: datetime.datetime
    estimated_duration_hours: Decimal | None = None
    blueprint_id: UUID | None = None
    previous_trail_id: UUID | None = None
    refresh_reason: RefreshReason | None = None
    preferences_json: str | None = None
    archived_at: datetime.datetime | None = None

    @property
    def is_active(self) -> bool:
        return self.status is not TrailStatus.ARCHIVED

    @staticmethod
    def new(
        *,
        student_id: str,
        language_code: str,
        level_code: str,
        content_hash: str,
        curriculum_version: str,
        status: TrailStatus = TrailStatus.GENERATING,
        blueprint_id: UUID | None = None,
        previous_trail_id: UUID | None = None,
        refresh_reason: RefreshReason | None = None,
        preferences_json: str | None = None,
        estimated_duration_hours: Decimal | None = None,
    ) -> Trail:
        now = utcnow()
        return Trail(
            id=uuid4(),
            student_id=student_id,
            language_code=language_code,
            level_code=level_code,
            status=status,
            content_hash=content_hash,
            curriculum_version=curriculum_version,
            created_at=now,
            updated_at=now,
            estimated_duration_hours=estimated_duration_hours,
            blueprint_id=blueprint_id,
            previous_trail_id=previous_trail_id,
            refresh_reason=refresh_reason,
            preferences_json=preferences_json,
        )


@dataclass(frozen=True, slots=True)
class TrailModule:
    """A competency-scoped group of lessons inside a trail."""

    id: UUID
    trail_id: UUID
    competency_code: str
    title: str
    description: str
    order_index: int
    status: ModuleStatus = ModuleStatus.PENDING

    @staticmethod
    def new(
        *,
        trail_id: UUID,
        competency_code: str,
        title: str,
        description: str,
        order_index: int,
        status: ModuleStatus = ModuleStatus.PENDING,
    ) -> TrailModule:
        return TrailModule(
            id=uuid4(),
            trail_id=trail_id,
            competency_code=competency_code,
            title=title,
            description=description,
            order_index=order_index,
            status=status,
        )


@dataclass(frozen=True, slots=True)
class Lesson:
    """One unit of content.

    Two writers touch a lesson: generation (content, is_placeholder) and
    the student (completed_at, score, time_spent_seconds).  Repos expose a
    separate update for each group.
    """

    id: UUID
    module_id: UUID
    title: str
    type: LessonType
    order_index: int
    duration_minutes: int = DEFAULT_LESSON_DURATION_MINUTES
    content: str = "{}"
    is_placeholder: bool = True
    descriptor_code: str | None = None
    completed_at: datetime.datetime | None = None
    score: Decimal | None = None
    time_spent_seconds: int = 0

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    @staticmethod
    def new(
        *,
        module_id: UUID,
        title: str,
        type: LessonType,
        order_index: int,
        duration_minutes: int = DEFAULT_LESSON_DURATION_MINUTES,
        content: str = "{}",
        is_placeholder: bool = True,
        descriptor_code: str | None = None,
    ) -> Lesson:
        return Lesson(
            id=uuid4(),
            module_id=module_id,
            title=title,
            type=type,
            order_index=order_index,
            duration_minutes=duration_minutes,
            content=content,
            is_placeholder=is_placeholder,
            descriptor_code=descriptor_code,
        )


@dataclass(frozen=True, slots=True)
class TrailProgress:
    """Read model derived from a trail's lessons. Never edited in place."""

    trail_id: UUID
    total_lessons: int = 0
    lessons_completed: int = 0
    progress_percentage: Decimal = Decimal("0")
    average_score: Decimal | None = None
    time_spent_minutes: int = 0
    last_activity_at: datetime.datetime | None = None
    updated_at: datetime.datetime | None = None

    @property
    def is_completed(self) -> bool:
        return self.progress_percentage >= 100

    @property
    def remaining_lessons(self) -> int:
        return self.total_lessons - self.lessons_completed


@dataclass(frozen=True, slots=True)
class TrailGenerationJob:
    """Persisted record of one trail's asynchronous generation."""

    id: UUID
    trail_id: UUID
    student_id: str
    status: JobStatus
    job_type: JobType
    max_attempts: int
    queued_at: datetime.datetime
    attempt_count: int = 1
    last_error: str | None = None
    worker_id: str | None = None
    started_at: datetime.datetime | None = None
    completed_at: datetime.datetime | None = None
    failed_at: datetime.datetime | None = None
    processing_time_ms: int | None = None

    @property
    def is_active(self) -> bool:
        return self.status in ACTIVE_JOB_STATUSES

    @staticmethod
    def new(
        *,
        trail_id: UUID,
        student_id: str,
        job_type: JobType,
        max_attempts: int,
    ) -> TrailGenerationJob:
        return TrailGenerationJob(
            id=uuid4(),
            trail_id=trail_id,
            student_id=student_id,
            status=JobStatus.QUEUED,
            job_type=job_type,
            max_attempts=max_attempts,
            queued_at=utcnow(),
        )
