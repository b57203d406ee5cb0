"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in learning_trails/models/.
Repos convert between rows and domain dataclasses; nothing outside
learning_trails/repos/pg_*.py touches these classes.
"""

from __future__ import annotations

import datetime
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from learning_trails.db.engine import Base

# --- Curriculum reference data (read-only for this service) ---


class LanguageRow(Base):
    __tablename__ = "languages"

    code: Mapped[str] = mapped_column(String(8), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class LevelRow(Base):
    __tablename__ = "levels"

    code: Mapped[str] = mapped_column(String(8), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)


class CompetencyRow(Base):
    __tablename__ = "competencies"

    code: Mapped[str] = mapped_column(String(32), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)


class LevelCompetencyRow(Base):
    __tablename__ = "level_competencies"

    level_code: Mapped[str] = mapped_column(
        String(8), ForeignKey("levels.code"), primary_key=True
    )
    competency_code: Mapped[str] = mapped_column(
        String(32), ForeignKey("competencies.code"), primary_key=True
    )
    weight: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False)


class DescriptorRow(Base):
    __tablename__ = "descriptors"

    code: Mapped[str] = mapped_column(String(64), primary_key=True)
    level_code: Mapped[str] = mapped_column(
        String(8), ForeignKey("levels.code"), nullable=False
    )
    competency_code: Mapped[str] = mapped_column(
        String(32), ForeignKey("competencies.code"), nullable=False
    )
    description: Mapped[str] = mapped_column(Text, nullable=False)
    is_core: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class BlueprintRow(Base):
    __tablename__ = "trail_blueprints"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    language_code: Mapped[str] = mapped_column(String(8), nullable=False)
    level_code: Mapped[str] = mapped_column(String(8), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    preferences_pattern: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, default=dict
    )
    structure: Mapped[dict[str, Any]] = mapped_column(
        JSONB, nullable=False, default=dict
    )
    is_approved: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    avg_completion_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(5, 2), nullable=True
    )

    __table_args__ = (
        Index("ix_trail_blueprints_lang_level", "language_code", "level_code"),
    )


# --- Trails ---


class TrailRow(Base):
    __tablename__ = "trails"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    student_id: Mapped[str] = mapped_column(String(255), nullable=False)
    language_code: Mapped[str] = mapped_column(String(8), nullable=False)
    level_code: Mapped[str] = mapped_column(String(8), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False
    )  # GENERATING|PARTIAL|READY|ARCHIVED
    content_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    curriculum_version: Mapped[str] = mapped_column(String(32), nullable=False)
    estimated_duration_hours: Mapped[Decimal | None] = mapped_column(
        Numeric(6, 1), nullable=True
    )
    blueprint_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("trail_blueprints.id"), nullable=True
    )
    previous_trail_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("trails.id"), nullable=True
    )
    refresh_reason: Mapped[str | None] = mapped_column(String(32), nullable=True)
    preferences_json: Mapped[str | None] = mapped_column(Text, nullable=True)
    archived_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    __table_args__ = (
        # Cache lookup only; equal hashes across students are expected.
        Index("ix_trails_content_hash", "content_hash"),
        Index("ix_trails_student_status", "student_id", "status"),
        # Hard guard: one non-archived trail per (student, language).
        Index(
            "uq_trails_active_student_language",
            "student_id",
            "language_code",
            unique=True,
            postgresql_where=text("status <> 'ARCHIVED'"),
        ),
    )


class TrailModuleRow(Base):
    __tablename__ = "trail_modules"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    trail_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("trails.id"), nullable=False, index=True
    )
    competency_code: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="PENDING"
    )  # PENDING|READY


class LessonRow(Base):
    __tablename__ = "lessons"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    module_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("trail_modules.id"), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    order_index: Mapped[int] = mapped_column(Integer, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=15)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="{}")
    is_placeholder: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    descriptor_code: Mapped[str | None] = mapped_column(String(64), nullable=True)
    completed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    score: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    time_spent_seconds: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class TrailProgressRow(Base):
    """Read model, recomputed from lessons."""

    __tablename__ = "trail_progress"

    trail_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("trails.id"), primary_key=True
    )
    total_lessons: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    lessons_completed: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    progress_percentage: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0")
    )
    average_score: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    time_spent_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_activity_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    updated_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


class GenerationJobRow(Base):
    __tablename__ = "trail_generation_jobs"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    trail_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("trails.id"), nullable=False, index=True
    )
    student_id: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False
    )  # QUEUED|PROCESSING|COMPLETED|FAILED|CANCELLED
    job_type: Mapped[str] = mapped_column(String(32), nullable=False)
    attempt_count: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=3)
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    worker_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    queued_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    started_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    completed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    failed_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    processing_time_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
