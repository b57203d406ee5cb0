"""create trail tables

Revision ID: 3b7c1e9d4a20
Revises:
Create Date: 2026-10-19 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b7c1e9d4a20"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _ts(name: str, nullable: bool = True) -> sa.Column:
    return sa.Column(name, sa.DateTime(timezone=True), nullable=nullable)


def upgrade() -> None:
    # --- reference data ---
    op.create_table(
        "languages",
        sa.Column("code", sa.String(8), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
    )
    op.create_table(
        "levels",
        sa.Column("code", sa.String(8), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("order_index", sa.Integer, nullable=False),
    )
    op.create_table(
        "competencies",
        sa.Column("code", sa.String(32), primary_key=True),
        sa.Column("name", sa.String(100), nullable=False),
    )
    op.create_table(
        "level_competencies",
        sa.Column(
            "level_code", sa.String(8), sa.ForeignKey("levels.code"), primary_key=True
        ),
        sa.Column(
            "competency_code",
            sa.String(32),
            sa.ForeignKey("competencies.code"),
            primary_key=True,
        ),
        sa.Column("weight", sa.Numeric(5, 2), nullable=False),
    )
    op.create_table(
        "descriptors",
        sa.Column("code", sa.String(64), primary_key=True),
        sa.Column(
            "level_code", sa.String(8), sa.ForeignKey("levels.code"), nullable=False
        ),
        sa.Column(
            "competency_code",
            sa.String(32),
            sa.ForeignKey("competencies.code"),
            nullable=False,
        ),
        sa.Column("description", sa.Text, nullable=False),
        sa.Column("is_core", sa.Boolean, nullable=False, server_default=sa.true()),
        sa.Column("order_index", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_table(
        "trail_blueprints",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("language_code", sa.String(8), nullable=False),
        sa.Column("level_code", sa.String(8), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column(
            "preferences_pattern",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column(
            "structure",
            postgresql.JSONB,
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("is_approved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("usage_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column("avg_completion_rate", sa.Numeric(5, 2), nullable=True),
    )
    op.create_index(
        "ix_trail_blueprints_lang_level",
        "trail_blueprints",
        ["language_code", "level_code"],
    )

    # --- trails ---
    op.create_table(
        "trails",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("student_id", sa.String(255), nullable=False),
        sa.Column("language_code", sa.String(8), nullable=False),
        sa.Column("level_code", sa.String(8), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("content_hash", sa.String(64), nullable=False),
        sa.Column("curriculum_version", sa.String(32), nullable=False),
        sa.Column("estimated_duration_hours", sa.Numeric(6, 1), nullable=True),
        sa.Column(
            "blueprint_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("trail_blueprints.id"),
            nullable=True,
        ),
        sa.Column(
            "previous_trail_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("trails.id"),
            nullable=True,
        ),
        sa.Column("refresh_reason", sa.String(32), nullable=True),
        sa.Column("preferences_json", sa.Text, nullable=True),
        _ts("archived_at"),
        _ts("created_at", nullable=False),
        _ts("updated_at", nullable=False),
    )
    op.create_index("ix_trails_content_hash", "trails", ["content_hash"])
    op.create_index("ix_trails_student_status", "trails", ["student_id", "status"])
    op.create_index(
        "uq_trails_active_student_language",
        "trails",
        ["student_id", "language_code"],
        unique=True,
        postgresql_where=sa.text("status <> 'ARCHIVED'"),
    )

    op.create_table(
        "trail_modules",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "trail_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("trails.id"),
            nullable=False,
        ),
        sa.Column("competency_code", sa.String(32), nullable=False),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("description", sa.Text, nullable=False, server_default=""),
        sa.Column("order_index", sa.Integer, nullable=False),
        sa.Column("status", sa.String(16), nullable=False, server_default="PENDING"),
    )
    op.create_index("ix_trail_modules_trail_id", "trail_modules", ["trail_id"])

    op.create_table(
        "lessons",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "module_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("trail_modules.id"),
            nullable=False,
        ),
        sa.Column("title", sa.String(500), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("order_index", sa.Integer, nullable=False),
        sa.Column("duration_minutes", sa.Integer, nullable=False, server_default="15"),
        sa.Column("content", sa.Text, nullable=False, server_default="{}"),
        sa.Column(
            "is_placeholder", sa.Boolean, nullable=False, server_default=sa.true()
        ),
        sa.Column("descriptor_code", sa.String(64), nullable=True),
        _ts("completed_at"),
        sa.Column("score", sa.Numeric(5, 2), nullable=True),
        sa.Column("time_spent_seconds", sa.Integer, nullable=False, server_default="0"),
    )
    op.create_index("ix_lessons_module_id", "lessons", ["module_id"])

    op.create_table(
        "trail_progress",
        sa.Column(
            "trail_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("trails.id"),
            primary_key=True,
        ),
        sa.Column("total_lessons", sa.Integer, nullable=False, server_default="0"),
        sa.Column("lessons_completed", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "progress_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"
        ),
        sa.Column("average_score", sa.Numeric(5, 2), nullable=True),
        sa.Column("time_spent_minutes", sa.Integer, nullable=False, server_default="0"),
        _ts("last_activity_at"),
        _ts("updated_at"),
    )

    op.create_table(
        "trail_generation_jobs",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "trail_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("trails.id"),
            nullable=False,
        ),
        sa.Column("student_id", sa.String(255), nullable=False),
        sa.Column("status", sa.String(16), nullable=False),
        sa.Column("job_type", sa.String(32), nullable=False),
        sa.Column("attempt_count", sa.Integer, nullable=False, server_default="1"),
        sa.Column("max_attempts", sa.Integer, nullable=False, server_default="3"),
        sa.Column("last_error", sa.Text, nullable=True),
        sa.Column("worker_id", sa.String(255), nullable=True),
        _ts("queued_at", nullable=False),
        _ts("started_at"),
        _ts("completed_at"),
        _ts("failed_at"),
        sa.Column("processing_time_ms", sa.Integer, nullable=True),
    )
    op.create_index(
        "ix_trail_generation_jobs_trail_id", "trail_generation_jobs", ["trail_id"]
    )


def downgrade() -> None:
    op.drop_table("trail_generation_jobs")
    op.drop_table("trail_progress")
    op.drop_table("lessons")
    op.drop_table("trail_modules")
    op.drop_index("uq_trails_active_student_language", table_name="trails")
    op.drop_table("trails")
    op.drop_table("trail_blueprints")
    op.drop_table("descriptors")
    op.drop_table("level_competencies")
    op.drop_table("competencies")
    op.drop_table("levels")
    op.drop_table("languages")
