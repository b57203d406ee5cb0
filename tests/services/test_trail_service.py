from __future__ import annotations

import asyncio
import json
from decimal import Decimal

import pytest
from prometheus_client import REGISTRY

from learning_trails.models.curriculum import Blueprint
from learning_trails.models.trail import (
    JobType,
    ModuleStatus,
    RefreshReason,
    TrailStatus,
)
from learning_trails.services.errors import (
    ActiveTrailExistsError,
    InvalidTrailTransitionError,
    LanguageNotFoundError,
    LevelNotFoundError,
    TrailLimitExceededError,
)
from learning_trails.services.pipeline import Pipeline
from learning_trails.services.progress_tracker import cache_key
from tests.conftest import (
    ScriptedGenerator,
    SharedHasher,
    make_pipeline,
    two_module_curriculum,
)


def _created(source: str) -> float:
    return (
        REGISTRY.get_sample_value("trails_created_total", labels={"source": source})
        or 0.0
    )


def _pipeline(**kwargs) -> Pipeline:
    kwargs.setdefault("curriculum", two_module_curriculum())
    return make_pipeline(**kwargs)


def run(coro):
    return asyncio.run(coro)


# ---- creation ----


def test_get_or_create_is_idempotent() -> None:
    p = _pipeline()
    first = run(p.service.get_or_create("s1", "en"))
    second = run(p.service.get_or_create("s1", "en"))
    assert first.id == second.id
    assert len(run(p.service.list_active("s1"))) == 1


def test_create_rejects_second_active_trail_for_language() -> None:
    p = _pipeline()
    run(p.service.create("s1", "en"))
    with pytest.raises(ActiveTrailExistsError):
        run(p.service.create("s1", "en"))


def test_create_enforces_active_trail_limit() -> None:
    p = make_pipeline(max_active_trails=2)
    run(p.service.create("s1", "en"))
    run(p.service.create("s1", "es"))
    with pytest.raises(TrailLimitExceededError):
        run(p.service.create("s1", "fr"))
    # other students are unaffected
    run(p.service.create("s2", "fr"))


def test_create_rejects_unknown_language_and_level() -> None:
    p = _pipeline()
    with pytest.raises(LanguageNotFoundError):
        run(p.service.create("s1", "xx"))
    with pytest.raises(LevelNotFoundError):
        run(p.service.create("s1", "en", level_code="Z9"))


def test_create_records_inputs_on_the_trail() -> None:
    p = _pipeline()
    trail = run(p.service.create("s1", "en", {"pace": "fast", "focus": "travel"}))
    assert trail.level_code == "A1"
    assert trail.curriculum_version == "1.0.0"
    assert trail.preferences_json == '{"focus":"travel","pace":"fast"}'
    assert len(trail.content_hash) == 40


def test_empty_preferences_are_stored_as_none() -> None:
    p = _pipeline()
    assert run(p.service.create("s1", "en", {})).preferences_json is None


def test_structure_failure_archives_the_trail(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    p = _pipeline()

    async def boom(modules):
        raise RuntimeError("insert failed")

    monkeypatch.setattr(p.trails, "add_modules", boom)
    with pytest.raises(RuntimeError, match="insert failed"):
        run(p.service.create("s1", "en"))

    assert run(p.trails.find_active("s1", "en")) is None
    (trail,) = p.trails._trails.values()
    assert trail.status is TrailStatus.ARCHIVED
    assert trail.archived_at is not None


# ---- content-hash cloning ----


def test_ready_trail_with_same_hash_is_cloned() -> None:
    generator = ScriptedGenerator()
    p = _pipeline(generator=generator, hasher=SharedHasher())
    source = run(p.service.create("a", "en"))
    calls = generator.calls
    cloned_before = _created("cloned")

    clone = run(p.service.create("b", "en"))

    assert generator.calls == calls
    assert _created("cloned") - cloned_before == 1
    assert clone.id != source.id
    assert clone.student_id == "b"
    assert clone.status is TrailStatus.READY
    assert clone.content_hash == source.content_hash
    assert clone.estimated_duration_hours == source.estimated_duration_hours
    assert run(p.jobs.latest(clone.id)) is None

    modules = run(p.service.list_modules(clone.id))
    assert all(mw.module.status is ModuleStatus.READY for mw in modules)
    source_content = [x.content for x in run(p.trails.list_lessons(source.id))]
    clone_lessons = run(p.trails.list_lessons(clone.id))
    assert [x.content for x in clone_lessons] == source_content
    assert all(x.completed_at is None for x in clone_lessons)
    assert run(p.service.get_progress(clone.id)).total_lessons == 2


def test_no_clone_across_students_with_default_hasher() -> None:
    generator = ScriptedGenerator()
    p = _pipeline(generator=generator)
    run(p.service.create("a", "en"))
    calls = generator.calls
    run(p.service.create("b", "en"))
    assert generator.calls == calls * 2


def test_partial_trail_is_not_a_clone_source() -> None:
    p = _pipeline(hasher=SharedHasher(), generation_mode="queue")
    run(p.service.create("a", "en"))
    second = run(p.service.create("b", "en"))
    assert second.status is TrailStatus.PARTIAL


# ---- blueprints ----


def test_matching_blueprint_is_linked_and_counted() -> None:
    p = _pipeline()
    bp = Blueprint.new(
        language_code="en", level_code="A1", name="Starter", is_approved=True
    )
    p.blueprints.add(bp)

    trail = run(p.service.create("s1", "en"))
    assert trail.blueprint_id == bp.id
    assert run(p.blueprints.get(bp.id)).usage_count == 1


# ---- regenerate, refresh, archive ----


def test_force_regenerate_archives_existing_trail() -> None:
    p = _pipeline()
    old = run(p.service.create("s1", "en"))
    new = run(p.service.generate("s1", "en", force_regenerate=True))

    assert new.id != old.id
    assert new.status is TrailStatus.READY
    assert run(p.service.get_trail(old.id)).status is TrailStatus.ARCHIVED


def test_generate_without_force_conflicts() -> None:
    p = _pipeline()
    run(p.service.create("s1", "en"))
    with pytest.raises(ActiveTrailExistsError):
        run(p.service.generate("s1", "en"))


def test_refresh_links_new_trail_to_old_one() -> None:
    p = _pipeline()
    old = run(p.service.create("s1", "en", {"focus": "travel"}))

    new = run(p.service.refresh(old.id, RefreshReason.LEVEL_CHANGE, "A2"))

    assert new.previous_trail_id == old.id
    assert new.refresh_reason is RefreshReason.LEVEL_CHANGE
    assert new.level_code == "A2"
    assert new.preferences_json == '{"focus":"travel"}'
    assert run(p.jobs.latest(new.id)).job_type is JobType.REFRESH
    archived = run(p.service.get_trail(old.id))
    assert archived.status is TrailStatus.ARCHIVED
    assert archived.archived_at is not None


def test_refresh_keeps_level_unless_level_change() -> None:
    p = _pipeline()
    old = run(p.service.create("s1", "en"))
    new = run(p.service.refresh(old.id, RefreshReason.MANUAL_REQUEST, "A2"))
    assert new.level_code == "A1"


def test_refresh_to_unknown_level_leaves_old_trail_active() -> None:
    p = _pipeline()
    old = run(p.service.create("s1", "en"))
    with pytest.raises(LevelNotFoundError):
        run(p.service.refresh(old.id, RefreshReason.LEVEL_CHANGE, "Z9"))
    assert run(p.service.get_trail(old.id)).status is TrailStatus.READY


def test_archive_is_terminal() -> None:
    p = _pipeline()
    trail = run(p.service.create("s1", "en"))
    run(p.service.archive(trail.id))
    with pytest.raises(InvalidTrailTransitionError):
        run(p.service.archive(trail.id))
    assert run(p.service.list_active("s1")) == []


def test_archive_drops_cached_progress() -> None:
    p = _pipeline()
    trail = run(p.service.create("s1", "en"))
    run(p.service.get_progress(trail.id))
    assert run(p.cache.get(cache_key(trail.id))) is not None
    run(p.service.archive(trail.id))
    assert run(p.cache.get(cache_key(trail.id))) is None


# ---- reads and student activity ----


def test_modules_come_back_in_order_with_lessons() -> None:
    p = _pipeline()
    trail = run(p.service.create("s1", "en"))
    modules = run(p.service.list_modules(trail.id))
    assert [mw.module.competency_code for mw in modules] == ["speaking", "grammar"]
    assert [len(mw.lessons) for mw in modules] == [1, 1]
    assert json.loads(modules[0].lessons[0].content)["generated"] is True


def test_lesson_progress_updates_the_read_model() -> None:
    p = _pipeline()
    trail = run(p.service.create("s1", "en"))
    first = run(p.service.next_lesson(trail.id))

    progress = run(
        p.service.update_lesson_progress(
            first.id, completed=True, score=Decimal("90"), time_spent_seconds=120
        )
    )

    assert progress.lessons_completed == 1
    assert progress.progress_percentage == Decimal("50.00")
    assert progress.average_score == Decimal("90.00")
    assert progress.time_spent_minutes == 2
    assert run(p.service.get_progress(trail.id)) == progress
    assert run(p.service.next_lesson(trail.id)).id != first.id


def test_completion_time_is_kept_from_first_completion() -> None:
    p = _pipeline()
    trail = run(p.service.create("s1", "en"))
    lesson = run(p.service.next_lesson(trail.id))

    run(p.service.update_lesson_progress(lesson.id, completed=True))
    completed_at = run(p.service.get_lesson(lesson.id)).completed_at
    run(
        p.service.update_lesson_progress(
            lesson.id, completed=True, time_spent_seconds=30
        )
    )

    again = run(p.service.get_lesson(lesson.id))
    assert again.completed_at == completed_at
    assert again.time_spent_seconds == 30


def test_next_lesson_is_none_when_all_done() -> None:
    p = _pipeline()
    trail = run(p.service.create("s1", "en"))
    for lesson in run(p.trails.list_lessons(trail.id)):
        run(p.service.update_lesson_progress(lesson.id, completed=True))
    assert run(p.service.next_lesson(trail.id)) is None
    assert run(p.service.get_progress(trail.id)).is_completed is True


def test_lesson_owner_resolves_trail() -> None:
    p = _pipeline()
    trail = run(p.service.create("s1", "en"))
    lesson = run(p.service.next_lesson(trail.id))
    assert run(p.service.lesson_owner(lesson.id)).id == trail.id


def test_generation_status_for_ready_trail() -> None:
    p = _pipeline()
    trail = run(p.service.create("s1", "en"))
    status = run(p.service.generation_status(trail.id))
    assert status.current_step == "completed"
    assert status.progress_percentage == 100
    assert status.modules_generated == status.total_modules == 2
    assert status.lessons_generated == status.total_lessons == 2
