from __future__ import annotations

import asyncio
from decimal import Decimal
from uuid import uuid4

from learning_trails.models.curriculum import Blueprint
from learning_trails.repos.blueprint_repo import InMemoryBlueprintRepo, json_contains
from learning_trails.services.blueprint_matcher import BlueprintMatcher


def _repo() -> tuple[InMemoryBlueprintRepo, dict[str, Blueprint]]:
    repo = InMemoryBlueprintRepo()
    bps = {
        "travel": Blueprint.new(
            language_code="en",
            level_code="A1",
            name="Travel",
            preferences_pattern={"focus": "travel", "pace": "fast"},
            is_approved=True,
            usage_count=1,
        ),
        "business": Blueprint.new(
            language_code="en",
            level_code="A1",
            name="Business",
            preferences_pattern={"focus": "business"},
            is_approved=True,
            usage_count=10,
        ),
        "draft": Blueprint.new(
            language_code="en",
            level_code="A1",
            name="Unapproved travel",
            preferences_pattern={"focus": "travel"},
            usage_count=100,
        ),
    }
    for bp in bps.values():
        repo.add(bp)
    return repo, bps


def test_json_contains_objects_arrays_and_scalars() -> None:
    assert json_contains({"a": 1, "b": {"c": 2, "d": 3}}, {"b": {"c": 2}})
    assert not json_contains({"a": 1}, {"a": 2})
    assert json_contains({"tags": ["x", "y", "z"]}, {"tags": ["z", "x"]})
    assert not json_contains({"tags": ["x"]}, {"tags": ["x", "q"]})
    assert json_contains(["x", "y"], "y")
    assert json_contains({"a": 1}, {})


def test_preference_match_wins_over_usage() -> None:
    repo, bps = _repo()
    found = asyncio.run(
        BlueprintMatcher(repo).find_matching("en", "A1", '{"focus":"travel"}')
    )
    assert found == bps["travel"]


def test_falls_back_to_most_used_approved() -> None:
    repo, bps = _repo()
    found = asyncio.run(
        BlueprintMatcher(repo).find_matching("en", "A1", '{"focus":"medicine"}')
    )
    assert found == bps["business"]


def test_no_preferences_matches_every_approved_pattern() -> None:
    repo, bps = _repo()
    found = asyncio.run(BlueprintMatcher(repo).find_matching("en", "A1", None))
    assert found == bps["business"]


def test_no_blueprint_for_other_language() -> None:
    repo, _ = _repo()
    assert asyncio.run(BlueprintMatcher(repo).find_matching("fr", "A1", None)) is None


def test_ties_broken_by_completion_rate_nulls_last() -> None:
    repo = InMemoryBlueprintRepo()
    unrated = Blueprint.new(
        language_code="en", level_code="A1", name="u", is_approved=True, usage_count=5
    )
    rated = Blueprint.new(
        language_code="en",
        level_code="A1",
        name="r",
        is_approved=True,
        usage_count=5,
        avg_completion_rate=Decimal("0.40"),
    )
    repo.add(unrated)
    repo.add(rated)
    assert asyncio.run(repo.most_used_approved("en", "A1")) == rated


def test_record_usage_increments_count() -> None:
    repo, bps = _repo()
    outcome = asyncio.run(BlueprintMatcher(repo).record_usage(bps["travel"].id))
    assert outcome.ok
    assert asyncio.run(repo.get(bps["travel"].id)).usage_count == 2


def test_record_usage_failure_is_swallowed_into_outcome() -> None:
    repo, _ = _repo()
    outcome = asyncio.run(BlueprintMatcher(repo).record_usage(uuid4()))
    assert outcome.ok is False
    assert isinstance(outcome.error, KeyError)
