from __future__ import annotations

import sys
from collections.abc import Iterator
from dataclasses import replace
from decimal import Decimal
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from learning_trails.core.config import Settings
from learning_trails.main import app
from learning_trails.models.curriculum import (
    Competency,
    Descriptor,
    Language,
    Level,
    WeightedCompetency,
)
from learning_trails.repos.curriculum_repo import (
    CurriculumRepo,
    InMemoryCurriculumRepo,
)
from learning_trails.services import pipeline as pipeline_module
from learning_trails.services import token_service
from learning_trails.services.cache import InMemoryCacheService
from learning_trails.services.content_client import (
    ContentGenerator,
    TemplateContentGenerator,
)
from learning_trails.services.errors import GenerationUnavailableError
from learning_trails.services.pipeline import Pipeline, build_pipeline
from learning_trails.services.task_queue import InMemoryTaskQueue
from learning_trails.services.trail_hasher import TrailHasher

# Ensure repo root is on sys.path so `import learning_trails` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

TEST_SETTINGS = Settings(
    app_env="test",
    log_level="info",
    log_json=False,
    port=8000,
    database_url=None,
    redis_url=None,
    generation_mode="inline",
    worker_id="test-worker",
)


class FakeClock:
    """Monotonic clock whose sleep() just moves time forward."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def make_pipeline(
    *,
    clock: FakeClock | None = None,
    generator: ContentGenerator | None = None,
    curriculum: CurriculumRepo | None = None,
    hasher: TrailHasher | None = None,
    **overrides: object,
) -> Pipeline:
    """In-memory pipeline on a fake clock; `overrides` patch TEST_SETTINGS."""
    clock = clock or FakeClock()
    return build_pipeline(
        replace(TEST_SETTINGS, **overrides),
        queue=InMemoryTaskQueue(clock=clock),
        cache=InMemoryCacheService(clock=clock),
        generator=generator or TemplateContentGenerator(),
        curriculum=curriculum,
        hasher=hasher,
        sleep=clock.sleep,
        clock=clock,
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture(autouse=True)
def trail_pipeline(
    monkeypatch: pytest.MonkeyPatch, clock: FakeClock
) -> Iterator[Pipeline]:
    """Fresh in-memory pipeline per test, swapped in for the API and worker."""
    p = make_pipeline(clock=clock)
    monkeypatch.setattr(pipeline_module, "pipeline", p)
    yield p


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def mint_token(student: str = "student-1", roles: list[str] | None = None) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=student, roles=roles)


def auth(student: str = "student-1") -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(student)}"}


@pytest.fixture
def token() -> str:
    return mint_token()


# ---------------------------------------------------------------------------
# Curriculum and generator fakes
# ---------------------------------------------------------------------------


def two_module_curriculum() -> InMemoryCurriculumRepo:
    """en/A1 with speaking (heavier) and grammar, one core descriptor each."""
    return InMemoryCurriculumRepo(
        languages=[Language("en", "English"), Language("es", "Spanish")],
        levels=[Level("A1", "Beginner", 1), Level("A2", "Elementary", 2)],
        weights={
            level: [
                WeightedCompetency(Competency("speaking", "Speaking"), Decimal("60")),
                WeightedCompetency(Competency("grammar", "Grammar"), Decimal("40")),
            ]
            for level in ("A1", "A2")
        },
        descriptors=[
            Descriptor(f"{level}-SPK-1", level, "speaking", "Introduce yourself")
            for level in ("A1", "A2")
        ]
        + [
            Descriptor(f"{level}-GRM-1", level, "grammar", "Present tense")
            for level in ("A1", "A2")
        ],
    )


class ScriptedGenerator(TemplateContentGenerator):
    """Template generator that fails its first `failures` calls
    (every call when None) and counts them all."""

    def __init__(self, failures: int | None = 0) -> None:
        self.failures = failures
        self.calls = 0

    async def generate(self, **kwargs) -> str:  # type: ignore[override]
        self.calls += 1
        if self.failures is None or self.calls <= self.failures:
            raise GenerationUnavailableError("content generator returned 503")
        return await super().generate(**kwargs)


class SharedHasher(TrailHasher):
    """Ignores the student, so equal inputs from different students clone."""

    def fingerprint(
        self, student_id, language_code, level_code, preferences, curriculum_version
    ) -> str:
        return super().fingerprint(
            "*", language_code, level_code, preferences, curriculum_version
        )
