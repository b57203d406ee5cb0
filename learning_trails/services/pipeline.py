"""Wiring for the trail generation pipeline.

build_pipeline() assembles repos, queue, cache, content generator and the
services on top of them.  The module-level `pipeline` is what the API and
the worker process use; tests build their own with in-memory pieces and
swap it in.
"""

from __future__ import annotations

import asyncio
import functools
import logging
from collections.abc import Callable
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from learning_trails.core.config import SETTINGS, Settings
from learning_trails.db.engine import async_session_factory
from learning_trails.repos.blueprint_repo import BlueprintRepo, InMemoryBlueprintRepo
from learning_trails.repos.curriculum_repo import (
    CurriculumRepo,
    seeded_curriculum_repo,
)
from learning_trails.repos.job_repo import InMemoryJobRepo, JobRepo
from learning_trails.repos.pg_blueprint_repo import PgBlueprintRepo
from learning_trails.repos.pg_curriculum_repo import PgCurriculumRepo
from learning_trails.repos.pg_job_repo import PgJobRepo
from learning_trails.repos.pg_progress_repo import PgProgressRepo
from learning_trails.repos.pg_trail_repo import PgTrailRepo
from learning_trails.repos.progress_repo import InMemoryProgressRepo, ProgressRepo
from learning_trails.repos.trail_repo import InMemoryTrailRepo, TrailRepo
from learning_trails.services.blueprint_matcher import BlueprintMatcher
from learning_trails.services.cache import CacheService, InMemoryCacheService
from learning_trails.services.cache import cache_service as default_cache
from learning_trails.services.content_client import (
    ContentGenerator,
    HttpContentGenerator,
    TemplateContentGenerator,
)
from learning_trails.services.generation_dispatcher import GenerationDispatcher
from learning_trails.services.generation_worker import GenerationWorker, Sleep
from learning_trails.services.progress_tracker import ProgressTracker
from learning_trails.services.structure_builder import StructureBuilder
from learning_trails.services.task_queue import InMemoryTaskQueue, TaskQueue
from learning_trails.services.task_queue import task_queue as default_queue
from learning_trails.services.trail_hasher import TrailHasher
from learning_trails.services.trail_service import TrailService

logger = logging.getLogger(__name__)


@dataclass
class Pipeline:
    trails: TrailRepo
    curriculum: CurriculumRepo
    blueprints: BlueprintRepo
    jobs: JobRepo
    progress: ProgressRepo
    queue: TaskQueue
    cache: CacheService
    generator: ContentGenerator
    tracker: ProgressTracker
    dispatcher: GenerationDispatcher
    worker: GenerationWorker
    service: TrailService

    async def aclose(self) -> None:
        await self.generator.aclose()


def _default_generator(settings: Settings) -> ContentGenerator:
    if settings.content_api_url:
        return HttpContentGenerator(
            settings.content_api_url,
            api_key=settings.content_api_key,
            timeout=settings.content_api_timeout,
        )
    logger.info("No CONTENT_API_URL configured, using template lesson content")
    return TemplateContentGenerator()


def build_pipeline(
    settings: Settings,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    queue: TaskQueue | None = None,
    cache: CacheService | None = None,
    generator: ContentGenerator | None = None,
    curriculum: CurriculumRepo | None = None,
    blueprints: BlueprintRepo | None = None,
    hasher: TrailHasher | None = None,
    sleep: Sleep = asyncio.sleep,
    clock: Callable[[], float] | None = None,
) -> Pipeline:
    """Assemble the pipeline.  Postgres repos when a session factory is
    given, in-memory repos (with seeded curriculum) otherwise."""
    if session_factory is not None:
        trails: TrailRepo = PgTrailRepo(session_factory)
        jobs: JobRepo = PgJobRepo(session_factory)
        progress: ProgressRepo = PgProgressRepo(session_factory)
        curriculum = curriculum or PgCurriculumRepo(
            session_factory, version=settings.curriculum_version
        )
        blueprints = blueprints or PgBlueprintRepo(session_factory)
    else:
        trails = InMemoryTrailRepo()
        jobs = InMemoryJobRepo()
        progress = InMemoryProgressRepo()
        curriculum = curriculum or seeded_curriculum_repo(settings.curriculum_version)
        blueprints = blueprints or InMemoryBlueprintRepo()

    if queue is None:
        queue = InMemoryTaskQueue()
    if cache is None:
        cache = InMemoryCacheService()
    if generator is None:
        generator = _default_generator(settings)

    tracker = ProgressTracker(
        trails, progress, cache, cache_ttl_seconds=settings.progress_cache_ttl
    )
    dispatcher = GenerationDispatcher(
        queue,
        jobs,
        max_attempts=settings.generation_max_attempts,
        retry_delay_seconds=settings.job_retry_delay_seconds,
    )
    worker_kwargs = {} if clock is None else {"clock": clock}
    worker = GenerationWorker(
        trails,
        tracker,
        dispatcher,
        generator,
        worker_id=settings.worker_id,
        lesson_max_attempts=settings.lesson_max_attempts,
        backoff_seconds=settings.lesson_backoff_seconds,
        sleep=sleep,
        **worker_kwargs,
    )
    service = TrailService(
        trails=trails,
        curriculum=curriculum,
        jobs=jobs,
        hasher=hasher or TrailHasher(),
        matcher=BlueprintMatcher(blueprints),
        builder=StructureBuilder(curriculum, trails),
        tracker=tracker,
        dispatcher=dispatcher,
        drain=(
            functools.partial(worker.drain, queue)
            if settings.inline_generation
            else None
        ),
        max_active_trails=settings.max_active_trails,
        default_level_code=settings.default_level_code,
    )
    return Pipeline(
        trails=trails,
        curriculum=curriculum,
        blueprints=blueprints,
        jobs=jobs,
        progress=progress,
        queue=queue,
        cache=cache,
        generator=generator,
        tracker=tracker,
        dispatcher=dispatcher,
        worker=worker,
        service=service,
    )


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

pipeline = build_pipeline(
    SETTINGS,
    session_factory=async_session_factory,
    queue=default_queue,
    cache=default_cache,
)
