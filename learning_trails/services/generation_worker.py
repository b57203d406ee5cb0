"""The single driver of lesson content generation.

GenerationWorker.process() is the only code that calls the content
generator.  The worker process (learning_trails/worker.py) feeds it from
the generation queue; in inline mode TrailService calls drain() right
after publishing, which runs the same code inside the API process.

Per request:
  1. skip trails that are READY (redelivered message) or ARCHIVED; a
     READY trail whose job is still open only gets step 4 finished
  2. mark the job PROCESSING, notify "started"
  3. module by module, lesson by lesson: generate content with up to
     `lesson_max_attempts` tries and attempt × backoff seconds between
     them; when every try fails, store fallback content and move on.
     Each finished module goes READY and is announced.
  4. set the estimated duration, flip the trail READY, recompute
     progress, notify "completed", close the job
  5. anything escaping 1-4 is a job-level failure: retried through the
     dispatcher while attempts remain, otherwise the job is FAILED and
     the trail stays PARTIAL with whatever was already generated
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from collections.abc import Awaitable, Callable
from decimal import ROUND_HALF_UP, Decimal

from learning_trails.core.metrics import (
    GENERATION_DURATION,
    GENERATION_JOBS,
    LESSON_GENERATION_ATTEMPTS,
)
from learning_trails.models.messages import GenerationRequest
from learning_trails.models.trail import (
    Lesson,
    ModuleStatus,
    TrailStatus,
)
from learning_trails.repos.trail_repo import TrailRepo
from learning_trails.services.content_client import ContentGenerator
from learning_trails.services.errors import (
    InvalidTrailTransitionError,
    TrailNotFoundError,
)
from learning_trails.services.generation_dispatcher import (
    GENERATION_QUEUE,
    GenerationDispatcher,
)
from learning_trails.services.progress_tracker import ProgressTracker
from learning_trails.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[object]]

_ONE_PLACE = Decimal("0.1")


def fallback_content(lesson: Lesson) -> str:
    """Deterministic stand-in used when the generator keeps failing."""
    return json.dumps(
        {
            "type": lesson.type.value,
            "title": lesson.title,
            "generated": False,
            "message": "Content for this lesson is being prepared.",
        }
    )


def estimated_hours(total_minutes: int) -> Decimal:
    return (Decimal(total_minutes) / 60).quantize(_ONE_PLACE, rounding=ROUND_HALF_UP)


class GenerationWorker:
    def __init__(
        self,
        trails: TrailRepo,
        tracker: ProgressTracker,
        dispatcher: GenerationDispatcher,
        generator: ContentGenerator,
        *,
        worker_id: str,
        lesson_max_attempts: int = 3,
        backoff_seconds: float = 2.0,
        sleep: Sleep = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._trails = trails
        self._tracker = tracker
        self._dispatcher = dispatcher
        self._generator = generator
        self._worker_id = worker_id
        self._lesson_max_attempts = lesson_max_attempts
        self._backoff = backoff_seconds
        self._sleep = sleep
        self._clock = clock

    async def handle(self, payload: dict) -> str:
        """Queue handler: decode the message and process it."""
        return await self.process(GenerationRequest.model_validate(payload))

    async def process(self, request: GenerationRequest) -> str:
        """Run one generation request.

        Returns "completed", "discarded", "retried" or "failed".
        """
        try:
            return await self._generate(request)
        except Exception as e:
            error = str(e) or type(e).__name__
            logger.exception(
                "Generation of trail %s failed on attempt %d/%d",
                request.trail_id,
                request.attempt_number,
                request.max_attempts,
                extra=self._log_context(request),
            )
            if await self._dispatcher.retry(request, error):
                return "retried"
            await self._dispatcher.mark_failed(request.trail_id, error)
            GENERATION_JOBS.labels(result="failed").inc()
            return "failed"

    async def drain(self, queue: TaskQueue) -> int:
        """Process generation messages until the queue is empty, waiting
        out delayed retries.  Used for inline (single-process) mode."""
        processed = 0
        while True:
            task = await queue.dequeue(GENERATION_QUEUE, timeout=0)
            if task is None:
                wait = await queue.next_delay(GENERATION_QUEUE)
                if wait is None:
                    return processed
                await self._sleep(wait)
                continue
            try:
                await self.handle(task.payload)
            finally:
                await queue.ack(task)
            processed += 1

    async def _generate(self, request: GenerationRequest) -> str:
        trail = await self._trails.get(request.trail_id)
        if trail is None:
            raise TrailNotFoundError(request.trail_id)
        if (
            trail.status is TrailStatus.READY
            and await self._dispatcher.active_job(trail.id) is not None
        ):
            return await self._finish(request, self._clock())
        if trail.status in (TrailStatus.READY, TrailStatus.ARCHIVED):
            if trail.status is TrailStatus.ARCHIVED:
                await self._dispatcher.cancel(trail.id)
            logger.info(
                "Discarding request for %s trail %s",
                trail.status.value,
                trail.id,
                extra=self._log_context(request),
            )
            GENERATION_JOBS.labels(result="discarded").inc()
            return "discarded"

        started = self._clock()
        await self._dispatcher.mark_processing(trail.id, self._worker_id)
        await self._dispatcher.notify_started(request)

        modules = await self._trails.list_modules(trail.id)
        lessons_by_module = {
            m.id: await self._trails.list_module_lessons(m.id) for m in modules
        }
        total_lessons = sum(len(v) for v in lessons_by_module.values())
        lessons_done = 0
        total_minutes = 0

        for position, module in enumerate(modules, start=1):
            for lesson in lessons_by_module[module.id]:
                if lesson.is_placeholder:
                    await self._fill_lesson(lesson, request)
                total_minutes += lesson.duration_minutes
                lessons_done += 1
            if module.status is not ModuleStatus.READY:
                await self._trails.set_module_status(module.id, ModuleStatus.READY)
            await self._dispatcher.notify_module_generated(
                request,
                modules_generated=position,
                total_modules=len(modules),
                lessons_generated=lessons_done,
                total_lessons=total_lessons,
            )

        ready = await self._trails.transition(
            trail.id,
            {TrailStatus.PARTIAL},
            TrailStatus.READY,
            estimated_duration_hours=estimated_hours(total_minutes),
        )
        if ready is None:
            current = await self._trails.get(trail.id)
            if current is not None and current.status is TrailStatus.ARCHIVED:
                logger.info(
                    "Trail %s was archived during generation",
                    trail.id,
                    extra=self._log_context(request),
                )
                GENERATION_JOBS.labels(result="discarded").inc()
                return "discarded"
            raise InvalidTrailTransitionError(
                trail.id, current.status if current else None, TrailStatus.READY
            )

        return await self._finish(
            request, started, total_modules=len(modules), total_lessons=total_lessons
        )

    async def _finish(
        self,
        request: GenerationRequest,
        started: float,
        *,
        total_modules: int | None = None,
        total_lessons: int | None = None,
    ) -> str:
        """Close out a READY trail: progress, notification, job record.

        Also reached from a redelivered request when the trail went READY
        but a previous attempt failed before its job was closed.
        """
        trail_id = request.trail_id
        if total_modules is None or total_lessons is None:
            total_modules = len(await self._trails.list_modules(trail_id))
            total_lessons = len(await self._trails.list_lessons(trail_id))
        await self._tracker.recalculate(trail_id)
        elapsed = self._clock() - started
        await self._dispatcher.notify_completed(
            request, total_modules=total_modules, total_lessons=total_lessons
        )
        await self._dispatcher.mark_completed(trail_id, int(elapsed * 1000))
        GENERATION_DURATION.observe(elapsed)
        GENERATION_JOBS.labels(result="completed").inc()
        logger.info(
            "Trail %s READY: %d modules, %d lessons in %.1fs",
            trail_id,
            total_modules,
            total_lessons,
            elapsed,
            extra=self._log_context(request),
        )
        return "completed"

    async def _fill_lesson(self, lesson: Lesson, request: GenerationRequest) -> bool:
        """Generate one lesson's content. Never raises for generator errors."""
        for attempt in range(1, self._lesson_max_attempts + 1):
            try:
                content = await self._generator.generate(
                    lesson_title=lesson.title,
                    lesson_type=lesson.type,
                    student_id=request.student_id,
                    language_code=request.language_code,
                    level_code=request.level_code,
                )
            except Exception as e:
                LESSON_GENERATION_ATTEMPTS.labels(result="error").inc()
                logger.warning(
                    "Lesson %s attempt %d/%d failed: %s",
                    lesson.id,
                    attempt,
                    self._lesson_max_attempts,
                    e,
                    extra=self._log_context(request),
                )
                if attempt < self._lesson_max_attempts:
                    await self._sleep(attempt * self._backoff)
                continue

            LESSON_GENERATION_ATTEMPTS.labels(result="success").inc()
            await self._trails.set_lesson_content(
                lesson.id, content, is_placeholder=False
            )
            return True

        LESSON_GENERATION_ATTEMPTS.labels(result="fallback").inc()
        await self._trails.set_lesson_content(
            lesson.id, fallback_content(lesson), is_placeholder=True
        )
        return False

    def _log_context(self, request: GenerationRequest) -> dict[str, object]:
        return {
            "trail_id": str(request.trail_id),
            "attempt": request.attempt_number,
            "worker_id": self._worker_id,
        }
