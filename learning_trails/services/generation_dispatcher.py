"""Publishes generation requests and progress notifications, and keeps
the persisted job record in step with them.

Job retries are delayed re-submissions onto the generation queue: the
request is published again with a due time of attempt × retry delay, so
no process sits in a sleep waiting for the next attempt.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from uuid import UUID

from learning_trails.core.metrics import GENERATION_JOBS, QUEUE_DEPTH
from learning_trails.models.messages import GenerationRequest, NotificationEvent
from learning_trails.models.trail import (
    JobStatus,
    JobType,
    Trail,
    TrailGenerationJob,
    utcnow,
)
from learning_trails.repos.job_repo import JobRepo
from learning_trails.services.best_effort import BestEffort, best_effort
from learning_trails.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)

GENERATION_QUEUE = "trail.generation"
NOTIFICATION_QUEUE = "trail.notification"


class GenerationDispatcher:
    def __init__(
        self,
        queue: TaskQueue,
        jobs: JobRepo,
        *,
        max_attempts: int = 3,
        retry_delay_seconds: float = 5.0,
    ) -> None:
        self._queue = queue
        self._jobs = jobs
        self._max_attempts = max_attempts
        self._retry_delay = retry_delay_seconds

    async def enqueue(
        self, trail: Trail, job_type: JobType = JobType.FULL_GENERATION
    ) -> TrailGenerationJob:
        """Queue generation for a trail, reusing an already active job."""
        active = await self._jobs.find_active(trail.id)
        if active is not None:
            logger.info(
                "Trail %s already has active job %s",
                trail.id,
                active.id,
                extra={"trail_id": str(trail.id), "job_id": str(active.id)},
            )
            return active

        job = TrailGenerationJob.new(
            trail_id=trail.id,
            student_id=trail.student_id,
            job_type=job_type,
            max_attempts=self._max_attempts,
        )
        await self._jobs.save(job)

        request = GenerationRequest.for_trail(trail, max_attempts=self._max_attempts)
        await self._queue.enqueue(GENERATION_QUEUE, request.model_dump(mode="json"))
        await self._update_depth()
        logger.info(
            "Queued %s job %s for trail %s",
            job_type.value,
            job.id,
            trail.id,
            extra={"trail_id": str(trail.id), "job_id": str(job.id)},
        )
        return job

    async def retry(self, request: GenerationRequest, error: str) -> bool:
        """Re-publish `request` for its next attempt.

        Returns False, after emitting the terminal failure notification,
        when the attempt budget is spent.  Nothing else schedules retries.
        """
        if not request.can_retry:
            logger.error(
                "Trail %s failed after %d attempts: %s",
                request.trail_id,
                request.attempt_number,
                error,
                extra={
                    "trail_id": str(request.trail_id),
                    "attempt": request.attempt_number,
                },
            )
            await self.notify_failed(request, error)
            return False

        next_request = request.retry()
        delay = request.attempt_number * self._retry_delay
        job = await self._jobs.find_active(request.trail_id)
        if job is not None:
            await self._jobs.save(
                replace(
                    job,
                    status=JobStatus.QUEUED,
                    attempt_count=next_request.attempt_number,
                    last_error=error,
                )
            )
        await self._queue.enqueue(
            GENERATION_QUEUE,
            next_request.model_dump(mode="json"),
            delay_seconds=delay,
        )
        GENERATION_JOBS.labels(result="retried").inc()
        logger.warning(
            "Retrying trail %s as attempt %d/%d in %.1fs",
            request.trail_id,
            next_request.attempt_number,
            next_request.max_attempts,
            delay,
            extra={
                "trail_id": str(request.trail_id),
                "attempt": next_request.attempt_number,
            },
        )
        return True

    # --- job record bookkeeping ---

    async def active_job(self, trail_id: UUID) -> TrailGenerationJob | None:
        return await self._jobs.find_active(trail_id)

    async def mark_processing(
        self, trail_id: UUID, worker_id: str
    ) -> TrailGenerationJob | None:
        job = await self._jobs.find_active(trail_id)
        if job is None:
            return None
        job = replace(
            job, status=JobStatus.PROCESSING, worker_id=worker_id, started_at=utcnow()
        )
        await self._jobs.save(job)
        return job

    async def mark_completed(self, trail_id: UUID, elapsed_ms: int) -> None:
        job = await self._jobs.find_active(trail_id)
        if job is None:
            return
        await self._jobs.save(
            replace(
                job,
                status=JobStatus.COMPLETED,
                completed_at=utcnow(),
                processing_time_ms=elapsed_ms,
            )
        )

    async def mark_failed(self, trail_id: UUID, error: str) -> None:
        job = await self._jobs.find_active(trail_id)
        if job is None:
            return
        await self._jobs.save(
            replace(job, status=JobStatus.FAILED, failed_at=utcnow(), last_error=error)
        )

    async def cancel(self, trail_id: UUID) -> TrailGenerationJob | None:
        """Cancel the trail's active job.  A queued message for it is
        discarded by the worker when it sees the archived trail."""
        job = await self._jobs.find_active(trail_id)
        if job is None:
            return None
        job = replace(job, status=JobStatus.CANCELLED)
        await self._jobs.save(job)
        return job

    # --- notifications (best effort) ---

    async def notify_started(self, request: GenerationRequest) -> BestEffort:
        return await self._notify(NotificationEvent.started(request))

    async def notify_module_generated(
        self,
        request: GenerationRequest,
        *,
        modules_generated: int,
        total_modules: int,
        lessons_generated: int,
        total_lessons: int,
    ) -> BestEffort:
        return await self._notify(
            NotificationEvent.module_generated(
                request,
                modules_generated=modules_generated,
                total_modules=total_modules,
                lessons_generated=lessons_generated,
                total_lessons=total_lessons,
            )
        )

    async def notify_completed(
        self, request: GenerationRequest, *, total_modules: int, total_lessons: int
    ) -> BestEffort:
        return await self._notify(
            NotificationEvent.completed(
                request, total_modules=total_modules, total_lessons=total_lessons
            )
        )

    async def notify_failed(self, request: GenerationRequest, error: str) -> BestEffort:
        return await self._notify(NotificationEvent.failed(request, error))

    async def _notify(self, event: NotificationEvent) -> BestEffort:
        return await best_effort(
            f"{event.kind.value} notification",
            self._queue.enqueue(NOTIFICATION_QUEUE, event.model_dump(mode="json")),
            trail_id=str(event.trail_id),
        )

    async def _update_depth(self) -> None:
        QUEUE_DEPTH.labels(queue_name=GENERATION_QUEUE).set(
            await self._queue.queue_length(GENERATION_QUEUE)
        )
