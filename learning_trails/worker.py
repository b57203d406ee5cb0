"""Background worker process.

RUN:  python -m learning_trails.worker

Same image as the API, different command:
  api:    uvicorn learning_trails.main:app --host 0.0.0.0 --port 8000
  worker: python -m learning_trails.worker

The loop polls every registered queue, hands each message to its
handler and acknowledges it afterwards.  Up to WORKER_CONCURRENCY
messages run at once; they belong to different trails, and a single
trail's lessons are always generated one after another inside
GenerationWorker.

Delivery is at-least-once.  With Redis, a dequeued message sits in this
worker's processing list until it is acknowledged.  A running worker
refreshes its heartbeat every HEARTBEAT_INTERVAL_SECONDS and, on the
same beat, pushes back the processing lists of workers whose heartbeat
has expired, so messages left by a crash are redelivered whether or not
the crashed worker comes back.  GenerationWorker discards
messages for trails that are already READY or ARCHIVED, so a redelivery
is harmless.

Handler exceptions never stop the loop.  Generation failures are
already turned into retries or a FAILED job by GenerationWorker; what
reaches this loop is logged and the message is acknowledged.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Callable, Coroutine
from typing import Any

from learning_trails.core.config import SETTINGS
from learning_trails.core.logging import setup_logging
from learning_trails.core.metrics import QUEUE_DEPTH
from learning_trails.services import pipeline
from learning_trails.services.generation_dispatcher import GENERATION_QUEUE
from learning_trails.services.task_queue import (
    HEARTBEAT_TTL_SECONDS,
    Task,
    TaskQueue,
)

TaskHandler = Callable[[dict], Coroutine[Any, Any, object]]

IDLE_POLL_SECONDS = 0.5
HEARTBEAT_INTERVAL_SECONDS = HEARTBEAT_TTL_SECONDS / 3

logger = logging.getLogger("learning_trails.worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


@register_handler(GENERATION_QUEUE)
async def handle_generation(payload: dict) -> str:
    return await pipeline.pipeline.worker.handle(payload)


# ---------------------------------------------------------------------------
# Main worker loop
# ---------------------------------------------------------------------------


async def _run_task(
    queue: TaskQueue, task: Task, handler: TaskHandler, slots: asyncio.Semaphore
) -> None:
    try:
        outcome = await handler(task.payload)
        logger.info("Task %s on [%s] finished: %s", task.id, task.queue, outcome)
    except asyncio.CancelledError:
        # Not acked: shutdown mid-task leaves it for redelivery
        raise
    except Exception:
        logger.exception("Task %s on [%s] failed", task.id, task.queue)
        await queue.ack(task)
    else:
        await queue.ack(task)
    finally:
        slots.release()


async def recover_stranded(
    queue: TaskQueue, queues: list[str], *, include_own: bool = False
) -> int:
    """Push unacknowledged deliveries of dead consumers back onto their queues."""
    total = 0
    for name in queues:
        recovered = await queue.recover(name, include_own=include_own)
        if recovered:
            logger.warning("Re-queued %d unacknowledged tasks on [%s]", recovered, name)
        total += recovered
    return total


async def _keep_alive(queue: TaskQueue, queues: list[str]) -> None:
    while True:
        await asyncio.sleep(HEARTBEAT_INTERVAL_SECONDS)
        try:
            await queue.heartbeat()
            await recover_stranded(queue, queues)
        except Exception:
            # Redis hiccup: the next beat tries again
            logger.exception("Worker heartbeat failed")


async def run_worker(queue: TaskQueue | None = None) -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queue = queue if queue is not None else pipeline.pipeline.queue
    queues = list(HANDLERS)
    slots = asyncio.Semaphore(SETTINGS.worker_concurrency)
    running: set[asyncio.Task] = set()

    await queue.heartbeat()
    await recover_stranded(queue, queues, include_own=True)
    keep_alive = asyncio.create_task(_keep_alive(queue, queues))

    logger.info(
        "Worker %s started, queues=%s concurrency=%d",
        SETTINGS.worker_id,
        queues,
        SETTINGS.worker_concurrency,
        extra={"worker_id": SETTINGS.worker_id},
    )

    try:
        while True:
            idle = True
            for name in queues:
                await slots.acquire()
                task = await queue.dequeue(name, timeout=1)
                if task is None:
                    slots.release()
                    continue
                idle = False
                depth = await queue.queue_length(name)
                QUEUE_DEPTH.labels(queue_name=name).set(depth)
                job = asyncio.create_task(
                    _run_task(queue, task, HANDLERS[name], slots)
                )
                running.add(job)
                job.add_done_callback(running.discard)
            if idle:
                # The in-memory queue does not block on dequeue
                await asyncio.sleep(IDLE_POLL_SECONDS)
    finally:
        keep_alive.cancel()
        # Cancels in-flight generations, including their backoff sleeps
        for job in list(running):
            job.cancel()
        await asyncio.gather(keep_alive, *running, return_exceptions=True)
        await pipeline.pipeline.aclose()
        logger.info("Worker %s stopped", SETTINGS.worker_id)


def main() -> None:
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)

    async def _main() -> None:
        loop = asyncio.get_running_loop()
        worker = asyncio.create_task(run_worker())
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, worker.cancel)
        with contextlib.suppress(asyncio.CancelledError):
            await worker

    asyncio.run(_main())


if __name__ == "__main__":
    main()
