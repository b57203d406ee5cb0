"""Background task queue on Redis lists, with an in-memory twin.

The API publishes generation requests to "trail.generation"; the worker
process consumes them.  Notifications go to "trail.notification" for a
presentation-layer consumer outside this service.

PRODUCER / CONSUMER
-------------------
  Producer:  LPUSH onto tasks:<queue>          (head)
  Consumer:  BLMOVE tail of tasks:<queue> → head of
             tasks:<queue>:processing:<consumer_id>
  Done:      LREM the exact payload from the processing list (ack)

LPUSH at the head and taking from the tail keeps FIFO order.  Moving the
message into a per-consumer processing list instead of popping it gives
AT-LEAST-ONCE delivery: if the worker dies mid-trail, the message is
still in its processing list.  The worker's idempotency guard (READY
trails are skipped) makes the redelivery harmless.

CONSUMER LIVENESS
-----------------
  Heartbeat: SET tasks:consumers:<consumer_id> EX <ttl>, refreshed by a
             running worker well inside the TTL
  Recover:   every tasks:<queue>:processing:* list whose consumer has no
             live heartbeat is moved back onto tasks:<queue>

Consumer ids include the pid, so a restarted worker never owns its
predecessor's list; it reclaims it once the old heartbeat has expired,
as does any other live worker.

DELAYED DELIVERY
----------------
Job retries are re-submitted with a delay instead of sleeping.  Delayed
messages wait in a sorted set tasks:<queue>:delayed scored by due time;
every dequeue first promotes the ones whose time has come.  ZREM decides
which consumer wins a promotion when several race for it.
"""

from __future__ import annotations

import json
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

from learning_trails.core.config import SETTINGS
from learning_trails.db.redis import redis_pool

Clock = Callable[[], float]

HEARTBEAT_TTL_SECONDS = 30


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of background work.

    id:      Unique identifier for tracking and logging.
    queue:   Queue name, e.g. "trail.generation".
    payload: JSON-serialisable message body.
    receipt: Opaque handle the queue needs to ack this delivery.
    """

    id: str
    queue: str
    payload: dict
    receipt: str | None = field(default=None, compare=False)


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(
        self, queue: str, payload: dict, *, delay_seconds: float = 0.0
    ) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def ack(self, task: Task) -> None: ...
    async def queue_length(self, queue: str) -> int: ...

    async def heartbeat(self, ttl_seconds: int = HEARTBEAT_TTL_SECONDS) -> None:
        """Mark this consumer alive for `ttl_seconds`."""
        ...

    async def recover(self, queue: str, *, include_own: bool = False) -> int:
        """Return unacknowledged deliveries of dead consumers to `queue`,
        plus this consumer's own when `include_own` is set (startup).
        Returns how many messages were moved."""
        ...

    async def next_delay(self, queue: str) -> float | None:
        """Seconds until the earliest delayed task is due (0 if already
        due), or None when nothing is delayed."""
        ...


class InMemoryTaskQueue:
    """In-memory task queue for tests and single-process mode."""

    def __init__(self, clock: Clock = time.monotonic) -> None:
        self._clock = clock
        self._queues: dict[str, list[Task]] = {}
        self._delayed: dict[str, list[tuple[float, Task]]] = {}
        self._in_flight: dict[str, Task] = {}

    async def enqueue(
        self, queue: str, payload: dict, *, delay_seconds: float = 0.0
    ) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        if delay_seconds > 0:
            due = self._clock() + delay_seconds
            self._delayed.setdefault(queue, []).append((due, task))
        else:
            self._queues.setdefault(queue, []).append(task)
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        self._promote_due(queue)
        tasks = self._queues.get(queue, [])
        if not tasks:
            return None
        task = tasks.pop(0)  # FIFO: remove from front
        self._in_flight[task.id] = task
        return task

    async def ack(self, task: Task) -> None:
        self._in_flight.pop(task.id, None)

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, []))

    async def heartbeat(self, ttl_seconds: int = HEARTBEAT_TTL_SECONDS) -> None:
        return None

    async def recover(self, queue: str, *, include_own: bool = False) -> int:
        # A single process is the only consumer, so only its own deliveries
        # can be outstanding
        if not include_own:
            return 0
        stranded = [t for t in self._in_flight.values() if t.queue == queue]
        for task in stranded:
            del self._in_flight[task.id]
        self._queues[queue] = stranded + self._queues.get(queue, [])
        return len(stranded)

    async def next_delay(self, queue: str) -> float | None:
        delayed = self._delayed.get(queue)
        if not delayed:
            return None
        return max(0.0, min(due for due, _ in delayed) - self._clock())

    def _promote_due(self, queue: str) -> None:
        delayed = self._delayed.get(queue)
        if not delayed:
            return
        now = self._clock()
        due = sorted((d for d in delayed if d[0] <= now), key=lambda d: d[0])
        self._delayed[queue] = [d for d in delayed if d[0] > now]
        self._queues.setdefault(queue, []).extend(task for _, task in due)


class RedisTaskQueue:
    """Redis-backed task queue: LPUSH / BLMOVE / LREM plus a delay zset."""

    _PREFIX = "tasks:"

    def __init__(
        self, redis_client, *, consumer_id: str = "default", clock: Clock = time.time
    ) -> None:
        self._redis = redis_client
        self._consumer_id = consumer_id
        self._clock = clock

    def _key(self, queue: str) -> str:
        return f"{self._PREFIX}{queue}"

    def _processing_prefix(self, queue: str) -> str:
        return f"{self._PREFIX}{queue}:processing:"

    def _processing_key(self, queue: str) -> str:
        return f"{self._processing_prefix(queue)}{self._consumer_id}"

    def _heartbeat_key(self, consumer_id: str) -> str:
        return f"{self._PREFIX}consumers:{consumer_id}"

    def _delayed_key(self, queue: str) -> str:
        return f"{self._PREFIX}{queue}:delayed"

    async def enqueue(
        self, queue: str, payload: dict, *, delay_seconds: float = 0.0
    ) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        task_json = json.dumps({"id": task.id, "queue": task.queue, "payload": payload})
        if delay_seconds > 0:
            due = self._clock() + delay_seconds
            await self._redis.zadd(self._delayed_key(queue), {task_json: due})
        else:
            await self._redis.lpush(self._key(queue), task_json)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        await self._promote_due(queue)
        # BLMOVE blocks up to `timeout` seconds; None means nothing arrived
        task_json = await self._redis.blmove(
            self._key(queue),
            self._processing_key(queue),
            timeout,
            src="RIGHT",
            dest="LEFT",
        )
        if task_json is None:
            return None
        data = json.loads(task_json)
        return Task(**data, receipt=task_json)

    async def ack(self, task: Task) -> None:
        if task.receipt is not None:
            await self._redis.lrem(self._processing_key(task.queue), 1, task.receipt)

    async def heartbeat(self, ttl_seconds: int = HEARTBEAT_TTL_SECONDS) -> None:
        await self._redis.set(
            self._heartbeat_key(self._consumer_id), str(self._clock()), ex=ttl_seconds
        )

    async def recover(self, queue: str, *, include_own: bool = False) -> int:
        prefix = self._processing_prefix(queue)
        moved = 0
        cursor = 0
        while True:
            cursor, keys = await self._redis.scan(
                cursor, match=f"{prefix}*", count=100
            )
            for key in keys:
                consumer_id = key[len(prefix) :]
                if consumer_id == self._consumer_id:
                    if not include_own:
                        continue
                elif await self._redis.exists(self._heartbeat_key(consumer_id)):
                    continue
                # Newest first onto the consuming end, so the oldest is next out
                while await self._redis.lmove(
                    key, self._key(queue), src="LEFT", dest="RIGHT"
                ):
                    moved += 1
            if cursor == 0:
                return moved

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(self._key(queue))

    async def next_delay(self, queue: str) -> float | None:
        first = await self._redis.zrange(
            self._delayed_key(queue), 0, 0, withscores=True
        )
        if not first:
            return None
        _, due = first[0]
        return max(0.0, float(due) - self._clock())

    async def _promote_due(self, queue: str) -> None:
        due = await self._redis.zrangebyscore(
            self._delayed_key(queue), 0, self._clock()
        )
        for task_json in due:
            # Only the consumer whose ZREM succeeds pushes the message
            if await self._redis.zrem(self._delayed_key(queue), task_json):
                await self._redis.lpush(self._key(queue), task_json)


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool, consumer_id=SETTINGS.worker_id)
else:
    task_queue = InMemoryTaskQueue()
