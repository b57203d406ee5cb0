"""Redis connection management.

Mirrors engine.py: with REDIS_URL set we build one shared connection
pool; without it `redis_pool` is None and the task queue and cache use
their in-memory implementations.

Redis carries two kinds of data here:
  - the generation and notification queues, which must be shared
    between API replicas and worker processes
  - the progress read model cache, which is disposable (TTL-bound)

Trails, lessons and jobs themselves live in Postgres.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

import redis.asyncio as aioredis

from learning_trails.core.config import SETTINGS

logger = logging.getLogger(__name__)

if SETTINGS.redis_url:
    redis_pool: aioredis.Redis | None = aioredis.from_url(  # type: ignore[type-arg]
        SETTINGS.redis_url,
        decode_responses=True,  # return str instead of bytes
        max_connections=20,
    )
else:
    redis_pool = None


@asynccontextmanager
async def lifespan_redis():
    """Startup/shutdown hook for Redis, mirrors lifespan_db()."""
    if redis_pool is None:
        logger.info("No REDIS_URL configured, queue and cache are in-memory")
        yield
        return

    try:
        await redis_pool.ping()  # type: ignore[misc]
        logger.info("Redis connected: %s", SETTINGS.redis_url)
    except Exception:
        logger.exception("Redis connection failed on startup")
        # Keep serving reads; enqueue calls will fail loudly until Redis returns.
        yield
        return

    yield

    await redis_pool.aclose()
    logger.info("Redis connection pool closed")
