"""Health and readiness endpoints.

  /health  liveness.  Always 200 while the process can answer; the body
           reports per-dependency status and the generation backlog.
  /ready   readiness.  503 when a configured database or Redis is
           unreachable, so the load balancer stops routing here without
           the container being restarted.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response
from sqlalchemy import text

from learning_trails.core.metrics import QUEUE_DEPTH
from learning_trails.db.engine import engine
from learning_trails.db.redis import redis_pool
from learning_trails.services import pipeline
from learning_trails.services.generation_dispatcher import GENERATION_QUEUE

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


async def _check_redis() -> str:
    if redis_pool is None:
        return "not_configured"
    try:
        await redis_pool.ping()  # type: ignore[misc]
    except Exception:
        logger.warning("Redis health check failed", exc_info=True)
        return "degraded"
    return "ok"


async def _check_database() -> str:
    if engine is None:
        return "not_configured"
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception:
        logger.warning("Database health check failed", exc_info=True)
        return "degraded"
    return "ok"


@router.get("/health")
async def health() -> dict:
    """Liveness plus dependency status.

    Returns 200 even when degraded; the status field carries the verdict.
    """
    checks = {
        "redis": await _check_redis(),
        "database": await _check_database(),
    }
    overall = "degraded" if "degraded" in checks.values() else "ok"

    depth = await pipeline.pipeline.queue.queue_length(GENERATION_QUEUE)
    QUEUE_DEPTH.labels(queue_name=GENERATION_QUEUE).set(depth)

    return {
        "status": overall,
        "checks": checks,
        "generation_queue_depth": depth,
    }


@router.get("/ready")
async def ready() -> Response:
    """Readiness probe.  In-memory fallbacks only apply when a backing
    service is not configured at all; a configured one must answer."""
    for check in (_check_database, _check_redis):
        if await check() == "degraded":
            return Response(status_code=503)
    return Response(status_code=200)
