from __future__ import annotations

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from learning_trails.api.health import router as health_router
from learning_trails.api.metrics_endpoint import router as metrics_router
from learning_trails.api.trails import router as trails_router
from learning_trails.core.config import SETTINGS
from learning_trails.core.logging import setup_logging
from learning_trails.db.engine import lifespan_db
from learning_trails.db.redis import lifespan_redis
from learning_trails.middleware.metrics import MetricsMiddleware
from learning_trails.middleware.request_context import (
    RequestContextMiddleware,
    install_request_context_filter,
)
from learning_trails.services import pipeline

# Configure logging before anything else runs.
setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
install_request_context_filter()

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    # Nested so teardown runs in reverse order even if one fails
    async with lifespan_db():
        async with lifespan_redis():
            try:
                yield
            finally:
                await pipeline.pipeline.aclose()


app = FastAPI(
    title="learning-trails",
    lifespan=lifespan,
    docs_url="/docs" if SETTINGS.is_dev else None,
    redoc_url="/redoc" if SETTINGS.is_dev else None,
)

# Last-added runs first: RequestContext → Metrics → route handler
app.add_middleware(MetricsMiddleware)
app.add_middleware(RequestContextMiddleware)

app.include_router(metrics_router)
app.include_router(health_router)
app.include_router(trails_router)

logger.info(
    "learning-trails started  env=%s generation=%s port=%d docs=%s",
    SETTINGS.app_env,
    SETTINGS.generation_mode,
    SETTINGS.port,
    "on" if SETTINGS.is_dev else "off",
)
