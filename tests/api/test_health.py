from __future__ import annotations

import asyncio

from fastapi.testclient import TestClient

from learning_trails.services.generation_dispatcher import GENERATION_QUEUE
from learning_trails.services.pipeline import Pipeline


def test_health_returns_ok(client: TestClient) -> None:
    resp = client.get("/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    # In tests neither Redis nor Postgres is configured
    assert data["checks"] == {"redis": "not_configured", "database": "not_configured"}
    assert data["generation_queue_depth"] == 0


def test_health_reports_generation_backlog(
    client: TestClient, trail_pipeline: Pipeline
) -> None:
    asyncio.run(trail_pipeline.queue.enqueue(GENERATION_QUEUE, {}))
    asyncio.run(trail_pipeline.queue.enqueue(GENERATION_QUEUE, {}))
    assert client.get("/health").json()["generation_queue_depth"] == 2


def test_ready_returns_200(client: TestClient) -> None:
    resp = client.get("/ready")
    assert resp.status_code == 200
