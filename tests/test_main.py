from __future__ import annotations

from fastapi.testclient import TestClient

from learning_trails.main import app


def test_app_mounts_trail_routes() -> None:
    paths = {getattr(route, "path", None) for route in app.routes}
    assert "/v1/trails" in paths
    assert "/v1/trails/{trail_id}/generation" in paths
    assert "/v1/trails/lessons/{lesson_id}/progress" in paths
    assert {"/health", "/ready", "/metrics"} <= paths


def test_lifespan_starts_and_stops_with_in_memory_backends() -> None:
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
