"""Request id propagation: header echo and log correlation."""

from __future__ import annotations

import logging
import uuid

import pytest
from fastapi.testclient import TestClient

from learning_trails.middleware.request_context import (
    _RequestContextFilter,
    request_id_var,
)


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    resp = client.get("/health")
    uuid.UUID(resp.headers["x-request-id"])


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert resp.headers.get("x-request-id") == "req-123"


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    resp = client.get("/v1/trails/active")  # no token → 401
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_request_summary_is_logged(
    client: TestClient, caplog: pytest.LogCaptureFixture
) -> None:
    with caplog.at_level(logging.INFO, logger="learning_trails.middleware"):
        client.get("/health", headers={"X-Request-ID": "req-log"})

    (record,) = [
        r for r in caplog.records if r.name.endswith("request_context")
    ]
    assert record.getMessage().startswith("GET /health -> 200")
    assert record.status_code == 200
    assert record.path == "/health"


def test_filter_copies_context_value() -> None:
    record = logging.LogRecord("t", logging.INFO, "f.py", 1, "m", (), None)
    token = request_id_var.set("ctx-1")
    try:
        _RequestContextFilter().filter(record)
    finally:
        request_id_var.reset(token)
    assert record.request_id == "ctx-1"


def test_filter_keeps_explicit_request_id() -> None:
    record = logging.LogRecord("t", logging.INFO, "f.py", 1, "m", (), None)
    record.request_id = "explicit"
    _RequestContextFilter().filter(record)
    assert record.request_id == "explicit"


def test_filter_defaults_outside_a_request() -> None:
    record = logging.LogRecord("t", logging.INFO, "f.py", 1, "m", (), None)
    _RequestContextFilter().filter(record)
    assert record.request_id == "-"
