"""Trail endpoints end to end.

The autouse pipeline generates inline on a fake clock, so every trail
returned by a create call is already READY.  The seeded en/A1
curriculum yields 6 modules and 8 lessons.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from uuid import UUID

import httpx
import pytest
from fastapi.testclient import TestClient

from learning_trails.services import pipeline as pipeline_module
from learning_trails.services.content_client import HttpContentGenerator
from learning_trails.services.pipeline import Pipeline
from tests.conftest import FakeClock, auth, make_pipeline

SEEDED_MODULES = 6
SEEDED_LESSONS = 8


def _create(client: TestClient, lang: str = "en", student: str = "student-1"):
    resp = client.get("/v1/trails", params={"lang": lang}, headers=auth(student))
    assert resp.status_code == 200, resp.text
    return resp.json()


# ---- get or create ----


def test_get_or_create_returns_ready_trail(client: TestClient) -> None:
    trail = _create(client)
    assert trail["status"] == "READY"
    assert trail["student_id"] == "student-1"
    assert trail["level_code"] == "A1"
    assert Decimal(str(trail["estimated_duration_hours"])) == Decimal("2.0")


def test_get_or_create_is_idempotent(client: TestClient) -> None:
    assert _create(client)["id"] == _create(client)["id"]


def test_unknown_language_is_422(client: TestClient) -> None:
    resp = client.get("/v1/trails", params={"lang": "xx"}, headers=auth())
    assert resp.status_code == 422


def test_lang_parameter_is_required(client: TestClient) -> None:
    assert client.get("/v1/trails", headers=auth()).status_code == 422


def test_active_trail_limit_is_409(client: TestClient) -> None:
    for lang in ("en", "es", "fr"):
        _create(client, lang)
    resp = client.get("/v1/trails", params={"lang": "pt"}, headers=auth())
    assert resp.status_code == 409


def test_list_active_only_shows_callers_trails(client: TestClient) -> None:
    _create(client, "en")
    _create(client, "es")
    _create(client, "en", student="student-2")

    resp = client.get("/v1/trails/active", headers=auth())
    assert resp.status_code == 200
    assert sorted(t["language_code"] for t in resp.json()) == ["en", "es"]


# ---- ownership ----


def test_other_students_trail_is_404(client: TestClient) -> None:
    trail = _create(client)
    resp = client.get(f"/v1/trails/{trail['id']}", headers=auth("student-2"))
    assert resp.status_code == 404


def test_other_student_cannot_archive(client: TestClient) -> None:
    trail = _create(client)
    resp = client.delete(f"/v1/trails/{trail['id']}", headers=auth("student-2"))
    assert resp.status_code == 404
    assert client.get(f"/v1/trails/{trail['id']}", headers=auth()).json()[
        "status"
    ] == "READY"


def test_unknown_trail_is_404(client: TestClient) -> None:
    resp = client.get(
        "/v1/trails/00000000-0000-0000-0000-000000000000", headers=auth()
    )
    assert resp.status_code == 404


# ---- generate / refresh / archive ----


def test_generate_conflicts_with_active_trail(client: TestClient) -> None:
    _create(client)
    resp = client.post(
        "/v1/trails/generate", json={"language_code": "en"}, headers=auth()
    )
    assert resp.status_code == 409


def test_force_regenerate_replaces_trail(client: TestClient) -> None:
    old = _create(client)
    resp = client.post(
        "/v1/trails/generate",
        json={
            "language_code": "en",
            "force_regenerate": True,
            "preferences": {"focus": "travel"},
        },
        headers=auth(),
    )
    assert resp.status_code == 201
    new = resp.json()
    assert new["id"] != old["id"]
    archived = client.get(f"/v1/trails/{old['id']}", headers=auth()).json()
    assert archived["status"] == "ARCHIVED"
    assert archived["archived_at"] is not None


def test_refresh_with_level_change(client: TestClient) -> None:
    old = _create(client)
    resp = client.post(
        f"/v1/trails/{old['id']}/refresh",
        json={"reason": "level_change", "new_level_code": "B1"},
        headers=auth(),
    )
    assert resp.status_code == 201
    new = resp.json()
    assert new["level_code"] == "B1"
    assert new["previous_trail_id"] == old["id"]
    assert new["refresh_reason"] == "level_change"


def test_refresh_rejects_unknown_reason(client: TestClient) -> None:
    old = _create(client)
    resp = client.post(
        f"/v1/trails/{old['id']}/refresh", json={"reason": "bored"}, headers=auth()
    )
    assert resp.status_code == 422


def test_archive_then_archive_again(client: TestClient) -> None:
    trail = _create(client)
    url = f"/v1/trails/{trail['id']}"
    assert client.delete(url, headers=auth()).status_code == 204
    assert client.delete(url, headers=auth()).status_code == 409
    assert client.get("/v1/trails/active", headers=auth()).json() == []


# ---- contents, progress, generation status ----


def test_modules_include_generated_lessons(client: TestClient) -> None:
    trail = _create(client)
    resp = client.get(f"/v1/trails/{trail['id']}/modules", headers=auth())
    assert resp.status_code == 200
    modules = resp.json()
    assert len(modules) == SEEDED_MODULES
    assert [m["order_index"] for m in modules] == list(range(1, SEEDED_MODULES + 1))
    lessons = [x for m in modules for x in m["lessons"]]
    assert len(lessons) == SEEDED_LESSONS
    assert all(m["status"] == "READY" for m in modules)
    assert all(x["content"]["generated"] is True for x in lessons)


def test_lesson_progress_flow(client: TestClient) -> None:
    trail = _create(client)
    lesson = client.get(
        f"/v1/trails/{trail['id']}/next-lesson", headers=auth()
    ).json()

    resp = client.post(
        f"/v1/trails/lessons/{lesson['id']}/progress",
        json={"completed": True, "score": 80, "time_spent_seconds": 300},
        headers=auth(),
    )
    assert resp.status_code == 200
    progress = resp.json()
    assert progress["lessons_completed"] == 1
    assert progress["total_lessons"] == SEEDED_LESSONS
    assert Decimal(str(progress["progress_percentage"])) == Decimal("12.50")
    assert progress["time_spent_minutes"] == 5
    assert progress["is_completed"] is False

    cached = client.get(f"/v1/trails/{trail['id']}/progress", headers=auth()).json()
    assert cached == progress

    following = client.get(
        f"/v1/trails/{trail['id']}/next-lesson", headers=auth()
    ).json()
    assert following["id"] != lesson["id"]


def test_lesson_progress_validation(client: TestClient) -> None:
    trail = _create(client)
    lesson = client.get(
        f"/v1/trails/{trail['id']}/next-lesson", headers=auth()
    ).json()
    resp = client.post(
        f"/v1/trails/lessons/{lesson['id']}/progress",
        json={"score": 150},
        headers=auth(),
    )
    assert resp.status_code == 422


def test_other_students_lesson_is_404(client: TestClient) -> None:
    trail = _create(client)
    lesson = client.get(
        f"/v1/trails/{trail['id']}/next-lesson", headers=auth()
    ).json()
    resp = client.post(
        f"/v1/trails/lessons/{lesson['id']}/progress",
        json={"completed": True},
        headers=auth("student-2"),
    )
    assert resp.status_code == 404


def test_generation_status_of_ready_trail(client: TestClient) -> None:
    trail = _create(client)
    resp = client.get(f"/v1/trails/{trail['id']}/generation", headers=auth())
    assert resp.status_code == 200
    status = resp.json()
    assert status["trail_status"] == "READY"
    assert status["job_status"] == "COMPLETED"
    assert status["current_step"] == "completed"
    assert status["progress_percentage"] == 100
    assert status["total_lessons"] == SEEDED_LESSONS
    assert status["error_message"] is None


# ---- lesson content from the HTTP generator ----


def _plain_text_pipeline(monkeypatch, clock) -> Pipeline:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"content": "Hello, this is a lesson."})

    client = httpx.AsyncClient(
        base_url="http://generator.test", transport=httpx.MockTransport(handler)
    )
    p = make_pipeline(
        clock=clock,
        generator=HttpContentGenerator("http://generator.test", client=client),
    )
    monkeypatch.setattr(pipeline_module, "pipeline", p)
    return p


def test_plain_text_lessons_are_served(
    client: TestClient, monkeypatch: pytest.MonkeyPatch, clock: FakeClock
) -> None:
    _plain_text_pipeline(monkeypatch, clock)
    trail = _create(client)
    assert trail["status"] == "READY"

    resp = client.get(f"/v1/trails/{trail['id']}/modules", headers=auth())
    assert resp.status_code == 200
    lesson = resp.json()[0]["lessons"][0]
    assert lesson["content"]["text"] == "Hello, this is a lesson."
    assert lesson["content"]["generated"] is True

    nxt = client.get(f"/v1/trails/{trail['id']}/next-lesson", headers=auth())
    assert nxt.status_code == 200
    assert nxt.json()["content"]["text"] == "Hello, this is a lesson."


def test_stored_plain_text_content_does_not_break_reads(
    client: TestClient, trail_pipeline: Pipeline
) -> None:
    trail = _create(client)
    lesson = asyncio.run(trail_pipeline.trails.list_lessons(UUID(trail["id"])))[0]
    asyncio.run(
        trail_pipeline.trails.set_lesson_content(
            lesson.id, "legacy text", is_placeholder=False
        )
    )

    resp = client.get(f"/v1/trails/{trail['id']}/modules", headers=auth())
    assert resp.status_code == 200
    contents = [x["content"] for m in resp.json() for x in m["lessons"]]
    assert {"text": "legacy text"} in contents
