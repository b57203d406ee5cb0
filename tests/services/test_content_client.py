from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from learning_trails.models.trail import LessonType
from learning_trails.services.content_client import (
    ContentGenerator,
    HttpContentGenerator,
    TemplateContentGenerator,
)
from learning_trails.services.errors import (
    GenerationFailedError,
    GenerationUnavailableError,
)

_ARGS = {
    "lesson_title": "Introduce yourself",
    "lesson_type": LessonType.CONVERSATION,
    "student_id": "s1",
    "language_code": "en",
    "level_code": "A1",
}


def _generate(handler) -> str:
    client = httpx.AsyncClient(
        base_url="http://generator.test", transport=httpx.MockTransport(handler)
    )
    generator = HttpContentGenerator("http://generator.test", client=client)

    async def scenario() -> str:
        try:
            return await generator.generate(**_ARGS)
        finally:
            await generator.aclose()

    return asyncio.run(scenario())


def test_generators_satisfy_protocol() -> None:
    assert isinstance(TemplateContentGenerator(), ContentGenerator)


def test_posts_lesson_request_and_returns_string_content() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"content": '{"sections": []}'})

    assert _generate(handler) == '{"sections": []}'
    assert seen["path"] == "/lessons"
    assert seen["body"]["lesson_type"] == "conversation"
    assert seen["body"]["language_code"] == "en"


def test_plain_text_content_is_wrapped_in_a_lesson_document() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"content": "Hello, this is a lesson."})

    body = json.loads(_generate(handler))
    assert body == {
        "type": "conversation",
        "title": "Introduce yourself",
        "text": "Hello, this is a lesson.",
        "generated": True,
    }


def test_json_scalar_string_is_wrapped_too() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"content": "42"})

    assert json.loads(_generate(handler))["text"] == "42"


def test_object_content_is_serialised() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"content": {"sections": [1]}})

    assert json.loads(_generate(handler)) == {"sections": [1]}


@pytest.mark.parametrize("status_code", [429, 500, 503])
def test_transient_statuses_are_unavailable(status_code: int) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code)

    with pytest.raises(GenerationUnavailableError):
        _generate(handler)


def test_connection_error_is_unavailable() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(GenerationUnavailableError, match="unreachable"):
        _generate(handler)


def test_client_error_is_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, text="bad lesson type")

    with pytest.raises(GenerationFailedError, match="400"):
        _generate(handler)


@pytest.mark.parametrize(
    "body", [{"content": ""}, {"content": {}}, {"other": "x"}, ["content"]]
)
def test_empty_content_is_failed(body: object) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=body)

    with pytest.raises(GenerationFailedError, match="no content"):
        _generate(handler)


def test_invalid_json_is_failed() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text="<html>")

    with pytest.raises(GenerationFailedError, match="invalid JSON"):
        _generate(handler)


def test_template_content_is_deterministic() -> None:
    gen = TemplateContentGenerator()
    first = asyncio.run(gen.generate(**_ARGS))
    assert first == asyncio.run(gen.generate(**_ARGS))
    body = json.loads(first)
    assert body["generated"] is True
    assert body["title"] == "Introduce yourself"
