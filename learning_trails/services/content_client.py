"""Clients for the external lesson-content generator.

The generator is slow and unreliable.  Clients make exactly one call per
generate(); retries and backoff belong to GenerationWorker so that the
attempt budget is counted in one place.

HttpContentGenerator talks to a JSON-over-HTTP generation service:

    POST {CONTENT_API_URL}/lessons
    {"lesson_title": ..., "lesson_type": ..., "student_id": ...,
     "language_code": ..., "level_code": ...}
    → 200 {"content": <string or JSON object>}

A string that is not itself JSON is treated as the lesson text and
wrapped into a JSON document before it is stored.

TemplateContentGenerator is used when no CONTENT_API_URL is configured
(local development, tests).  It returns a deterministic lesson skeleton.
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Protocol, runtime_checkable

import httpx

from learning_trails.models.trail import LessonType
from learning_trails.services.errors import (
    GenerationFailedError,
    GenerationUnavailableError,
)

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}


@runtime_checkable
class ContentGenerator(Protocol):
    async def generate(
        self,
        *,
        lesson_title: str,
        lesson_type: LessonType,
        student_id: str,
        language_code: str,
        level_code: str,
    ) -> str:
        """Return the lesson content as a JSON string.

        Raises GenerationUnavailableError or GenerationFailedError.
        """
        ...

    async def aclose(self) -> None: ...


class HttpContentGenerator:
    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._client = client or httpx.AsyncClient(
            base_url=base_url, timeout=timeout, headers=headers
        )

    async def generate(
        self,
        *,
        lesson_title: str,
        lesson_type: LessonType,
        student_id: str,
        language_code: str,
        level_code: str,
    ) -> str:
        payload = {
            "lesson_title": lesson_title,
            "lesson_type": lesson_type.value,
            "student_id": student_id,
            "language_code": language_code,
            "level_code": level_code,
        }
        started = time.perf_counter()
        try:
            resp = await self._client.post("/lessons", json=payload)
        except httpx.TimeoutException as e:
            raise GenerationUnavailableError(
                f"content generator timed out: {e}"
            ) from e
        except httpx.TransportError as e:
            raise GenerationUnavailableError(
                f"content generator unreachable: {e}"
            ) from e

        elapsed_ms = (time.perf_counter() - started) * 1000
        logger.debug(
            "Content generator status=%d title=%r in %.0fms",
            resp.status_code,
            lesson_title,
            elapsed_ms,
        )

        if resp.status_code in RETRYABLE_STATUS_CODES:
            raise GenerationUnavailableError(
                f"content generator returned {resp.status_code}"
            )
        if resp.is_error:
            raise GenerationFailedError(
                f"content generator rejected request: {resp.status_code} "
                f"{resp.text[:200]}"
            )

        try:
            body: Any = resp.json()
        except ValueError as e:
            raise GenerationFailedError(
                "content generator returned invalid JSON"
            ) from e

        content = body.get("content") if isinstance(body, dict) else None
        if isinstance(content, str) and content.strip():
            return _as_lesson_json(content, lesson_title, lesson_type)
        if isinstance(content, dict | list) and content:
            return json.dumps(content)
        raise GenerationFailedError("content generator returned no content")

    async def aclose(self) -> None:
        await self._client.aclose()


def _as_lesson_json(content: str, lesson_title: str, lesson_type: LessonType) -> str:
    """Lesson content is stored as JSON; plain text is wrapped in a document."""
    try:
        parsed = json.loads(content)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict | list):
        return content
    return json.dumps(
        {
            "type": lesson_type.value,
            "title": lesson_title,
            "text": content,
            "generated": True,
        }
    )


class TemplateContentGenerator:
    """Deterministic offline generator."""

    async def generate(
        self,
        *,
        lesson_title: str,
        lesson_type: LessonType,
        student_id: str,
        language_code: str,
        level_code: str,
    ) -> str:
        return json.dumps(
            {
                "type": lesson_type.value,
                "title": lesson_title,
                "language": language_code,
                "level": level_code,
                "sections": [
                    {
                        "kind": "introduction",
                        "text": f"In this lesson: {lesson_title}.",
                    },
                    {"kind": "practice", "items": []},
                    {"kind": "review", "items": []},
                ],
                "generated": True,
                "source": "template",
            }
        )

    async def aclose(self) -> None:
        return None
