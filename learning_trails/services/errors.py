"""Exceptions raised by the trail pipeline.

The API layer maps them to HTTP status codes in api/trails.py:
lookups → 404, capacity and state conflicts → 409, unknown reference
data → 422.  Content generation errors never reach a caller; the worker
retries them and then substitutes fallback content.
"""

from __future__ import annotations

from uuid import UUID


class TrailError(Exception):
    """Base class for trail pipeline errors."""


class TrailNotFoundError(TrailError):
    def __init__(self, trail_id: UUID) -> None:
        super().__init__(f"trail {trail_id} not found")
        self.trail_id = trail_id


class LessonNotFoundError(TrailError):
    def __init__(self, lesson_id: UUID) -> None:
        super().__init__(f"lesson {lesson_id} not found")
        self.lesson_id = lesson_id


class LanguageNotFoundError(TrailError):
    def __init__(self, code: str) -> None:
        super().__init__(f"language {code!r} is not configured")
        self.code = code


class LevelNotFoundError(TrailError):
    def __init__(self, code: str) -> None:
        super().__init__(f"level {code!r} is not configured")
        self.code = code


class TrailLimitExceededError(TrailError):
    def __init__(self, student_id: str, limit: int) -> None:
        super().__init__(
            f"student {student_id} already has the maximum of {limit} active trails"
        )
        self.student_id = student_id
        self.limit = limit


class ActiveTrailExistsError(TrailError):
    def __init__(self, student_id: str, language_code: str) -> None:
        super().__init__(
            f"student {student_id} already has an active {language_code!r} trail"
        )
        self.student_id = student_id
        self.language_code = language_code


class InvalidTrailTransitionError(TrailError):
    def __init__(self, trail_id: UUID, current: object, target: object) -> None:
        super().__init__(f"trail {trail_id} cannot move from {current} to {target}")
        self.trail_id = trail_id


class ContentGenerationError(TrailError):
    """The external content generator did not return usable content."""


class GenerationUnavailableError(ContentGenerationError):
    """Transient: timeout, connection error, 429 or 5xx."""


class GenerationFailedError(ContentGenerationError):
    """The generator answered but the request or response was unusable."""
