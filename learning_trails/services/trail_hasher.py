"""Content fingerprint for trail generation inputs.

The fingerprint is a cache key.  A READY trail whose fingerprint
matches a new request can be cloned instead of generated again; it is
never used as an identity.
"""

from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping
from typing import Any

EMPTY_PREFERENCES = "{}"


def canonical_preferences(preferences: str | Mapping[str, Any] | None) -> str:
    """Normalise preferences to compact, key-sorted JSON.

    None, "" and {} all become "{}", so a missing preference set and an
    empty one hash the same.  Raises ValueError for malformed JSON.
    """
    if preferences is None:
        return EMPTY_PREFERENCES
    if isinstance(preferences, str):
        if not preferences.strip():
            return EMPTY_PREFERENCES
        preferences = json.loads(preferences)
    if not isinstance(preferences, Mapping):
        raise ValueError("preferences must be a JSON object")
    return json.dumps(preferences, sort_keys=True, separators=(",", ":"))


def fingerprint(
    student_id: str,
    language_code: str,
    level_code: str,
    preferences: str | Mapping[str, Any] | None,
    curriculum_version: str,
) -> str:
    """SHA-1 hex digest (40 chars) of the generation inputs."""
    raw = "|".join(
        (
            student_id,
            language_code,
            level_code,
            canonical_preferences(preferences),
            curriculum_version,
        )
    )
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()


class TrailHasher:
    """Injectable wrapper around fingerprint()."""

    def fingerprint(
        self,
        student_id: str,
        language_code: str,
        level_code: str,
        preferences: str | Mapping[str, Any] | None,
        curriculum_version: str,
    ) -> str:
        return fingerprint(
            student_id, language_code, level_code, preferences, curriculum_version
        )
