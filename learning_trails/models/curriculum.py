from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Language:
    code: str  # ISO 639-1, e.g. "en"
    name: str


@dataclass(frozen=True, slots=True)
class Level:
    code: str  # CEFR, e.g. "A1"
    name: str
    order_index: int


@dataclass(frozen=True, slots=True)
class Competency:
    code: str  # speaking|listening|reading|writing|vocabulary|grammar|...
    name: str


@dataclass(frozen=True, slots=True)
class WeightedCompetency:
    """A competency as weighted into one level."""

    competency: Competency
    weight: Decimal


@dataclass(frozen=True, slots=True)
class Descriptor:
    """A can-do statement for a (level, competency) pair."""

    code: str
    level_code: str
    competency_code: str
    description: str
    is_core: bool = True
    order_index: int = 0


@dataclass(frozen=True, slots=True)
class Blueprint:
    """Reusable, approved structural template for a language/level.

    preferences_pattern is the preference profile the blueprint was built
    for; a caller matches when the pattern contains all of its
    preferences.  `structure` is stored but not interpreted yet.
    """

    id: UUID
    language_code: str
    level_code: str
    name: str
    preferences_pattern: dict[str, Any] = field(default_factory=dict)
    structure: dict[str, Any] = field(default_factory=dict)
    is_approved: bool = False
    usage_count: int = 0
    avg_completion_rate: Decimal | None = None

    @staticmethod
    def new(
        *,
        language_code: str,
        level_code: str,
        name: str,
        preferences_pattern: dict[str, Any] | None = None,
        structure: dict[str, Any] | None = None,
        is_approved: bool = False,
        usage_count: int = 0,
        avg_completion_rate: Decimal | None = None,
    ) -> Blueprint:
        return Blueprint(
            id=uuid4(),
            language_code=language_code,
            level_code=level_code,
            name=name,
            preferences_pattern=dict(preferences_pattern or {}),
            structure=dict(structure or {}),
            is_approved=is_approved,
            usage_count=usage_count,
            avg_completion_rate=avg_completion_rate,
        )
