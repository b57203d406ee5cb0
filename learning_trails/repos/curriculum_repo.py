"""Read-only access to curriculum reference data.

Authoring this data is somebody else's job; the trail pipeline only
looks things up.  The in-memory repo ships with a small CEFR seed so the
service is usable without a database.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal
from typing import Protocol

from learning_trails.models.curriculum import (
    Competency,
    Descriptor,
    Language,
    Level,
    WeightedCompetency,
)

DEFAULT_CURRICULUM_VERSION = "1.0.0"


class CurriculumRepo(Protocol):
    async def get_language(self, code: str) -> Language | None: ...
    async def get_level(self, code: str) -> Level | None: ...

    async def level_competencies(self, level_code: str) -> list[WeightedCompetency]:
        """Competencies weighted into a level, heaviest first."""
        ...

    async def core_descriptors(
        self, level_code: str, competency_code: str
    ) -> list[Descriptor]: ...

    async def current_version(self) -> str: ...


class InMemoryCurriculumRepo:
    def __init__(
        self,
        *,
        languages: Iterable[Language] = (),
        levels: Iterable[Level] = (),
        weights: dict[str, list[WeightedCompetency]] | None = None,
        descriptors: Iterable[Descriptor] = (),
        version: str = DEFAULT_CURRICULUM_VERSION,
    ) -> None:
        self._languages = {lang.code: lang for lang in languages}
        self._levels = {lvl.code: lvl for lvl in levels}
        self._weights = dict(weights or {})
        self._descriptors = list(descriptors)
        self._version = version

    async def get_language(self, code: str) -> Language | None:
        return self._languages.get(code)

    async def get_level(self, code: str) -> Level | None:
        return self._levels.get(code)

    async def level_competencies(self, level_code: str) -> list[WeightedCompetency]:
        weighted = self._weights.get(level_code, [])
        # Ties broken by code so the module order is stable
        return sorted(weighted, key=lambda w: (-w.weight, w.competency.code))

    async def core_descriptors(
        self, level_code: str, competency_code: str
    ) -> list[Descriptor]:
        found = [
            d
            for d in self._descriptors
            if d.level_code == level_code
            and d.competency_code == competency_code
            and d.is_core
        ]
        return sorted(found, key=lambda d: (d.order_index, d.code))

    async def current_version(self) -> str:
        return self._version


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------

SEED_LANGUAGES = (
    Language("en", "English"),
    Language("es", "Spanish"),
    Language("fr", "French"),
    Language("pt", "Portuguese"),
)

SEED_LEVELS = (
    Level("A1", "Beginner", 1),
    Level("A2", "Elementary", 2),
    Level("B1", "Intermediate", 3),
    Level("B2", "Upper intermediate", 4),
    Level("C1", "Advanced", 5),
    Level("C2", "Proficient", 6),
)

_COMPETENCIES = {
    c.code: c
    for c in (
        Competency("speaking", "Speaking"),
        Competency("listening", "Listening"),
        Competency("reading", "Reading"),
        Competency("writing", "Writing"),
        Competency("vocabulary", "Vocabulary"),
        Competency("grammar", "Grammar"),
    )
}

# Early levels lean on vocabulary and listening, later ones on production.
_WEIGHT_TABLE = {
    "A1": {
        "vocabulary": "30",
        "listening": "20",
        "speaking": "20",
        "grammar": "15",
        "reading": "10",
        "writing": "5",
    },
    "A2": {
        "vocabulary": "25",
        "listening": "20",
        "speaking": "20",
        "grammar": "15",
        "reading": "12",
        "writing": "8",
    },
    "B1": {
        "speaking": "22",
        "listening": "18",
        "grammar": "18",
        "reading": "15",
        "vocabulary": "15",
        "writing": "12",
    },
    "B2": {
        "speaking": "22",
        "writing": "18",
        "reading": "18",
        "grammar": "15",
        "listening": "15",
        "vocabulary": "12",
    },
    "C1": {
        "writing": "22",
        "speaking": "22",
        "reading": "20",
        "listening": "14",
        "grammar": "12",
        "vocabulary": "10",
    },
    "C2": {
        "writing": "25",
        "speaking": "25",
        "reading": "20",
        "listening": "12",
        "grammar": "10",
        "vocabulary": "8",
    },
}

SEED_WEIGHTS = {
    level: [
        WeightedCompetency(_COMPETENCIES[code], Decimal(weight))
        for code, weight in table.items()
    ]
    for level, table in _WEIGHT_TABLE.items()
}

SEED_DESCRIPTORS = (
    Descriptor(
        "A1-VOC-1", "A1", "vocabulary", "Greetings and introductions", True, 1
    ),
    Descriptor("A1-VOC-2", "A1", "vocabulary", "Numbers, days and colours", True, 2),
    Descriptor(
        "A1-LIS-1", "A1", "listening", "Understand slow, familiar phrases", True, 1
    ),
    Descriptor("A1-SPK-1", "A1", "speaking", "Introduce yourself and others", True, 1),
    Descriptor(
        "A1-SPK-2", "A1", "speaking", "Ask and answer simple questions", True, 2
    ),
    Descriptor("A1-GRM-1", "A1", "grammar", "Present tense of common verbs", True, 1),
    Descriptor("A1-REA-1", "A1", "reading", "Read short notices and signs", True, 1),
    Descriptor(
        "A1-WRI-1", "A1", "writing", "Fill in a form with personal details", True, 1
    ),
    Descriptor("A1-WRI-2", "A1", "writing", "Write a postcard", False, 2),
    Descriptor("A2-VOC-1", "A2", "vocabulary", "Shopping, food and travel", True, 1),
    Descriptor("A2-LIS-1", "A2", "listening", "Follow short announcements", True, 1),
    Descriptor("A2-SPK-1", "A2", "speaking", "Describe your routine", True, 1),
    Descriptor("A2-GRM-1", "A2", "grammar", "Past tense narration", True, 1),
    Descriptor("B1-SPK-1", "B1", "speaking", "Narrate experiences and plans", True, 1),
    Descriptor("B1-WRI-1", "B1", "writing", "Write a simple connected text", True, 1),
)


def seeded_curriculum_repo(
    version: str = DEFAULT_CURRICULUM_VERSION,
) -> InMemoryCurriculumRepo:
    return InMemoryCurriculumRepo(
        version=version,
        languages=SEED_LANGUAGES,
        levels=SEED_LEVELS,
        weights=SEED_WEIGHTS,
        descriptors=SEED_DESCRIPTORS,
    )
