from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Any, Protocol
from uuid import UUID

from learning_trails.models.curriculum import Blueprint


class BlueprintRepo(Protocol):
    async def get(self, blueprint_id: UUID) -> Blueprint | None: ...

    async def find_preference_matches(
        self, language_code: str, level_code: str, preferences: dict[str, Any]
    ) -> list[Blueprint]:
        """Approved blueprints whose preferences_pattern contains
        `preferences`, best first (usage_count desc, then
        avg_completion_rate desc with nulls last)."""
        ...

    async def most_used_approved(
        self, language_code: str, level_code: str
    ) -> Blueprint | None: ...

    async def increment_usage(self, blueprint_id: UUID) -> None: ...


def json_contains(container: Any, contained: Any) -> bool:
    """Python rendition of Postgres jsonb `@>`.

    Objects contain objects key by key (recursively), arrays contain
    arrays when every element on the right is contained by some element
    on the left, scalars must be equal.
    """
    if isinstance(container, dict) and isinstance(contained, dict):
        return all(
            k in container and json_contains(container[k], v)
            for k, v in contained.items()
        )
    if isinstance(container, list):
        if isinstance(contained, list):
            return all(
                any(json_contains(item, wanted) for item in container)
                for wanted in contained
            )
        # jsonb lets a top-level array contain a bare scalar
        return any(item == contained for item in container)
    return container == contained


def _rank(bp: Blueprint) -> tuple[int, int, Decimal]:
    # usage desc, then completion rate desc with nulls last
    rate = bp.avg_completion_rate
    return (-bp.usage_count, 0 if rate is not None else 1, -(rate or Decimal(0)))


class InMemoryBlueprintRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Blueprint] = {}

    def add(self, blueprint: Blueprint) -> None:
        self._by_id[blueprint.id] = blueprint

    async def get(self, blueprint_id: UUID) -> Blueprint | None:
        return self._by_id.get(blueprint_id)

    async def find_preference_matches(
        self, language_code: str, level_code: str, preferences: dict[str, Any]
    ) -> list[Blueprint]:
        found = [
            bp
            for bp in self._approved(language_code, level_code)
            if json_contains(bp.preferences_pattern, preferences)
        ]
        return sorted(found, key=_rank)

    async def most_used_approved(
        self, language_code: str, level_code: str
    ) -> Blueprint | None:
        ranked = sorted(self._approved(language_code, level_code), key=_rank)
        return ranked[0] if ranked else None

    async def increment_usage(self, blueprint_id: UUID) -> None:
        bp = self._by_id.get(blueprint_id)
        if bp is None:
            raise KeyError("blueprint not found")
        self._by_id[blueprint_id] = replace(bp, usage_count=bp.usage_count + 1)

    def _approved(self, language_code: str, level_code: str) -> list[Blueprint]:
        return [
            bp
            for bp in self._by_id.values()
            if bp.is_approved
            and bp.language_code == language_code
            and bp.level_code == level_code
        ]
