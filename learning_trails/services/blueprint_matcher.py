from __future__ import annotations

import json
import logging
from uuid import UUID

from learning_trails.models.curriculum import Blueprint
from learning_trails.repos.blueprint_repo import BlueprintRepo
from learning_trails.services.best_effort import BestEffort, best_effort

logger = logging.getLogger(__name__)


class BlueprintMatcher:
    """Pick a reusable structural template for a new trail.

    Tier 1: an approved blueprint whose preference profile contains the
    caller's preferences.  Tier 2: the most-used approved blueprint for
    the language/level, preferences ignored.  None when both come up
    empty.
    """

    def __init__(self, blueprints: BlueprintRepo) -> None:
        self._blueprints = blueprints

    async def find_matching(
        self, language_code: str, level_code: str, preferences_json: str | None
    ) -> Blueprint | None:
        preferences = json.loads(preferences_json) if preferences_json else {}

        matches = await self._blueprints.find_preference_matches(
            language_code, level_code, preferences
        )
        if matches:
            logger.debug(
                "Blueprint %s matches preferences for %s/%s",
                matches[0].id,
                language_code,
                level_code,
            )
            return matches[0]

        fallback = await self._blueprints.most_used_approved(language_code, level_code)
        if fallback is not None:
            logger.debug(
                "No preference match for %s/%s, using most-used blueprint %s",
                language_code,
                level_code,
                fallback.id,
            )
        return fallback

    async def record_usage(self, blueprint_id: UUID) -> BestEffort:
        return await best_effort(
            "blueprint usage increment",
            self._blueprints.increment_usage(blueprint_id),
            blueprint_id=str(blueprint_id),
        )
