from __future__ import annotations

import logging
from collections.abc import Awaitable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class BestEffort:
    """Outcome of a side effect whose failure must not fail the caller.

    Callers may inspect it or drop it on the floor.
    """

    action: str
    error: Exception | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def best_effort(
    action: str, operation: Awaitable[object], **context: object
) -> BestEffort:
    """Await `operation`; log and capture any exception instead of raising.

    `context` is attached to the log record (trail_id, job_id, ...).
    """
    try:
        await operation
    except Exception as e:
        logger.warning("%s failed: %s", action, e, extra=context, exc_info=True)
        return BestEffort(action, e)
    return BestEffort(action)
