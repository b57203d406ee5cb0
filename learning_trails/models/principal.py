from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    user_id is the token subject and doubles as the student id that
    owns trails.
    """

    user_id: str
    roles: frozenset[str]
