from __future__ import annotations

"""XP curve, level derivation, and prestige bookkeeping."""

from dataclasses import dataclass
from functools import lru_cache
from typing import Any


MAX_LEVEL = 100
MAX_PRESTIGE = 100
BASE_LEVEL_XP = 80
LINEAR_LEVEL_FACTOR = 1.2
QUADRATIC_LEVEL_FACTOR = 0.015


def xp_to_reach_next_level(level: int) -> int:
    n = max(1, level) - 1
    return BASE_LEVEL_XP + round(LINEAR_LEVEL_FACTOR * n + QUADRATIC_LEVEL_FACTOR * n * n)


@lru_cache(maxsize=None)
def total_xp_for_level(level: int) -> int:
    if level <= 1:
        return 0
    return sum(xp_to_reach_next_level(step) for step in range(1, level))


def level_from_xp(xp: int, max_level: int = MAX_LEVEL) -> int:
    level = 1
    accumulated = 0
    while level < max_level:
        need = xp_to_reach_next_level(level)
        if xp < accumulated + need:
            break
        accumulated += need
        level += 1
    return level


def prestige_xp_cap() -> int:
    return total_xp_for_level(MAX_LEVEL)


def _non_negative(value: Any) -> int:
    try:
        return max(0, int(value))
    except (TypeError, ValueError):
        return 0


@dataclass
class ProgressionLedger:
    """Lifetime XP plus the XP of the current prestige cycle.

    `total_xp` never goes down and keeps counting past the level cap;
    `prestige_xp` stops at the cap until `prestige()` resets it.
    """

    total_xp: int = 0
    prestige: int = 0
    prestige_xp: int = 0

    def add_xp(self, amount: int) -> int:
        if amount <= 0:
            return 0
        self.total_xp += amount
        self.prestige_xp = min(prestige_xp_cap(), self.prestige_xp + amount)
        return amount

    @property
    def level(self) -> int:
        return level_from_xp(self.prestige_xp)

    def level_progress(self) -> tuple[int, int]:
        """XP earned inside the current level and XP that level requires."""

        level = self.level
        floor = total_xp_for_level(level)
        ceiling = floor if level >= MAX_LEVEL else total_xp_for_level(level + 1)
        required = max(1, ceiling - floor)
        current = min(max(0, self.prestige_xp - floor), required)
        return current, required

    @property
    def xp_to_next_level(self) -> int:
        if self.level >= MAX_LEVEL:
            return 0
        current, required = self.level_progress()
        return max(0, required - current)

    @property
    def can_prestige(self) -> bool:
        return self.level >= MAX_LEVEL and self.prestige < MAX_PRESTIGE

    def apply_prestige(self) -> bool:
        if not self.can_prestige:
            return False
        self.prestige += 1
        self.prestige_xp = 0
        return True

    def to_dict(self) -> dict[str, int]:
        return {"total_xp": self.total_xp, "prestige": self.prestige, "prestige_xp": self.prestige_xp}

    @classmethod
    def from_dict(cls, payload: Any) -> "ProgressionLedger":
        if not isinstance(payload, dict):
            return cls()
        return cls(
            total_xp=_non_negative(payload.get("total_xp")),
            prestige=min(MAX_PRESTIGE, _non_negative(payload.get("prestige"))),
            prestige_xp=min(prestige_xp_cap(), _non_negative(payload.get("prestige_xp"))),
        )
