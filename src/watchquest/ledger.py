from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date

from .catalog import QuestScope
from .metrics import iso_week_key


def claim_key(scope: QuestScope, period: str, template_id: str) -> str:
    return f"{scope.value}:{period}:{template_id}"


def parse_claim_key(key: str) -> tuple[QuestScope, str, str] | None:
    parts = key.split(":", 2) if isinstance(key, str) else []
    if len(parts) != 3 or not all(parts):
        return None
    try:
        scope = QuestScope(parts[0])
    except ValueError:
        return None
    return scope, parts[1], parts[2]


@dataclass
class ClaimLedger:
    """Quest instances that already paid out. Membership is the only reward gate."""

    keys: set[str] = field(default_factory=set)

    def __contains__(self, key: object) -> bool:
        return key in self.keys

    def __len__(self) -> int:
        return len(self.keys)

    def contains(self, key: str) -> bool:
        return key in self.keys

    def add(self, key: str) -> bool:
        if key in self.keys:
            return False
        self.keys.add(key)
        return True

    def prune_stale(self, current_day: date) -> list[str]:
        """Drop daily/weekly keys outside the current period; other keys are kept."""

        daily_prefix = f"{QuestScope.DAILY.value}:{current_day.isoformat()}:"
        weekly_prefix = f"{QuestScope.WEEKLY.value}:{iso_week_key(current_day)}:"
        stale = sorted(
            key
            for key in self.keys
            if (key.startswith(f"{QuestScope.DAILY.value}:") and not key.startswith(daily_prefix))
            or (key.startswith(f"{QuestScope.WEEKLY.value}:") and not key.startswith(weekly_prefix))
        )
        self.keys.difference_update(stale)
        return stale

    def to_list(self) -> list[str]:
        return sorted(self.keys)

    @classmethod
    def from_iterable(cls, values: Iterable[object]) -> "ClaimLedger":
        return cls(keys={value for value in values if isinstance(value, str) and value.strip()})
