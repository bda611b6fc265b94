from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, replace
from datetime import date

from .metrics import iso_week_key


@dataclass(frozen=True)
class RolloverResult:
    day: date
    week_key: str
    previous_day: date | None = None
    previous_week_key: str | None = None
    pruned_claim_keys: tuple[str, ...] = ()
    rotations_changed: bool = False
    pruned_metric_days: int = 0

    @property
    def week_changed(self) -> bool:
        return self.week_key != self.previous_week_key


@dataclass
class RolloverMonitor:
    """Detects trusted day/week boundary crossings.

    `on_rollover` does the actual work (pruning, rotation refresh) and returns
    the result; `on_changed` is told afterwards so the host can refresh and
    persist. A tick without a crossing touches nothing.
    """

    today: Callable[[], date]
    on_rollover: Callable[[date], RolloverResult]
    on_changed: Callable[[RolloverResult], None] | None = None
    last_day: date | None = None
    last_week_key: str | None = None

    def start(self, day: date | None = None) -> None:
        current = day or self.today()
        self.last_day = current
        self.last_week_key = iso_week_key(current)

    def tick(self) -> RolloverResult | None:
        current = self.today()
        week_key = iso_week_key(current)
        if current == self.last_day and week_key == self.last_week_key:
            return None
        result = replace(self.on_rollover(current), previous_day=self.last_day, previous_week_key=self.last_week_key)
        self.last_day = current
        self.last_week_key = week_key
        if self.on_changed is not None:
            self.on_changed(result)
        return result
