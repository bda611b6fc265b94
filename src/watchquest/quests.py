from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from .catalog import QuestCatalog, QuestMetric, QuestScope
from .ledger import ClaimLedger, claim_key
from .metrics import MetricAggregator
from .rotation import QuestRotation, ensure_rotation, period_key


@dataclass(frozen=True)
class QuestState:
    id: str
    scope: QuestScope
    claim_key: str
    title: str
    description: str
    progress: int
    target: int
    reward_xp: int
    unit: str
    is_claimed: bool

    @property
    def is_completed(self) -> bool:
        return self.progress >= self.target

    @property
    def is_claimable(self) -> bool:
        return self.is_completed and not self.is_claimed

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "scope": self.scope.value,
            "claim_key": self.claim_key,
            "title": self.title,
            "description": self.description,
            "progress": self.progress,
            "target": self.target,
            "reward_xp": self.reward_xp,
            "unit": self.unit,
            "is_completed": self.is_completed,
            "is_claimed": self.is_claimed,
            "is_claimable": self.is_claimable,
        }


def read_metric_progress(metrics: MetricAggregator, metric: QuestMetric, day: date) -> int:
    readers: dict[QuestMetric, Callable[[date], int]] = {
        QuestMetric.DAILY_WATCH_SECONDS: metrics.watched_seconds_for_day,
        QuestMetric.DAILY_STREAMS_COUNT: metrics.distinct_streams_for_day,
        QuestMetric.DAILY_BEST_SESSION_SECONDS: metrics.best_session_seconds_for_day,
        QuestMetric.DAILY_EFFECT_SESSIONS_COUNT: metrics.effect_sessions_for_day,
        QuestMetric.WEEKLY_WATCH_SECONDS: metrics.watched_seconds_for_week,
        QuestMetric.WEEKLY_ACTIVE_DAYS_COUNT: metrics.active_days_for_week,
        QuestMetric.WEEKLY_STREAMS_COUNT: metrics.distinct_streams_for_week,
        QuestMetric.WEEKLY_BEST_SESSION_SECONDS: metrics.best_session_seconds_for_week,
        QuestMetric.WEEKLY_EFFECT_SESSIONS_COUNT: metrics.effect_sessions_for_week,
    }
    return max(0, readers[metric](day))


@dataclass
class QuestResolver:
    """Builds read-only quest views from rotations, the metrics, and the ledger.

    The ledger is never written here. The rotation cache is refreshed in place
    when a stored rotation is stale for the requested day.
    """

    catalog: QuestCatalog
    metrics: MetricAggregator
    ledger: ClaimLedger
    rotations: dict[QuestScope, QuestRotation] = field(default_factory=dict)

    def ensure_rotation(self, scope: QuestScope, day: date) -> tuple[QuestRotation, bool]:
        rotation, changed = ensure_rotation(self.catalog, scope, day, self.rotations.get(scope))
        if changed:
            self.rotations[scope] = rotation
        return rotation, changed

    def ensure_rotations(self, day: date) -> bool:
        changed = False
        for scope in QuestScope:
            _, scope_changed = self.ensure_rotation(scope, day)
            changed = changed or scope_changed
        return changed

    def active_quests(self, scope: QuestScope, day: date) -> list[QuestState]:
        rotation, _ = self.ensure_rotation(scope, day)
        return self.resolve(rotation, day)

    def resolve(self, rotation: QuestRotation, day: date) -> list[QuestState]:
        scope = rotation.scope
        period = period_key(scope, day)
        states: list[QuestState] = []
        for template_id in rotation.selected_template_ids:
            template = self.catalog.template(scope, template_id)
            if template is None:
                continue
            key = claim_key(scope, period, template.id)
            states.append(
                QuestState(
                    id=template.id,
                    scope=scope,
                    claim_key=key,
                    title=template.title,
                    description=template.description,
                    progress=read_metric_progress(self.metrics, template.metric, day),
                    target=template.target,
                    reward_xp=template.reward_xp,
                    unit=template.unit,
                    is_claimed=self.ledger.contains(key),
                )
            )
        return states
