from __future__ import annotations

"""Milestone achievements as a table of (metric, threshold) rows."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


STRONG_EFFECT_MIN_EFFECTS = 5
EXTREME_EFFECT_MIN_EFFECTS = 10


class AchievementMetric(str, Enum):
    STREAMS_WATCHED = "streams_watched"
    STREAK_DAYS = "streak_days"
    FAVORITES = "favorites"
    EFFECT_SESSIONS_ANY = "effect_sessions_any"
    EFFECT_SESSIONS_FIVE_PLUS = "effect_sessions_five_plus"
    EFFECT_SESSIONS_TEN_PLUS = "effect_sessions_ten_plus"
    STRONG_BLUR_SESSIONS = "strong_blur_sessions"
    STRONG_RED_GLOW_SESSIONS = "strong_red_glow_sessions"
    STRONG_VIOLET_GLOW_SESSIONS = "strong_violet_glow_sessions"
    STRONG_SHAKE_SESSIONS = "strong_shake_sessions"
    CURSED_FULL_STREAMS = "cursed_full_streams"


# Metrics derived from watch history on demand rather than counted.
DERIVED_METRICS = frozenset(
    {AchievementMetric.STREAMS_WATCHED, AchievementMetric.STREAK_DAYS, AchievementMetric.FAVORITES}
)


@dataclass(frozen=True)
class AchievementDefinition:
    id: str
    title: str
    description: str
    metric: AchievementMetric
    threshold: int
    reward_xp: int = 0


ACHIEVEMENTS: tuple[AchievementDefinition, ...] = (
    AchievementDefinition("first_watch", "First watch", "Open any stream at least once.", AchievementMetric.STREAMS_WATCHED, 1),
    AchievementDefinition("streams_10", "10 streams", "Watch ten different streams.", AchievementMetric.STREAMS_WATCHED, 10),
    AchievementDefinition("streams_25", "25 streams", "Watch 25 different streams.", AchievementMetric.STREAMS_WATCHED, 25),
    AchievementDefinition("streams_50", "50 streams", "Watch 50 different streams.", AchievementMetric.STREAMS_WATCHED, 50),
    AchievementDefinition("streak_3", "3-day streak", "Watch streams three days in a row.", AchievementMetric.STREAK_DAYS, 3),
    AchievementDefinition("streak_7", "7-day streak", "Watch streams seven days in a row.", AchievementMetric.STREAK_DAYS, 7),
    AchievementDefinition("favorites_5", "Favorites x5", "Add five streams to favorites.", AchievementMetric.FAVORITES, 5),
    AchievementDefinition("favorites_15", "Favorites x15", "Add 15 streams to favorites.", AchievementMetric.FAVORITES, 15),
    AchievementDefinition("effects_3", "Effects x3", "Watch 3 sessions with any effects.", AchievementMetric.EFFECT_SESSIONS_ANY, 3),
    AchievementDefinition("effects_15", "Effects x15", "Watch 15 sessions with effects enabled.", AchievementMetric.EFFECT_SESSIONS_ANY, 15),
    AchievementDefinition(
        "effects_five_at_once", "5 effects at once", "Finish 5 sessions with 5+ effects enabled.",
        AchievementMetric.EFFECT_SESSIONS_FIVE_PLUS, 5,
    ),
    AchievementDefinition(
        "effects_ten_at_once", "10 effects at once", "Finish 3 sessions with 10+ effects enabled.",
        AchievementMetric.EFFECT_SESSIONS_TEN_PLUS, 3,
    ),
    AchievementDefinition(
        "strong_blur", "Heavy blur", "Watch 3 sessions with strong blur (75%+).",
        AchievementMetric.STRONG_BLUR_SESSIONS, 3,
    ),
    AchievementDefinition(
        "strong_red_glow", "Heavy red glow", "Watch 3 sessions with strong red glow (75%+).",
        AchievementMetric.STRONG_RED_GLOW_SESSIONS, 3,
    ),
    AchievementDefinition(
        "strong_violet_glow", "Heavy violet glow", "Watch 3 sessions with strong violet glow (75%+).",
        AchievementMetric.STRONG_VIOLET_GLOW_SESSIONS, 3,
    ),
    AchievementDefinition(
        "strong_shake", "Heavy shake", "Watch 3 sessions with strong frame shake (75%+).",
        AchievementMetric.STRONG_SHAKE_SESSIONS, 3,
    ),
    AchievementDefinition(
        "cursed_15_effects_full_stream", "Cursed master", "Finish a full stream with all 15 cursed effects.",
        AchievementMetric.CURSED_FULL_STREAMS, 1, reward_xp=3500,
    ),
)


@dataclass(frozen=True)
class EffectUsage:
    """What the playback collaborator reports when a stream window closes."""

    any_effects: bool = False
    max_enabled_effects: int = 0
    strong_blur: bool = False
    strong_red_glow: bool = False
    strong_violet_glow: bool = False
    strong_shake: bool = False
    cursed_master: bool = False

    def increments(self) -> dict[AchievementMetric, int]:
        flags = {
            AchievementMetric.EFFECT_SESSIONS_ANY: self.any_effects,
            AchievementMetric.EFFECT_SESSIONS_FIVE_PLUS: self.max_enabled_effects >= STRONG_EFFECT_MIN_EFFECTS,
            AchievementMetric.EFFECT_SESSIONS_TEN_PLUS: self.max_enabled_effects >= EXTREME_EFFECT_MIN_EFFECTS,
            AchievementMetric.STRONG_BLUR_SESSIONS: self.strong_blur,
            AchievementMetric.STRONG_RED_GLOW_SESSIONS: self.strong_red_glow,
            AchievementMetric.STRONG_VIOLET_GLOW_SESSIONS: self.strong_violet_glow,
            AchievementMetric.STRONG_SHAKE_SESSIONS: self.strong_shake,
            AchievementMetric.CURSED_FULL_STREAMS: self.cursed_master,
        }
        return {metric: 1 for metric, hit in flags.items() if hit}


@dataclass
class AchievementBook:
    counters: dict[AchievementMetric, int] = field(default_factory=dict)
    unlocked: set[str] = field(default_factory=set)

    def record_usage(self, usage: EffectUsage) -> None:
        for metric, amount in usage.increments().items():
            self.counters[metric] = max(0, self.counters.get(metric, 0)) + amount

    def metric_values(self, derived: Mapping[AchievementMetric, int]) -> dict[AchievementMetric, int]:
        values = {metric: max(0, self.counters.get(metric, 0)) for metric in AchievementMetric}
        for metric in DERIVED_METRICS:
            values[metric] = max(0, int(derived.get(metric, 0)))
        return values

    def evaluate(self, derived: Mapping[AchievementMetric, int]) -> list[AchievementDefinition]:
        """Mark newly reached achievements as unlocked and return them."""

        values = self.metric_values(derived)
        newly: list[AchievementDefinition] = []
        for definition in ACHIEVEMENTS:
            if definition.id in self.unlocked:
                continue
            if values[definition.metric] >= definition.threshold:
                self.unlocked.add(definition.id)
                newly.append(definition)
        return newly

    def describe(self, derived: Mapping[AchievementMetric, int]) -> list[dict[str, Any]]:
        values = self.metric_values(derived)
        return [
            {
                "id": definition.id,
                "title": definition.title,
                "description": definition.description,
                "metric": definition.metric.value,
                "threshold": definition.threshold,
                "progress": min(values[definition.metric], definition.threshold),
                "reward_xp": definition.reward_xp,
                "unlocked": definition.id in self.unlocked,
            }
            for definition in ACHIEVEMENTS
        ]

    def to_dict(self) -> dict[str, Any]:
        return {
            "counters": {metric.value: value for metric, value in sorted(self.counters.items(), key=lambda item: item[0].value)},
            "unlocked": sorted(self.unlocked),
        }

    @classmethod
    def from_dict(cls, payload: Any) -> "AchievementBook":
        book = cls()
        if not isinstance(payload, dict):
            return book
        raw_counters = payload.get("counters", {})
        if isinstance(raw_counters, dict):
            for key, value in raw_counters.items():
                try:
                    metric = AchievementMetric(key)
                    book.counters[metric] = max(0, int(value))
                except (TypeError, ValueError):
                    continue
        raw_unlocked = payload.get("unlocked", [])
        if isinstance(raw_unlocked, list):
            known = {definition.id for definition in ACHIEVEMENTS}
            book.unlocked.update(value for value in raw_unlocked if isinstance(value, str) and value in known)
        return book
