from __future__ import annotations

from watchquest.achievements import ACHIEVEMENTS, AchievementBook, AchievementMetric, EffectUsage


def _derived(streams: int = 0, streak: int = 0, favorites: int = 0) -> dict[AchievementMetric, int]:
    return {
        AchievementMetric.STREAMS_WATCHED: streams,
        AchievementMetric.STREAK_DAYS: streak,
        AchievementMetric.FAVORITES: favorites,
    }


def test_achievement_ids_are_unique() -> None:
    ids = [definition.id for definition in ACHIEVEMENTS]
    assert len(ids) == len(set(ids))


def test_effect_usage_increments() -> None:
    usage = EffectUsage(any_effects=True, max_enabled_effects=10, strong_blur=True)
    assert usage.increments() == {
        AchievementMetric.EFFECT_SESSIONS_ANY: 1,
        AchievementMetric.EFFECT_SESSIONS_FIVE_PLUS: 1,
        AchievementMetric.EFFECT_SESSIONS_TEN_PLUS: 1,
        AchievementMetric.STRONG_BLUR_SESSIONS: 1,
    }
    assert EffectUsage().increments() == {}


def test_evaluate_unlocks_each_achievement_once() -> None:
    book = AchievementBook()
    newly = book.evaluate(_derived(streams=1))
    assert [definition.id for definition in newly] == ["first_watch"]
    assert book.evaluate(_derived(streams=1)) == []
    newly = book.evaluate(_derived(streams=10, streak=3))
    assert {definition.id for definition in newly} == {"streams_10", "streak_3"}


def test_counters_drive_effect_achievements() -> None:
    book = AchievementBook()
    for _ in range(3):
        book.record_usage(EffectUsage(any_effects=True, max_enabled_effects=2))
    unlocked = {definition.id for definition in book.evaluate(_derived())}
    assert unlocked == {"effects_3"}


def test_cursed_master_carries_xp_reward() -> None:
    book = AchievementBook()
    book.record_usage(EffectUsage(any_effects=True, max_enabled_effects=15, cursed_master=True))
    newly = {definition.id: definition.reward_xp for definition in book.evaluate(_derived())}
    assert newly["cursed_15_effects_full_stream"] == 3500


def test_describe_caps_progress_at_threshold() -> None:
    book = AchievementBook()
    rows = {row["id"]: row for row in book.describe(_derived(streams=60))}
    assert rows["streams_50"]["progress"] == 50
    assert rows["streams_50"]["unlocked"] is False
    assert rows["favorites_5"]["progress"] == 0


def test_from_dict_ignores_unknown_entries() -> None:
    book = AchievementBook.from_dict(
        {
            "counters": {"effect_sessions_any": 4, "bogus": 3, "strong_shake_sessions": -2},
            "unlocked": ["first_watch", "not_an_achievement", 12],
        }
    )
    assert book.counters == {
        AchievementMetric.EFFECT_SESSIONS_ANY: 4,
        AchievementMetric.STRONG_SHAKE_SESSIONS: 0,
    }
    assert book.unlocked == {"first_watch"}
    assert AchievementBook.from_dict(None).to_dict() == {"counters": {}, "unlocked": []}
