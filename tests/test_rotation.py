from __future__ import annotations

from dataclasses import replace
from datetime import date, timedelta

from watchquest.catalog import QuestScope, default_catalog
from watchquest.rotation import (
    QuestRotation,
    compute_rotation,
    day_number,
    ensure_rotation,
    rotation_seed,
    select_templates,
    stable_quest_order,
    stable_string_hash,
)


def test_select_templates_matches_seed_19999_fixture() -> None:
    assert select_templates(list(range(15)), 5, 19999) == [6, 3, 11, 10, 12]


def test_day_number_counts_from_year_one() -> None:
    assert day_number(date(1, 1, 1)) == 0
    assert day_number(date(2026, 10, 19)) == 739907
    assert rotation_seed(QuestScope.DAILY, date(2026, 10, 19)) == 739907


def test_stable_string_hash_is_fnv1a_32() -> None:
    assert stable_string_hash("") == 2166136261
    assert stable_string_hash("a") == 3826002220
    assert stable_string_hash("2026-W43") == 101411902


def test_stable_quest_order_stays_in_signed_32_bit_range() -> None:
    for seed in (0, 1, 19999, 739907, 2**32 - 1, -5):
        for index in range(20):
            key = stable_quest_order(seed, index)
            assert -(2**31) <= key < 2**31
            assert key == stable_quest_order(seed, index)


def test_daily_rotation_for_known_day() -> None:
    rotation = compute_rotation(default_catalog(), QuestScope.DAILY, date(2026, 10, 19))
    assert rotation.period_key == "2026-10-19"
    assert rotation.selected_template_ids == (
        "daily_effects_3",
        "daily_watch_30m",
        "daily_effects_1",
        "daily_streams_3",
        "daily_watch_60m",
    )


def test_weekly_rotation_for_known_week() -> None:
    catalog = default_catalog()
    expected = (
        "weekly_effect_sessions_12",
        "weekly_best_session_45m",
        "weekly_best_session_75m",
        "weekly_days_4",
    )
    for offset in range(7):
        rotation = compute_rotation(catalog, QuestScope.WEEKLY, date(2026, 10, 19) + timedelta(days=offset))
        assert rotation.period_key == "2026-W43"
        assert rotation.selected_template_ids == expected


def test_selection_is_deterministic_and_distinct() -> None:
    pool = [f"daily_{idx}" for idx in range(15)]
    for seed in range(0, 5000, 97):
        first = select_templates(pool, 5, seed)
        assert first == select_templates(pool, 5, seed)
        assert len(first) == 5
        assert len(set(first)) == 5


def test_selection_caps_count_at_pool_size() -> None:
    assert sorted(select_templates(["a", "b"], 5, 42)) == ["a", "b"]
    assert select_templates(["a", "b"], 0, 42) == []


def test_ensure_rotation_keeps_current_rotation() -> None:
    catalog = default_catalog()
    day = date(2026, 10, 19)
    stored = compute_rotation(catalog, QuestScope.DAILY, day)
    rotation, changed = ensure_rotation(catalog, QuestScope.DAILY, day, stored)
    assert rotation is stored
    assert changed is False


def test_ensure_rotation_replaces_previous_period() -> None:
    catalog = default_catalog()
    day = date(2026, 10, 19)
    stored = compute_rotation(catalog, QuestScope.DAILY, day - timedelta(days=1))
    rotation, changed = ensure_rotation(catalog, QuestScope.DAILY, day, stored)
    assert changed is True
    assert rotation.period_key == "2026-10-19"


def test_ensure_rotation_heals_unknown_template_ids() -> None:
    catalog = default_catalog()
    day = date(2026, 10, 19)
    stale = QuestRotation(
        scope=QuestScope.DAILY,
        period_key="2026-10-19",
        selected_template_ids=("daily_removed_quest", "daily_watch_30m"),
    )
    rotation, changed = ensure_rotation(catalog, QuestScope.DAILY, day, stale)
    assert changed is True
    assert rotation == compute_rotation(catalog, QuestScope.DAILY, day)


def test_ensure_rotation_keeps_stored_ids_when_catalog_grows_mid_period() -> None:
    catalog = default_catalog()
    day = date(2026, 10, 19)
    stored = compute_rotation(catalog, QuestScope.DAILY, day)
    extras = tuple(replace(catalog.daily[0], id=f"daily_extra_{index}") for index in range(4))
    grown = replace(catalog, daily=catalog.daily + extras)
    assert compute_rotation(grown, QuestScope.DAILY, day) != stored

    rotation, changed = ensure_rotation(grown, QuestScope.DAILY, day, stored)
    assert changed is False
    assert rotation is stored
    assert "daily_watch_60m" in rotation.selected_template_ids


def test_ensure_rotation_replaces_full_selection_with_a_removed_id() -> None:
    catalog = default_catalog()
    day = date(2026, 10, 19)
    fresh = compute_rotation(catalog, QuestScope.DAILY, day)
    stale = replace(fresh, selected_template_ids=fresh.selected_template_ids[:4] + ("daily_removed_quest",))
    rotation, changed = ensure_rotation(catalog, QuestScope.DAILY, day, stale)
    assert changed is True
    assert rotation == fresh


def test_ensure_rotation_replaces_duplicate_ids() -> None:
    catalog = default_catalog()
    day = date(2026, 10, 19)
    fresh = compute_rotation(catalog, QuestScope.DAILY, day)
    doubled = replace(fresh, selected_template_ids=fresh.selected_template_ids[:4] + fresh.selected_template_ids[:1])
    rotation, changed = ensure_rotation(catalog, QuestScope.DAILY, day, doubled)
    assert changed is True
    assert rotation == fresh


def test_rotation_from_dict_rejects_malformed_payloads() -> None:
    assert QuestRotation.from_dict(QuestScope.DAILY, None) is None
    assert QuestRotation.from_dict(QuestScope.DAILY, {"period_key": 5, "selected_template_ids": []}) is None
    assert QuestRotation.from_dict(QuestScope.DAILY, {"period_key": "2026-10-19"}) is None
    restored = QuestRotation.from_dict(
        QuestScope.WEEKLY, {"period_key": "2026-W43", "selected_template_ids": ["weekly_days_4"]}
    )
    assert restored == QuestRotation(QuestScope.WEEKLY, "2026-W43", ("weekly_days_4",))
