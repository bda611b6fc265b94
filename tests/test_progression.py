from __future__ import annotations

from watchquest.progression import (
    MAX_LEVEL,
    MAX_PRESTIGE,
    ProgressionLedger,
    level_from_xp,
    prestige_xp_cap,
    total_xp_for_level,
    xp_to_reach_next_level,
)


def test_curve_starts_at_eighty_and_grows() -> None:
    assert [xp_to_reach_next_level(level) for level in (1, 2, 3)] == [80, 81, 82]
    assert xp_to_reach_next_level(0) == 80
    previous = 0
    for level in range(1, MAX_LEVEL):
        need = xp_to_reach_next_level(level)
        assert need >= previous
        previous = need


def test_total_xp_prefix_sums() -> None:
    assert total_xp_for_level(1) == 0
    assert total_xp_for_level(2) == 80
    assert total_xp_for_level(3) == 161
    assert total_xp_for_level(4) == 243


def test_level_round_trip_for_every_level() -> None:
    for level in range(1, MAX_LEVEL + 1):
        assert level_from_xp(total_xp_for_level(level)) == level
        if level > 1:
            assert level_from_xp(total_xp_for_level(level) - 1) == level - 1


def test_level_is_capped() -> None:
    assert level_from_xp(prestige_xp_cap() * 10) == MAX_LEVEL


def test_add_xp_ignores_non_positive_amounts() -> None:
    ledger = ProgressionLedger()
    assert ledger.add_xp(0) == 0
    assert ledger.add_xp(-10) == 0
    assert ledger.total_xp == 0
    assert ledger.add_xp(79) == 79
    assert ledger.level == 1
    assert ledger.xp_to_next_level == 1
    ledger.add_xp(1)
    assert ledger.level == 2
    assert ledger.level_progress() == (0, 81)


def test_total_xp_keeps_counting_past_cap() -> None:
    ledger = ProgressionLedger()
    cap = prestige_xp_cap()
    ledger.add_xp(cap + 500)
    assert ledger.total_xp == cap + 500
    assert ledger.prestige_xp == cap
    assert ledger.level == MAX_LEVEL
    assert ledger.xp_to_next_level == 0


def test_prestige_requires_max_level() -> None:
    ledger = ProgressionLedger()
    ledger.add_xp(1000)
    assert ledger.can_prestige is False
    assert ledger.apply_prestige() is False
    assert ledger.prestige == 0


def test_prestige_resets_cycle_but_not_total() -> None:
    ledger = ProgressionLedger()
    ledger.add_xp(prestige_xp_cap())
    assert ledger.apply_prestige() is True
    assert ledger.prestige == 1
    assert ledger.prestige_xp == 0
    assert ledger.level == 1
    assert ledger.total_xp == prestige_xp_cap()


def test_prestige_stops_at_cap() -> None:
    ledger = ProgressionLedger(total_xp=0, prestige=MAX_PRESTIGE, prestige_xp=prestige_xp_cap())
    assert ledger.can_prestige is False
    assert ledger.apply_prestige() is False


def test_from_dict_clamps_values() -> None:
    ledger = ProgressionLedger.from_dict({"total_xp": -3, "prestige": 999, "prestige_xp": "12"})
    assert ledger.total_xp == 0
    assert ledger.prestige == MAX_PRESTIGE
    assert ledger.prestige_xp == 12
    assert ProgressionLedger.from_dict("junk") == ProgressionLedger()
