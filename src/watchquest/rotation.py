from __future__ import annotations

"""Deterministic quest rotation keyed by day number or ISO week key.

The mixing constants below are an interoperability contract: stored
rotations and claim keys written by older builds only stay valid if every
build orders pools identically for the same seed.
"""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date
from typing import Any, TypeVar

from .catalog import QuestCatalog, QuestScope
from .metrics import iso_week_key


MASK_32 = 0xFFFFFFFF
GOLDEN_GAMMA = 0x9E3779B9
MIX_MULTIPLIER_1 = 0x85EBCA6B
MIX_MULTIPLIER_2 = 0xC2B2AE35
FNV_OFFSET_BASIS = 2166136261
FNV_PRIME = 16777619

ACTIVE_QUEST_COUNT = {QuestScope.DAILY: 5, QuestScope.WEEKLY: 4}

T = TypeVar("T")


def _to_signed_32(value: int) -> int:
    value &= MASK_32
    return value - (1 << 32) if value & 0x80000000 else value


def stable_quest_order(seed: int, index: int) -> int:
    value = seed & MASK_32
    value ^= ((index + 1) * GOLDEN_GAMMA) & MASK_32
    value ^= value >> 16
    value = (value * MIX_MULTIPLIER_1) & MASK_32
    value ^= value >> 13
    value = (value * MIX_MULTIPLIER_2) & MASK_32
    value ^= value >> 16
    return _to_signed_32(value)


def stable_string_hash(value: str) -> int:
    """FNV-1a over UTF-16 code units, returned as an unsigned 32-bit int."""

    hashed = FNV_OFFSET_BASIS
    encoded = value.encode("utf-16-le")
    for offset in range(0, len(encoded), 2):
        hashed ^= int.from_bytes(encoded[offset : offset + 2], "little")
        hashed = (hashed * FNV_PRIME) & MASK_32
    return hashed


def select_templates(pool: Sequence[T], count: int, seed: int) -> list[T]:
    ranked = sorted(range(len(pool)), key=lambda index: (stable_quest_order(seed, index), index))
    return [pool[index] for index in ranked[: max(0, min(count, len(pool)))]]


def day_number(day: date) -> int:
    """Days since 0001-01-01 (that day is 0)."""

    return day.toordinal() - 1


def period_key(scope: QuestScope, day: date) -> str:
    if scope is QuestScope.DAILY:
        return day.isoformat()
    return iso_week_key(day)


def rotation_seed(scope: QuestScope, day: date) -> int:
    if scope is QuestScope.DAILY:
        return day_number(day)
    return stable_string_hash(iso_week_key(day))


@dataclass(frozen=True)
class QuestRotation:
    scope: QuestScope
    period_key: str
    selected_template_ids: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {
            "scope": self.scope.value,
            "period_key": self.period_key,
            "selected_template_ids": list(self.selected_template_ids),
        }

    @classmethod
    def from_dict(cls, scope: QuestScope, payload: Any) -> "QuestRotation | None":
        if not isinstance(payload, dict):
            return None
        key = payload.get("period_key")
        ids = payload.get("selected_template_ids")
        if not isinstance(key, str) or not isinstance(ids, list):
            return None
        return cls(scope=scope, period_key=key, selected_template_ids=tuple(str(item) for item in ids))


def compute_rotation(catalog: QuestCatalog, scope: QuestScope, day: date) -> QuestRotation:
    pool = catalog.pool(scope)
    selected = select_templates(pool, ACTIVE_QUEST_COUNT[scope], rotation_seed(scope, day))
    return QuestRotation(
        scope=scope,
        period_key=period_key(scope, day),
        selected_template_ids=tuple(template.id for template in selected),
    )


def is_valid_selection(rotation: QuestRotation, catalog: QuestCatalog) -> bool:
    pool_ids = set(catalog.pool_ids(rotation.scope))
    expected = min(ACTIVE_QUEST_COUNT[rotation.scope], len(pool_ids))
    ids = rotation.selected_template_ids
    if len(ids) != expected or len(set(ids)) != len(ids):
        return False
    return all(template_id.strip() and template_id in pool_ids for template_id in ids)


def ensure_rotation(
    catalog: QuestCatalog,
    scope: QuestScope,
    day: date,
    stored: QuestRotation | None,
) -> tuple[QuestRotation, bool]:
    """Return the rotation for `day` and whether the stored one had to be replaced.

    A stored rotation survives the whole period as long as it names the right
    number of templates and all of them are still in the pool, so appending
    templates to the catalog never reshuffles quests mid-day or mid-week.
    """

    if (
        stored is not None
        and stored.scope is scope
        and stored.period_key == period_key(scope, day)
        and is_valid_selection(stored, catalog)
    ):
        return stored, False
    return compute_rotation(catalog, scope, day), True
