from __future__ import annotations

"""Packaged quest catalog: versioned daily and weekly template pools."""

import json
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from .errors import CatalogError


CATALOG_DIR = Path(__file__).resolve().parent / "data"
CATALOG_FILE = "quests.v1.yaml"
SCHEMA_FILE = "quest_catalog.schema.json"


class QuestScope(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class QuestMetric(str, Enum):
    DAILY_WATCH_SECONDS = "daily_watch_seconds"
    DAILY_STREAMS_COUNT = "daily_streams_count"
    DAILY_BEST_SESSION_SECONDS = "daily_best_session_seconds"
    DAILY_EFFECT_SESSIONS_COUNT = "daily_effect_sessions_count"
    WEEKLY_WATCH_SECONDS = "weekly_watch_seconds"
    WEEKLY_ACTIVE_DAYS_COUNT = "weekly_active_days_count"
    WEEKLY_STREAMS_COUNT = "weekly_streams_count"
    WEEKLY_BEST_SESSION_SECONDS = "weekly_best_session_seconds"
    WEEKLY_EFFECT_SESSIONS_COUNT = "weekly_effect_sessions_count"


@dataclass(frozen=True)
class QuestTemplate:
    id: str
    title: str
    description: str
    reward_xp: int
    target: int
    metric: QuestMetric
    unit: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "reward_xp": self.reward_xp,
            "target": self.target,
            "metric": self.metric.value,
            "unit": self.unit,
        }


@dataclass(frozen=True)
class QuestCatalog:
    catalog_version: int
    daily: tuple[QuestTemplate, ...]
    weekly: tuple[QuestTemplate, ...]

    def pool(self, scope: QuestScope) -> tuple[QuestTemplate, ...]:
        return self.daily if scope is QuestScope.DAILY else self.weekly

    def pool_ids(self, scope: QuestScope) -> list[str]:
        return [template.id for template in self.pool(scope)]

    def template(self, scope: QuestScope, template_id: str) -> QuestTemplate | None:
        for template in self.pool(scope):
            if template.id == template_id:
                return template
        return None


def _load_schema(catalog_dir: Path) -> dict[str, Any]:
    path = catalog_dir / SCHEMA_FILE
    if not path.exists():
        raise CatalogError(f"Quest catalog schema not found: {path}")
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise CatalogError(f"Quest catalog schema is not valid JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise CatalogError(f"Quest catalog schema must be a JSON object: {path}")
    return payload


def _build_pool(raw: list[dict[str, Any]], *, scope: QuestScope, path: Path) -> tuple[QuestTemplate, ...]:
    templates: list[QuestTemplate] = []
    seen: set[str] = set()
    for item in raw:
        template_id = item["id"]
        if not template_id.startswith(f"{scope.value}_"):
            raise CatalogError(f"Template {template_id} is in the {scope.value} pool of {path} with the wrong prefix")
        metric = QuestMetric(item["metric"])
        if not metric.value.startswith(f"{scope.value}_"):
            raise CatalogError(f"Template {template_id} uses {metric.value}, which is not a {scope.value} metric")
        if template_id in seen:
            raise CatalogError(f"Duplicate quest template id detected: {template_id}")
        seen.add(template_id)
        templates.append(
            QuestTemplate(
                id=template_id,
                title=item["title"],
                description=item["description"],
                reward_xp=int(item["reward_xp"]),
                target=int(item["target"]),
                metric=metric,
                unit=item["unit"],
            )
        )
    return tuple(templates)


def load_catalog(catalog_dir: Path = CATALOG_DIR, filename: str = CATALOG_FILE) -> QuestCatalog:
    """Load and validate the quest catalog YAML shipped with the package."""

    validator = Draft202012Validator(_load_schema(catalog_dir))
    path = catalog_dir / filename
    if not path.exists():
        raise CatalogError(f"Quest catalog not found: {path}")
    payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise CatalogError(f"Quest catalog must be a mapping: {path}")
    errors = sorted(validator.iter_errors(payload), key=lambda err: [str(part) for part in err.path])
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.path) or "<root>"
        raise CatalogError(f"Quest catalog validation failed for {path} at {where}: {first.message}")

    return QuestCatalog(
        catalog_version=int(payload["catalog_version"]),
        daily=_build_pool(payload["daily"], scope=QuestScope.DAILY, path=path),
        weekly=_build_pool(payload["weekly"], scope=QuestScope.WEEKLY, path=path),
    )


@lru_cache(maxsize=1)
def default_catalog() -> QuestCatalog:
    return load_catalog()
