from __future__ import annotations

"""Environment-driven engine settings with safe fallbacks."""

import os
from dataclasses import dataclass, field
from pathlib import Path

from .paths import app_home


DEFAULT_TIMEZONE = "Europe/Moscow"
DEFAULT_TIME_ENDPOINTS = (
    "https://www.google.com/generate_204",
    "https://www.cloudflare.com/cdn-cgi/trace",
    "https://www.microsoft.com",
)
DEFAULT_SYNC_INTERVAL_SECONDS = 300
DEFAULT_SYNC_TIMEOUT_SECONDS = 6
DEFAULT_ROLLOVER_INTERVAL_SECONDS = 15
DEFAULT_METRICS_RETENTION_DAYS = 90


def _env_int(name: str, fallback: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        return fallback
    if value <= 0:
        return fallback
    return value


def _env_list(name: str, fallback: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    values = tuple(item.strip() for item in raw.split(",") if item.strip())
    return values or fallback


@dataclass(frozen=True)
class EngineConfig:
    """Operational knobs for one engine instance.

    Game rules (XP curve, pool sizes, reward multiplier) are not configurable;
    only where state lives and how often the background timers run.
    """

    home: Path
    timezone: str = DEFAULT_TIMEZONE
    time_endpoints: tuple[str, ...] = field(default=DEFAULT_TIME_ENDPOINTS)
    sync_interval_seconds: int = DEFAULT_SYNC_INTERVAL_SECONDS
    sync_timeout_seconds: int = DEFAULT_SYNC_TIMEOUT_SECONDS
    rollover_interval_seconds: int = DEFAULT_ROLLOVER_INTERVAL_SECONDS
    metrics_retention_days: int = DEFAULT_METRICS_RETENTION_DAYS

    @classmethod
    def from_env(cls) -> "EngineConfig":
        return cls(
            home=app_home(),
            timezone=os.environ.get("WATCHQUEST_TIMEZONE", "").strip() or DEFAULT_TIMEZONE,
            time_endpoints=_env_list("WATCHQUEST_TIME_ENDPOINTS", DEFAULT_TIME_ENDPOINTS),
            sync_interval_seconds=_env_int("WATCHQUEST_SYNC_INTERVAL_SECONDS", DEFAULT_SYNC_INTERVAL_SECONDS),
            sync_timeout_seconds=_env_int("WATCHQUEST_SYNC_TIMEOUT_SECONDS", DEFAULT_SYNC_TIMEOUT_SECONDS),
            rollover_interval_seconds=_env_int(
                "WATCHQUEST_ROLLOVER_INTERVAL_SECONDS", DEFAULT_ROLLOVER_INTERVAL_SECONDS
            ),
            metrics_retention_days=_env_int("WATCHQUEST_METRICS_RETENTION_DAYS", DEFAULT_METRICS_RETENTION_DAYS),
        )
