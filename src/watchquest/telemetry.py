from __future__ import annotations

"""Append-only JSONL engine events and windowed summary export."""

import hashlib
import json
import platform
import re
import sys
import unicodedata
import uuid
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from importlib.metadata import PackageNotFoundError, version as package_version
from pathlib import Path
from typing import Any


SCHEMA_VERSION = "0.1"
VALID_EVENT_TYPES = {
    "engine.started",
    "session.recorded",
    "video.opened",
    "video.finished",
    "quest.claimed",
    "xp.awarded",
    "achievement.unlocked",
    "prestige.applied",
    "rollover.applied",
    "clock.synced",
    "clock.sync_failed",
    "state.load_failed",
    "risk.flagged",
}
VALID_SOURCES = {"cli", "api", "engine"}
MAX_STRING_LENGTH = 200
RANGE_PATTERN = re.compile(r"^(\d+)([dh])$")


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _rfc3339(value: datetime) -> str:
    return value.astimezone(UTC).replace(microsecond=0).isoformat().replace("+00:00", "Z")


def _parse_ts(value: Any) -> datetime | None:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _safe_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def _strip_control_chars(value: str) -> str:
    return "".join(ch for ch in value if not unicodedata.category(ch).startswith("C"))


def sha256_hex(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class BuildInfo:
    engine_version: str
    python_version: str
    platform: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "engine_version": self.engine_version,
            "python_version": self.python_version,
            "platform": self.platform,
        }


def detect_engine_version() -> str:
    try:
        return package_version("watchquest")
    except PackageNotFoundError:
        return "0.1.0"


def _sanitize_text(value: str) -> tuple[str, int]:
    cleaned = _strip_control_chars(value).strip()
    if len(cleaned) > MAX_STRING_LENGTH:
        return f"{cleaned[:MAX_STRING_LENGTH]}...[truncated]", 1
    return cleaned, 0


def sanitize_event_data(data: Any) -> tuple[Any, int]:
    """Recursively strip control characters and truncate long strings.

    Returns the cleaned payload and how many fields were truncated.
    """

    if isinstance(data, dict):
        sanitized: dict[str, Any] = {}
        truncated = 0
        for key, value in data.items():
            key_text, key_truncated = _sanitize_text(str(key))
            value_sanitized, value_truncated = sanitize_event_data(value)
            sanitized[key_text] = value_sanitized
            truncated += key_truncated + value_truncated
        return sanitized, truncated
    if isinstance(data, (list, tuple)):
        items: list[Any] = []
        truncated = 0
        for item in data:
            item_sanitized, item_truncated = sanitize_event_data(item)
            items.append(item_sanitized)
            truncated += item_truncated
        return items, truncated
    if data is None or isinstance(data, (int, float, bool)):
        return data, 0
    return _sanitize_text(str(data))


def parse_range(range_value: str) -> timedelta:
    """Parse compact duration windows such as `7d` or `24h`."""

    match = RANGE_PATTERN.match(range_value.strip().lower())
    if not match:
        raise ValueError("range must be like 7d or 24h")
    amount = int(match.group(1))
    if amount <= 0:
        raise ValueError("range amount must be > 0")
    if match.group(2) == "d":
        return timedelta(days=amount)
    return timedelta(hours=amount)


class TelemetryLogger:
    """Append-only engine event log. Write failures never reach the caller."""

    def __init__(self, events_path: Path, *, now: Callable[[], datetime] = _utc_now) -> None:
        self.events_path = events_path
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        self.now = now
        self.build = BuildInfo(
            engine_version=detect_engine_version(),
            python_version=sys.version.split()[0],
            platform=platform.platform(),
        )

    def _append_jsonl(self, payload: dict[str, Any]) -> None:
        self.events_path.parent.mkdir(parents=True, exist_ok=True)
        with self.events_path.open("a", encoding="utf-8", newline="\n") as handle:
            handle.write(_safe_json(payload))
            handle.write("\n")

    def _base_event(
        self, *, event_type: str, source: str, data: dict[str, Any], trace_id: str | None = None
    ) -> dict[str, Any]:
        if event_type not in VALID_EVENT_TYPES:
            data = {"reason": "invalid_event_type", "invalid_event_type_hash": sha256_hex(event_type)}
            event_type = "risk.flagged"
        event = {
            "schema_version": SCHEMA_VERSION,
            "event_id": str(uuid.uuid4()),
            "ts": _rfc3339(self.now()),
            "event_type": event_type,
            "source": source if source in VALID_SOURCES else "engine",
            "build": self.build.to_dict(),
            "data": data,
        }
        if trace_id:
            event["trace_id"] = _sanitize_text(trace_id)[0]
        return event

    def log_event(
        self,
        event_type: str,
        *,
        source: str = "engine",
        data: dict[str, Any] | None = None,
        trace_id: str | None = None,
    ) -> None:
        try:
            sanitized, truncated = sanitize_event_data(data or {})
            self._append_jsonl(self._base_event(event_type=event_type, source=source, data=sanitized, trace_id=trace_id))
            if truncated and event_type != "risk.flagged":
                self._append_jsonl(
                    self._base_event(
                        event_type="risk.flagged",
                        source=source,
                        data={
                            "reason": "telemetry_sanitized",
                            "trigger_event_type": event_type,
                            "fields_truncated_count": truncated,
                        },
                        trace_id=trace_id,
                    )
                )
        except Exception as exc:  # noqa: BLE001
            print(f"[telemetry] failed to append event: {exc}", file=sys.stderr)

    def iter_events(self) -> list[dict[str, Any]]:
        if not self.events_path.exists():
            return []
        events: list[dict[str, Any]] = []
        with self.events_path.open("r", encoding="utf-8") as handle:
            for line in handle:
                line = line.strip()
                if not line:
                    continue
                try:
                    payload = json.loads(line)
                except json.JSONDecodeError:
                    continue
                if isinstance(payload, dict):
                    events.append(payload)
        return events

    def count_events(self) -> int:
        if not self.events_path.exists():
            return 0
        with self.events_path.open("r", encoding="utf-8") as handle:
            return sum(1 for line in handle if line.strip())

    def purge(self) -> bool:
        if not self.events_path.exists():
            return False
        self.events_path.unlink()
        return True

    def export_summary(
        self,
        *,
        range_value: str,
        progression: dict[str, Any] | None = None,
        out_path: Path | None = None,
    ) -> dict[str, Any]:
        """Aggregate the events of one window, e.g. `7d` or `24h`."""

        window = parse_range(range_value)
        end = self.now()
        start = end - window

        in_window = [
            event
            for event in self.iter_events()
            if (ts := _parse_ts(event.get("ts"))) is not None and start <= ts <= end
        ]

        def of_type(event_type: str) -> list[dict[str, Any]]:
            return [event for event in in_window if event.get("event_type") == event_type]

        def data_of(event: dict[str, Any]) -> dict[str, Any]:
            data = event.get("data")
            return data if isinstance(data, dict) else {}

        def data_int(event: dict[str, Any], key: str) -> int:
            try:
                return max(0, int(data_of(event).get(key, 0)))
            except (TypeError, ValueError):
                return 0

        claims = of_type("quest.claimed")
        claims_by_scope = Counter(str(data_of(event).get("scope", "unknown")) for event in claims)
        xp_by_reason: Counter[str] = Counter()
        for event in of_type("xp.awarded"):
            xp_by_reason[str(data_of(event).get("reason", "unknown"))] += data_int(event, "amount")
        progression = progression or {}

        summary = {
            "schema_version": SCHEMA_VERSION,
            "generated_at": _rfc3339(end),
            "range": range_value,
            "window_start": _rfc3339(start),
            "window_end": _rfc3339(end),
            "events_considered": len(in_window),
            "events_by_type": dict(sorted(Counter(str(event.get("event_type")) for event in in_window).items())),
            "claims_total": len(claims),
            "claims_by_scope": dict(sorted(claims_by_scope.items())),
            "xp_awarded_total": sum(xp_by_reason.values()),
            "xp_awarded_by_reason": dict(sorted(xp_by_reason.items())),
            "seconds_recorded": sum(data_int(event, "eligible_seconds") for event in of_type("session.recorded")),
            "videos_finished": len(of_type("video.finished")),
            "achievements_unlocked": len(of_type("achievement.unlocked")),
            "rollovers": len(of_type("rollover.applied")),
            "clock_syncs": len(of_type("clock.synced")),
            "clock_sync_failures": len(of_type("clock.sync_failed")),
            "risk_flags_count": len(of_type("risk.flagged")),
            "total_xp": int(progression.get("total_xp", 0)),
            "level": int(progression.get("level", 1)),
            "prestige": int(progression.get("prestige", 0)),
        }
        if out_path is not None:
            out_path.parent.mkdir(parents=True, exist_ok=True)
            out_path.write_text(json.dumps(summary, indent=2), encoding="utf-8")
        return summary
