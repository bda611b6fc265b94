from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from watchquest.telemetry import MAX_STRING_LENGTH, TelemetryLogger, parse_range, sanitize_event_data


def _events(path: Path) -> list[dict]:
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines() if line.strip()]


def test_log_event_writes_jsonl_with_build_info(tmp_path: Path) -> None:
    path = tmp_path / "telemetry" / "events.jsonl"
    logger = TelemetryLogger(path)
    logger.log_event("quest.claimed", source="cli", data={"claim_key": "daily:2026-10-19:daily_watch_30m"})
    events = _events(path)
    assert len(events) == 1
    event = events[0]
    assert event["event_type"] == "quest.claimed"
    assert event["source"] == "cli"
    assert event["schema_version"] == "0.1"
    assert set(event["build"]) == {"engine_version", "python_version", "platform"}
    assert event["ts"].endswith("Z")


def test_unknown_event_type_becomes_risk_flag(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    logger = TelemetryLogger(path)
    logger.log_event("totally.made.up", data={"x": 1})
    event = _events(path)[0]
    assert event["event_type"] == "risk.flagged"
    assert event["data"]["reason"] == "invalid_event_type"
    assert "x" not in event["data"]


def test_unknown_source_defaults_to_engine(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    TelemetryLogger(path).log_event("engine.started", source="mcp")
    assert _events(path)[0]["source"] == "engine"


def test_sanitize_strips_controls_and_truncates() -> None:
    sanitized, truncated = sanitize_event_data({"video_id": "abc\x00\x1b[31m", "long": "x" * 500, "n": [1, None, True]})
    assert sanitized["video_id"] == "abc[31m"
    assert sanitized["long"].startswith("x" * MAX_STRING_LENGTH)
    assert sanitized["long"].endswith("...[truncated]")
    assert sanitized["n"] == [1, None, True]
    assert truncated == 1


def test_truncation_emits_follow_up_risk_flag(tmp_path: Path) -> None:
    path = tmp_path / "events.jsonl"
    TelemetryLogger(path).log_event("video.opened", data={"video_id": "v" * 400}, trace_id="cli:abc")
    events = _events(path)
    assert [event["event_type"] for event in events] == ["video.opened", "risk.flagged"]
    assert events[1]["data"]["trigger_event_type"] == "video.opened"
    assert events[0]["trace_id"] == "cli:abc"


def test_logger_failures_do_not_propagate(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "events.jsonl"
    logger = TelemetryLogger(path)
    path.mkdir()
    logger.log_event("engine.started")
    assert "[telemetry]" in capsys.readouterr().err


def test_parse_range() -> None:
    assert parse_range("7d") == timedelta(days=7)
    assert parse_range("24H") == timedelta(hours=24)
    for bad in ("", "7w", "0d", "-1d"):
        with pytest.raises(ValueError):
            parse_range(bad)


def test_export_summary_counts_window(tmp_path: Path) -> None:
    now = {"value": datetime(2026, 10, 19, 12, 0, tzinfo=UTC)}
    path = tmp_path / "events.jsonl"
    logger = TelemetryLogger(path, now=lambda: now["value"])
    logger.log_event("quest.claimed", data={"scope": "daily"})
    now["value"] = datetime(2026, 10, 27, 12, 0, tzinfo=UTC)
    logger.log_event("quest.claimed", data={"scope": "weekly"})
    logger.log_event("xp.awarded", data={"amount": 1190, "reason": "quest"})
    logger.log_event("xp.awarded", data={"amount": 900, "reason": "first_watch"})
    logger.log_event("session.recorded", data={"eligible_seconds": 600})
    logger.log_event("clock.sync_failed", data={"errors": []})
    out_path = tmp_path / "out" / "summary.json"

    summary = logger.export_summary(range_value="7d", progression={"total_xp": 2090, "level": 20}, out_path=out_path)
    assert summary["claims_total"] == 1
    assert summary["claims_by_scope"] == {"weekly": 1}
    assert summary["xp_awarded_total"] == 2090
    assert summary["xp_awarded_by_reason"] == {"first_watch": 900, "quest": 1190}
    assert summary["seconds_recorded"] == 600
    assert summary["clock_sync_failures"] == 1
    assert summary["total_xp"] == 2090
    assert json.loads(out_path.read_text(encoding="utf-8")) == summary


def test_purge_and_count(tmp_path: Path) -> None:
    logger = TelemetryLogger(tmp_path / "events.jsonl")
    assert logger.purge() is False
    logger.log_event("engine.started")
    logger.log_event("engine.started")
    assert logger.count_events() == 2
    assert logger.purge() is True
    assert logger.count_events() == 0
