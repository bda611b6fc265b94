from __future__ import annotations

import json
from pathlib import Path

from watchquest.store import STATE_SCHEMA_VERSION, SnapshotStore, migrate_state


def test_load_missing_file_returns_empty_document(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "state.json")
    assert store.load() == {"state_schema_version": STATE_SCHEMA_VERSION}


def test_save_then_load(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "state.json")
    assert store.save({"claimed_quest_keys": ["daily:2026-10-19:daily_watch_30m"]}, revision=1) is True
    loaded = store.load()
    assert loaded["claimed_quest_keys"] == ["daily:2026-10-19:daily_watch_30m"]
    assert loaded["state_schema_version"] == STATE_SCHEMA_VERSION
    assert not (tmp_path / ".state.json.tmp").exists()


def test_stale_revisions_are_dropped(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "state.json")
    assert store.save({"value": "new"}, revision=5) is True
    assert store.save({"value": "old"}, revision=4) is False
    assert store.save({"value": "same"}, revision=5) is False
    assert store.load()["value"] == "new"
    assert store.last_revision == 5


def test_second_save_keeps_backup_of_previous_document(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "state.json")
    store.save({"value": "first"}, revision=1)
    store.save({"value": "second"}, revision=2)
    backup = json.loads((tmp_path / "state.json.bak").read_text(encoding="utf-8"))
    assert backup["value"] == "first"


def test_corrupt_file_falls_back_to_backup_and_reports(tmp_path: Path) -> None:
    failures: list[tuple[str, str]] = []
    store = SnapshotStore(tmp_path / "state.json", on_load_failure=lambda name, error: failures.append((name, error)))
    store.save({"value": "first"}, revision=1)
    store.save({"value": "second"}, revision=2)
    (tmp_path / "state.json").write_text("{not json", encoding="utf-8")
    assert store.load()["value"] == "first"
    assert failures == [("state.json", "JSONDecodeError")]


def test_corrupt_file_and_backup_fall_back_to_empty(tmp_path: Path) -> None:
    failures: list[tuple[str, str]] = []
    store = SnapshotStore(tmp_path / "state.json", on_load_failure=lambda name, error: failures.append((name, error)))
    (tmp_path / "state.json").write_text("[1, 2]", encoding="utf-8")
    (tmp_path / "state.json.bak").write_text("", encoding="utf-8")
    assert store.load() == {"state_schema_version": STATE_SCHEMA_VERSION}
    assert [name for name, _ in failures] == ["state.json", "state.json.bak"]


def test_corrupt_primary_does_not_overwrite_backup(tmp_path: Path) -> None:
    store = SnapshotStore(tmp_path / "state.json")
    store.save({"value": "first"}, revision=1)
    store.save({"value": "second"}, revision=2)
    (tmp_path / "state.json").write_text("garbage", encoding="utf-8")
    store.save({"value": "third"}, revision=3)
    backup = json.loads((tmp_path / "state.json.bak").read_text(encoding="utf-8"))
    assert backup["value"] == "first"


def test_migrate_unversioned_document() -> None:
    migrated = migrate_state({"claimed": ["daily:2026-10-19:daily_watch_30m"], "total_xp": 500, "prestige": 1})
    assert migrated["state_schema_version"] == STATE_SCHEMA_VERSION
    assert migrated["migrated_from"] == "0.0"
    assert migrated["claimed_quest_keys"] == ["daily:2026-10-19:daily_watch_30m"]
    assert migrated["progression"] == {"total_xp": 500, "prestige": 1, "prestige_xp": 0}
    assert "total_xp" not in migrated


def test_current_version_is_left_untouched() -> None:
    payload = {"state_schema_version": STATE_SCHEMA_VERSION, "value": 1}
    assert migrate_state(payload) is payload
