from __future__ import annotations

"""Versioned JSON snapshot file with atomic replace and a backup copy."""

import json
import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any


STATE_SCHEMA_VERSION = "0.1"

LoadFailureHook = Callable[[str, str], None]


def _now_iso() -> str:
    return datetime.now(tz=UTC).isoformat()


def _save_json(path: Path, value: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    temp_path = path.parent / f".{path.name}.tmp"
    payload = json.dumps(value, indent=2, sort_keys=True)
    for attempt in range(5):
        temp_path.write_text(payload, encoding="utf-8")
        try:
            temp_path.replace(path)
            return
        except PermissionError:
            if attempt == 4:
                raise
            # On Windows, AV/indexers can briefly lock newly-written temp files.
            time.sleep(0.02 * (attempt + 1))


def _read_json_object(path: Path) -> dict[str, Any]:
    payload = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(payload, dict):
        raise ValueError(f"State file must hold a JSON object: {path}")
    return payload


def migrate_state(payload: dict[str, Any]) -> dict[str, Any]:
    """Bring an older snapshot up to the current schema version."""

    version = payload.get("state_schema_version", "0.0")
    if version == STATE_SCHEMA_VERSION:
        return payload
    migrated = dict(payload)
    if version == "0.0":
        # Un-versioned documents kept claims as a plain list under `claimed`.
        if "claimed_quest_keys" not in migrated and isinstance(migrated.get("claimed"), list):
            migrated["claimed_quest_keys"] = migrated.pop("claimed")
        if "progression" not in migrated and "total_xp" in migrated:
            migrated["progression"] = {
                "total_xp": migrated.pop("total_xp"),
                "prestige": migrated.pop("prestige", 0),
                "prestige_xp": migrated.pop("prestige_xp", 0),
            }
    migrated["state_schema_version"] = STATE_SCHEMA_VERSION
    migrated["migrated_from"] = version
    migrated["migrated_at"] = _now_iso()
    return migrated


class SnapshotStore:
    """Single JSON document holding the whole engine state.

    Writes are serialized by a lock and go through a temp file plus atomic
    replace; the previous good file is kept as `<name>.bak`. A snapshot whose
    revision is not newer than the last one written is dropped, so a slow
    writer can never overwrite a fresher state.
    """

    def __init__(self, path: Path, *, on_load_failure: LoadFailureHook | None = None) -> None:
        self.path = path
        self.backup_path = path.with_name(f"{path.name}.bak")
        self.on_load_failure = on_load_failure
        self._lock = threading.Lock()
        self._last_revision = -1

    @property
    def last_revision(self) -> int:
        return self._last_revision

    def _report(self, path: Path, exc: Exception) -> None:
        if self.on_load_failure is not None:
            self.on_load_failure(path.name, exc.__class__.__name__)

    def load(self) -> dict[str, Any]:
        """Return the stored snapshot, the backup, or an empty document. Never raises."""

        for candidate in (self.path, self.backup_path):
            if not candidate.exists():
                continue
            try:
                return migrate_state(_read_json_object(candidate))
            except (OSError, ValueError) as exc:
                self._report(candidate, exc)
        return {"state_schema_version": STATE_SCHEMA_VERSION}

    def _readable_current(self) -> dict[str, Any] | None:
        if not self.path.exists():
            return None
        try:
            return _read_json_object(self.path)
        except (OSError, ValueError):
            # A corrupt primary must not replace the last good backup.
            return None

    def save(self, snapshot: dict[str, Any], revision: int) -> bool:
        with self._lock:
            if revision <= self._last_revision:
                return False
            document = dict(snapshot)
            document["state_schema_version"] = STATE_SCHEMA_VERSION
            document["saved_at"] = _now_iso()
            previous = self._readable_current()
            if previous is not None:
                _save_json(self.backup_path, previous)
            _save_json(self.path, document)
            self._last_revision = revision
            return True
