from __future__ import annotations

"""Engine facade owning all progression state behind one lock."""

import hashlib
import sys
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from pathlib import Path
from typing import Any

from .achievements import AchievementBook, AchievementDefinition, AchievementMetric, EffectUsage
from .catalog import QuestCatalog, QuestScope, default_catalog
from .clock import HttpDateFetcher, TrustedClock, next_daily_reset, next_weekly_reset, seconds_until
from .config import EngineConfig
from .errors import EngineError
from .ledger import ClaimLedger, parse_claim_key
from .metrics import MetricAggregator, iso_week_key
from .paths import ensure_home_dirs
from .progression import MAX_LEVEL, MAX_PRESTIGE, ProgressionLedger
from .quests import QuestResolver, QuestState
from .rollover import RolloverMonitor, RolloverResult
from .rotation import QuestRotation, period_key
from .store import SnapshotStore
from .telemetry import TelemetryLogger


QUEST_REWARD_MULTIPLIER = 1.40
FIRST_WATCH_BONUS_XP = 900
RECENT_STREAMS_LIMIT = 5
STATE_FILE = "engine_state.json"


def parse_day(value: str | None) -> date | None:
    if value is None or not value.strip():
        return None
    try:
        return datetime.strptime(value.strip(), "%Y-%m-%d").date()
    except ValueError as exc:
        raise EngineError("INVALID_DATE", f"Invalid date: {value}", hint="Use YYYY-MM-DD.") from exc


def parse_scope(value: str) -> QuestScope:
    try:
        return QuestScope(value.strip().lower())
    except ValueError as exc:
        raise EngineError("UNKNOWN_SCOPE", f"Unknown quest scope: {value}", hint="Use daily or weekly.") from exc


@dataclass(frozen=True)
class WatchEvent:
    """One progress credit reported by the playback collaborator."""

    video_id: str
    timestamp_utc: datetime
    session_eligible_seconds: int = 0
    active_effects_count: int = 0
    session_id: str | None = None


class PeriodicTask:
    """Daemon thread calling `action` every `interval_seconds` until stopped."""

    def __init__(
        self,
        name: str,
        interval_seconds: float,
        action: Callable[[], Any],
        *,
        run_immediately: bool = False,
    ) -> None:
        self.name = name
        self.interval_seconds = interval_seconds
        self.action = action
        self.run_immediately = run_immediately
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=f"watchquest-{self.name}", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None

    def _run(self) -> None:
        if self.run_immediately:
            self._invoke()
        while not self._stop.wait(self.interval_seconds):
            self._invoke()

    def _invoke(self) -> None:
        try:
            self.action()
        except Exception as exc:  # noqa: BLE001
            print(f"[{self.name}] periodic task failed: {exc}", file=sys.stderr)


class WatchQuestService:
    """Single owner of metrics, claims, progression, and rotations.

    Every read and mutation runs under `self._lock`. Background timers and
    host calls all enter through the public methods below.
    """

    def __init__(
        self,
        *,
        config: EngineConfig,
        clock: TrustedClock,
        catalog: QuestCatalog,
        store: SnapshotStore,
        telemetry: TelemetryLogger,
    ) -> None:
        self.config = config
        self.clock = clock
        self.catalog = catalog
        self.store = store
        self.telemetry = telemetry
        self._lock = threading.RLock()
        self._revision = 0
        self._tasks: list[PeriodicTask] = []

        self.metrics = MetricAggregator(to_local_date=clock.to_local_date)
        self.ledger = ClaimLedger()
        self.progression = ProgressionLedger()
        self.achievements = AchievementBook()
        self.resolver = QuestResolver(catalog=catalog, metrics=self.metrics, ledger=self.ledger)
        self.rollover = RolloverMonitor(
            today=clock.today,
            on_rollover=self._apply_rollover,
            on_changed=self._on_rollover_changed,
        )

    @classmethod
    def create(
        cls,
        config: EngineConfig | None = None,
        *,
        clock: TrustedClock | None = None,
        catalog: QuestCatalog | None = None,
    ) -> "WatchQuestService":
        """Build a service from the environment, restore state, and run the first rollover check."""

        config = config or EngineConfig.from_env()
        dirs = ensure_home_dirs(config.home)
        if clock is None:
            clock = TrustedClock(
                reference_timezone=config.timezone,
                fetcher=HttpDateFetcher(config.time_endpoints, config.sync_timeout_seconds),
            )
        telemetry = TelemetryLogger(dirs["telemetry"] / "events.jsonl", now=clock.now)
        store = SnapshotStore(
            dirs["state"] / STATE_FILE,
            on_load_failure=lambda name, error_type: telemetry.log_event(
                "state.load_failed", data={"file": name, "error_type": error_type}
            ),
        )
        service = cls(
            config=config,
            clock=clock,
            catalog=catalog or default_catalog(),
            store=store,
            telemetry=telemetry,
        )
        service.restore(store.load())
        service.tick_rollover()
        telemetry.log_event(
            "engine.started",
            data={
                "home_path_hash": hashlib.sha256(str(config.home).encode("utf-8")).hexdigest(),
                "catalog_version": service.catalog.catalog_version,
                "timezone": config.timezone,
            },
        )
        return service

    # -- persistence -----------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return {
                **self.metrics.to_dict(),
                "claimed_quest_keys": self.ledger.to_list(),
                "progression": self.progression.to_dict(),
                "achievements": self.achievements.to_dict(),
                "rotations": {scope.value: rotation.to_dict() for scope, rotation in self.resolver.rotations.items()},
                "rollover": {
                    "last_day": self.rollover.last_day.isoformat() if self.rollover.last_day else None,
                    "last_week_key": self.rollover.last_week_key,
                },
                "catalog_version": self.catalog.catalog_version,
            }

    def restore(self, snapshot: dict[str, Any]) -> None:
        with self._lock:
            self.metrics.load_dict(snapshot)
            self.ledger.keys.clear()
            raw_claims = snapshot.get("claimed_quest_keys")
            if isinstance(raw_claims, list):
                self.ledger.keys.update(ClaimLedger.from_iterable(raw_claims).keys)
            restored = ProgressionLedger.from_dict(snapshot.get("progression"))
            self.progression.total_xp = restored.total_xp
            self.progression.prestige = restored.prestige
            self.progression.prestige_xp = restored.prestige_xp
            book = AchievementBook.from_dict(snapshot.get("achievements"))
            self.achievements.counters = book.counters
            self.achievements.unlocked = book.unlocked

            self.resolver.rotations.clear()
            raw_rotations = snapshot.get("rotations")
            if isinstance(raw_rotations, dict):
                for scope in QuestScope:
                    rotation = QuestRotation.from_dict(scope, raw_rotations.get(scope.value))
                    if rotation is not None:
                        self.resolver.rotations[scope] = rotation

            markers = snapshot.get("rollover")
            markers = markers if isinstance(markers, dict) else {}
            last_day = markers.get("last_day")
            try:
                self.rollover.last_day = parse_day(last_day) if isinstance(last_day, str) else None
            except EngineError:
                self.rollover.last_day = None
            last_week_key = markers.get("last_week_key")
            self.rollover.last_week_key = last_week_key if isinstance(last_week_key, str) else None

    def persist(self) -> bool:
        with self._lock:
            self._revision += 1
            return self.store.save(self.snapshot(), self._revision)

    # -- rollover and clock ------------------------------------------------

    def _apply_rollover(self, current: date) -> RolloverResult:
        pruned = self.ledger.prune_stale(current)
        rotations_changed = self.resolver.ensure_rotations(current)
        cutoff = current - timedelta(days=self.config.metrics_retention_days)
        pruned_days = self.metrics.prune_metrics_before(cutoff)
        self.metrics.forget_sessions_before(current)
        return RolloverResult(
            day=current,
            week_key=iso_week_key(current),
            pruned_claim_keys=tuple(pruned),
            rotations_changed=rotations_changed,
            pruned_metric_days=pruned_days,
        )

    def _on_rollover_changed(self, result: RolloverResult) -> None:
        self.telemetry.log_event(
            "rollover.applied",
            data={
                "day": result.day.isoformat(),
                "week_key": result.week_key,
                "previous_day": result.previous_day.isoformat() if result.previous_day else None,
                "week_changed": result.week_changed,
                "pruned_claims_count": len(result.pruned_claim_keys),
                "pruned_metric_days": result.pruned_metric_days,
            },
        )
        self.persist()

    def tick_rollover(self) -> RolloverResult | None:
        with self._lock:
            return self.rollover.tick()

    def sync_clock(self, *, source: str = "engine") -> bool:
        """Fetch remote time without holding the lock, then swap the anchor under it."""

        sample = self.clock.fetch_network_utc()
        with self._lock:
            synced = self.clock.apply_anchor(sample)
            if synced:
                offset = (sample.remote_utc - sample.device_utc).total_seconds()
                self.telemetry.log_event(
                    "clock.synced", source=source, data={"device_offset_seconds": round(offset, 3)}
                )
            else:
                self.telemetry.log_event(
                    "clock.sync_failed",
                    source=source,
                    data={"errors": list(getattr(self.clock.fetcher, "last_errors", []))},
                )
            self.tick_rollover()
        return synced

    def clock_status(self) -> dict[str, Any]:
        with self._lock:
            return self.clock.status()

    def start_background(self) -> None:
        if self._tasks:
            return
        self._tasks = [
            PeriodicTask("clock-sync", self.config.sync_interval_seconds, self.sync_clock, run_immediately=True),
            PeriodicTask("rollover", self.config.rollover_interval_seconds, self.tick_rollover),
        ]
        for task in self._tasks:
            task.start()

    def stop_background(self) -> None:
        for task in self._tasks:
            task.stop()
        self._tasks = []
        self.persist()

    # -- quests ------------------------------------------------------------

    def _quests(self, scope: QuestScope, day: date | None) -> list[QuestState]:
        with self._lock:
            return self.resolver.active_quests(scope, day or self.clock.today())

    def get_active_daily_quests(self, day: date | None = None) -> list[QuestState]:
        return self._quests(QuestScope.DAILY, day)

    def get_active_weekly_quests(self, day: date | None = None) -> list[QuestState]:
        return self._quests(QuestScope.WEEKLY, day)

    def quest_countdowns(self) -> dict[str, Any]:
        with self._lock:
            local_now = self.clock.local_now()
        daily = next_daily_reset(local_now)
        weekly = next_weekly_reset(local_now)
        return {
            "daily_reset_at": daily.isoformat(),
            "daily_reset_in_seconds": seconds_until(daily, local_now),
            "weekly_reset_at": weekly.isoformat(),
            "weekly_reset_in_seconds": seconds_until(weekly, local_now),
        }

    def quests_view(self, scope: QuestScope, day: date | None = None) -> dict[str, Any]:
        with self._lock:
            current = day or self.clock.today()
            quests = self.resolver.active_quests(scope, current)
            countdowns = self.quest_countdowns()
        prefix = scope.value
        return {
            "scope": scope.value,
            "period_key": period_key(scope, current),
            "quests": [quest.to_dict() for quest in quests],
            "reset_at": countdowns[f"{prefix}_reset_at"],
            "reset_in_seconds": countdowns[f"{prefix}_reset_in_seconds"],
        }

    def claim_quest(self, key: str, *, source: str = "engine", trace_id: str | None = None) -> bool:
        """Grant a completed, currently active quest once. Any other key is a no-op returning False."""

        key = (key or "").strip()
        if not key:
            return False
        parsed = parse_claim_key(key)
        if parsed is None:
            return False
        scope, _, template_id = parsed
        with self._lock:
            if self.ledger.contains(key):
                return False
            today = self.clock.today()
            quest = next((q for q in self.resolver.active_quests(scope, today) if q.claim_key == key), None)
            if quest is None or not quest.is_completed:
                return False
            self.ledger.add(key)
            reward = round(quest.reward_xp * QUEST_REWARD_MULTIPLIER)
            self.telemetry.log_event(
                "quest.claimed",
                source=source,
                trace_id=trace_id,
                data={"claim_key": key, "scope": scope.value, "template_id": template_id, "reward_xp": reward},
            )
            self._award_xp(reward, reason="quest", source=source, trace_id=trace_id)
            self.persist()
            return True

    # -- progression -------------------------------------------------------

    def _award_xp(self, amount: int, *, reason: str, source: str, trace_id: str | None = None) -> int:
        awarded = self.progression.add_xp(amount)
        if awarded:
            self.telemetry.log_event(
                "xp.awarded",
                source=source,
                trace_id=trace_id,
                data={
                    "amount": awarded,
                    "reason": reason,
                    "total_xp": self.progression.total_xp,
                    "level": self.progression.level,
                },
            )
        return awarded

    def get_level(self) -> int:
        with self._lock:
            return self.progression.level

    def get_xp_to_next_level(self) -> int:
        with self._lock:
            return self.progression.xp_to_next_level

    def get_prestige(self) -> int:
        with self._lock:
            return self.progression.prestige

    def get_watch_streak_days(self) -> int:
        with self._lock:
            return self.metrics.watch_streak_days()

    def prestige(self, *, source: str = "engine", trace_id: str | None = None) -> dict[str, Any]:
        with self._lock:
            if not self.progression.apply_prestige():
                raise EngineError(
                    "PRESTIGE_NOT_AVAILABLE",
                    "Prestige requires max level and a prestige below the cap.",
                    hint=f"Reach level {MAX_LEVEL} first." if self.progression.level < MAX_LEVEL else None,
                    level=self.progression.level,
                    prestige=self.progression.prestige,
                )
            self.telemetry.log_event(
                "prestige.applied",
                source=source,
                trace_id=trace_id,
                data={"prestige": self.progression.prestige, "total_xp": self.progression.total_xp},
            )
            self.persist()
            return self.get_profile()

    def get_profile(self) -> dict[str, Any]:
        with self._lock:
            current, required = self.progression.level_progress()
            return {
                "level": self.progression.level,
                "max_level": MAX_LEVEL,
                "prestige": self.progression.prestige,
                "max_prestige": MAX_PRESTIGE,
                "total_xp": self.progression.total_xp,
                "prestige_xp": self.progression.prestige_xp,
                "xp_in_level": current,
                "xp_required_for_level": required,
                "xp_to_next_level": self.progression.xp_to_next_level,
                "can_prestige": self.progression.can_prestige,
                "watch_streak_days": self.metrics.watch_streak_days(),
                "streams_watched": self.metrics.streams_watched(),
                "favorites": self.metrics.favorites_count(),
                "recent_streams": self.metrics.recent_streams(RECENT_STREAMS_LIMIT),
            }

    # -- viewing telemetry -------------------------------------------------

    def record_session(
        self,
        eligible_seconds: int,
        effects_active: bool,
        *,
        session_id: str | None = None,
        day: date | None = None,
        source: str = "engine",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        with self._lock:
            current = day or self.clock.today()
            self.metrics.record_session(current, eligible_seconds, effects_active, session_id)
            self.telemetry.log_event(
                "session.recorded",
                source=source,
                trace_id=trace_id,
                data={
                    "day": current.isoformat(),
                    "eligible_seconds": max(0, int(eligible_seconds)),
                    "effects_active": bool(effects_active),
                },
            )
            self.persist()
            return self._day_summary(current)

    def record_watch_event(self, event: WatchEvent, *, source: str = "engine") -> dict[str, Any]:
        with self._lock:
            timestamp = event.timestamp_utc if event.timestamp_utc.tzinfo else event.timestamp_utc.replace(tzinfo=UTC)
            day = self.clock.to_local_date(timestamp)
            self.metrics.mark_watched(event.video_id, timestamp, day)
            self.metrics.record_session(
                day, event.session_eligible_seconds, event.active_effects_count > 0, event.session_id
            )
            self.telemetry.log_event(
                "session.recorded",
                source=source,
                data={
                    "day": day.isoformat(),
                    "eligible_seconds": max(0, int(event.session_eligible_seconds)),
                    "effects_active": event.active_effects_count > 0,
                },
            )
            self._evaluate_achievements(source=source)
            self.persist()
            return self._day_summary(day)

    def _day_summary(self, day: date) -> dict[str, Any]:
        return {
            "day": day.isoformat(),
            "watched_seconds": self.metrics.watched_seconds_for_day(day),
            "best_session_seconds": self.metrics.best_session_seconds_for_day(day),
            "effect_sessions_count": self.metrics.effect_sessions_for_day(day),
        }

    def open_video(self, video_id: str, *, source: str = "engine", trace_id: str | None = None) -> dict[str, Any]:
        video_id = _require_video_id(video_id)
        with self._lock:
            record = self.metrics.mark_watched(video_id, self.clock.now(), self.clock.today())
            self.telemetry.log_event("video.opened", source=source, trace_id=trace_id, data={"video_id": video_id})
            unlocked = self._evaluate_achievements(source=source, trace_id=trace_id)
            self.persist()
            return {
                "video_id": video_id,
                **record.to_dict(),
                "unlocked_achievements": [definition.id for definition in unlocked],
            }

    def finish_video(
        self,
        video_id: str,
        *,
        playback_seconds: int = 0,
        watch_xp: int = 0,
        usage: EffectUsage | None = None,
        source: str = "engine",
        trace_id: str | None = None,
    ) -> dict[str, Any]:
        """Close a viewing: store the position, pay watch and first-watch XP, count effect usage."""

        video_id = _require_video_id(video_id)
        with self._lock:
            record = self.metrics.history.get(video_id)
            if record is None or record.last_watched_at_utc is None:
                self.metrics.mark_watched(video_id, self.clock.now(), self.clock.today())
            self.metrics.update_playback(video_id, playback_seconds)

            awarded = self._award_xp(watch_xp, reason="watch", source=source, trace_id=trace_id)
            first_watch = video_id not in self.metrics.first_view_rewarded
            if first_watch:
                self.metrics.first_view_rewarded.add(video_id)
                awarded += self._award_xp(FIRST_WATCH_BONUS_XP, reason="first_watch", source=source, trace_id=trace_id)
            if usage is not None:
                self.achievements.record_usage(usage)
            unlocked = self._evaluate_achievements(source=source, trace_id=trace_id)
            awarded += sum(definition.reward_xp for definition in unlocked)

            self.telemetry.log_event(
                "video.finished",
                source=source,
                trace_id=trace_id,
                data={
                    "video_id": video_id,
                    "playback_seconds": max(0, int(playback_seconds)),
                    "first_watch": first_watch,
                    "xp_awarded": awarded,
                },
            )
            self.persist()
            return {
                "video_id": video_id,
                "xp_awarded": awarded,
                "first_watch_bonus": first_watch,
                "unlocked_achievements": [definition.id for definition in unlocked],
                "level": self.progression.level,
                "total_xp": self.progression.total_xp,
            }

    def set_favorite(
        self, video_id: str, is_favorite: bool, *, source: str = "engine", trace_id: str | None = None
    ) -> dict[str, Any]:
        video_id = _require_video_id(video_id)
        with self._lock:
            record = self.metrics.set_favorite(video_id, is_favorite)
            unlocked = self._evaluate_achievements(source=source, trace_id=trace_id)
            self.persist()
            return {
                "video_id": video_id,
                **record.to_dict(),
                "unlocked_achievements": [definition.id for definition in unlocked],
            }

    # -- achievements ------------------------------------------------------

    def _derived_metrics(self) -> dict[AchievementMetric, int]:
        return {
            AchievementMetric.STREAMS_WATCHED: self.metrics.streams_watched(),
            AchievementMetric.STREAK_DAYS: self.metrics.watch_streak_days(),
            AchievementMetric.FAVORITES: self.metrics.favorites_count(),
        }

    def _evaluate_achievements(self, *, source: str, trace_id: str | None = None) -> list[AchievementDefinition]:
        unlocked = self.achievements.evaluate(self._derived_metrics())
        for definition in unlocked:
            self.telemetry.log_event(
                "achievement.unlocked",
                source=source,
                trace_id=trace_id,
                data={"achievement_id": definition.id, "reward_xp": definition.reward_xp},
            )
            self._award_xp(definition.reward_xp, reason="achievement", source=source, trace_id=trace_id)
        return unlocked

    def get_achievements(self) -> list[dict[str, Any]]:
        with self._lock:
            return self.achievements.describe(self._derived_metrics())

    # -- telemetry ---------------------------------------------------------

    def telemetry_status(self) -> dict[str, Any]:
        return {
            "events_path": str(self.telemetry.events_path),
            "event_count": self.telemetry.count_events(),
            "state_path": str(self.store.path),
        }

    def telemetry_summary(self, range_value: str = "7d", out_path: Path | None = None) -> dict[str, Any]:
        try:
            with self._lock:
                progression = {
                    "total_xp": self.progression.total_xp,
                    "level": self.progression.level,
                    "prestige": self.progression.prestige,
                }
            return self.telemetry.export_summary(range_value=range_value, progression=progression, out_path=out_path)
        except ValueError as exc:
            raise EngineError("INVALID_RANGE", str(exc), hint="Use a window like 7d or 24h.") from exc


def _require_video_id(video_id: str) -> str:
    cleaned = (video_id or "").strip()
    if not cleaned:
        raise EngineError("INVALID_VIDEO_ID", "Video id must be a non-empty string.")
    return cleaned
