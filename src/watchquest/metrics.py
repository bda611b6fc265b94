from __future__ import annotations

"""Per-day watch counters and watch history with day/week progress readers."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, date, datetime, timedelta
from typing import Any


LocalDateResolver = Callable[[datetime], date]


def iso_week_key(day: date) -> str:
    """ISO week key using the ISO week-year, e.g. 2027-01-01 -> `2026-W53`."""

    year, week, _ = day.isocalendar()
    return f"{year}-W{week:02d}"


def _non_negative(value: Any) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return 0
    return max(0, parsed)


def _parse_day(value: Any) -> date | None:
    if not isinstance(value, str):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _parse_utc(value: Any) -> datetime | None:
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


def _utc_day(instant: datetime) -> date:
    return instant.astimezone(UTC).date()


@dataclass
class DailyMetrics:
    watched_seconds: int = 0
    best_session_seconds: int = 0
    effect_sessions_count: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "watched_seconds": self.watched_seconds,
            "best_session_seconds": self.best_session_seconds,
            "effect_sessions_count": self.effect_sessions_count,
        }


@dataclass
class VideoRecord:
    last_watched_at_utc: datetime | None = None
    last_playback_seconds: int = 0
    is_favorite: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_watched_at_utc": self.last_watched_at_utc.isoformat() if self.last_watched_at_utc else None,
            "last_playback_seconds": self.last_playback_seconds,
            "is_favorite": self.is_favorite,
        }


@dataclass
class _SessionCredit:
    seconds: int = 0
    effect_counted: bool = False


@dataclass
class MetricAggregator:
    """Counters feeding quest progress.

    `record_session` is called repeatedly while a video plays; passing the
    same `session_id` for every partial credit keeps best-session and
    effect-session numbers per viewing session rather than per credit.
    """

    to_local_date: LocalDateResolver = _utc_day
    daily: dict[date, DailyMetrics] = field(default_factory=dict)
    history: dict[str, VideoRecord] = field(default_factory=dict)
    watched_days: set[date] = field(default_factory=set)
    first_view_rewarded: set[str] = field(default_factory=set)
    _sessions: dict[tuple[date, str], _SessionCredit] = field(default_factory=dict, repr=False)

    def record_session(
        self,
        day: date,
        eligible_seconds: int,
        effects_active: bool,
        session_id: str | None = None,
    ) -> DailyMetrics | None:
        seconds = _non_negative(eligible_seconds)
        if session_id:
            credit = self._sessions.setdefault((day, session_id), _SessionCredit())
            credit.seconds += seconds
            session_total = credit.seconds
            count_effect = bool(effects_active) and not credit.effect_counted
            if count_effect:
                credit.effect_counted = True
        else:
            session_total = seconds
            count_effect = bool(effects_active)

        if seconds <= 0 and not count_effect:
            return self.daily.get(day)

        metrics = self.daily.setdefault(day, DailyMetrics())
        metrics.watched_seconds += seconds
        metrics.best_session_seconds = max(metrics.best_session_seconds, session_total)
        if count_effect:
            metrics.effect_sessions_count += 1
        return metrics

    def mark_watched(self, video_id: str, watched_at_utc: datetime, day: date) -> VideoRecord:
        record = self.history.setdefault(video_id, VideoRecord())
        record.last_watched_at_utc = watched_at_utc.astimezone(UTC)
        self.watched_days.add(day)
        return record

    def update_playback(self, video_id: str, playback_seconds: int) -> VideoRecord:
        record = self.history.setdefault(video_id, VideoRecord())
        record.last_playback_seconds = _non_negative(playback_seconds)
        return record

    def set_favorite(self, video_id: str, is_favorite: bool) -> VideoRecord:
        record = self.history.setdefault(video_id, VideoRecord())
        record.is_favorite = bool(is_favorite)
        return record

    def _day(self, day: date) -> DailyMetrics:
        return self.daily.get(day) or DailyMetrics()

    def _week_metrics(self, anchor_day: date) -> list[DailyMetrics]:
        week_key = iso_week_key(anchor_day)
        return [metrics for day, metrics in self.daily.items() if iso_week_key(day) == week_key]

    def watched_seconds_for_day(self, day: date) -> int:
        return max(0, self._day(day).watched_seconds)

    def best_session_seconds_for_day(self, day: date) -> int:
        return max(0, self._day(day).best_session_seconds)

    def effect_sessions_for_day(self, day: date) -> int:
        return max(0, self._day(day).effect_sessions_count)

    def watched_seconds_for_week(self, anchor_day: date) -> int:
        return sum(max(0, metrics.watched_seconds) for metrics in self._week_metrics(anchor_day))

    def best_session_seconds_for_week(self, anchor_day: date) -> int:
        return max((max(0, metrics.best_session_seconds) for metrics in self._week_metrics(anchor_day)), default=0)

    def effect_sessions_for_week(self, anchor_day: date) -> int:
        return sum(max(0, metrics.effect_sessions_count) for metrics in self._week_metrics(anchor_day))

    def _watched_local_days(self) -> list[date]:
        return [
            self.to_local_date(record.last_watched_at_utc)
            for record in self.history.values()
            if record.last_watched_at_utc is not None
        ]

    def distinct_streams_for_day(self, day: date) -> int:
        return sum(1 for local_day in self._watched_local_days() if local_day == day)

    def distinct_streams_for_week(self, anchor_day: date) -> int:
        week_key = iso_week_key(anchor_day)
        return sum(1 for local_day in self._watched_local_days() if iso_week_key(local_day) == week_key)

    def active_days_for_week(self, anchor_day: date) -> int:
        week_key = iso_week_key(anchor_day)
        return sum(1 for day in self.watched_days if iso_week_key(day) == week_key)

    def watch_streak_days(self) -> int:
        """Consecutive watched days counted backward from the latest watched day."""

        if not self.watched_days:
            return 0
        ordered = sorted(self.watched_days, reverse=True)
        streak = 1
        latest = ordered[0]
        for day in ordered[1:]:
            if day != latest - timedelta(days=1):
                break
            streak += 1
            latest = day
        return streak

    def streams_watched(self) -> int:
        return sum(1 for record in self.history.values() if record.last_watched_at_utc is not None)

    def favorites_count(self) -> int:
        return sum(1 for record in self.history.values() if record.is_favorite)

    def recent_streams(self, limit: int = 5) -> list[dict[str, Any]]:
        watched = [(video_id, record) for video_id, record in self.history.items() if record.last_watched_at_utc]
        watched.sort(key=lambda item: item[1].last_watched_at_utc, reverse=True)
        return [{"video_id": video_id, **record.to_dict()} for video_id, record in watched[:limit]]

    def prune_metrics_before(self, cutoff: date) -> int:
        stale = [day for day in self.daily if day < cutoff]
        for day in stale:
            del self.daily[day]
        for key in [key for key in self._sessions if key[0] < cutoff]:
            del self._sessions[key]
        return len(stale)

    def forget_sessions_before(self, day: date) -> None:
        for key in [key for key in self._sessions if key[0] < day]:
            del self._sessions[key]

    def to_dict(self) -> dict[str, Any]:
        return {
            "daily_metrics": {day.isoformat(): metrics.to_dict() for day, metrics in sorted(self.daily.items())},
            "watch_history": {video_id: record.to_dict() for video_id, record in sorted(self.history.items())},
            "watched_days": sorted(day.isoformat() for day in self.watched_days),
            "first_view_rewarded": sorted(self.first_view_rewarded),
            "session_credits": [
                {
                    "day": day.isoformat(),
                    "session_id": session_id,
                    "seconds": credit.seconds,
                    "effect_counted": credit.effect_counted,
                }
                for (day, session_id), credit in sorted(self._sessions.items())
            ],
        }

    def load_dict(self, payload: dict[str, Any]) -> None:
        self.daily.clear()
        self.history.clear()
        self.watched_days.clear()
        self.first_view_rewarded.clear()
        self._sessions.clear()

        raw_daily = payload.get("daily_metrics", {})
        if isinstance(raw_daily, dict):
            for raw_day, raw_metrics in raw_daily.items():
                day = _parse_day(raw_day)
                if day is None or not isinstance(raw_metrics, dict):
                    continue
                self.daily[day] = DailyMetrics(
                    watched_seconds=_non_negative(raw_metrics.get("watched_seconds")),
                    best_session_seconds=_non_negative(raw_metrics.get("best_session_seconds")),
                    effect_sessions_count=_non_negative(raw_metrics.get("effect_sessions_count")),
                )

        raw_history = payload.get("watch_history", {})
        if isinstance(raw_history, dict):
            for video_id, raw_record in raw_history.items():
                if not isinstance(video_id, str) or not video_id or not isinstance(raw_record, dict):
                    continue
                self.history[video_id] = VideoRecord(
                    last_watched_at_utc=_parse_utc(raw_record.get("last_watched_at_utc")),
                    last_playback_seconds=_non_negative(raw_record.get("last_playback_seconds")),
                    is_favorite=bool(raw_record.get("is_favorite", False)),
                )

        raw_days = payload.get("watched_days", [])
        if isinstance(raw_days, list):
            self.watched_days.update(day for day in (_parse_day(value) for value in raw_days) if day is not None)

        raw_rewarded = payload.get("first_view_rewarded", [])
        if isinstance(raw_rewarded, list):
            self.first_view_rewarded.update(value for value in raw_rewarded if isinstance(value, str) and value)

        raw_sessions = payload.get("session_credits", [])
        if isinstance(raw_sessions, list):
            for raw_credit in raw_sessions:
                if not isinstance(raw_credit, dict):
                    continue
                day = _parse_day(raw_credit.get("day"))
                session_id = raw_credit.get("session_id")
                if day is None or not isinstance(session_id, str) or not session_id:
                    continue
                self._sessions[(day, session_id)] = _SessionCredit(
                    seconds=_non_negative(raw_credit.get("seconds")),
                    effect_counted=bool(raw_credit.get("effect_counted", False)),
                )
