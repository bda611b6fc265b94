from __future__ import annotations

"""Trusted clock anchored to remote HTTP `Date` headers."""

import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta, timezone, tzinfo
from email.utils import parsedate_to_datetime
from urllib.error import HTTPError, URLError
from urllib.request import Request, urlopen
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


USER_AGENT = "watchquest/0.1"
MOSCOW_FALLBACK_OFFSET = timedelta(hours=3)

DeviceClock = Callable[[], datetime]
MonotonicClock = Callable[[], float]
NetworkFetcher = Callable[[], "datetime | None"]


def system_utc_now() -> datetime:
    return datetime.now(tz=UTC)


def resolve_timezone(name: str) -> tzinfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        if name == "Europe/Moscow":
            # No DST in Moscow since 2014.
            return timezone(MOSCOW_FALLBACK_OFFSET, "MSK")
        return UTC


def parse_http_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError, IndexError):
        return None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=UTC)
    return parsed.astimezone(UTC)


class HttpDateFetcher:
    """Reads the `Date` header from the first endpoint that answers a HEAD request."""

    def __init__(self, endpoints: Sequence[str], timeout_seconds: float = 6) -> None:
        self.endpoints = tuple(endpoints)
        self.timeout_seconds = timeout_seconds
        self.last_errors: list[dict[str, str]] = []

    def __call__(self) -> datetime | None:
        self.last_errors = []
        for endpoint in self.endpoints:
            request = Request(endpoint, method="HEAD", headers={"User-Agent": USER_AGENT})
            try:
                with urlopen(request, timeout=self.timeout_seconds) as response:  # noqa: S310
                    header = response.headers.get("Date")
            except HTTPError as exc:
                # Error statuses still carry the server Date header.
                header = exc.headers.get("Date") if exc.headers is not None else None
                exc.close()
                if parse_http_date(header) is None:
                    self.last_errors.append({"endpoint": endpoint, "error_type": exc.__class__.__name__})
                    continue
            except (URLError, OSError, ValueError) as exc:
                self.last_errors.append({"endpoint": endpoint, "error_type": exc.__class__.__name__})
                continue
            parsed = parse_http_date(header)
            if parsed is None:
                self.last_errors.append({"endpoint": endpoint, "error_type": "MissingDateHeader"})
                continue
            return parsed
        return None


@dataclass(frozen=True)
class TrustedTimeAnchor:
    internet_utc_at_sync: datetime
    local_utc_at_sync: datetime
    monotonic_at_sync: float

    def project(self, monotonic_now: float) -> datetime:
        return self.internet_utc_at_sync + timedelta(seconds=monotonic_now - self.monotonic_at_sync)


@dataclass(frozen=True)
class SyncSample:
    """Result of the network half of a sync, applied later under the engine lock."""

    remote_utc: datetime | None
    device_utc: datetime
    monotonic: float


class TrustedClock:
    """Best-effort true time: remote anchor plus monotonic elapsed time.

    Without a successful sync every reading falls back to the raw device clock.
    After a sync, wall-clock edits on the device no longer move `now()`.
    """

    def __init__(
        self,
        *,
        reference_timezone: str,
        fetcher: NetworkFetcher | None = None,
        device_clock: DeviceClock = system_utc_now,
        monotonic: MonotonicClock = time.monotonic,
    ) -> None:
        self.reference_tz = resolve_timezone(reference_timezone)
        self.fetcher = fetcher
        self.device_clock = device_clock
        self.monotonic = monotonic
        self.anchor: TrustedTimeAnchor | None = None
        self.last_sync_attempt_utc: datetime | None = None

    @property
    def is_synced(self) -> bool:
        return self.anchor is not None

    def fetch_network_utc(self) -> SyncSample:
        remote = self.fetcher() if self.fetcher is not None else None
        return SyncSample(remote_utc=remote, device_utc=self.device_clock(), monotonic=self.monotonic())

    def apply_anchor(self, sample: SyncSample) -> bool:
        self.last_sync_attempt_utc = sample.device_utc
        if sample.remote_utc is None:
            return False
        self.anchor = TrustedTimeAnchor(
            internet_utc_at_sync=sample.remote_utc,
            local_utc_at_sync=sample.device_utc,
            monotonic_at_sync=sample.monotonic,
        )
        return True

    def sync(self) -> bool:
        return self.apply_anchor(self.fetch_network_utc())

    def now(self) -> datetime:
        if self.anchor is None:
            return self.device_clock()
        return self.anchor.project(self.monotonic())

    def local_now(self) -> datetime:
        return self.now().astimezone(self.reference_tz)

    def today(self) -> date:
        return self.local_now().date()

    def to_local_date(self, instant: datetime) -> date:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=UTC)
        return instant.astimezone(self.reference_tz).date()

    def status(self) -> dict[str, object]:
        now = self.now()
        local = now.astimezone(self.reference_tz)
        return {
            "synced": self.is_synced,
            "now_utc": now.isoformat(),
            "local_now": local.isoformat(),
            "today": local.date().isoformat(),
            "internet_utc_at_sync": self.anchor.internet_utc_at_sync.isoformat() if self.anchor else None,
            "local_utc_at_sync": self.anchor.local_utc_at_sync.isoformat() if self.anchor else None,
        }


def next_daily_reset(local_now: datetime) -> datetime:
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    return midnight + timedelta(days=1)


def next_weekly_reset(local_now: datetime) -> datetime:
    midnight = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
    days_until_monday = (7 - local_now.weekday()) % 7
    if days_until_monday == 0:
        days_until_monday = 7
    return midnight + timedelta(days=days_until_monday)


def seconds_until(target: datetime, now: datetime) -> int:
    return max(0, int((target - now).total_seconds()))
