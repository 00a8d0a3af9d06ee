"""Clocks plus time parsing and formatting utilities."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime, timedelta, tzinfo
from typing import Iterable, Protocol

from zoneinfo import ZoneInfo


class Clock(Protocol):
    """Source of "now" for the ride core."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall clock, always timezone-aware UTC."""

    def now(self) -> datetime:
        return datetime.now(UTC)


class ManualClock:
    """A clock that only moves when told to.

    Used by the simulation driver and by tests.
    """

    def __init__(self, start: datetime | None = None) -> None:
        self._now = ensure_aware(start) if start is not None else datetime.now(UTC)

    def now(self) -> datetime:
        return self._now

    def advance(self, seconds: float) -> datetime:
        self._now = self._now + timedelta(seconds=seconds)
        return self._now

    def set(self, when: datetime) -> None:
        self._now = ensure_aware(when)


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Args:
        tz_name: Timezone name like "Asia/Kolkata".

    Returns:
        tzinfo instance.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        raise ValueError(f"invalid timezone: {tz_name!r}, e.g. Asia/Kolkata") from exc


def ensure_aware(dt: datetime) -> datetime:
    """Attach UTC to naive datetimes (discouraged, but tolerated)."""

    if dt.tzinfo is None:
        return dt.replace(tzinfo=UTC)
    return dt


def to_iso(dt: datetime) -> str:
    return ensure_aware(dt).isoformat()


def parse_iso(text: str) -> datetime:
    """Parse an ISO-8601 timestamp written by :func:`to_iso` (or a JS ``toISOString``).

    Raises:
        ValueError: If cannot parse.
    """

    s = text.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError as exc:
        raise ValueError(f"cannot parse timestamp: {text!r}") from exc
    return ensure_aware(dt)


def local_time(dt: datetime, tz_name: str) -> datetime:
    return ensure_aware(dt).astimezone(tzinfo_from_name(tz_name))


def elapsed_seconds(start: datetime, end: datetime) -> int:
    """Whole seconds between two instants, floored, never negative."""

    delta = (ensure_aware(end) - ensure_aware(start)).total_seconds()
    return max(0, int(delta // 1))


def format_hhmmss(seconds: float) -> str:
    s = int(round(max(0.0, seconds)))
    h = s // 3600
    m = (s % 3600) // 60
    sec = s % 60
    return f"{h:02d}:{m:02d}:{sec:02d}"


@dataclass(frozen=True, slots=True)
class DeltaStats:
    """Sampling interval stats (seconds)."""

    count: int
    min_s: float
    median_s: float
    p95_s: float
    max_s: float


def delta_stats(times_sorted: Iterable[datetime]) -> DeltaStats | None:
    """Compute basic sampling-interval statistics.

    Args:
        times_sorted: Timestamps sorted ascending.

    Returns:
        DeltaStats or None if less than 2 points.
    """

    ts = list(times_sorted)
    if len(ts) < 2:
        return None
    deltas = [(ts[i] - ts[i - 1]).total_seconds() for i in range(1, len(ts)) if ts[i] >= ts[i - 1]]
    if not deltas:
        return None
    deltas.sort()
    n = len(deltas)
    median = deltas[n // 2] if n % 2 == 1 else 0.5 * (deltas[n // 2 - 1] + deltas[n // 2])
    p95 = deltas[int(0.95 * (n - 1))]
    return DeltaStats(
        count=n,
        min_s=deltas[0],
        median_s=median,
        p95_s=p95,
        max_s=deltas[-1],
    )
