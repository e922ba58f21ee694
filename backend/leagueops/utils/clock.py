"""
backend/leagueops/utils/clock.py

Purpose:
    Civil-day and daily-window arithmetic in the operating timezone. All
    offsets come from the IANA zone database at the specific civil date, so
    DST transitions shift the UTC bounds instead of being approximated with a
    fixed delta.

Dependencies:
    - zoneinfo
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from leagueops.utils import ensure_utc

DAY_FORMAT = "%Y-%m-%d"


@dataclass(frozen=True)
class UtcWindow:
    """Inclusive UTC range [start, end]."""

    start: datetime
    end: datetime

    def contains(self, instant: datetime) -> bool:
        instant = ensure_utc(instant)
        return self.start <= instant <= self.end


def _zone(tz: str | ZoneInfo) -> ZoneInfo:
    return tz if isinstance(tz, ZoneInfo) else ZoneInfo(tz)


def parse_day(day: str) -> date:
    return datetime.strptime(day, DAY_FORMAT).date()


def civil_day(instant: datetime, tz: str | ZoneInfo) -> str:
    """`YYYY-MM-DD` of the given instant as seen in `tz`."""
    return ensure_utc(instant).astimezone(_zone(tz)).strftime(DAY_FORMAT)


def civil_time_to_utc(day: str | date, at: time, tz: str | ZoneInfo, *, fold: int = 0) -> datetime:
    """UTC instant of civil time `at` on civil date `day` in `tz`.

    A wall time skipped by a spring-forward gap resolves with the offset in
    force before the gap (zoneinfo fold=0), which lands one hour later on the
    wall clock. Repeated wall times during a fall-back resolve to the first
    occurrence, or to the second with fold=1.
    """
    if isinstance(day, str):
        day = parse_day(day)
    local = datetime.combine(day, at).replace(tzinfo=_zone(tz), fold=fold)
    return local.astimezone(timezone.utc)


def daily_window(
    day: str | date,
    tz: str | ZoneInfo,
    start: time = time(19, 0),
    end: time = time(23, 59, 59),
) -> UtcWindow:
    """Tonight's fixture window as an inclusive UTC range.

    Both bounds are resolved independently against the zone database, so a
    transition between `start` and `end` moves only the bound it affects.
    The end takes the last occurrence of a repeated wall time so a fixture in
    the second pass of a fall-back hour still belongs to its civil day.
    """
    return UtcWindow(
        start=civil_time_to_utc(day, start, tz),
        end=civil_time_to_utc(day, end, tz, fold=1),
    )


def in_lock_window(
    now: datetime,
    tz: str | ZoneInfo,
    lock_start: time = time(18, 30),
    kickoff: time = time(19, 0),
) -> bool:
    """True when `now` falls in [lock_start, kickoff) on its own civil day."""
    day = civil_day(now, tz)
    opens = civil_time_to_utc(day, lock_start, tz)
    closes = civil_time_to_utc(day, kickoff, tz)
    return opens <= ensure_utc(now) < closes


def next_kickoff(now: datetime, tz: str | ZoneInfo, kickoff: time = time(19, 0)) -> datetime:
    """Civil kickoff today, or tomorrow when today's kickoff already passed."""
    zone = _zone(tz)
    local_now = ensure_utc(now).astimezone(zone)
    day = local_now.date()
    if local_now.time() >= kickoff:
        day = day + timedelta(days=1)
    return civil_time_to_utc(day, kickoff, zone)
