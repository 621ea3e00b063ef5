# src/fujical/core/timeutil.py
from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Iterator, List
from zoneinfo import ZoneInfo

UTC = timezone.utc
JST = ZoneInfo("Asia/Tokyo")
ONE_DAY = timedelta(days=1)


def require_utc(dt: datetime, name: str = "dt") -> datetime:
    """Return `dt` unchanged if it is aware with a zero UTC offset; raise ValueError otherwise."""
    if dt.tzinfo is None or dt.utcoffset() is None:
        raise ValueError(f"{name}: expected an aware UTC datetime, got naive {dt.isoformat()}")
    if dt.utcoffset() != timedelta(0):
        raise ValueError(f"{name}: expected UTC, got offset {dt.utcoffset()} ({dt.tzinfo!r})")
    return dt


def as_utc(dt: datetime, name: str = "dt") -> datetime:
    """Convert any aware datetime to UTC. Naive datetimes are rejected."""
    if dt.tzinfo is None:
        raise ValueError(f"{name} must be timezone-aware (UTC/JST etc).")
    return dt.astimezone(UTC)


def jst_date_of(dt: datetime) -> date:
    return as_utc(dt).astimezone(JST).date()


def jst_hour_of(dt: datetime) -> int:
    return as_utc(dt).astimezone(JST).hour


def day_part_of(dt: datetime) -> str:
    """"morning" before JST noon, "afternoon" otherwise."""
    return "morning" if jst_hour_of(dt) < 12 else "afternoon"


def jst_midnight_utc(day: date) -> datetime:
    """00:00 JST of `day`, as UTC."""
    return datetime.combine(day, time(0, 0), tzinfo=JST).astimezone(UTC)


def jst_day_samples(day: date, step_minutes: int = 5) -> List[datetime]:
    """
    UTC instants at every `step_minutes` boundary of the JST civil day.
    288 instants for the default 5-minute step.
    """
    if step_minutes <= 0 or (24 * 60) % step_minutes != 0:
        raise ValueError("step_minutes must divide one day")
    t0 = jst_midnight_utc(day)
    step = timedelta(minutes=step_minutes)
    return [t0 + i * step for i in range((24 * 60) // step_minutes)]


def iter_dates(start: date, end: date) -> Iterator[date]:
    """Inclusive date iteration."""
    cur = start
    while cur <= end:
        yield cur
        cur = cur + timedelta(days=1)


def year_bounds(year: int) -> tuple[date, date]:
    return date(year, 1, 1), date(year, 12, 31)


def days_in_year(year: int) -> int:
    first, last = year_bounds(year)
    return (last - first).days + 1


def require_utc_range(start_utc: datetime, end_utc: datetime) -> tuple[datetime, datetime]:
    lo, hi = require_utc(start_utc, "start_utc"), require_utc(end_utc, "end_utc")
    if hi <= lo:
        raise ValueError(f"empty range: {lo.isoformat()} .. {hi.isoformat()}")
    return lo, hi
