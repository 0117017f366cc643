"""
Time rules for the Europe/Paris reference timezone.

The EU switch dates are computed explicitly (last Sunday of March and of October,
both at 01:00 UTC) so the scheduler gate behaves the same on every host,
whatever timezone database it ships.
"""
import calendar
from datetime import date, datetime, timedelta, timezone
from typing import Optional

PARIS_WINTER_OFFSET = timedelta(hours=1)  # CET
PARIS_SUMMER_OFFSET = timedelta(hours=2)  # CEST


def last_sunday_of_month(year: int, month: int) -> date:
    last_day = date(year, month, calendar.monthrange(year, month)[1])
    # isoweekday: Monday=1 .. Sunday=7
    return last_day - timedelta(days=last_day.isoweekday() % 7)


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def is_paris_dst(dt: datetime) -> bool:
    """
    Check whether Paris is on summer time at the given instant.

    Args:
        dt: Instant to check (naive values are taken as UTC)

    Returns:
        True between the last Sunday of March 01:00 UTC (inclusive) and the
        last Sunday of October 01:00 UTC (exclusive)
    """
    utc_dt = _as_utc(dt)
    year = utc_dt.year
    dst_start = datetime.combine(last_sunday_of_month(year, 3), datetime.min.time(), tzinfo=timezone.utc) + timedelta(hours=1)
    dst_end = datetime.combine(last_sunday_of_month(year, 10), datetime.min.time(), tzinfo=timezone.utc) + timedelta(hours=1)
    return dst_start <= utc_dt < dst_end


def paris_utc_offset(dt: datetime) -> timedelta:
    return PARIS_SUMMER_OFFSET if is_paris_dst(dt) else PARIS_WINTER_OFFSET


def paris_hour_to_utc(paris_hour: int, at: Optional[datetime] = None) -> int:
    """Convert a Paris wall-clock hour to the matching UTC hour on the given day."""
    at = at or datetime.now(timezone.utc)
    offset_hours = int(paris_utc_offset(at).total_seconds() // 3600)
    return (paris_hour - offset_hours) % 24


def is_target_paris_hour(target_paris_hour: int, now: Optional[datetime] = None) -> bool:
    """
    Check if the current UTC hour matches the target hour in Paris.

    Args:
        target_paris_hour: Hour of day in Paris (0-23)
        now: Current instant (defaults to the system clock, naive = UTC)

    Returns:
        True if the run should proceed
    """
    now = _as_utc(now or datetime.now(timezone.utc))
    return now.hour == paris_hour_to_utc(target_paris_hour, now)


def utc_to_paris(dt: datetime) -> datetime:
    """Convert an instant to naive Paris local time."""
    utc_dt = _as_utc(dt)
    return (utc_dt + paris_utc_offset(utc_dt)).replace(tzinfo=None)


def paris_today(now: Optional[datetime] = None) -> date:
    return utc_to_paris(now or datetime.now(timezone.utc)).date()
