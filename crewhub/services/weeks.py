"""
ISO-8601 week identifiers in the `YYYY-Sww` form used across planning and timesheets.
"""
import re
from datetime import date, timedelta
from typing import List, Tuple

WEEK_ID_RE = re.compile(r"^(\d{4})-S(\d{2})$")

WORKING_DAYS = 5  # Monday..Friday


def parse_week_id(week_id: str) -> Tuple[int, int]:
    """Split a `YYYY-Sww` identifier into (iso_year, iso_week); raises ValueError when malformed."""
    match = WEEK_ID_RE.match(week_id or "")
    if not match:
        raise ValueError(f"Invalid week format: {week_id!r} (expected YYYY-Sww)")
    year, week = int(match.group(1)), int(match.group(2))
    # fromisocalendar rejects week 53 in 52-week years
    date.fromisocalendar(year, week, 1)
    return year, week


def format_week_id(iso_year: int, iso_week: int) -> str:
    return f"{iso_year:04d}-S{iso_week:02d}"


def week_id_for(day: date) -> str:
    iso_year, iso_week, _ = day.isocalendar()
    return format_week_id(iso_year, iso_week)


def week_monday(week_id: str) -> date:
    year, week = parse_week_id(week_id)
    return date.fromisocalendar(year, week, 1)


def previous_week_id(week_id: str) -> str:
    return week_id_for(week_monday(week_id) - timedelta(days=7))


def week_day_offset(from_week_id: str, to_week_id: str) -> int:
    """Number of days separating the Mondays of two weeks."""
    return (week_monday(to_week_id) - week_monday(from_week_id)).days


def working_days(week_id: str) -> List[date]:
    monday = week_monday(week_id)
    return [monday + timedelta(days=i) for i in range(WORKING_DAYS)]


def week_bounds(week_id: str) -> Tuple[date, date]:
    """(monday, friday) of the week."""
    days = working_days(week_id)
    return days[0], days[-1]
