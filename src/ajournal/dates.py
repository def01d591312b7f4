"""
Calendar-day helpers.

Every place that needs to decide "which day does this belong to" goes
through here, with an explicit time zone. The storage layer, the
connectors and the journal generator all share one tz taken from
journal.timezone in the config.
"""

import calendar
import re
from datetime import date, datetime, timedelta, tzinfo
from typing import Iterator
from zoneinfo import ZoneInfo

from dateutil import parser as date_parser


def get_timezone(name: str | None = None) -> tzinfo:
    """
    Return a tzinfo for an IANA name, or the system zone when name is empty.

    Syntax notes:
    - datetime.now().astimezone() attaches the machine's local zone
    - .tzinfo pulls that zone back out so we can reuse it
    """
    if name:
        return ZoneInfo(name)
    return datetime.now().astimezone().tzinfo


def parse_timestamp(value: str | datetime) -> datetime:
    """
    Parse an ISO-8601 timestamp.

    Handles the variants the APIs hand back: "2024-01-15T10:30:00Z" (GitHub),
    "2024-01-15T10:30:00.000+0000" (Jira), "2024-01-15T10:30:00-05:00" (Google).
    """
    if isinstance(value, datetime):
        return value
    return date_parser.isoparse(value)


def to_date(value: date | datetime | str, tz: tzinfo | None = None) -> date:
    """
    Reduce a date-ish value to a calendar date.

    Aware datetimes are converted to tz first, so an event at
    2024-01-15T23:30:00-08:00 is the 16th in UTC but the 15th in
    Los Angeles. Naive datetimes are taken at face value.
    """
    if isinstance(value, str):
        value = parse_timestamp(value)
    if isinstance(value, datetime):
        if value.tzinfo is not None and tz is not None:
            value = value.astimezone(tz)
        return value.date()
    return value


def day_key(value: date | datetime | str, tz: tzinfo | None = None) -> str:
    """The yyyy-MM-dd bucket a value falls into."""
    return to_date(value, tz).isoformat()


def iter_days(start: date | datetime, end: date | datetime, tz: tzinfo | None = None) -> Iterator[date]:
    """Yield each calendar day from start to end, both inclusive."""
    current = to_date(start, tz)
    last = to_date(end, tz)
    while current <= last:
        yield current
        current += timedelta(days=1)


def start_of_day(day: date, tz: tzinfo | None = None) -> datetime:
    """Midnight at the start of day in tz."""
    return datetime(day.year, day.month, day.day, tzinfo=tz)


def end_of_day(day: date, tz: tzinfo | None = None) -> datetime:
    """Last microsecond of day in tz."""
    return start_of_day(day, tz) + timedelta(days=1) - timedelta(microseconds=1)


def iso_week_parts(day: date) -> tuple[int, str]:
    """
    ISO year and week folder name for a day.

    Weeks start on Monday. Early-January days can belong to the previous
    ISO year (2021-01-01 is in 2020's week 53), which is why we use the
    ISO year rather than day.year.

    Example:
        iso_week_parts(date(2024, 1, 15))  # (2024, "week-03")
    """
    iso_year, iso_week, _ = day.isocalendar()
    return iso_year, f"week-{iso_week:02d}"


# ---------------------------------------------------------------------------
# Report Periods
# ---------------------------------------------------------------------------

def week_range(start: date) -> tuple[date, date]:
    """Seven days beginning at start."""
    return start, start + timedelta(days=6)


def month_range(year: int, month: int) -> tuple[date, date]:
    """First and last day of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def quarter_of(day: date) -> int:
    """1-4."""
    return (day.month - 1) // 3 + 1


def quarter_range(year: int, quarter: int) -> tuple[date, date]:
    """First and last day of a quarter."""
    first_month = (quarter - 1) * 3 + 1
    start, _ = month_range(year, first_month)
    _, end = month_range(year, first_month + 2)
    return start, end


def parse_month(value: str) -> tuple[int, int]:
    """
    Parse "YYYY-MM" into (year, month).

    Raises:
        ValueError: If the string isn't a valid month
    """
    match = re.fullmatch(r"(\d{4})-(\d{2})", value.strip())
    if not match or not 1 <= int(match.group(2)) <= 12:
        raise ValueError(f"Invalid month format: {value!r}. Use YYYY-MM.")
    return int(match.group(1)), int(match.group(2))


def parse_quarter(value: str) -> tuple[int, int]:
    """
    Parse "YYYY-Q1".."YYYY-Q4" into (year, quarter).

    Raises:
        ValueError: If the string isn't a valid quarter
    """
    match = re.fullmatch(r"(\d{4})-[Qq]([1-4])", value.strip())
    if not match:
        raise ValueError(f"Invalid quarter format: {value!r}. Use YYYY-Q1, YYYY-Q2, etc.")
    return int(match.group(1)), int(match.group(2))
