from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from ajournal import dates


def test_iso_week_parts():
    assert dates.iso_week_parts(date(2024, 1, 15)) == (2024, "week-03")
    # Early January can belong to the previous ISO year
    assert dates.iso_week_parts(date(2021, 1, 1)) == (2020, "week-53")


def test_parse_timestamp_variants():
    github = dates.parse_timestamp("2024-01-15T10:30:00Z")
    jira = dates.parse_timestamp("2024-01-15T10:30:00.000+0000")
    google = dates.parse_timestamp("2024-01-15T05:30:00-05:00")

    assert github == jira == google


def test_day_key_uses_time_zone():
    late_evening_la = "2024-01-16T07:30:00Z"

    assert dates.day_key(late_evening_la, timezone.utc) == "2024-01-16"
    assert dates.day_key(late_evening_la, ZoneInfo("America/Los_Angeles")) == "2024-01-15"


def test_to_date_accepts_dates_and_strings():
    assert dates.to_date(date(2024, 1, 15)) == date(2024, 1, 15)
    assert dates.to_date("2024-01-15") == date(2024, 1, 15)
    assert dates.to_date(datetime(2024, 1, 15, 23, 0)) == date(2024, 1, 15)


def test_iter_days_is_inclusive():
    days = list(dates.iter_days(date(2024, 1, 30), date(2024, 2, 2)))
    assert days == [date(2024, 1, 30), date(2024, 1, 31), date(2024, 2, 1), date(2024, 2, 2)]


def test_day_bounds():
    tz = ZoneInfo("Europe/Berlin")
    start = dates.start_of_day(date(2024, 1, 15), tz)
    end = dates.end_of_day(date(2024, 1, 15), tz)

    assert start.hour == 0 and start.tzinfo is tz
    assert end.date() == date(2024, 1, 15)
    assert (end - start).total_seconds() < 86400


def test_period_ranges():
    assert dates.week_range(date(2024, 1, 15)) == (date(2024, 1, 15), date(2024, 1, 21))
    assert dates.month_range(2024, 2) == (date(2024, 2, 1), date(2024, 2, 29))
    assert dates.quarter_range(2024, 4) == (date(2024, 10, 1), date(2024, 12, 31))
    assert dates.quarter_of(date(2024, 8, 1)) == 3


def test_parse_month_and_quarter():
    assert dates.parse_month("2024-03") == (2024, 3)
    assert dates.parse_quarter("2024-Q2") == (2024, 2)

    for bad in ("2024-13", "2024/03", "March"):
        with pytest.raises(ValueError):
            dates.parse_month(bad)
    for bad in ("2024-Q5", "2024Q1", "Q1-2024"):
        with pytest.raises(ValueError):
            dates.parse_quarter(bad)
