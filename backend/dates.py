from datetime import date, datetime, timedelta

import pytz


def utc_today() -> date:
    """Current UTC calendar date; every planner date is a UTC date."""
    return datetime.now(pytz.utc).date()


def iso_weekday(day_value: date) -> int:
    # Monday=1 .. Sunday=7
    return day_value.isoweekday()


def iter_days(start_day: date, end_day: date):
    current = start_day
    while current <= end_day:
        yield current
        current += timedelta(days=1)
