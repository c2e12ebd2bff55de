import re
from datetime import date, datetime

from backend.errors import ValidationError

HHMM_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")
COLOR_PATTERN = re.compile(r"^#[0-9A-Fa-f]{6}$")
DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def parse_bool(value, default=False):
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ["1", "true", "yes", "on"]


def parse_day_value(raw):
    """Parse a strict YYYY-MM-DD string (years 1900..2100); return None on failure."""
    if isinstance(raw, datetime):
        return raw.date()
    if isinstance(raw, date):
        return raw
    value = str(raw or "").strip()
    if not DATE_PATTERN.match(value):
        return None
    try:
        parsed = datetime.strptime(value, "%Y-%m-%d").date()
    except (TypeError, ValueError):
        return None
    if not (1900 <= parsed.year <= 2100):
        return None
    return parsed


def require_day_value(raw, field="date"):
    parsed = parse_day_value(raw)
    if parsed is None:
        raise ValidationError(f"Invalid {field}. Expected YYYY-MM-DD")
    return parsed


def parse_date_range(start_raw, end_raw):
    start_day = require_day_value(start_raw, "start")
    end_day = require_day_value(end_raw, "end")
    if end_day < start_day:
        raise ValidationError("end must be on/after start")
    return start_day, end_day


def parse_hhmm(val, field="time"):
    value = str(val or "").strip()
    if not HHMM_PATTERN.match(value):
        raise ValidationError(f"{field} must be in HH:MM format")
    return value


def ensure_time_order(start_time, end_time):
    # Zero-padded HH:MM strings compare correctly as text
    if start_time >= end_time:
        raise ValidationError("End time must be after start time")


def parse_color(raw):
    if raw in (None, ""):
        return None
    value = str(raw).strip()
    if not COLOR_PATTERN.match(value):
        raise ValidationError("color must be a valid hex color (e.g., #A5D8FF)")
    return value


def parse_days_of_week(raw):
    """ISO weekdays (Monday=1..Sunday=7). Duplicates and out-of-range values are rejected."""
    if isinstance(raw, str):
        values = [v for v in raw.split(",") if v.strip()]
    elif isinstance(raw, (list, tuple)):
        values = list(raw)
    else:
        raise ValidationError("daysOfWeek must be a list of integers 1-7")
    if not values:
        raise ValidationError("daysOfWeek must contain at least one day")
    days = []
    for val in values:
        try:
            day = int(val)
        except (TypeError, ValueError):
            raise ValidationError("daysOfWeek must be a list of integers 1-7")
        if not 1 <= day <= 7:
            raise ValidationError("daysOfWeek must be a list of integers 1-7")
        days.append(day)
    if len(set(days)) != len(days):
        raise ValidationError("daysOfWeek must contain unique values")
    return sorted(days)


def days_of_week_to_string(days):
    return ",".join(str(d) for d in days)


def parse_name(raw, field="name", max_len=200):
    value = (raw or "").strip() if isinstance(raw, str) else ""
    if not value:
        raise ValidationError(f"{field} is required")
    if len(value) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return value
