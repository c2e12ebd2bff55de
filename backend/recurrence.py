"""
Recurrence expansion for calendar events.

Everything here is pure: a rule plus a window always yields the same list of
occurrences, and nothing touches the database.
"""
import calendar
from collections import namedtuple
from datetime import date, timedelta

from backend.dates import iso_weekday, iter_days
from backend.errors import InvalidRangeError

NONE = 'NONE'
DAILY = 'DAILY'
WEEKLY = 'WEEKLY'
MONTHLY = 'MONTHLY'
YEARLY = 'YEARLY'
WEEKDAYS = 'WEEKDAYS'
WEEKENDS = 'WEEKENDS'

RECURRENCE_KINDS = (NONE, DAILY, WEEKLY, MONTHLY, YEARLY, WEEKDAYS, WEEKENDS)

WEEKDAY_SET = frozenset({1, 2, 3, 4, 5})
WEEKEND_SET = frozenset({6, 7})

RecurrenceRule = namedtuple('RecurrenceRule', ['anchor_date', 'kind'])
Occurrence = namedtuple('Occurrence', ['source_id', 'anchor_date', 'occurrence_date', 'is_original'])


def normalize_kind(raw):
    kind = str(raw or NONE).strip().upper()
    if kind not in RECURRENCE_KINDS:
        return None
    return kind


def _add_months(anchor: date, months: int) -> date:
    month_index = anchor.month - 1 + months
    year = anchor.year + month_index // 12
    month = month_index % 12 + 1
    _, last_dom = calendar.monthrange(year, month)
    return date(year, month, min(anchor.day, last_dom))


def _add_years(anchor: date, years: int) -> date:
    year = anchor.year + years
    _, last_dom = calendar.monthrange(year, anchor.month)
    return date(year, anchor.month, min(anchor.day, last_dom))


def occurrence_date(anchor: date, kind: str, index: int) -> date:
    """Date of the index-th occurrence of a fixed-interval rule (index 0 is the anchor)."""
    if kind == DAILY:
        return anchor + timedelta(days=index)
    if kind == WEEKLY:
        return anchor + timedelta(days=7 * index)
    if kind == MONTHLY:
        return _add_months(anchor, index)
    if kind == YEARLY:
        return _add_years(anchor, index)
    return anchor


def _first_index_on_or_after(anchor: date, kind: str, window_start: date) -> int:
    """Smallest index whose occurrence falls on or after window_start."""
    if window_start <= anchor:
        return 0
    if kind == DAILY:
        return (window_start - anchor).days
    if kind == WEEKLY:
        return -(-(window_start - anchor).days // 7)
    if kind == MONTHLY:
        index = (window_start.year - anchor.year) * 12 + (window_start.month - anchor.month)
    else:
        index = window_start.year - anchor.year
    # A clamped day can land just before window_start within the same month/year
    if occurrence_date(anchor, kind, index) < window_start:
        index += 1
    return index


def _expand_fixed_interval(rule, window_start, window_end, source_id):
    occurrences = []
    index = _first_index_on_or_after(rule.anchor_date, rule.kind, window_start)
    current = occurrence_date(rule.anchor_date, rule.kind, index)
    while current <= window_end:
        occurrences.append(Occurrence(source_id, rule.anchor_date, current, index == 0))
        index += 1
        current = occurrence_date(rule.anchor_date, rule.kind, index)
    return occurrences


def _expand_day_set(rule, window_start, window_end, source_id):
    allowed = WEEKDAY_SET if rule.kind == WEEKDAYS else WEEKEND_SET
    occurrences = []
    for day_value in iter_days(max(rule.anchor_date, window_start), window_end):
        if iso_weekday(day_value) in allowed:
            occurrences.append(Occurrence(source_id, rule.anchor_date, day_value, day_value == rule.anchor_date))
    return occurrences


def expand_occurrences(rule, window_start, window_end, source_id=None):
    """
    Return every occurrence of `rule` inside [window_start, window_end].

    Occurrences before the anchor are never produced. Raises InvalidRangeError
    when the window is inverted.
    """
    if window_start > window_end:
        raise InvalidRangeError('start must be on or before end')

    kind = normalize_kind(rule.kind)
    if kind is None:
        raise ValueError(f"Unknown recurrence kind: {rule.kind}")
    rule = RecurrenceRule(rule.anchor_date, kind)

    if kind == NONE:
        if window_start <= rule.anchor_date <= window_end:
            return [Occurrence(source_id, rule.anchor_date, rule.anchor_date, True)]
        return []
    if kind in (WEEKDAYS, WEEKENDS):
        return _expand_day_set(rule, window_start, window_end, source_id)
    return _expand_fixed_interval(rule, window_start, window_end, source_id)


def rule_for_event(event):
    kind = event.recurrence_type if event.is_recurring else NONE
    return RecurrenceRule(event.date, kind)


def expand_events(events, window_start, window_end):
    """Expand persisted events into (event, occurrence) pairs sorted by occurrence date."""
    if window_start > window_end:
        raise InvalidRangeError('start must be on or before end')
    pairs = []
    for event in events:
        for occ in expand_occurrences(rule_for_event(event), window_start, window_end, source_id=event.id):
            pairs.append((event, occ))
    pairs.sort(key=lambda pair: (pair[1].occurrence_date, pair[1].source_id or 0))
    return pairs
