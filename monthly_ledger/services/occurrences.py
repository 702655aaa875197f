"""
Occurrence Calculator

Pure date arithmetic for recurring templates: which calendar dates inside a
``YYYY-MM`` month a template fires on, plus the month-identifier helpers the
rest of the engine uses. Nothing here touches the database.
"""
import calendar
import re
from datetime import date, timedelta
from typing import List, Optional, Tuple


MONTH_YEAR_PATTERN = r"^\d{4}-\d{2}$"
_MONTH_YEAR_RE = re.compile(MONTH_YEAR_PATTERN)

MONTHLY = "monthly"
WEEKLY = "weekly"
BI_WEEKLY = "bi_weekly"
YEARLY = "yearly"

_STEP_DAYS = {
    WEEKLY: 7,
    BI_WEEKLY: 14,
}


# ===== MONTH IDENTIFIERS =====

def parse_month_year(month_year: str) -> Tuple[int, int]:
    """Validate a ``YYYY-MM`` identifier and return ``(year, month)``."""
    if not isinstance(month_year, str) or not _MONTH_YEAR_RE.match(month_year):
        raise ValueError(f"Month identifier must be in YYYY-MM format, got {month_year!r}")

    year, month = int(month_year[:4]), int(month_year[5:])
    if not 1 <= month <= 12:
        raise ValueError(f"Month identifier has an invalid month: {month_year!r}")
    if year < 1:
        raise ValueError(f"Month identifier has an invalid year: {month_year!r}")
    return year, month


def format_month_year(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def month_year_for(day: date) -> str:
    return format_month_year(day.year, day.month)


def current_month_year(today: Optional[date] = None) -> str:
    return month_year_for(today or date.today())


def month_bounds(month_year: str) -> Tuple[date, date]:
    """First and last calendar day of the month."""
    year, month = parse_month_year(month_year)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def shift_month_year(month_year: str, months: int) -> str:
    year, month = parse_month_year(month_year)
    total_months = year * 12 + (month - 1) + months
    return format_month_year(total_months // 12, total_months % 12 + 1)


def next_month_year(month_year: str) -> str:
    return shift_month_year(month_year, 1)


def previous_month_year(month_year: str) -> str:
    return shift_month_year(month_year, -1)


def month_name(month_year: str) -> str:
    """Human label, e.g. ``2025-12`` -> ``December 2025``."""
    year, month = parse_month_year(month_year)
    return f"{calendar.month_name[month]} {year}"


# ===== OCCURRENCES =====

def normalize_frequency(frequency) -> str:
    value = getattr(frequency, "value", frequency)
    if value is None:
        return MONTHLY
    value = str(value).strip().lower()
    # Older records spell it without the underscore
    if value == "biweekly":
        return BI_WEEKLY
    return value


def _clamped(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, calendar.monthrange(year, month)[1]))


def _stepped_occurrences(anchor_date: date, step_days: int, month_start: date, month_end: date) -> List[date]:
    step = timedelta(days=step_days)

    candidate = anchor_date
    while candidate > month_start:
        candidate -= step
    while candidate < month_start:
        candidate += step

    events = []
    while candidate <= month_end:
        events.append(candidate)
        candidate += step
    return events


def occurrences(frequency, anchor_date: Optional[date], month_year: str) -> List[date]:
    """
    All dates inside ``month_year`` on which a schedule anchored at
    ``anchor_date`` fires, sorted ascending.

    Monthly schedules fire once, on the anchor's day clamped to the month's
    length (an anchor on the 31st fires on the 30th in a 30-day month).
    Weekly and bi-weekly schedules walk the anchor back to the start of the
    month and then forward in 7 or 14 day steps, so anchors far in the past
    or future produce the same in-month dates. Yearly schedules fire only in
    the anchor's calendar month.
    """
    month_start, month_end = month_bounds(month_year)
    if anchor_date is None:
        return []

    freq = normalize_frequency(frequency)

    if freq == MONTHLY:
        event_date = _clamped(month_start.year, month_start.month, anchor_date.day)
        events = [event_date] if month_start <= event_date <= month_end else []
    elif freq in _STEP_DAYS:
        events = _stepped_occurrences(anchor_date, _STEP_DAYS[freq], month_start, month_end)
    elif freq == YEARLY:
        if anchor_date.month != month_start.month:
            return []
        events = [_clamped(month_start.year, month_start.month, anchor_date.day)]
    else:
        raise ValueError(f"Unsupported frequency: {frequency!r}")

    return sorted(events)


def template_occurrences(template, month_year: str) -> List[date]:
    """Occurrences for a template; empty unless it is auto-created and anchored."""
    if not template.auto_create or template.due_date is None:
        return []
    return occurrences(template.frequency, template.due_date, month_year)
