"""Date manipulation utilities"""

import calendar
from datetime import date, datetime
from typing import Optional, Tuple

LONG_DATE_FORMATS = ("%B %d, %Y", "%B %d %Y", "%b %d, %Y", "%b %d %Y")


def parse_long_date(text: str) -> Optional[date]:
    """Parse 'January 1, 2024' style dates; returns None when unparseable"""
    cleaned = " ".join(text.replace(",", ", ").split()).replace(" ,", ",")
    for fmt in LONG_DATE_FORMATS:
        try:
            return datetime.strptime(cleaned, fmt).date()
        except ValueError:
            continue
    return None


def parse_numeric_date(text: str) -> Optional[date]:
    """Parse MM/DD/YY or MM/DD/YYYY; two-digit years are 20xx"""
    parts = text.strip().split("/")
    if len(parts) != 3:
        return None
    try:
        month, day, year = (int(p) for p in parts)
        if len(parts[2]) == 2:
            year += 2000
        return date(year, month, day)
    except ValueError:
        return None


def parse_any_date(text: str) -> Optional[date]:
    return parse_numeric_date(text) if "/" in text else parse_long_date(text)


def resolve_month_day(month: int, day: int, period_end: date) -> date:
    """
    Place an MM/DD transaction date inside the statement period.

    A month later than the period-end month belongs to the previous year
    (December lines on a January statement).

    Raises:
        ValueError: If month/day do not form a valid date
    """
    year = period_end.year if month <= period_end.month else period_end.year - 1
    return date(year, month, day)


def current_month_range(today: date) -> Tuple[date, date]:
    """First and last day of the calendar month containing today"""
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


def months_between(earlier: date, later: date) -> int:
    """Whole-month distance comparing month and year only"""
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"
