"""Calendar helpers for ledger days and reporting months.

Months are passed around as ``"YYYY-MM"`` strings, matching how they are
entered on the command line and stored in configuration.
"""

from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import List, Tuple


def parse_month(month: str) -> Tuple[int, int]:
    """Split a ``"YYYY-MM"`` string into ``(year, month)``.

    Raises:
        ValueError: If ``month`` is not a valid calendar month.
    """

    try:
        year_text, month_text = month.split("-")
        year, month_number = int(year_text), int(month_text)
    except (AttributeError, ValueError) as exc:
        raise ValueError(f"Invalid month: {month!r} (expected YYYY-MM)") from exc
    if not 1 <= month_number <= 12:
        raise ValueError(f"Invalid month: {month!r} (expected YYYY-MM)")
    return year, month_number


def days_in_month(month: str) -> List[date]:
    """Return every day of ``month`` in ascending order."""

    year, month_number = parse_month(month)
    count = calendar.monthrange(year, month_number)[1]
    return [date(year, month_number, day) for day in range(1, count + 1)]


def month_bounds(month: str) -> Tuple[date, date]:
    """Return the first and last day of ``month``."""

    days = days_in_month(month)
    return days[0], days[-1]


def previous_month(month: str) -> str:
    year, month_number = parse_month(month)
    if month_number == 1:
        return f"{year - 1:04d}-12"
    return f"{year:04d}-{month_number - 1:02d}"


def month_of(day: date) -> str:
    return f"{day.year:04d}-{day.month:02d}"


def date_range(start: date, end: date) -> List[date]:
    """Inclusive list of days from ``start`` to ``end`` (empty if reversed)."""

    span = (end - start).days
    return [start + timedelta(days=offset) for offset in range(span + 1)]


def window_ending(day: date, length: int) -> Tuple[date, date]:
    """Inclusive ``(start, end)`` of the ``length``-day window ending at ``day``."""

    return day - timedelta(days=length - 1), day
