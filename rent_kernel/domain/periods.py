"""
Calendar-month arithmetic for rent periods.

A rent period is identified by the first day of its calendar month.
All functions here are pure and operate on ``date`` values.
"""

import calendar
from datetime import date


def month_start(value: date) -> date:
    """First day of the month containing ``value``."""
    return date(value.year, value.month, 1)


def add_months(period: date, months: int) -> date:
    """Shift a month-start date by ``months`` (may be negative)."""
    index = period.year * 12 + (period.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def months_between(start: date, end: date) -> int:
    """Whole months from ``start``'s month to ``end``'s month."""
    return (end.year - start.year) * 12 + (end.month - start.month)


def days_in_month(period: date) -> int:
    return calendar.monthrange(period.year, period.month)[1]


def due_date_for(period: date, due_day: int) -> date:
    """
    Due date inside ``period``, clamped for short months.

    >>> due_date_for(date(2024, 2, 1), 31)
    datetime.date(2024, 2, 29)
    """
    start = month_start(period)
    return start.replace(day=min(max(due_day, 1), days_in_month(start)))


def month_label(value: date) -> str:
    """Human label, e.g. ``March 2026``."""
    return f"{calendar.month_name[value.month]} {value.year}"
