"""Calendar-month helpers used by settlement and balance queries."""

import calendar
from datetime import date


def validate_period(year: int, month: int) -> None:
    if not 1 <= month <= 12:
        raise ValueError(f"Month must be in 1..12, got {month}")
    if year < 1:
        raise ValueError(f"Year must be positive, got {year}")


def month_bounds(year: int, month: int) -> tuple[date, date]:
    """First and last calendar day of the month, both inclusive."""
    validate_period(year, month)
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def trailing_months(as_of: date, count: int) -> list[tuple[int, int]]:
    """
    The ``count`` months ending with ``as_of``'s month, oldest first.

    >>> trailing_months(date(2024, 2, 10), 3)
    [(2023, 12), (2024, 1), (2024, 2)]
    """
    if count < 1:
        raise ValueError("count must be at least 1")
    months = []
    year, month = as_of.year, as_of.month
    for _ in range(count):
        months.append((year, month))
        month -= 1
        if month == 0:
            year, month = year - 1, 12
    months.reverse()
    return months
