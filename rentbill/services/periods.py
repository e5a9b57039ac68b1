"""Calendar helpers for billing periods (YYYY-MM) and month-based due dates."""

import re
from datetime import date

from dateutil.relativedelta import relativedelta

from rentbill.services.errors import InvalidPeriodError

PERIOD_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def add_months(start: date, months: int) -> date:
    """Add calendar months, clamping to the last day of a shorter month.

    add_months(date(2025, 1, 31), 1) == date(2025, 2, 28)
    """
    return start + relativedelta(months=months)


def parse_period(period: str) -> tuple[int, int]:
    """Split a YYYY-MM period into (year, month).

    Raises:
        InvalidPeriodError: If the string is not a valid period
    """
    match = PERIOD_PATTERN.match(period or "")
    if not match:
        raise InvalidPeriodError(period)
    return int(match.group(1)), int(match.group(2))


def format_period(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


def period_of(day: date) -> str:
    """Billing period containing the given date."""
    return format_period(day.year, day.month)


def previous_period(period: str) -> str:
    """Period one month earlier, rolling January back to December of the prior year."""
    year, month = parse_period(period)
    if month == 1:
        return format_period(year - 1, 12)
    return format_period(year, month - 1)


def period_start(period: str) -> date:
    """First day of the period."""
    year, month = parse_period(period)
    return date(year, month, 1)


def period_end(period: str) -> date:
    """Last day of the period."""
    return add_months(period_start(period), 1) - relativedelta(days=1)


__all__ = [
    "add_months",
    "parse_period",
    "format_period",
    "period_of",
    "previous_period",
    "period_start",
    "period_end",
]
