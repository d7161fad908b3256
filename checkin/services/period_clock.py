"""
Period arithmetic for conversation scheduling.

A period is the calendar month of a conversation's start, keyed "YYYY-MM".
Organizations open a subset of months for conversations; the next
conversation date is the first day of the next open month.
"""

import calendar
from datetime import date, datetime, timezone

from checkin.core.exceptions import ValidationError

_PERIOD_FORMAT_ERROR = "period must look like YYYY-MM"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def period_of(timestamp: datetime | date) -> str:
    """``2025-06-14T09:00Z`` -> ``"2025-06"``."""
    return f"{timestamp.year:04d}-{timestamp.month:02d}"


def validate_period_key(period) -> str:
    """Check a "YYYY-MM" key from a request; ValidationError otherwise."""
    if not isinstance(period, str) or len(period) != 7 or period[4] != "-":
        raise ValidationError(_PERIOD_FORMAT_ERROR, details={"period": period})
    year, month = period[:4], period[5:]
    if not (year.isdigit() and month.isdigit() and 1 <= int(month) <= 12):
        raise ValidationError(_PERIOD_FORMAT_ERROR, details={"period": period})
    return period


def is_active_month(org, month: int) -> bool:
    return month in set(org.active_months or [])


def next_period(active_months, from_date: datetime | date) -> date | None:
    """First day of the next active month strictly after ``from_date``'s month.

    Falls back to the smallest active month of the following year.
    Returns None when no month is active.
    """
    months = sorted({int(m) for m in active_months or [] if 1 <= int(m) <= 12})
    if not months:
        return None
    for m in months:
        if m > from_date.month:
            return date(from_date.year, m, 1)
    return date(from_date.year + 1, months[0], 1)


def is_last_day_of_month(day: datetime | date) -> bool:
    return day.day == calendar.monthrange(day.year, day.month)[1]


def validate_active_months(value) -> list[int]:
    """Normalise an active-months list; raises ValueError on bad input."""
    if not isinstance(value, (list, tuple)) or not value:
        raise ValueError("active_months must be a non-empty list")
    months = set()
    for m in value:
        if isinstance(m, bool) or not isinstance(m, int) or not 1 <= m <= 12:
            raise ValueError(f"invalid month {m!r}; expected 1..12")
        months.add(m)
    return sorted(months)
