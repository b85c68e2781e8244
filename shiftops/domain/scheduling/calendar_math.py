"""Calendar math - date normalization and stepping (no state)"""

import re
from datetime import date, datetime, timedelta, timezone
from typing import Union

DateLike = Union[date, datetime, str]

ISO_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")

DAILY = "DAILY"
WEEKLY = "WEEKLY"
FREQUENCIES = (DAILY, WEEKLY)


def normalize_date(value: DateLike) -> date:
    """
    Normalize a date, datetime or ISO string to its UTC calendar date.

    Naive datetimes are interpreted as UTC; aware datetimes are converted to
    UTC before the time part is dropped.

    Raises:
        ValueError: If the value cannot be interpreted as a date
    """
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc)
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        if ISO_DATE_PATTERN.match(text):
            return parse_iso_date(text)
        # Full timestamps such as "2024-01-15T10:00:00Z"
        return normalize_date(datetime.fromisoformat(text.replace("Z", "+00:00")))
    raise ValueError(f"Unsupported date value: {value!r}")


def parse_iso_date(text: str) -> date:
    """Parse a strict YYYY-MM-DD string; raises ValueError on bad format or calendar date"""
    if not ISO_DATE_PATTERN.match(text):
        raise ValueError(f"Invalid date format: {text}")
    return date.fromisoformat(text)


def format_iso_date(value: DateLike) -> str:
    return normalize_date(value).isoformat()


def add_days(value: date, days: int) -> date:
    return value + timedelta(days=days)


def days_between(start: date, end: date) -> int:
    """Whole days from start to end (negative when end is before start)"""
    return (end - start).days


def step_days(frequency: str, interval: int) -> int:
    """Days between two consecutive occurrences of a rule"""
    if frequency == DAILY:
        return interval
    if frequency == WEEKLY:
        return interval * 7
    raise ValueError(f"Unsupported frequency: {frequency}")


def default_week_range(today: date) -> tuple[date, date]:
    """Sunday..Saturday week containing today"""
    # isoweekday: Monday=1 .. Sunday=7
    start = today - timedelta(days=today.isoweekday() % 7)
    return start, start + timedelta(days=6)
