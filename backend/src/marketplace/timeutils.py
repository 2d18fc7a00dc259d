"""UTC helpers.

Timestamps are stored as naive UTC datetimes so that SQLite and PostgreSQL
columns compare the same way.
"""

from datetime import datetime, timedelta, timezone


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def day_start(value: datetime) -> datetime:
    """First instant of the UTC day containing `value`."""
    value = to_naive_utc(value)
    return value.replace(hour=0, minute=0, second=0, microsecond=0)


def month_start(value: datetime) -> datetime:
    """First instant of the UTC calendar month containing `value`."""
    return day_start(value).replace(day=1)


def next_day_start(value: datetime) -> datetime:
    """First instant of the UTC day after the one containing `value`."""
    return day_start(value) + timedelta(days=1)


def next_month_start(value: datetime) -> datetime:
    """First instant of the UTC calendar month after the one containing `value`."""
    start = month_start(value)
    if start.month == 12:
        return start.replace(year=start.year + 1, month=1)
    return start.replace(month=start.month + 1)
