"""Calendar-month billing period helpers (UTC)."""

import math
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(moment: datetime) -> datetime:
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def next_month_start(moment: datetime) -> datetime:
    """First instant of the calendar month after ``moment``."""
    moment = _as_utc(moment)
    if moment.month == 12:
        return datetime(moment.year + 1, 1, 1, tzinfo=timezone.utc)
    return datetime(moment.year, moment.month + 1, 1, tzinfo=timezone.utc)


def seconds_until_next_month(now: Optional[datetime] = None) -> int:
    now = _as_utc(now or utcnow())
    return max(0, math.floor((next_month_start(now) - now).total_seconds()))


def to_unix_seconds(moment: datetime) -> int:
    return math.floor(_as_utc(moment).timestamp())
