"""Time helpers; every timestamp in the package is an aware UTC datetime."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""

    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on round trips)."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_timestamp(value: str | int | float | datetime) -> datetime:
    """Parse ISO strings or epoch milliseconds into an aware UTC datetime."""

    if isinstance(value, datetime):
        return ensure_utc(value)
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


__all__ = ["Clock", "utc_now", "ensure_utc", "parse_timestamp"]
