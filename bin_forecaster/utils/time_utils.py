"""
Time and date utilities for collection-cycle arithmetic.

Key concepts:
  - All timestamps inside the engine are timezone-aware UTC datetimes.
    Naive values (e.g. from a CSV without an offset) are interpreted as UTC.
  - Database timestamps are fixed-width ISO-8601 strings so that ``ORDER BY``
    on the text column matches chronological order.
  - Elapsed time is measured in fractional days; cycle lengths are rounded up
    to whole days.
"""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from typing import Optional

_SECONDS_PER_DAY = 86_400.0


def utcnow() -> datetime:
    """Return the current UTC datetime with timezone info.

    Prefer this over ``datetime.utcnow()`` (which returns naive datetimes).
    """
    return datetime.now(tz=timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime.

    Naive datetimes are assumed to already be in UTC.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_db_timestamp(value: datetime) -> str:
    """Format a datetime as a fixed-width UTC ISO-8601 string for storage.

    Example: ``2024-09-15T12:00:00.000000+00:00``.
    """
    return ensure_utc(value).isoformat(timespec="microseconds")


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse a stored timestamp back into an aware UTC datetime (``None`` passes through)."""
    if value is None or value == "":
        return None
    return ensure_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def fractional_days(delta: timedelta) -> float:
    """Convert a ``timedelta`` into (possibly negative) fractional days."""
    return delta.total_seconds() / _SECONDS_PER_DAY


def days_elapsed_since(start: datetime, as_of: datetime) -> float:
    """Fractional days from ``start`` to ``as_of``, floored at zero.

    A ``start`` in the future relative to ``as_of`` yields ``0.0``.
    """
    return max(fractional_days(ensure_utc(as_of) - ensure_utc(start)), 0.0)


def ceil_days_between(earlier: datetime, later: datetime) -> int:
    """Whole days spanned from ``earlier`` to ``later``, rounding any remainder up.

    Distinct timestamps even one second apart give at least ``1``; equal
    timestamps give ``0``.

    Raises:
        ValueError: If ``later`` precedes ``earlier``.
    """
    seconds = (ensure_utc(later) - ensure_utc(earlier)).total_seconds()
    if seconds < 0:
        raise ValueError(f"later ({later}) must not precede earlier ({earlier}).")
    return math.ceil(seconds / _SECONDS_PER_DAY)
