"""Date helpers for statistics periods.

Statistics are bucketed per UTC day; read-side grains aggregate those days into
ISO weeks, calendar months and years.
"""

import re
from datetime import date, datetime, timedelta, timezone
from enum import Enum
from typing import Optional

_WEEK_KEY = re.compile(r"^(\d{4})-W(\d{2})$")
_MONTH_KEY = re.compile(r"^(\d{4})-(\d{2})$")
_YEAR_KEY = re.compile(r"^(\d{4})$")


class Grain(str, Enum):
    """Aggregation grain of a statistics read."""

    ALL = "all"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    YEAR = "year"


def get_week_start(value: datetime) -> datetime:
    """Get Monday 00:00:00 UTC of the week containing ``value``.

    Args:
        value: Input datetime (timezone-aware or naive, naive treated as UTC)

    Returns:
        Timezone-aware UTC datetime at the start of the ISO week
    """
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    else:
        value = value.astimezone(timezone.utc)
    monday = value - timedelta(days=value.weekday())
    return monday.replace(hour=0, minute=0, second=0, microsecond=0)


def utc_date(value: datetime) -> date:
    """Return the UTC calendar date of ``value``."""
    if value.tzinfo is None:
        return value.date()
    return value.astimezone(timezone.utc).date()


def period_key(day: date, grain: Grain) -> Optional[str]:
    """Return the period key containing ``day`` for ``grain``.

    Keys are ``YYYY-MM-DD`` (day), ``YYYY-Www`` (ISO week), ``YYYY-MM`` (month)
    and ``YYYY`` (year); the ``all`` grain has no key.
    """
    if grain == Grain.ALL:
        return None
    if grain == Grain.DAY:
        return day.isoformat()
    if grain == Grain.WEEK:
        iso_year, iso_week, _ = day.isocalendar()
        return f"{iso_year}-W{iso_week:02d}"
    if grain == Grain.MONTH:
        return f"{day.year}-{day.month:02d}"
    if grain == Grain.YEAR:
        return f"{day.year}"
    raise ValueError(f"Unknown grain: {grain}")


def period_range(grain: Grain, key: Optional[str]) -> Optional[tuple[date, date]]:
    """Translate a period key into an inclusive ``(first_day, last_day)`` range.

    Args:
        grain: Aggregation grain
        key: Period key in the format produced by :func:`period_key`

    Returns:
        Inclusive date range, or None for the ``all`` grain

    Raises:
        ValueError: If the key is missing or malformed for the grain
    """
    if grain == Grain.ALL:
        return None
    if not key:
        raise ValueError(f"a period key is required for grain '{grain.value}'")

    if grain == Grain.DAY:
        day = date.fromisoformat(key)
        return day, day

    if grain == Grain.WEEK:
        match = _WEEK_KEY.match(key)
        if not match:
            raise ValueError(f"invalid week key '{key}', expected YYYY-Www")
        year, week = int(match.group(1)), int(match.group(2))
        try:
            first = datetime.strptime(f"{year}-W{week:02d}-1", "%G-W%V-%u").date()
        except ValueError as e:
            raise ValueError(f"invalid week key '{key}': {e}") from e
        if first.isocalendar()[:2] != (year, week):
            raise ValueError(f"invalid week key '{key}'")
        return first, first + timedelta(days=6)

    if grain == Grain.MONTH:
        match = _MONTH_KEY.match(key)
        if not match:
            raise ValueError(f"invalid month key '{key}', expected YYYY-MM")
        year, month = int(match.group(1)), int(match.group(2))
        if not 1 <= month <= 12:
            raise ValueError(f"invalid month key '{key}'")
        first = date(year, month, 1)
        following = date(year + 1, 1, 1) if month == 12 else date(year, month + 1, 1)
        return first, following - timedelta(days=1)

    if grain == Grain.YEAR:
        match = _YEAR_KEY.match(key)
        if not match:
            raise ValueError(f"invalid year key '{key}', expected YYYY")
        year = int(match.group(1))
        return date(year, 1, 1), date(year, 12, 31)

    raise ValueError(f"Unknown grain: {grain}")
