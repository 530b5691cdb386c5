"""Calendar helpers for bucketing ledger timestamps into shop days.

Records carry ISO-8601 timestamps. Days and months are decided by converting
each timestamp into the shop's configured timezone and reading its calendar
date, never by comparing string prefixes.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, tzinfo
from typing import List, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


DayLike = Union[date, str]


def resolve_timezone(name: str) -> tzinfo:
    """Return the ``tzinfo`` for an IANA zone name.

    Raises:
        ValueError: If ``name`` is not a known zone.
    """

    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown timezone: {name}") from exc


def parse_day(value: DayLike) -> date:
    """Normalize a ``date`` or ``YYYY-MM-DD`` string into a ``date``."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Invalid calendar date: {value!r}") from exc


def local_date(timestamp_iso: str, tz: tzinfo) -> date:
    """Return the calendar date of ``timestamp_iso`` as seen in ``tz``.

    Naive timestamps are taken to already be wall-clock time in ``tz``.
    """

    moment = datetime.fromisoformat(timestamp_iso)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=tz)
    return moment.astimezone(tz).date()


def month_key(year: int, month_index: int) -> str:
    """Format a 0-based month index as ``YYYY-MM``."""

    if not 0 <= month_index <= 11:
        raise ValueError(f"Month index must be between 0 and 11, got {month_index}")
    return f"{year:04d}-{month_index + 1:02d}"


def days_in_month(year: int, month_index: int) -> List[date]:
    """Every calendar day of the 0-based month, in order.

    Raises:
        ValueError: If ``month_index`` is outside 0-11.
    """

    month_key(year, month_index)
    _, last_day = calendar.monthrange(year, month_index + 1)
    return [date(year, month_index + 1, day) for day in range(1, last_day + 1)]


__all__ = [
    "DayLike",
    "resolve_timezone",
    "parse_day",
    "local_date",
    "month_key",
    "days_in_month",
]
