from __future__ import annotations

import calendar
import datetime as dt
from typing import Any

UTC = dt.timezone.utc


def utcnow() -> dt.datetime:
    return dt.datetime.now(UTC)


def utctoday() -> dt.date:
    return utcnow().date()


def ensure_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def parse_datetime(value: Any) -> dt.datetime | None:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value
    if isinstance(value, str):
        s = value.strip()
        if not s:
            return None
        # Support "Z" suffix.
        s = s.replace("Z", "+00:00")
        try:
            return dt.datetime.fromisoformat(s)
        except ValueError:
            return None
    return None


def parse_date(value: Any) -> dt.date | None:
    """
    Accepts date objects, datetimes and ISO strings ("2024-05-01" or a full timestamp).
    """
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    s = str(value).strip()
    if not s:
        return None
    try:
        return dt.date.fromisoformat(s[:10])
    except ValueError:
        return None


def add_months(d: dt.date, months: int) -> dt.date:
    """
    Calendar month arithmetic; the day clamps to the last day of the target month.
    """
    idx = d.month - 1 + int(months)
    year = d.year + idx // 12
    month = idx % 12 + 1
    last = calendar.monthrange(year, month)[1]
    return dt.date(year, month, min(d.day, last))


def add_years(d: dt.date, years: int) -> dt.date:
    return add_months(d, 12 * int(years))


def iso_or_none(value: dt.date | dt.datetime | None) -> str | None:
    if value is None:
        return None
    if isinstance(value, dt.datetime):
        return ensure_utc(value).isoformat()
    return value.isoformat()
