from __future__ import annotations

import calendar
from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def add_months(start: date, months: int) -> date:
    """Shift ``start`` by whole calendar months.

    Days past the end of the target month clamp to its last day, so
    Jan 31 + 1 month is Feb 28 (or Feb 29 in a leap year).
    """
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(start.day, last_day))


def today_in(tz: str | None) -> date:
    """Calendar date "now" at the site, falling back to UTC."""
    zone = ZoneInfo(tz) if tz else timezone.utc
    return datetime.now(tz=zone).date()


def days_until(target: date, today: date) -> int:
    """Whole calendar days from ``today`` to ``target`` (negative once past)."""
    return (target - today).days


def utcnow_iso() -> str:
    return datetime.utcnow().isoformat(timespec="seconds") + "Z"
