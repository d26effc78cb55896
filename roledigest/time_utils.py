"""Timezone helpers for weekly boundary logic."""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo


def week_start_for(now: datetime, tz: ZoneInfo) -> datetime:
    """Return local midnight of the Monday starting the week containing ``now``.

    Naive datetimes are treated as already being in ``tz``.
    """
    local = now.replace(tzinfo=tz) if now.tzinfo is None else now.astimezone(tz)
    monday = local.date() - timedelta(days=local.weekday())
    return datetime.combine(monday, time.min, tzinfo=tz)


def to_iso_date(value: datetime | date) -> str:
    """Format a date or datetime as YYYY-MM-DD."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    return value.isoformat()
