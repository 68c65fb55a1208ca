"""Timezone helpers shared by the loyalty services."""

from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

MONTH_LABELS = ("JAN", "FEB", "MAR", "APR", "MAY", "JUN", "JUL", "AUG", "SEP", "OCT", "NOV", "DEC")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime | None) -> datetime | None:
    """SQLite hands back naive datetimes; treat them as UTC."""

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_date(moment: datetime, tz_name: str) -> date:
    """Calendar date of ``moment`` in the offer timezone."""

    return ensure_utc(moment).astimezone(ZoneInfo(tz_name)).date()


def month_period(moment: datetime) -> str:
    """Monthly stats key, e.g. ``2024-MAR``."""

    moment = ensure_utc(moment)
    return f"{moment.year}-{MONTH_LABELS[moment.month - 1]}"


__all__ = ["MONTH_LABELS", "ensure_utc", "local_date", "month_period", "utcnow"]
