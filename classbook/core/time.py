from __future__ import annotations

from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def local_date(moment_utc: datetime, tz_name: str) -> date:
    """Civil date of an instant in the academy time zone."""
    return moment_utc.astimezone(ZoneInfo(tz_name)).date()
