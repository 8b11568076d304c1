"""Pure expansion of weekly recurrence rules into session start times.

Dates are selected with civil-date arithmetic in the rule's time zone, so DST
transitions never change which days are picked. The wall-clock time is then
attached per date; a local time that does not exist resolves with ``fold=0``.
"""

from __future__ import annotations

from collections.abc import Iterable
from datetime import date, datetime, timedelta, timezone
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from classbook.scheduling.errors import RecurrenceValidationError
from classbook.scheduling.types import RecurrenceRule


def weekday_index(day: date) -> int:
    return day.isoweekday() % 7


def validate_rule(rule: RecurrenceRule) -> None:
    if rule.interval_weeks < 1:
        raise RecurrenceValidationError("interval_weeks must be >= 1")
    invalid_days = sorted(day for day in rule.days_of_week if not 0 <= day <= 6)
    if invalid_days:
        raise RecurrenceValidationError(f"days_of_week out of range: {invalid_days}")
    if rule.duration_minutes <= 0:
        raise RecurrenceValidationError("duration_minutes must be > 0")
    try:
        ZoneInfo(rule.tz_name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise RecurrenceValidationError(f"unknown time zone: {rule.tz_name}") from exc


def expand(rule: RecurrenceRule) -> list[datetime]:
    validate_rule(rule)
    if not rule.days_of_week or rule.end_date < rule.start_date:
        return []

    tz = ZoneInfo(rule.tz_name)
    starts: list[datetime] = []
    current = rule.start_date
    while current <= rule.end_date:
        week_number = (current - rule.start_date).days // 7
        if week_number % rule.interval_weeks == 0 and weekday_index(current) in rule.days_of_week:
            starts.append(datetime.combine(current, rule.time_of_day, tzinfo=tz))
        current += timedelta(days=1)
    return starts


def session_window(start: datetime, rule: RecurrenceRule) -> tuple[datetime, datetime]:
    end_utc = start.astimezone(timezone.utc) + timedelta(minutes=rule.duration_minutes)
    return start, end_utc.astimezone(start.tzinfo)


def restrict(
    starts: Iterable[datetime],
    *,
    date_from: date | None = None,
    date_to: date | None = None,
    tz_name: str,
) -> list[datetime]:
    """Keep starts whose local civil date falls inside the inclusive range."""
    tz = ZoneInfo(tz_name)
    kept: list[datetime] = []
    for start in starts:
        local_day = start.astimezone(tz).date()
        if date_from is not None and local_day < date_from:
            continue
        if date_to is not None and local_day > date_to:
            continue
        kept.append(start)
    return kept
