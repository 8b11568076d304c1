from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from uuid import UUID

SUNDAY = 0
MONDAY = 1
TUESDAY = 2
WEDNESDAY = 3
THURSDAY = 4
FRIDAY = 5
SATURDAY = 6

RULE_CHANGED_REASON = "RULE_CHANGED"


@dataclass(frozen=True, slots=True)
class RecurrenceRule:
    """Weekly recurrence. ``days_of_week`` uses 0 for Sunday through 6 for Saturday."""

    start_date: date
    end_date: date
    days_of_week: frozenset[int]
    time_of_day: time
    duration_minutes: int
    interval_weeks: int = 1
    tz_name: str = "Asia/Seoul"


@dataclass(slots=True)
class MaterializeResult:
    created: list[UUID] = field(default_factory=list)
    skipped: int = 0


@dataclass(slots=True)
class RegenerationResult:
    created: list[UUID] = field(default_factory=list)
    retired: list[UUID] = field(default_factory=list)
    updated: list[UUID] = field(default_factory=list)
    kept: int = 0
