from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from uuid import UUID


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    COMPLETED = "COMPLETED"


@dataclass(slots=True)
class PeriodBookingResult:
    created: list[UUID] = field(default_factory=list)
    skipped: int = 0
