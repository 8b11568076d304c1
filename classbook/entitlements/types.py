from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from classbook.core.errors import RejectReason


class TicketKind(str, Enum):
    COUNT = "COUNT"
    PERIOD = "PERIOD"


class UserTicketStatus(str, Enum):
    ACTIVE = "ACTIVE"
    DEPLETED = "DEPLETED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class LedgerEntryType(str, Enum):
    ISSUE = "ISSUE"
    CONSUME = "CONSUME"
    RESTORE = "RESTORE"
    EXTEND = "EXTEND"
    EXPIRE = "EXPIRE"
    REVOKE = "REVOKE"


@dataclass(frozen=True, slots=True)
class PaymentCompleted:
    idempotency_key: str
    user_id: UUID
    ticket_id: UUID
    academy_id: UUID
    amount: Decimal
    paid_at: datetime
    start_date: date | None = None


@dataclass(slots=True)
class UserTicketView:
    id: UUID
    user_id: UUID
    ticket_id: UUID
    academy_id: UUID
    kind: TicketKind
    status: UserTicketStatus
    remaining_count: int | None
    total_count: int | None
    start_date: date
    expiry_date: date | None
    purchased_at: datetime


@dataclass(slots=True)
class ConsumeResult:
    consumed: bool
    reason: RejectReason | None = None
    remaining_count: int | None = None
    idempotent_replay: bool = False

    @classmethod
    def accepted(cls, remaining_count: int | None, *, idempotent_replay: bool = False) -> ConsumeResult:
        return cls(consumed=True, remaining_count=remaining_count, idempotent_replay=idempotent_replay)

    @classmethod
    def rejected(cls, reason: RejectReason) -> ConsumeResult:
        return cls(consumed=False, reason=reason)


@dataclass(frozen=True, slots=True)
class EligibilityDecision:
    eligible: bool
    rule: str
