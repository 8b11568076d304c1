from __future__ import annotations

import re
from datetime import date, timedelta

from classbook.core.errors import RejectReason
from classbook.entitlements.errors import InvalidExtensionError
from classbook.entitlements.types import TicketKind, UserTicketStatus

EXPIRY_DATE_RE = re.compile(r"\d{4}-\d{2}-\d{2}")
_EXPIRABLE_STATUSES = {UserTicketStatus.ACTIVE, UserTicketStatus.DEPLETED}


def compute_expiry_date(start_date: date, valid_days: int | None) -> date | None:
    if valid_days is None:
        return None
    return start_date + timedelta(days=valid_days)


def is_clock_expired(expiry_date: date | None, today: date) -> bool:
    return expiry_date is not None and today > expiry_date


def effective_status(status: str, expiry_date: date | None, today: date) -> UserTicketStatus:
    """Stored status with lazy expiry applied."""
    stored = UserTicketStatus(status)
    if stored in _EXPIRABLE_STATUSES and is_clock_expired(expiry_date, today):
        return UserTicketStatus.EXPIRED
    return stored


def classify_consume_rejection(
    *,
    kind: str,
    status: str,
    remaining_count: int | None,
    start_date: date,
    expiry_date: date | None,
    session_date: date,
    today: date,
) -> RejectReason | None:
    """Reason a ticket cannot pay for a session on ``session_date``, or None if it can."""
    current = effective_status(status, expiry_date, today)
    if current == UserTicketStatus.CANCELLED:
        return RejectReason.CANCELLED
    if current == UserTicketStatus.EXPIRED:
        return RejectReason.EXPIRED
    if expiry_date is not None and session_date > expiry_date:
        return RejectReason.EXPIRED
    if session_date < start_date:
        return RejectReason.NOT_YET_STARTED
    if TicketKind(kind) == TicketKind.COUNT:
        if current == UserTicketStatus.DEPLETED or (remaining_count or 0) <= 0:
            return RejectReason.EXHAUSTED
    return None


def parse_expiry_date(value: str) -> date:
    if not EXPIRY_DATE_RE.fullmatch(value):
        raise InvalidExtensionError("new_expiry_date must be formatted as YYYY-MM-DD")
    try:
        return date.fromisoformat(value)
    except ValueError as exc:
        raise InvalidExtensionError(f"invalid calendar date: {value}") from exc


def resolve_extension_target(
    *,
    current_expiry: date | None,
    today: date,
    new_expiry_date: date | str | None,
    extend_by_days: int | None,
    allow_shorten: bool,
) -> date:
    if (new_expiry_date is None) == (extend_by_days is None):
        raise InvalidExtensionError("provide exactly one of new_expiry_date or extend_by_days")

    if extend_by_days is not None:
        if extend_by_days <= 0:
            raise InvalidExtensionError("extend_by_days must be positive")
        return (current_expiry or today) + timedelta(days=extend_by_days)

    if isinstance(new_expiry_date, str):
        target = parse_expiry_date(new_expiry_date)
    else:
        target = new_expiry_date

    floor = current_expiry if current_expiry is not None else today
    if target < floor and not allow_shorten:
        raise InvalidExtensionError("new expiry date would shorten the ticket")
    return target
