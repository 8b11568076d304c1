from __future__ import annotations

from enum import Enum


class RejectReason(str, Enum):
    INVALID_INPUT = "INVALID_INPUT"
    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    TEMPLATE_NOT_FOUND = "TEMPLATE_NOT_FOUND"
    TICKET_NOT_FOUND = "TICKET_NOT_FOUND"
    BOOKING_NOT_FOUND = "BOOKING_NOT_FOUND"
    SESSION_CANCELED = "SESSION_CANCELED"
    INELIGIBLE = "INELIGIBLE"
    CROSS_ACADEMY = "CROSS_ACADEMY"
    SESSION_FULL = "SESSION_FULL"
    EXHAUSTED = "EXHAUSTED"
    EXPIRED = "EXPIRED"
    NOT_YET_STARTED = "NOT_YET_STARTED"
    CANCELLED = "CANCELLED"
    DUPLICATE_BOOKING = "DUPLICATE_BOOKING"
    DUPLICATE_ISSUANCE = "DUPLICATE_ISSUANCE"
    INVALID_BOOKING_STATE = "INVALID_BOOKING_STATE"
    CONCURRENCY_CONFLICT = "CONCURRENCY_CONFLICT"


class ClassbookError(Exception):
    reason: RejectReason = RejectReason.INVALID_INPUT

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.reason.value)
        self.message = message or self.reason.value

    @property
    def code(self) -> str:
        return self.reason.value


class ValidationError(ClassbookError):
    reason = RejectReason.INVALID_INPUT


class NotFoundError(ClassbookError):
    pass


class EligibilityError(ClassbookError):
    reason = RejectReason.INELIGIBLE


class CapacityError(ClassbookError):
    reason = RejectReason.SESSION_FULL


class EntitlementError(ClassbookError):
    pass


class StateConflictError(ClassbookError):
    pass


class ConcurrencyConflictError(ClassbookError):
    reason = RejectReason.CONCURRENCY_CONFLICT
