from classbook.core.errors import (
    EligibilityError,
    EntitlementError,
    NotFoundError,
    RejectReason,
    StateConflictError,
    ValidationError,
)


class TicketNotFoundError(NotFoundError):
    reason = RejectReason.TICKET_NOT_FOUND


class TicketExhaustedError(EntitlementError):
    reason = RejectReason.EXHAUSTED


class TicketExpiredError(EntitlementError):
    reason = RejectReason.EXPIRED


class TicketNotYetStartedError(EntitlementError):
    reason = RejectReason.NOT_YET_STARTED


class TicketCancelledError(EntitlementError):
    reason = RejectReason.CANCELLED


class DuplicateIssuanceError(StateConflictError):
    reason = RejectReason.DUPLICATE_ISSUANCE


class IneligibleError(EligibilityError):
    reason = RejectReason.INELIGIBLE


class CrossAcademyError(EligibilityError):
    reason = RejectReason.CROSS_ACADEMY


class InvalidExtensionError(ValidationError):
    pass


_REJECTION_ERRORS: dict[RejectReason, type[EntitlementError]] = {
    RejectReason.EXHAUSTED: TicketExhaustedError,
    RejectReason.EXPIRED: TicketExpiredError,
    RejectReason.NOT_YET_STARTED: TicketNotYetStartedError,
    RejectReason.CANCELLED: TicketCancelledError,
}


def entitlement_error_for(reason: RejectReason | None) -> EntitlementError:
    error_cls = _REJECTION_ERRORS.get(reason, TicketExhaustedError)
    return error_cls()
