from classbook.core.errors import CapacityError, NotFoundError, RejectReason, StateConflictError


class BookingNotFoundError(NotFoundError):
    reason = RejectReason.BOOKING_NOT_FOUND


class DuplicateBookingError(StateConflictError):
    reason = RejectReason.DUPLICATE_BOOKING


class SessionFullError(CapacityError):
    reason = RejectReason.SESSION_FULL


class BookingStateError(StateConflictError):
    reason = RejectReason.INVALID_BOOKING_STATE
