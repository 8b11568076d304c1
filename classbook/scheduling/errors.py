from classbook.core.errors import NotFoundError, RejectReason, StateConflictError, ValidationError


class RecurrenceValidationError(ValidationError):
    pass


class TemplateNotFoundError(NotFoundError):
    reason = RejectReason.TEMPLATE_NOT_FOUND


class SessionNotFoundError(NotFoundError):
    reason = RejectReason.SESSION_NOT_FOUND


class SessionCanceledError(StateConflictError):
    reason = RejectReason.SESSION_CANCELED
