from __future__ import annotations

import structlog
from fastapi import HTTPException

from classbook.core.errors import (
    CapacityError,
    ClassbookError,
    ConcurrencyConflictError,
    EligibilityError,
    EntitlementError,
    NotFoundError,
    StateConflictError,
    ValidationError,
)

logger = structlog.get_logger(__name__)

HTTP_STATUS_BY_ERROR: tuple[tuple[type[ClassbookError], int], ...] = (
    (ValidationError, 422),
    (NotFoundError, 404),
    (EligibilityError, 403),
    (CapacityError, 409),
    (EntitlementError, 409),
    (StateConflictError, 409),
    (ConcurrencyConflictError, 503),
)


def status_code_for(exc: ClassbookError) -> int:
    for error_cls, status_code in HTTP_STATUS_BY_ERROR:
        if isinstance(exc, error_cls):
            return status_code
    return 400


def to_http_exception(exc: ClassbookError) -> HTTPException:
    status_code = status_code_for(exc)
    if status_code >= 500:
        logger.warning("request_failed_transient", code=exc.code, error=exc.message)
    return HTTPException(status_code=status_code, detail={"code": exc.code})
