from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog
from sqlalchemy.exc import DBAPIError

from classbook.core.errors import ConcurrencyConflictError

T = TypeVar("T")

logger = structlog.get_logger(__name__)

_RETRYABLE_ERROR_SNIPPETS = (
    "database is locked",
    "database table is locked",
    "could not serialize access",
    "deadlock detected",
)
_RETRYABLE_SQLSTATES = {"40001", "40P01"}


def is_transient_conflict(exc: BaseException) -> bool:
    if isinstance(exc, ConcurrencyConflictError):
        return True
    if not isinstance(exc, DBAPIError):
        return False

    orig = exc.orig
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate in _RETRYABLE_SQLSTATES:
        return True

    message = str(orig if orig is not None else exc).lower()
    return any(snippet in message for snippet in _RETRYABLE_ERROR_SNIPPETS)


def _retry_delay(attempt: int, base_delay: float) -> float:
    base = base_delay * (2 ** (attempt - 1))
    return base + random.uniform(0, base_delay * attempt / 2)


async def with_conflict_retry(
    op_name: str,
    func: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    base_delay: float = 0.05,
) -> T:
    """Run ``func`` again when the store reports transient lock contention.

    Exhausted retries surface as ``ConcurrencyConflictError``.
    """
    attempt = 1
    while True:
        try:
            return await func()
        except (ConcurrencyConflictError, DBAPIError) as exc:
            if not is_transient_conflict(exc):
                raise
            if attempt >= max_attempts:
                logger.warning(
                    "db_retry_exhausted",
                    op=op_name,
                    attempts=attempt,
                    error=str(exc),
                )
                if isinstance(exc, ConcurrencyConflictError):
                    raise
                raise ConcurrencyConflictError(f"{op_name}: store contention") from exc

            delay = _retry_delay(attempt, base_delay)
            logger.warning(
                "db_retry",
                op=op_name,
                attempt=attempt,
                delay=round(delay, 4),
                error=str(exc),
            )
            await asyncio.sleep(delay)
            attempt += 1
