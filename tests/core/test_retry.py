from __future__ import annotations

from types import SimpleNamespace

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from classbook.core.errors import ConcurrencyConflictError
from classbook.db.retry import is_transient_conflict, with_conflict_retry


def _locked_error() -> OperationalError:
    return OperationalError("UPDATE session_instances", {}, Exception("database is locked"))


@pytest.mark.asyncio
async def test_retry_recovers_after_transient_conflict() -> None:
    calls = {"count": 0}

    async def _flaky() -> str:
        calls["count"] += 1
        if calls["count"] < 3:
            raise ConcurrencyConflictError("busy")
        return "done"

    result = await with_conflict_retry("flaky", _flaky, max_attempts=3, base_delay=0)

    assert result == "done"
    assert calls["count"] == 3


@pytest.mark.asyncio
async def test_retry_surfaces_concurrency_conflict_after_exhaustion() -> None:
    calls = {"count": 0}

    async def _always_locked() -> None:
        calls["count"] += 1
        raise _locked_error()

    with pytest.raises(ConcurrencyConflictError) as exc_info:
        await with_conflict_retry("locked", _always_locked, max_attempts=2, base_delay=0)

    assert calls["count"] == 2
    assert isinstance(exc_info.value.__cause__, OperationalError)


@pytest.mark.asyncio
async def test_retry_does_not_repeat_non_transient_errors() -> None:
    calls = {"count": 0}

    async def _duplicate() -> None:
        calls["count"] += 1
        raise IntegrityError("INSERT INTO bookings", {}, Exception("UNIQUE constraint failed"))

    with pytest.raises(IntegrityError):
        await with_conflict_retry("duplicate", _duplicate, max_attempts=3, base_delay=0)

    assert calls["count"] == 1


@pytest.mark.asyncio
async def test_retry_does_not_touch_domain_errors() -> None:
    async def _boom() -> None:
        raise ValueError("bad input")

    with pytest.raises(ValueError):
        await with_conflict_retry("boom", _boom, max_attempts=3, base_delay=0)


def test_postgres_serialization_failures_are_transient() -> None:
    orig = SimpleNamespace(sqlstate="40001")
    error = OperationalError("UPDATE user_tickets", {}, Exception("serialization"))
    error.orig = orig

    assert is_transient_conflict(error) is True
    assert is_transient_conflict(ConcurrencyConflictError()) is True
    assert is_transient_conflict(ValueError("nope")) is False
