from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePath

from sqlalchemy.engine import URL, make_url

LOCAL_POSTGRES_HOSTS = frozenset({"localhost", "127.0.0.1", "::1", "postgres"})


@dataclass(frozen=True, slots=True)
class IntegrationDbSafetyResult:
    is_safe: bool
    reason: str
    database_name: str
    host: str


def _sqlite_problem(url: URL) -> str | None:
    path = (url.database or "").strip()
    if not path or path == ":memory:":
        return "SQLite database must be a file, not in-memory."
    if "test" not in PurePath(path).name.lower():
        return "SQLite file name must contain 'test'."
    return None


def _postgres_problem(url: URL) -> str | None:
    name = (url.database or "").strip()
    if "test" not in name.lower():
        return "PostgreSQL database name must contain 'test'."
    if (url.host or "").lower() not in LOCAL_POSTGRES_HOSTS:
        return "PostgreSQL host is not a local integration-test host."
    return None


_CHECKS = {
    "sqlite": _sqlite_problem,
    "postgresql": _postgres_problem,
}


def assess_integration_db_safety(database_url: str) -> IntegrationDbSafetyResult:
    url = make_url(database_url)
    check = _CHECKS.get(url.get_backend_name())
    problem = (
        check(url)
        if check is not None
        else "Integration tests run only against SQLite or PostgreSQL."
    )
    return IntegrationDbSafetyResult(
        is_safe=problem is None,
        reason=problem or "ok",
        database_name=(url.database or "").strip(),
        host=(url.host or "").strip().lower(),
    )


def assert_safe_integration_db(database_url: str) -> None:
    result = assess_integration_db_safety(database_url)
    if result.is_safe:
        return

    raise RuntimeError(
        "Refusing to run integration tests that drop and recreate tables.\n"
        f"Reason: {result.reason}\n"
        f"Resolved DB: name='{result.database_name}' host='{result.host}'\n"
        "Use a throwaway SQLite file such as 'classbook_test.db' "
        "or a local PostgreSQL database such as 'classbook_test'."
    )
