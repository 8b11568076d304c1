from __future__ import annotations

import os
from collections.abc import AsyncIterator

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from classbook.core.config import Settings
from classbook.core.integration_db_safety import assert_safe_integration_db
from classbook.db.schema import create_schema, drop_schema
from classbook.db.session import build_engine
from classbook.services.container import Services, build_services


@pytest.fixture
def integration_database_url(tmp_path) -> str:
    database_url = os.getenv("TEST_DATABASE_URL") or f"sqlite+aiosqlite:///{tmp_path / 'classbook_test.db'}"
    assert_safe_integration_db(database_url)
    return database_url


@pytest.fixture
async def engine(integration_database_url: str) -> AsyncIterator[AsyncEngine]:
    engine = build_engine(integration_database_url)
    try:
        await drop_schema(engine)
        await create_schema(engine)
    except OSError as exc:  # pragma: no cover - environment-dependent
        await engine.dispose()
        pytest.skip(f"Test database is unavailable: {exc}")

    yield engine

    await engine.dispose()


@pytest.fixture
def services(engine: AsyncEngine) -> Services:
    settings = Settings(
        ACADEMY_TIMEZONE="Asia/Seoul",
        BOOKING_RETRY_ATTEMPTS=10,
        BOOKING_RETRY_BASE_DELAY_MS=5,
    )
    return build_services(settings, engine=engine)
