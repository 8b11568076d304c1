from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from classbook.api import internal_access
from classbook.core.config import Settings
from classbook.main import create_app
from tests.api.fakes import INTERNAL_TOKEN, StubService


@pytest.fixture
def services() -> SimpleNamespace:
    return SimpleNamespace(
        coordinator=StubService(),
        ledger=StubService(),
        catalog=StubService(),
        resolver=StubService(),
        session_factory=None,
        engine=None,
    )


@pytest.fixture
def client(monkeypatch, services: SimpleNamespace) -> TestClient:
    monkeypatch.setattr(
        internal_access,
        "get_settings",
        lambda: SimpleNamespace(internal_api_token=INTERNAL_TOKEN),
    )
    app = create_app(settings=Settings(INTERNAL_API_TOKEN=INTERNAL_TOKEN), services=services)
    return TestClient(app)
