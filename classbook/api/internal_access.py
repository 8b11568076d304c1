from __future__ import annotations

import structlog
from fastapi import HTTPException, Request

from classbook.core.config import get_settings
from classbook.services.container import Services
from classbook.services.internal_auth import is_internal_request_authenticated

logger = structlog.get_logger(__name__)


def assert_internal_access(request: Request) -> None:
    settings = get_settings()
    if not is_internal_request_authenticated(request, expected_token=settings.internal_api_token):
        logger.warning(
            "internal_auth_failed",
            path=request.url.path,
            client_ip=request.client.host if request.client is not None else None,
        )
        raise HTTPException(status_code=403, detail={"code": "E_FORBIDDEN"})


def get_services(request: Request) -> Services:
    return request.app.state.services
