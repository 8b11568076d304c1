from __future__ import annotations

from datetime import date, datetime, timezone
from decimal import Decimal
from uuid import UUID

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from classbook.api.errors import to_http_exception
from classbook.api.internal_access import assert_internal_access, get_services
from classbook.api.routes.schemas import UserTicketResponse
from classbook.core.errors import ClassbookError
from classbook.entitlements.types import PaymentCompleted

router = APIRouter(tags=["internal", "payments"])
logger = structlog.get_logger(__name__)


class PaymentCompletedRequest(BaseModel):
    idempotency_key: str = Field(min_length=1, max_length=128)
    user_id: UUID
    ticket_id: UUID
    academy_id: UUID
    amount: Decimal = Field(ge=0)
    paid_at: datetime
    start_date: date | None = None


@router.post("/internal/payments/completed", response_model=UserTicketResponse)
async def payment_completed(payload: PaymentCompletedRequest, request: Request) -> UserTicketResponse:
    assert_internal_access(request)

    paid_at = payload.paid_at
    if paid_at.tzinfo is None:
        paid_at = paid_at.replace(tzinfo=timezone.utc)

    event = PaymentCompleted(
        idempotency_key=payload.idempotency_key,
        user_id=payload.user_id,
        ticket_id=payload.ticket_id,
        academy_id=payload.academy_id,
        amount=payload.amount,
        paid_at=paid_at,
        start_date=payload.start_date,
    )
    try:
        view = await get_services(request).ledger.issue(event)
    except ClassbookError as exc:
        logger.info(
            "payment_issue_rejected",
            idempotency_key=payload.idempotency_key,
            code=exc.code,
        )
        raise to_http_exception(exc) from exc

    return UserTicketResponse.from_view(view)
