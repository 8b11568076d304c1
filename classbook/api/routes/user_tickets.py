from __future__ import annotations

from datetime import date
from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from classbook.api.errors import to_http_exception
from classbook.api.internal_access import assert_internal_access, get_services
from classbook.api.routes.schemas import UserTicketResponse
from classbook.core.errors import ClassbookError

router = APIRouter(tags=["internal", "user_tickets"])


class ExtendRequest(BaseModel):
    new_expiry_date: str | None = Field(default=None, max_length=10)
    extend_by_days: int | None = None
    allow_shorten: bool = False


class PeriodBookingRequest(BaseModel):
    date_from: date
    date_to: date


class PeriodBookingResponse(BaseModel):
    created: list[UUID]
    skipped: int = Field(ge=0)


@router.post("/internal/user-tickets/{user_ticket_id}/extend", response_model=UserTicketResponse)
async def extend_user_ticket(
    user_ticket_id: UUID,
    payload: ExtendRequest,
    request: Request,
) -> UserTicketResponse:
    assert_internal_access(request)

    try:
        view = await get_services(request).ledger.extend(
            user_ticket_id,
            new_expiry_date=payload.new_expiry_date,
            extend_by_days=payload.extend_by_days,
            allow_shorten=payload.allow_shorten,
        )
    except ClassbookError as exc:
        raise to_http_exception(exc) from exc

    return UserTicketResponse.from_view(view)


@router.post(
    "/internal/user-tickets/{user_ticket_id}/period-bookings",
    response_model=PeriodBookingResponse,
)
async def book_period_window(
    user_ticket_id: UUID,
    payload: PeriodBookingRequest,
    request: Request,
) -> PeriodBookingResponse:
    assert_internal_access(request)

    try:
        result = await get_services(request).coordinator.book_period_window(
            user_ticket_id,
            payload.date_from,
            payload.date_to,
        )
    except ClassbookError as exc:
        raise to_http_exception(exc) from exc

    return PeriodBookingResponse(created=result.created, skipped=result.skipped)
