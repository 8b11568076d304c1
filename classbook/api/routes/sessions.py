from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from classbook.api.errors import to_http_exception
from classbook.api.internal_access import assert_internal_access, get_services
from classbook.api.routes.schemas import SessionInstanceResponse, UserTicketResponse
from classbook.core.errors import ClassbookError

router = APIRouter(tags=["internal", "sessions"])


class SessionCancelRequest(BaseModel):
    reason: str = Field(min_length=1, max_length=255)


class SessionCancelResponse(BaseModel):
    session: SessionInstanceResponse
    bookings_cancelled: int = Field(ge=0)


class SessionSubstituteRequest(BaseModel):
    instructor_id: UUID | None = None


@router.post("/internal/sessions/{instance_id}/cancel", response_model=SessionCancelResponse)
async def cancel_session(
    instance_id: UUID,
    payload: SessionCancelRequest,
    request: Request,
) -> SessionCancelResponse:
    assert_internal_access(request)

    services = get_services(request)
    try:
        cancelled = await services.coordinator.cancel_session(instance_id, payload.reason)
        instance = await services.catalog.get(instance_id)
    except ClassbookError as exc:
        raise to_http_exception(exc) from exc

    return SessionCancelResponse(
        session=SessionInstanceResponse.from_model(instance),
        bookings_cancelled=cancelled,
    )


@router.post("/internal/sessions/{instance_id}/substitute", response_model=SessionInstanceResponse)
async def substitute_instructor(
    instance_id: UUID,
    payload: SessionSubstituteRequest,
    request: Request,
) -> SessionInstanceResponse:
    assert_internal_access(request)

    try:
        instance = await get_services(request).catalog.substitute(instance_id, payload.instructor_id)
    except ClassbookError as exc:
        raise to_http_exception(exc) from exc

    return SessionInstanceResponse.from_model(instance)


@router.get("/internal/sessions/{instance_id}/usable-tickets", response_model=list[UserTicketResponse])
async def list_usable_tickets(
    instance_id: UUID,
    request: Request,
    user_id: UUID = Query(),
) -> list[UserTicketResponse]:
    assert_internal_access(request)

    try:
        views = await get_services(request).resolver.usable_tickets(user_id, instance_id)
    except ClassbookError as exc:
        raise to_http_exception(exc) from exc

    return [UserTicketResponse.from_view(view) for view in views]
