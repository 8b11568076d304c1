from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Request
from pydantic import BaseModel

from classbook.api.errors import to_http_exception
from classbook.api.internal_access import assert_internal_access, get_services
from classbook.api.routes.schemas import BookingResponse
from classbook.core.errors import ClassbookError

router = APIRouter(tags=["internal", "bookings"])


class BookingCreateRequest(BaseModel):
    user_id: UUID
    session_instance_id: UUID
    user_ticket_id: UUID


@router.post("/internal/bookings", response_model=BookingResponse)
async def create_booking(payload: BookingCreateRequest, request: Request) -> BookingResponse:
    assert_internal_access(request)

    try:
        booking = await get_services(request).coordinator.book(
            payload.user_id,
            payload.session_instance_id,
            payload.user_ticket_id,
        )
    except ClassbookError as exc:
        raise to_http_exception(exc) from exc

    return BookingResponse.from_model(booking)


@router.post("/internal/bookings/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking(booking_id: UUID, request: Request) -> BookingResponse:
    assert_internal_access(request)

    try:
        booking = await get_services(request).coordinator.cancel(booking_id)
    except ClassbookError as exc:
        raise to_http_exception(exc) from exc

    return BookingResponse.from_model(booking)


@router.post("/internal/bookings/{booking_id}/complete", response_model=BookingResponse)
async def complete_booking(booking_id: UUID, request: Request) -> BookingResponse:
    assert_internal_access(request)

    try:
        booking = await get_services(request).coordinator.complete(booking_id)
    except ClassbookError as exc:
        raise to_http_exception(exc) from exc

    return BookingResponse.from_model(booking)
