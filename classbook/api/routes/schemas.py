from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel

from classbook.db.models.bookings import Booking
from classbook.db.models.session_instances import SessionInstance
from classbook.entitlements.types import UserTicketView


class UserTicketResponse(BaseModel):
    id: UUID
    user_id: UUID
    ticket_id: UUID
    academy_id: UUID
    kind: str
    status: str
    remaining_count: int | None = None
    total_count: int | None = None
    start_date: date
    expiry_date: date | None = None
    purchased_at: datetime

    @classmethod
    def from_view(cls, view: UserTicketView) -> UserTicketResponse:
        return cls(
            id=view.id,
            user_id=view.user_id,
            ticket_id=view.ticket_id,
            academy_id=view.academy_id,
            kind=view.kind.value,
            status=view.status.value,
            remaining_count=view.remaining_count,
            total_count=view.total_count,
            start_date=view.start_date,
            expiry_date=view.expiry_date,
            purchased_at=view.purchased_at,
        )


class BookingResponse(BaseModel):
    id: UUID
    session_instance_id: UUID
    user_id: UUID
    user_ticket_id: UUID
    status: str
    created_at: datetime
    cancelled_at: datetime | None = None
    completed_at: datetime | None = None

    @classmethod
    def from_model(cls, booking: Booking) -> BookingResponse:
        return cls(
            id=booking.id,
            session_instance_id=booking.session_instance_id,
            user_id=booking.user_id,
            user_ticket_id=booking.user_ticket_id,
            status=booking.status,
            created_at=booking.created_at,
            cancelled_at=booking.cancelled_at,
            completed_at=booking.completed_at,
        )


class SessionInstanceResponse(BaseModel):
    id: UUID
    template_id: UUID
    start_time: datetime
    end_time: datetime
    capacity: int
    booked_count: int
    canceled: bool
    cancel_reason: str | None = None
    instructor_id: UUID | None = None
    substitute_instructor_id: UUID | None = None

    @classmethod
    def from_model(cls, instance: SessionInstance) -> SessionInstanceResponse:
        return cls(
            id=instance.id,
            template_id=instance.template_id,
            start_time=instance.start_time,
            end_time=instance.end_time,
            capacity=instance.capacity,
            booked_count=instance.booked_count,
            canceled=instance.canceled,
            cancel_reason=instance.cancel_reason,
            instructor_id=instance.instructor_id,
            substitute_instructor_id=instance.substitute_instructor_id,
        )
