"""Allocates seats and entitlement units for bookings.

A booking takes a seat first, then a unit. Each step is its own short
transaction; when a later step fails the earlier ones are compensated before
the error propagates, so a failed booking never leaves a seat or unit taken.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from datetime import date, datetime
from typing import TypeVar
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError

from classbook.bookings import period_autobook
from classbook.bookings.errors import (
    BookingNotFoundError,
    BookingStateError,
    DuplicateBookingError,
    SessionFullError,
)
from classbook.bookings.types import BookingStatus, PeriodBookingResult
from classbook.core.time import local_date, utc_now
from classbook.db.models.bookings import Booking
from classbook.db.repo.bookings_repo import BookingsRepo
from classbook.db.retry import with_conflict_retry
from classbook.db.session import SessionFactory, session_scope
from classbook.entitlements.access import AccessResolver
from classbook.entitlements.errors import entitlement_error_for
from classbook.entitlements.ledger import EntitlementLedger
from classbook.scheduling.catalog import SessionCatalog
from classbook.scheduling.errors import SessionCanceledError
from classbook.scheduling.types import RecurrenceRule, RegenerationResult

T = TypeVar("T")

logger = structlog.get_logger(__name__)


class BookingCoordinator:
    def __init__(
        self,
        session_factory: SessionFactory,
        catalog: SessionCatalog,
        ledger: EntitlementLedger,
        resolver: AccessResolver,
        *,
        tz_name: str,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.05,
    ) -> None:
        self._session_factory = session_factory
        self.catalog = catalog
        self.ledger = ledger
        self.resolver = resolver
        self.tz_name = tz_name
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay

    async def _with_retry(self, op_name: str, func: Callable[[], Awaitable[T]]) -> T:
        return await with_conflict_retry(
            op_name,
            func,
            max_attempts=self._retry_attempts,
            base_delay=self._retry_base_delay,
        )

    async def book(
        self,
        user_id: UUID,
        session_instance_id: UUID,
        user_ticket_id: UUID,
        *,
        now_utc: datetime | None = None,
    ) -> Booking:
        return await self._with_retry(
            "book",
            lambda: self._book_once(
                user_id=user_id,
                session_instance_id=session_instance_id,
                user_ticket_id=user_ticket_id,
                now_utc=now_utc or utc_now(),
            ),
        )

    async def _book_once(
        self,
        *,
        user_id: UUID,
        session_instance_id: UUID,
        user_ticket_id: UUID,
        now_utc: datetime,
    ) -> Booking:
        # Fresh per attempt: consume/compensate ledger keys derive from it.
        booking_id = uuid4()

        instance = await self.catalog.get(session_instance_id)
        if instance.canceled:
            raise SessionCanceledError(f"session {session_instance_id} is canceled")

        user_ticket = await self.ledger.get(user_ticket_id, now_utc=now_utc)
        await self.resolver.check(user_id, user_ticket, instance)

        async with session_scope(self._session_factory) as db:
            existing = await BookingsRepo.get_confirmed_for_pair(
                db,
                session_instance_id=session_instance_id,
                user_id=user_id,
            )
        if existing is not None:
            raise DuplicateBookingError(f"user already holds booking {existing.id} for this session")

        if not await self.catalog.reserve_capacity(session_instance_id, now_utc=now_utc):
            current = await self.catalog.get(session_instance_id)
            if current.canceled:
                raise SessionCanceledError(f"session {session_instance_id} is canceled")
            logger.info(
                "capacity_full",
                session_instance_id=str(session_instance_id),
                capacity=current.capacity,
                booked_count=current.booked_count,
            )
            raise SessionFullError(f"session {session_instance_id} is full")

        consumed = False
        try:
            result = await self.ledger.try_consume(
                user_ticket_id,
                local_date(instance.start_time, self.tz_name),
                idempotency_key=f"consume:{booking_id}",
                booking_id=booking_id,
                now_utc=now_utc,
            )
            if not result.consumed:
                raise entitlement_error_for(result.reason)
            consumed = True

            async with session_scope(self._session_factory) as db:
                booking = await BookingsRepo.create(
                    db,
                    booking=Booking(
                        id=booking_id,
                        session_instance_id=session_instance_id,
                        user_id=user_id,
                        user_ticket_id=user_ticket_id,
                        status=BookingStatus.CONFIRMED.value,
                        created_at=now_utc,
                        updated_at=now_utc,
                    ),
                )
        except Exception as exc:
            await self._compensate(
                booking_id=booking_id,
                session_instance_id=session_instance_id,
                user_ticket_id=user_ticket_id,
                consumed=consumed,
                now_utc=now_utc,
                error=exc,
            )
            if isinstance(exc, IntegrityError):
                raise DuplicateBookingError("user already holds a booking for this session") from exc
            raise

        logger.info(
            "booking_confirmed",
            booking_id=str(booking_id),
            user_id=str(user_id),
            session_instance_id=str(session_instance_id),
            user_ticket_id=str(user_ticket_id),
            remaining_count=result.remaining_count,
        )
        return booking

    async def _compensate(
        self,
        *,
        booking_id: UUID,
        session_instance_id: UUID,
        user_ticket_id: UUID,
        consumed: bool,
        now_utc: datetime,
        error: Exception,
    ) -> None:
        if consumed:
            await self._with_retry(
                "booking_compensate_restore",
                lambda: self.ledger.restore(
                    user_ticket_id,
                    idempotency_key=f"compensate:{booking_id}",
                    booking_id=booking_id,
                    now_utc=now_utc,
                ),
            )
        await self._with_retry(
            "booking_compensate_release",
            lambda: self.catalog.release_capacity(session_instance_id, now_utc=now_utc),
        )
        logger.warning(
            "booking_compensated",
            booking_id=str(booking_id),
            session_instance_id=str(session_instance_id),
            user_ticket_id=str(user_ticket_id),
            unit_restored=consumed,
            error=type(error).__name__,
        )

    async def cancel(self, booking_id: UUID, *, now_utc: datetime | None = None) -> Booking:
        now = now_utc or utc_now()
        return await self._with_retry("cancel_booking", lambda: self._cancel_once(booking_id, now))

    async def _cancel_once(self, booking_id: UUID, now_utc: datetime) -> Booking:
        async with self._session_factory.begin() as db:
            booking = await BookingsRepo.get_by_id(db, booking_id)
            if booking is None:
                raise BookingNotFoundError(f"booking {booking_id} not found")
            if booking.status == BookingStatus.CANCELLED.value:
                return booking
            if booking.status != BookingStatus.CONFIRMED.value:
                raise BookingStateError(f"booking {booking_id} is {booking.status}")

            changed = await BookingsRepo.transition_from_confirmed(
                db,
                booking_id=booking_id,
                to_status=BookingStatus.CANCELLED.value,
                now_utc=now_utc,
            )
            if not changed:
                booking = await BookingsRepo.get_by_id(db, booking_id)
                if booking is None:
                    raise BookingNotFoundError(f"booking {booking_id} not found")
                if booking.status == BookingStatus.CANCELLED.value:
                    return booking
                raise BookingStateError(f"booking {booking_id} is {booking.status}")

            restored = await self.ledger.restore(
                booking.user_ticket_id,
                idempotency_key=f"restore:{booking_id}",
                booking_id=booking_id,
                now_utc=now_utc,
                session=db,
            )
            await self.catalog.release_capacity(
                booking.session_instance_id,
                now_utc=now_utc,
                session=db,
            )
            await db.refresh(booking)

        logger.info(
            "booking_cancelled",
            booking_id=str(booking_id),
            session_instance_id=str(booking.session_instance_id),
            unit_restored=restored,
        )
        return booking

    async def complete(self, booking_id: UUID, *, now_utc: datetime | None = None) -> Booking:
        now = now_utc or utc_now()
        async with self._session_factory.begin() as db:
            changed = await BookingsRepo.transition_from_confirmed(
                db,
                booking_id=booking_id,
                to_status=BookingStatus.COMPLETED.value,
                now_utc=now,
            )
            booking = await BookingsRepo.get_by_id(db, booking_id)
            if booking is None:
                raise BookingNotFoundError(f"booking {booking_id} not found")
            if not changed and booking.status != BookingStatus.COMPLETED.value:
                raise BookingStateError(f"booking {booking_id} is {booking.status}")

        if changed:
            logger.info("booking_completed", booking_id=str(booking_id))
        return booking

    async def get(self, booking_id: UUID) -> Booking:
        async with session_scope(self._session_factory) as db:
            booking = await BookingsRepo.get_by_id(db, booking_id)
        if booking is None:
            raise BookingNotFoundError(f"booking {booking_id} not found")
        return booking

    async def cancel_session(
        self,
        instance_id: UUID,
        reason: str,
        *,
        now_utc: datetime | None = None,
    ) -> int:
        """Cancel a session and every confirmed booking on it. Returns the number cascaded."""
        now = now_utc or utc_now()
        await self.catalog.cancel(instance_id, reason, now_utc=now)
        return await self._cascade_session_bookings(instance_id, now_utc=now)

    async def _cascade_session_bookings(self, instance_id: UUID, *, now_utc: datetime) -> int:
        async with session_scope(self._session_factory) as db:
            confirmed = await BookingsRepo.list_confirmed_for_session(db, instance_id)

        for booking in confirmed:
            await self.cancel(booking.id, now_utc=now_utc)

        if confirmed:
            logger.info(
                "session_cancel_cascaded",
                session_instance_id=str(instance_id),
                bookings_cancelled=len(confirmed),
            )
        return len(confirmed)

    async def apply_rule_change(
        self,
        template_id: UUID,
        rule: RecurrenceRule,
        *,
        now_utc: datetime | None = None,
    ) -> RegenerationResult:
        now = now_utc or utc_now()
        result = await self.catalog.regenerate(template_id, rule, now_utc=now)
        for instance_id in result.retired:
            await self._cascade_session_bookings(instance_id, now_utc=now)
        return result

    async def book_period_window(
        self,
        user_ticket_id: UUID,
        date_from: date,
        date_to: date,
        *,
        now_utc: datetime | None = None,
    ) -> PeriodBookingResult:
        return await period_autobook.book_period_window(
            self,
            user_ticket_id=user_ticket_id,
            date_from=date_from,
            date_to=date_to,
            now_utc=now_utc or utc_now(),
        )

    async def autobook_period_holders(
        self,
        instance_ids: Sequence[UUID],
        *,
        now_utc: datetime | None = None,
    ) -> int:
        return await period_autobook.autobook_period_holders(
            self,
            instance_ids=instance_ids,
            now_utc=now_utc or utc_now(),
        )

    @property
    def session_factory(self) -> SessionFactory:
        return self._session_factory
