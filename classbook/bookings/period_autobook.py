from __future__ import annotations

from collections.abc import Sequence
from datetime import date, datetime, time, timedelta, timezone
from typing import TYPE_CHECKING
from uuid import UUID
from zoneinfo import ZoneInfo

import structlog

from classbook.bookings.types import PeriodBookingResult
from classbook.core.errors import CapacityError, EligibilityError, StateConflictError, ValidationError
from classbook.core.time import local_date
from classbook.db.repo.bookings_repo import BookingsRepo
from classbook.db.repo.session_instances_repo import SessionInstancesRepo
from classbook.db.repo.user_tickets_repo import UserTicketsRepo
from classbook.db.session import session_scope
from classbook.entitlements.rules import effective_status
from classbook.entitlements.types import TicketKind, UserTicketStatus

if TYPE_CHECKING:
    from classbook.bookings.coordinator import BookingCoordinator

logger = structlog.get_logger(__name__)

# Per-session outcomes that skip a session without stopping the batch.
SKIPPABLE_ERRORS = (CapacityError, EligibilityError, StateConflictError)


def _local_day_bounds_utc(date_from: date, date_to: date, tz_name: str) -> tuple[datetime, datetime]:
    tz = ZoneInfo(tz_name)
    start = datetime.combine(date_from, time.min, tzinfo=tz).astimezone(timezone.utc)
    end = datetime.combine(date_to + timedelta(days=1), time.min, tzinfo=tz).astimezone(timezone.utc)
    return start, end


async def book_period_window(
    coordinator: BookingCoordinator,
    *,
    user_ticket_id: UUID,
    date_from: date,
    date_to: date,
    now_utc: datetime,
) -> PeriodBookingResult:
    """Book a period pass into every open session of its academy inside the window."""
    user_ticket = await coordinator.ledger.get(user_ticket_id, now_utc=now_utc)
    if user_ticket.kind != TicketKind.PERIOD:
        raise ValidationError("only PERIOD tickets can be booked across a window")

    window_from = max(date_from, user_ticket.start_date)
    window_to = date_to
    if user_ticket.expiry_date is not None:
        window_to = min(window_to, user_ticket.expiry_date)

    result = PeriodBookingResult()
    if window_to < window_from:
        return result

    start_from_utc, start_before_utc = _local_day_bounds_utc(window_from, window_to, coordinator.tz_name)
    start_from_utc = max(start_from_utc, now_utc)
    async with session_scope(coordinator.session_factory) as db:
        instances = await SessionInstancesRepo.list_open_for_academy(
            db,
            academy_id=user_ticket.academy_id,
            start_from_utc=start_from_utc,
            start_before_utc=start_before_utc,
        )
        already_booked = await BookingsRepo.list_confirmed_session_ids_for_user(
            db,
            user_id=user_ticket.user_id,
            session_instance_ids=[instance.id for instance in instances],
        )

    for instance in instances:
        if instance.id in already_booked:
            result.skipped += 1
            continue
        try:
            booking = await coordinator.book(
                user_ticket.user_id,
                instance.id,
                user_ticket_id,
                now_utc=now_utc,
            )
        except SKIPPABLE_ERRORS as exc:
            result.skipped += 1
            logger.info(
                "period_window_session_skipped",
                user_ticket_id=str(user_ticket_id),
                session_instance_id=str(instance.id),
                reason=exc.code,
            )
            continue
        result.created.append(booking.id)

    logger.info(
        "period_window_booked",
        user_ticket_id=str(user_ticket_id),
        created=len(result.created),
        skipped=result.skipped,
    )
    return result


async def autobook_period_holders(
    coordinator: BookingCoordinator,
    *,
    instance_ids: Sequence[UUID],
    now_utc: datetime,
) -> int:
    """Book active period-pass holders into freshly created sessions."""
    async with session_scope(coordinator.session_factory) as db:
        instances = await SessionInstancesRepo.list_by_ids(db, instance_ids)

    today = local_date(now_utc, coordinator.tz_name)
    created = 0
    for instance in instances:
        if instance.canceled or instance.start_time < now_utc:
            continue
        session_date = local_date(instance.start_time, coordinator.tz_name)
        async with session_scope(coordinator.session_factory) as db:
            holders = await UserTicketsRepo.list_active_period_for_academy(
                db,
                academy_id=instance.academy_id,
                covering_from=session_date,
                covering_to=session_date,
            )

        for holder in holders:
            if effective_status(holder.status, holder.expiry_date, today) != UserTicketStatus.ACTIVE:
                continue
            try:
                await coordinator.book(holder.user_id, instance.id, holder.id, now_utc=now_utc)
            except SKIPPABLE_ERRORS as exc:
                logger.info(
                    "period_autobook_skipped",
                    user_ticket_id=str(holder.id),
                    session_instance_id=str(instance.id),
                    reason=exc.code,
                )
                continue
            created += 1

    logger.info(
        "period_holders_autobooked",
        sessions=len(instances),
        bookings_created=created,
    )
    return created
