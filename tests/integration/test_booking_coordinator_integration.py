from __future__ import annotations

from datetime import date, datetime, time, timezone
from uuid import uuid4

import pytest

from classbook.bookings.errors import (
    BookingNotFoundError,
    BookingStateError,
    DuplicateBookingError,
    SessionFullError,
)
from classbook.bookings.types import BookingStatus
from classbook.core.time import local_date
from classbook.db.repo.bookings_repo import BookingsRepo
from classbook.entitlements.errors import IneligibleError, TicketExhaustedError, TicketExpiredError
from classbook.entitlements.types import LedgerEntryType, UserTicketStatus
from classbook.scheduling.errors import SessionCanceledError
from classbook.scheduling.types import FRIDAY, MONDAY, WEDNESDAY, RecurrenceRule
from classbook.services.container import Services
from tests.integration.classbook_fixtures import (
    NOW_UTC,
    SEOUL,
    count_ledger_entries,
    create_session,
    create_ticket,
    fetch_session,
    fetch_user_ticket,
    issue_ticket,
)

UTC = timezone.utc


@pytest.mark.asyncio
async def test_book_takes_seat_and_unit(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=10)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    instance = await create_session(services, academy_id=academy_id)

    booking = await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)

    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.user_ticket_id == view.id
    assert (await fetch_session(services, instance.id)).booked_count == 1
    assert (await fetch_user_ticket(services, view.id)).remaining_count == 9

    history = await services.ledger.history(view.id)
    consume = [entry for entry in history if entry.entry_type == LedgerEntryType.CONSUME.value]
    assert len(consume) == 1
    assert consume[0].booking_id == booking.id
    assert consume[0].idempotency_key == f"consume:{booking.id}"


@pytest.mark.asyncio
async def test_second_booking_for_same_session_is_rejected(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=10)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    instance = await create_session(services, academy_id=academy_id)
    await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)

    with pytest.raises(DuplicateBookingError):
        await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)

    assert (await fetch_session(services, instance.id)).booked_count == 1
    assert (await fetch_user_ticket(services, view.id)).remaining_count == 9


@pytest.mark.asyncio
async def test_duplicate_caught_by_unique_index_is_compensated(services: Services, monkeypatch) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=10)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    instance = await create_session(services, academy_id=academy_id)
    await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)

    async def _missed_precheck(*args, **kwargs):
        return None

    # Simulate a racing request that passed the pre-check before the first insert committed.
    monkeypatch.setattr(BookingsRepo, "get_confirmed_for_pair", staticmethod(_missed_precheck))

    with pytest.raises(DuplicateBookingError):
        await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)

    assert (await fetch_session(services, instance.id)).booked_count == 1
    assert (await fetch_user_ticket(services, view.id)).remaining_count == 9
    assert await count_ledger_entries(services, view.id, LedgerEntryType.CONSUME.value) == 2
    assert await count_ledger_entries(services, view.id, LedgerEntryType.RESTORE.value) == 1


@pytest.mark.asyncio
async def test_full_session_rejects_without_touching_ticket(services: Services) -> None:
    academy_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=10)
    first_user, second_user = uuid4(), uuid4()
    first_view = await issue_ticket(services, user_id=first_user, ticket=ticket)
    second_view = await issue_ticket(services, user_id=second_user, ticket=ticket)
    instance = await create_session(services, academy_id=academy_id, capacity=1)
    await services.coordinator.book(first_user, instance.id, first_view.id, now_utc=NOW_UTC)

    with pytest.raises(SessionFullError):
        await services.coordinator.book(second_user, instance.id, second_view.id, now_utc=NOW_UTC)

    assert (await fetch_session(services, instance.id)).booked_count == 1
    assert (await fetch_user_ticket(services, second_view.id)).remaining_count == 10


@pytest.mark.asyncio
async def test_exhausted_ticket_releases_reserved_seat(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=1)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    await services.ledger.try_consume(view.id, date(2026, 3, 3), idempotency_key="elsewhere", now_utc=NOW_UTC)
    instance = await create_session(services, academy_id=academy_id)

    with pytest.raises(TicketExhaustedError):
        await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)

    assert (await fetch_session(services, instance.id)).booked_count == 0
    assert (await fetch_user_ticket(services, view.id)).status == UserTicketStatus.DEPLETED.value


@pytest.mark.asyncio
async def test_period_ticket_cannot_book_past_its_expiry(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, kind="PERIOD", valid_days=2)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    instance = await create_session(services, academy_id=academy_id, day=date(2026, 3, 5))

    with pytest.raises(TicketExpiredError):
        await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)

    assert (await fetch_session(services, instance.id)).booked_count == 0


@pytest.mark.asyncio
async def test_ineligible_and_canceled_sessions_take_nothing(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=10)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    grouped = await create_session(services, academy_id=academy_id, access_group="advanced")
    closed = await create_session(services, academy_id=academy_id)
    await services.catalog.cancel(closed.id, "closed", now_utc=NOW_UTC)

    with pytest.raises(IneligibleError):
        await services.coordinator.book(user_id, grouped.id, view.id, now_utc=NOW_UTC)
    with pytest.raises(SessionCanceledError):
        await services.coordinator.book(user_id, closed.id, view.id, now_utc=NOW_UTC)

    assert (await fetch_session(services, grouped.id)).booked_count == 0
    assert (await fetch_user_ticket(services, view.id)).remaining_count == 10


@pytest.mark.asyncio
async def test_cancel_restores_unit_and_seat_once(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=1)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    instance = await create_session(services, academy_id=academy_id)
    booking = await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)
    assert (await fetch_user_ticket(services, view.id)).status == UserTicketStatus.DEPLETED.value

    cancelled = await services.coordinator.cancel(booking.id, now_utc=NOW_UTC)
    again = await services.coordinator.cancel(booking.id, now_utc=NOW_UTC)

    assert cancelled.status == BookingStatus.CANCELLED.value
    assert cancelled.cancelled_at is not None
    assert again.status == BookingStatus.CANCELLED.value
    stored = await fetch_user_ticket(services, view.id)
    assert stored.remaining_count == 1
    assert stored.status == UserTicketStatus.ACTIVE.value
    assert (await fetch_session(services, instance.id)).booked_count == 0
    assert await count_ledger_entries(services, view.id, LedgerEntryType.RESTORE.value) == 1

    rebooked = await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)
    assert rebooked.id != booking.id


@pytest.mark.asyncio
async def test_complete_is_terminal(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=5)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    instance = await create_session(services, academy_id=academy_id)
    booking = await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)

    completed = await services.coordinator.complete(booking.id, now_utc=NOW_UTC)
    repeated = await services.coordinator.complete(booking.id, now_utc=NOW_UTC)

    assert completed.status == BookingStatus.COMPLETED.value
    assert completed.completed_at is not None
    assert repeated.status == BookingStatus.COMPLETED.value
    with pytest.raises(BookingStateError):
        await services.coordinator.cancel(booking.id, now_utc=NOW_UTC)
    assert (await fetch_user_ticket(services, view.id)).remaining_count == 4


@pytest.mark.asyncio
async def test_complete_rejects_cancelled_booking(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=5)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    instance = await create_session(services, academy_id=academy_id)
    booking = await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)
    await services.coordinator.cancel(booking.id, now_utc=NOW_UTC)

    with pytest.raises(BookingStateError):
        await services.coordinator.complete(booking.id, now_utc=NOW_UTC)


@pytest.mark.asyncio
async def test_unknown_booking_raises(services: Services) -> None:
    with pytest.raises(BookingNotFoundError):
        await services.coordinator.cancel(uuid4(), now_utc=NOW_UTC)
    with pytest.raises(BookingNotFoundError):
        await services.coordinator.complete(uuid4(), now_utc=NOW_UTC)
    with pytest.raises(BookingNotFoundError):
        await services.coordinator.get(uuid4())


@pytest.mark.asyncio
async def test_cancel_session_cascades_to_confirmed_bookings(services: Services) -> None:
    academy_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=3)
    instance = await create_session(services, academy_id=academy_id)
    views = []
    for _ in range(2):
        user_id = uuid4()
        view = await issue_ticket(services, user_id=user_id, ticket=ticket)
        await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)
        views.append(view)

    cascaded = await services.coordinator.cancel_session(instance.id, "studio closed", now_utc=NOW_UTC)

    assert cascaded == 2
    stored_session = await fetch_session(services, instance.id)
    assert stored_session.canceled is True
    assert stored_session.booked_count == 0
    for view in views:
        assert (await fetch_user_ticket(services, view.id)).remaining_count == 3

    assert await services.coordinator.cancel_session(instance.id, "studio closed", now_utc=NOW_UTC) == 0


@pytest.mark.asyncio
async def test_rule_change_cancels_bookings_on_retired_sessions(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=5)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    template = await services.catalog.create_template(
        academy_id=academy_id,
        title="Ashtanga",
        capacity=10,
        now_utc=NOW_UTC,
    )
    base = RecurrenceRule(
        start_date=date(2026, 3, 2),
        end_date=date(2026, 3, 27),
        days_of_week=frozenset({MONDAY, WEDNESDAY}),
        time_of_day=time(19, 0),
        duration_minutes=60,
        tz_name=SEOUL,
    )
    await services.catalog.materialize(template.id, base, now_utc=NOW_UTC)
    instances = await services.catalog.list_for_template(template.id)
    wednesday = next(i for i in instances if local_date(i.start_time, SEOUL) == date(2026, 3, 11))
    monday = next(i for i in instances if local_date(i.start_time, SEOUL) == date(2026, 3, 16))
    dropped = await services.coordinator.book(user_id, wednesday.id, view.id, now_utc=NOW_UTC)
    kept = await services.coordinator.book(user_id, monday.id, view.id, now_utc=NOW_UTC)

    result = await services.coordinator.apply_rule_change(
        template.id,
        RecurrenceRule(
            start_date=base.start_date,
            end_date=base.end_date,
            days_of_week=frozenset({MONDAY, FRIDAY}),
            time_of_day=base.time_of_day,
            duration_minutes=base.duration_minutes,
            tz_name=SEOUL,
        ),
        now_utc=datetime(2026, 3, 10, 0, 0, tzinfo=UTC),
    )

    assert wednesday.id in result.retired
    assert (await services.coordinator.get(dropped.id)).status == BookingStatus.CANCELLED.value
    assert (await services.coordinator.get(kept.id)).status == BookingStatus.CONFIRMED.value
    assert (await fetch_user_ticket(services, view.id)).remaining_count == 4


@pytest.mark.asyncio
async def test_cancel_after_ticket_expiry_frees_seat_but_not_unit(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, total_count=1, valid_days=10)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    instance = await create_session(services, academy_id=academy_id)
    booking = await services.coordinator.book(user_id, instance.id, view.id, now_utc=NOW_UTC)

    cancelled = await services.coordinator.cancel(
        booking.id,
        now_utc=datetime(2026, 4, 30, 1, 0, tzinfo=UTC),
    )

    assert cancelled.status == BookingStatus.CANCELLED.value
    assert (await fetch_session(services, instance.id)).booked_count == 0
    stored = await fetch_user_ticket(services, view.id)
    assert stored.status == UserTicketStatus.EXPIRED.value
    assert stored.remaining_count == 0
    assert await count_ledger_entries(services, view.id, LedgerEntryType.RESTORE.value) == 0
