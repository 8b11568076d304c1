from __future__ import annotations

from datetime import date, time, timedelta
from uuid import uuid4

import pytest

from classbook.core.errors import ValidationError
from classbook.core.time import local_date
from classbook.scheduling.types import THURSDAY, TUESDAY, RecurrenceRule
from classbook.services.container import Services
from tests.integration.classbook_fixtures import (
    NOW_UTC,
    SEOUL,
    create_session,
    create_ticket,
    fetch_session,
    issue_ticket,
)


@pytest.mark.asyncio
async def test_window_books_every_open_session_once(services: Services) -> None:
    academy_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, kind="PERIOD", valid_days=30)
    view = await issue_ticket(services, user_id=uuid4(), ticket=ticket)
    thursday = await create_session(services, academy_id=academy_id, day=date(2026, 3, 5))
    friday = await create_session(services, academy_id=academy_id, day=date(2026, 3, 6))
    outside = await create_session(services, academy_id=academy_id, day=date(2026, 3, 9))
    closed = await create_session(services, academy_id=academy_id, day=date(2026, 3, 7))
    await services.catalog.cancel(closed.id, "holiday", now_utc=NOW_UTC)

    first = await services.coordinator.book_period_window(
        view.id, date(2026, 3, 1), date(2026, 3, 7), now_utc=NOW_UTC
    )
    second = await services.coordinator.book_period_window(
        view.id, date(2026, 3, 1), date(2026, 3, 7), now_utc=NOW_UTC
    )

    assert len(first.created) == 2
    assert first.skipped == 0
    assert second.created == []
    assert second.skipped == 2
    assert (await fetch_session(services, thursday.id)).booked_count == 1
    assert (await fetch_session(services, friday.id)).booked_count == 1
    assert (await fetch_session(services, outside.id)).booked_count == 0
    assert (await fetch_session(services, closed.id)).booked_count == 0


@pytest.mark.asyncio
async def test_window_is_clamped_to_ticket_validity_and_now(services: Services) -> None:
    academy_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, kind="PERIOD", valid_days=7)
    view = await issue_ticket(services, user_id=uuid4(), ticket=ticket)
    already_started = await create_session(services, academy_id=academy_id, day=date(2026, 3, 3))
    inside = await create_session(services, academy_id=academy_id, day=date(2026, 3, 6))
    after_expiry = await create_session(services, academy_id=academy_id, day=date(2026, 3, 12))

    result = await services.coordinator.book_period_window(
        view.id,
        date(2026, 2, 1),
        date(2026, 3, 31),
        now_utc=NOW_UTC + timedelta(days=1, hours=12),
    )

    assert len(result.created) == 1
    assert (await fetch_session(services, already_started.id)).booked_count == 0
    assert (await fetch_session(services, inside.id)).booked_count == 1
    assert (await fetch_session(services, after_expiry.id)).booked_count == 0


@pytest.mark.asyncio
async def test_window_skips_full_and_restricted_sessions(services: Services) -> None:
    academy_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, kind="PERIOD")
    holder = await issue_ticket(services, user_id=uuid4(), ticket=ticket)
    other_user = uuid4()
    rival = await issue_ticket(services, user_id=other_user, ticket=ticket)
    full = await create_session(services, academy_id=academy_id, day=date(2026, 3, 5), capacity=1)
    await services.coordinator.book(other_user, full.id, rival.id, now_utc=NOW_UTC)
    await create_session(services, academy_id=academy_id, day=date(2026, 3, 6), access_group="instructors")
    open_session = await create_session(services, academy_id=academy_id, day=date(2026, 3, 7))

    result = await services.coordinator.book_period_window(
        holder.id, date(2026, 3, 1), date(2026, 3, 8), now_utc=NOW_UTC
    )

    assert result.skipped == 2
    assert len(result.created) == 1
    booking = await services.coordinator.get(result.created[0])
    assert booking.session_instance_id == open_session.id


@pytest.mark.asyncio
async def test_window_requires_period_ticket(services: Services) -> None:
    ticket = await create_ticket(services, academy_id=uuid4(), total_count=5)
    view = await issue_ticket(services, user_id=uuid4(), ticket=ticket)

    with pytest.raises(ValidationError):
        await services.coordinator.book_period_window(
            view.id, date(2026, 3, 1), date(2026, 3, 7), now_utc=NOW_UTC
        )


@pytest.mark.asyncio
async def test_new_sessions_are_autobooked_for_covering_holders(services: Services) -> None:
    academy_id = uuid4()
    period = await create_ticket(services, academy_id=academy_id, kind="PERIOD", valid_days=30)
    short_period = await create_ticket(services, academy_id=academy_id, kind="PERIOD", valid_days=3)
    count = await create_ticket(services, academy_id=academy_id, total_count=5)
    covering_a = await issue_ticket(services, user_id=uuid4(), ticket=period)
    covering_b = await issue_ticket(services, user_id=uuid4(), ticket=period)
    await issue_ticket(services, user_id=uuid4(), ticket=short_period)
    await issue_ticket(services, user_id=uuid4(), ticket=count)

    template = await services.catalog.create_template(
        academy_id=academy_id,
        title="Pilates",
        capacity=10,
        now_utc=NOW_UTC,
    )
    materialized = await services.catalog.materialize(
        template.id,
        RecurrenceRule(
            start_date=date(2026, 3, 9),
            end_date=date(2026, 3, 15),
            days_of_week=frozenset({TUESDAY, THURSDAY}),
            time_of_day=time(7, 30),
            duration_minutes=50,
            tz_name=SEOUL,
        ),
        now_utc=NOW_UTC,
    )

    created = await services.coordinator.autobook_period_holders(materialized.created, now_utc=NOW_UTC)
    repeated = await services.coordinator.autobook_period_holders(materialized.created, now_utc=NOW_UTC)

    assert len(materialized.created) == 2
    assert created == 4
    assert repeated == 0
    for instance_id in materialized.created:
        instance = await fetch_session(services, instance_id)
        assert instance.booked_count == 2
        assert local_date(instance.start_time, SEOUL) in {date(2026, 3, 10), date(2026, 3, 12)}

    for holder in (covering_a, covering_b):
        owned = await services.ledger.get(holder.id, now_utc=NOW_UTC)
        assert owned.remaining_count is None
