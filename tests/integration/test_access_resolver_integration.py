from __future__ import annotations

from datetime import date
from uuid import uuid4

import pytest

from classbook.entitlements.errors import CrossAcademyError, IneligibleError
from classbook.services.container import Services
from tests.integration.classbook_fixtures import NOW_UTC, create_session, create_ticket, issue_ticket


@pytest.mark.asyncio
async def test_public_ticket_is_unrestricted_for_open_template(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    instance = await create_session(services, academy_id=academy_id)

    decision = await services.resolver.check(user_id, view, instance)

    assert decision.eligible is True
    assert decision.rule == "UNRESTRICTED"


@pytest.mark.asyncio
async def test_unlisted_ticket_needs_explicit_grant(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id, is_on_sale=False)
    view = await issue_ticket(services, user_id=user_id, ticket=ticket)
    instance = await create_session(services, academy_id=academy_id)

    with pytest.raises(IneligibleError):
        await services.resolver.check(user_id, view, instance)


@pytest.mark.asyncio
async def test_linked_template_accepts_only_linked_tickets(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    linked_ticket = await create_ticket(services, academy_id=academy_id, is_public=False)
    public_ticket = await create_ticket(services, academy_id=academy_id)
    linked_view = await issue_ticket(services, user_id=user_id, ticket=linked_ticket)
    public_view = await issue_ticket(services, user_id=user_id, ticket=public_ticket)
    instance = await create_session(services, academy_id=academy_id)
    await services.catalog.link_ticket(ticket_id=linked_ticket.id, template_id=instance.template_id)

    decision = await services.resolver.check(user_id, linked_view, instance)
    assert decision.rule == "LINKED_SET"

    with pytest.raises(IneligibleError):
        await services.resolver.check(user_id, public_view, instance)


@pytest.mark.asyncio
async def test_access_group_must_match(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    advanced = await create_ticket(services, academy_id=academy_id, access_group="advanced")
    beginner = await create_ticket(services, academy_id=academy_id, access_group="beginner")
    plain = await create_ticket(services, academy_id=academy_id)
    advanced_view = await issue_ticket(services, user_id=user_id, ticket=advanced)
    beginner_view = await issue_ticket(services, user_id=user_id, ticket=beginner)
    plain_view = await issue_ticket(services, user_id=user_id, ticket=plain)
    instance = await create_session(services, academy_id=academy_id, access_group="advanced")

    decision = await services.resolver.check(user_id, advanced_view, instance)
    assert decision.rule == "GROUP_MATCH"

    for view in (beginner_view, plain_view):
        with pytest.raises(IneligibleError):
            await services.resolver.check(user_id, view, instance)


@pytest.mark.asyncio
async def test_ticket_owner_and_academy_are_checked_first(services: Services) -> None:
    academy_id = uuid4()
    owner_id = uuid4()
    ticket = await create_ticket(services, academy_id=academy_id)
    view = await issue_ticket(services, user_id=owner_id, ticket=ticket)
    home_session = await create_session(services, academy_id=academy_id)
    other_session = await create_session(services, academy_id=uuid4())

    with pytest.raises(IneligibleError):
        await services.resolver.check(uuid4(), view, home_session)
    with pytest.raises(CrossAcademyError):
        await services.resolver.check(owner_id, view, other_session)


@pytest.mark.asyncio
async def test_usable_tickets_filters_state_window_and_rules(services: Services) -> None:
    academy_id = uuid4()
    user_id = uuid4()
    instance = await create_session(services, academy_id=academy_id, day=date(2026, 3, 5))

    usable_ticket = await create_ticket(services, academy_id=academy_id, total_count=5)
    usable = await issue_ticket(services, user_id=user_id, ticket=usable_ticket)

    single_ticket = await create_ticket(services, academy_id=academy_id, total_count=1)
    depleted = await issue_ticket(services, user_id=user_id, ticket=single_ticket)
    await services.ledger.try_consume(depleted.id, date(2026, 3, 3), idempotency_key="use-up", now_utc=NOW_UTC)

    await issue_ticket(services, user_id=user_id, ticket=usable_ticket, start_date=date(2026, 3, 10))

    hidden_ticket = await create_ticket(services, academy_id=academy_id, is_public=False)
    await issue_ticket(services, user_id=user_id, ticket=hidden_ticket)

    other_academy_ticket = await create_ticket(services, academy_id=uuid4())
    await issue_ticket(services, user_id=user_id, ticket=other_academy_ticket)

    tickets = await services.resolver.usable_tickets(user_id, instance.id, now_utc=NOW_UTC)

    assert [view.id for view in tickets] == [usable.id]
