from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.core.time import local_date, utc_now
from classbook.db.models.class_templates import ClassTemplate
from classbook.db.models.session_instances import SessionInstance
from classbook.db.models.tickets import Ticket
from classbook.db.repo.class_templates_repo import ClassTemplatesRepo
from classbook.db.repo.session_instances_repo import SessionInstancesRepo
from classbook.db.repo.tickets_repo import TicketsRepo
from classbook.db.repo.user_tickets_repo import UserTicketsRepo
from classbook.db.session import SessionFactory, session_scope
from classbook.entitlements.errors import CrossAcademyError, IneligibleError, TicketNotFoundError
from classbook.entitlements.ledger import to_view
from classbook.entitlements.rules import classify_consume_rejection
from classbook.entitlements.types import EligibilityDecision, UserTicketStatus, UserTicketView
from classbook.scheduling.errors import SessionNotFoundError, TemplateNotFoundError

logger = structlog.get_logger(__name__)


class TicketHolder(Protocol):
    user_id: UUID
    ticket_id: UUID
    academy_id: UUID


@dataclass(frozen=True, slots=True)
class AccessContext:
    ticket: Ticket
    template: ClassTemplate
    template_has_links: bool
    ticket_is_linked: bool


@dataclass(frozen=True, slots=True)
class LinkedSet:
    name: str = "LINKED_SET"

    def matches(self, ctx: AccessContext) -> bool:
        return ctx.template_has_links and ctx.ticket_is_linked


@dataclass(frozen=True, slots=True)
class GroupMatch:
    name: str = "GROUP_MATCH"

    def matches(self, ctx: AccessContext) -> bool:
        ticket_group = ctx.ticket.access_group
        template_group = ctx.template.access_group
        return bool(ticket_group) and bool(template_group) and ticket_group == template_group


@dataclass(frozen=True, slots=True)
class Unrestricted:
    name: str = "UNRESTRICTED"

    def matches(self, ctx: AccessContext) -> bool:
        if ctx.template_has_links or ctx.template.access_group:
            return False
        return (
            ctx.ticket.is_on_sale
            and ctx.ticket.is_public
            and ctx.ticket.academy_id == ctx.template.academy_id
        )


AccessRule = LinkedSet | GroupMatch | Unrestricted

# First match wins.
ELIGIBILITY_RULES: tuple[AccessRule, ...] = (LinkedSet(), GroupMatch(), Unrestricted())


def evaluate_rules(ctx: AccessContext) -> AccessRule | None:
    for rule in ELIGIBILITY_RULES:
        if rule.matches(ctx):
            return rule
    return None


class AccessResolver:
    def __init__(self, session_factory: SessionFactory, *, tz_name: str) -> None:
        self._session_factory = session_factory
        self._tz_name = tz_name

    async def check(
        self,
        user_id: UUID,
        user_ticket: TicketHolder,
        instance: SessionInstance,
        *,
        session: AsyncSession | None = None,
    ) -> EligibilityDecision:
        if user_ticket.user_id != user_id:
            raise IneligibleError("ticket belongs to another user")
        if user_ticket.academy_id != instance.academy_id:
            raise CrossAcademyError("ticket and session belong to different academies")

        async with session_scope(self._session_factory, session) as db:
            ctx = await self._load_context(db, ticket_id=user_ticket.ticket_id, template_id=instance.template_id)

        rule = evaluate_rules(ctx)
        if rule is None:
            logger.info(
                "booking_ineligible",
                user_id=str(user_id),
                ticket_id=str(user_ticket.ticket_id),
                template_id=str(instance.template_id),
            )
            raise IneligibleError("ticket does not grant access to this class")
        return EligibilityDecision(eligible=True, rule=rule.name)

    async def _load_context(
        self,
        db: AsyncSession,
        *,
        ticket_id: UUID,
        template_id: UUID,
    ) -> AccessContext:
        ticket = await TicketsRepo.get_by_id(db, ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"ticket {ticket_id} not found")
        template = await ClassTemplatesRepo.get_by_id(db, template_id)
        if template is None:
            raise TemplateNotFoundError(f"template {template_id} not found")

        return AccessContext(
            ticket=ticket,
            template=template,
            template_has_links=await ClassTemplatesRepo.has_ticket_links(db, template_id),
            ticket_is_linked=await ClassTemplatesRepo.is_ticket_linked(
                db,
                ticket_id=ticket_id,
                template_id=template_id,
            ),
        )

    async def usable_tickets(
        self,
        user_id: UUID,
        instance_id: UUID,
        *,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> list[UserTicketView]:
        """Tickets the user could book this session with right now."""
        now = now_utc or utc_now()
        today = local_date(now, self._tz_name)

        async with session_scope(self._session_factory, session) as db:
            instance = await SessionInstancesRepo.get_by_id(db, instance_id)
            if instance is None:
                raise SessionNotFoundError(f"session {instance_id} not found")
            session_date = local_date(instance.start_time, self._tz_name)

            rows = await UserTicketsRepo.list_for_user(db, user_id=user_id, academy_id=instance.academy_id)
            usable: list[UserTicketView] = []
            for row in rows:
                view = to_view(row, today=today)
                if view.status != UserTicketStatus.ACTIVE:
                    continue
                rejection = classify_consume_rejection(
                    kind=row.kind,
                    status=row.status,
                    remaining_count=row.remaining_count,
                    start_date=row.start_date,
                    expiry_date=row.expiry_date,
                    session_date=session_date,
                    today=today,
                )
                if rejection is not None:
                    continue
                ctx = await self._load_context(db, ticket_id=row.ticket_id, template_id=instance.template_id)
                if evaluate_rules(ctx) is None:
                    continue
                usable.append(view)
        return usable
