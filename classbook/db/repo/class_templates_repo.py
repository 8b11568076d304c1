from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.db.models.class_templates import ClassTemplate, TicketClassLink


class ClassTemplatesRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, template_id: UUID) -> ClassTemplate | None:
        return await session.get(ClassTemplate, template_id)

    @staticmethod
    async def create(session: AsyncSession, *, template: ClassTemplate) -> ClassTemplate:
        session.add(template)
        await session.flush()
        return template

    @staticmethod
    async def add_ticket_link(
        session: AsyncSession,
        *,
        ticket_id: UUID,
        template_id: UUID,
    ) -> TicketClassLink:
        link = TicketClassLink(ticket_id=ticket_id, template_id=template_id)
        session.add(link)
        await session.flush()
        return link

    @staticmethod
    async def has_ticket_links(session: AsyncSession, template_id: UUID) -> bool:
        stmt = select(TicketClassLink.id).where(TicketClassLink.template_id == template_id).limit(1)
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    @staticmethod
    async def is_ticket_linked(
        session: AsyncSession,
        *,
        ticket_id: UUID,
        template_id: UUID,
    ) -> bool:
        stmt = (
            select(TicketClassLink.id)
            .where(
                TicketClassLink.ticket_id == ticket_id,
                TicketClassLink.template_id == template_id,
            )
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None
