from __future__ import annotations

from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from classbook.db.models.tickets import Ticket


class TicketsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, ticket_id: UUID) -> Ticket | None:
        return await session.get(Ticket, ticket_id)

    @staticmethod
    async def create(session: AsyncSession, *, ticket: Ticket) -> Ticket:
        session.add(ticket)
        await session.flush()
        return ticket
