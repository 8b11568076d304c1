from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.db.models.ticket_ledger_entries import TicketLedgerEntry


class TicketLedgerRepo:
    @staticmethod
    async def get_by_idempotency_key(
        session: AsyncSession,
        idempotency_key: str,
    ) -> TicketLedgerEntry | None:
        stmt = select(TicketLedgerEntry).where(TicketLedgerEntry.idempotency_key == idempotency_key)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(
        session: AsyncSession,
        *,
        user_ticket_id: UUID,
        entry_type: str,
        delta: int,
        balance_after: int | None,
        idempotency_key: str,
        created_at: datetime,
        booking_id: UUID | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> TicketLedgerEntry:
        entry = TicketLedgerEntry(
            user_ticket_id=user_ticket_id,
            booking_id=booking_id,
            entry_type=entry_type,
            delta=delta,
            balance_after=balance_after,
            idempotency_key=idempotency_key,
            metadata_=metadata or {},
            created_at=created_at,
        )
        session.add(entry)
        await session.flush()
        return entry

    @staticmethod
    async def list_for_user_ticket(
        session: AsyncSession,
        user_ticket_id: UUID,
    ) -> list[TicketLedgerEntry]:
        stmt = (
            select(TicketLedgerEntry)
            .where(TicketLedgerEntry.user_ticket_id == user_ticket_id)
            .order_by(TicketLedgerEntry.created_at.asc(), TicketLedgerEntry.id.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())
