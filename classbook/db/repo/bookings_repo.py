from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.db.models.bookings import Booking


class BookingsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, booking_id: UUID) -> Booking | None:
        stmt = (
            select(Booking)
            .where(Booking.id == booking_id)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(session: AsyncSession, *, booking: Booking) -> Booking:
        session.add(booking)
        await session.flush()
        return booking

    @staticmethod
    async def get_confirmed_for_pair(
        session: AsyncSession,
        *,
        session_instance_id: UUID,
        user_id: UUID,
    ) -> Booking | None:
        stmt = select(Booking).where(
            Booking.session_instance_id == session_instance_id,
            Booking.user_id == user_id,
            Booking.status == "CONFIRMED",
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_confirmed_for_session(
        session: AsyncSession,
        session_instance_id: UUID,
    ) -> list[Booking]:
        stmt = (
            select(Booking)
            .where(
                Booking.session_instance_id == session_instance_id,
                Booking.status == "CONFIRMED",
            )
            .order_by(Booking.created_at.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_confirmed_session_ids_for_user(
        session: AsyncSession,
        *,
        user_id: UUID,
        session_instance_ids: Iterable[UUID],
    ) -> set[UUID]:
        ids = list(session_instance_ids)
        if not ids:
            return set()
        stmt = select(Booking.session_instance_id).where(
            Booking.user_id == user_id,
            Booking.status == "CONFIRMED",
            Booking.session_instance_id.in_(ids),
        )
        result = await session.execute(stmt)
        return set(result.scalars().all())

    @staticmethod
    async def transition_from_confirmed(
        session: AsyncSession,
        *,
        booking_id: UUID,
        to_status: str,
        now_utc: datetime,
    ) -> bool:
        values: dict[str, object] = {"status": to_status, "updated_at": now_utc}
        if to_status == "CANCELLED":
            values["cancelled_at"] = now_utc
        elif to_status == "COMPLETED":
            values["completed_at"] = now_utc

        stmt = (
            update(Booking)
            .where(
                Booking.id == booking_id,
                Booking.status == "CONFIRMED",
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0) == 1
