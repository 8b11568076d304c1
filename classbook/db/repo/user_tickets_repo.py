from __future__ import annotations

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import and_, case, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.db.models.user_tickets import UserTicket


class UserTicketsRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, user_ticket_id: UUID) -> UserTicket | None:
        stmt = (
            select(UserTicket)
            .where(UserTicket.id == user_ticket_id)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_idempotency_key(
        session: AsyncSession,
        idempotency_key: str,
    ) -> UserTicket | None:
        stmt = select(UserTicket).where(UserTicket.idempotency_key == idempotency_key)
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def create(session: AsyncSession, *, user_ticket: UserTicket) -> UserTicket:
        session.add(user_ticket)
        await session.flush()
        return user_ticket

    @staticmethod
    async def list_for_user(
        session: AsyncSession,
        *,
        user_id: UUID,
        academy_id: UUID | None = None,
    ) -> list[UserTicket]:
        stmt = select(UserTicket).where(UserTicket.user_id == user_id)
        if academy_id is not None:
            stmt = stmt.where(UserTicket.academy_id == academy_id)
        result = await session.execute(stmt.order_by(UserTicket.purchased_at.asc()))
        return list(result.scalars().all())

    @staticmethod
    async def list_active_period_for_academy(
        session: AsyncSession,
        *,
        academy_id: UUID,
        covering_from: date,
        covering_to: date,
    ) -> list[UserTicket]:
        stmt = (
            select(UserTicket)
            .where(
                UserTicket.academy_id == academy_id,
                UserTicket.kind == "PERIOD",
                UserTicket.status == "ACTIVE",
                UserTicket.start_date <= covering_to,
                UserTicket.expiry_date >= covering_from,
            )
            .order_by(UserTicket.purchased_at.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def try_consume_count_unit(
        session: AsyncSession,
        *,
        user_ticket_id: UUID,
        session_date: date,
        today: date,
        now_utc: datetime,
    ) -> int | None:
        """Take one unit; returns the remaining balance or None when nothing was taken."""
        stmt = (
            update(UserTicket)
            .where(
                UserTicket.id == user_ticket_id,
                UserTicket.kind == "COUNT",
                UserTicket.status == "ACTIVE",
                UserTicket.remaining_count > 0,
                UserTicket.start_date <= session_date,
                or_(
                    UserTicket.expiry_date.is_(None),
                    and_(
                        UserTicket.expiry_date >= today,
                        UserTicket.expiry_date >= session_date,
                    ),
                ),
            )
            .values(
                remaining_count=UserTicket.remaining_count - 1,
                status=case(
                    (UserTicket.remaining_count - 1 == 0, "DEPLETED"),
                    else_=UserTicket.status,
                ),
                updated_at=now_utc,
            )
            .returning(UserTicket.remaining_count)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def try_restore_count_unit(
        session: AsyncSession,
        *,
        user_ticket_id: UUID,
        today: date,
        now_utc: datetime,
    ) -> int | None:
        stmt = (
            update(UserTicket)
            .where(
                UserTicket.id == user_ticket_id,
                UserTicket.kind == "COUNT",
                UserTicket.status.in_(("ACTIVE", "DEPLETED")),
                UserTicket.remaining_count < UserTicket.total_count,
                or_(UserTicket.expiry_date.is_(None), UserTicket.expiry_date >= today),
            )
            .values(
                remaining_count=UserTicket.remaining_count + 1,
                status="ACTIVE",
                updated_at=now_utc,
            )
            .returning(UserTicket.remaining_count)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def mark_expired(
        session: AsyncSession,
        *,
        user_ticket_id: UUID,
        today: date,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(UserTicket)
            .where(
                UserTicket.id == user_ticket_id,
                UserTicket.status.in_(("ACTIVE", "DEPLETED")),
                UserTicket.expiry_date.is_not(None),
                UserTicket.expiry_date < today,
            )
            .values(status="EXPIRED", updated_at=now_utc)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0) == 1

    @staticmethod
    async def set_expiry_date(
        session: AsyncSession,
        *,
        user_ticket_id: UUID,
        expected_expiry_date: date | None,
        new_expiry_date: date,
        now_utc: datetime,
    ) -> bool:
        if expected_expiry_date is None:
            expiry_matches = UserTicket.expiry_date.is_(None)
        else:
            expiry_matches = UserTicket.expiry_date == expected_expiry_date
        stmt = (
            update(UserTicket)
            .where(
                UserTicket.id == user_ticket_id,
                UserTicket.status.in_(("ACTIVE", "DEPLETED")),
                expiry_matches,
            )
            .values(expiry_date=new_expiry_date, updated_at=now_utc)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0) == 1

    @staticmethod
    async def mark_cancelled(
        session: AsyncSession,
        *,
        user_ticket_id: UUID,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(UserTicket)
            .where(
                UserTicket.id == user_ticket_id,
                UserTicket.status != "CANCELLED",
            )
            .values(status="CANCELLED", updated_at=now_utc)
            .execution_options(synchronize_session=False)
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0) == 1
