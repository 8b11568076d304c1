from __future__ import annotations

from collections.abc import Iterable
from datetime import datetime
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.db.models.session_instances import SessionInstance


class SessionInstancesRepo:
    @staticmethod
    async def get_by_id(session: AsyncSession, instance_id: UUID) -> SessionInstance | None:
        return await session.get(SessionInstance, instance_id)

    @staticmethod
    async def get_fresh(session: AsyncSession, instance_id: UUID) -> SessionInstance | None:
        stmt = (
            select(SessionInstance)
            .where(SessionInstance.id == instance_id)
            .execution_options(populate_existing=True)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def list_start_times_for_template(
        session: AsyncSession,
        *,
        template_id: UUID,
        start_times: Iterable[datetime],
    ) -> set[datetime]:
        candidates = list(start_times)
        if not candidates:
            return set()
        stmt = select(SessionInstance.start_time).where(
            SessionInstance.template_id == template_id,
            SessionInstance.start_time.in_(candidates),
        )
        result = await session.execute(stmt)
        return set(result.scalars().all())

    @staticmethod
    async def list_for_template(
        session: AsyncSession,
        *,
        template_id: UUID,
        start_from_utc: datetime | None = None,
        start_before_utc: datetime | None = None,
        include_canceled: bool = True,
    ) -> list[SessionInstance]:
        stmt = select(SessionInstance).where(SessionInstance.template_id == template_id)
        if start_from_utc is not None:
            stmt = stmt.where(SessionInstance.start_time >= start_from_utc)
        if start_before_utc is not None:
            stmt = stmt.where(SessionInstance.start_time < start_before_utc)
        if not include_canceled:
            stmt = stmt.where(SessionInstance.canceled.is_(False))
        result = await session.execute(stmt.order_by(SessionInstance.start_time.asc()))
        return list(result.scalars().all())

    @staticmethod
    async def list_open_for_academy(
        session: AsyncSession,
        *,
        academy_id: UUID,
        start_from_utc: datetime,
        start_before_utc: datetime,
    ) -> list[SessionInstance]:
        stmt = (
            select(SessionInstance)
            .where(
                SessionInstance.academy_id == academy_id,
                SessionInstance.canceled.is_(False),
                SessionInstance.start_time >= start_from_utc,
                SessionInstance.start_time < start_before_utc,
            )
            .order_by(SessionInstance.start_time.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def list_by_ids(
        session: AsyncSession,
        instance_ids: Iterable[UUID],
    ) -> list[SessionInstance]:
        ids = list(instance_ids)
        if not ids:
            return []
        stmt = (
            select(SessionInstance)
            .where(SessionInstance.id.in_(ids))
            .order_by(SessionInstance.start_time.asc())
        )
        result = await session.execute(stmt)
        return list(result.scalars().all())

    @staticmethod
    async def add_many(session: AsyncSession, instances: list[SessionInstance]) -> None:
        session.add_all(instances)
        await session.flush()

    @staticmethod
    async def try_reserve_seat(
        session: AsyncSession,
        *,
        instance_id: UUID,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(SessionInstance)
            .where(
                SessionInstance.id == instance_id,
                SessionInstance.canceled.is_(False),
                SessionInstance.booked_count < SessionInstance.capacity,
            )
            .values(
                booked_count=SessionInstance.booked_count + 1,
                updated_at=now_utc,
            )
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0) == 1

    @staticmethod
    async def try_release_seat(
        session: AsyncSession,
        *,
        instance_id: UUID,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(SessionInstance)
            .where(
                SessionInstance.id == instance_id,
                SessionInstance.booked_count > 0,
            )
            .values(
                booked_count=SessionInstance.booked_count - 1,
                updated_at=now_utc,
            )
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0) == 1

    @staticmethod
    async def mark_canceled(
        session: AsyncSession,
        *,
        instance_id: UUID,
        reason: str,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(SessionInstance)
            .where(
                SessionInstance.id == instance_id,
                SessionInstance.canceled.is_(False),
            )
            .values(
                canceled=True,
                cancel_reason=reason,
                canceled_at=now_utc,
                updated_at=now_utc,
            )
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0) == 1

    @staticmethod
    async def set_end_time(
        session: AsyncSession,
        *,
        instance_id: UUID,
        end_time: datetime,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(SessionInstance)
            .where(
                SessionInstance.id == instance_id,
                SessionInstance.canceled.is_(False),
                SessionInstance.end_time != end_time,
            )
            .values(end_time=end_time, updated_at=now_utc)
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0) == 1

    @staticmethod
    async def set_substitute_instructor(
        session: AsyncSession,
        *,
        instance_id: UUID,
        instructor_id: UUID | None,
        now_utc: datetime,
    ) -> bool:
        stmt = (
            update(SessionInstance)
            .where(SessionInstance.id == instance_id)
            .values(
                substitute_instructor_id=instructor_id,
                updated_at=now_utc,
            )
        )
        result = await session.execute(stmt)
        return int(getattr(result, "rowcount", 0) or 0) == 1
