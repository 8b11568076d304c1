from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from uuid import UUID, uuid4
from zoneinfo import ZoneInfo

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.core.time import utc_now
from classbook.db.models.class_templates import ClassTemplate
from classbook.db.models.session_instances import SessionInstance
from classbook.db.repo.class_templates_repo import ClassTemplatesRepo
from classbook.db.repo.session_instances_repo import SessionInstancesRepo
from classbook.db.session import SessionFactory, session_scope
from classbook.scheduling.errors import (
    SessionCanceledError,
    SessionNotFoundError,
    TemplateNotFoundError,
)
from classbook.scheduling.recurrence import expand, restrict, session_window
from classbook.scheduling.types import (
    RULE_CHANGED_REASON,
    MaterializeResult,
    RecurrenceRule,
    RegenerationResult,
)

logger = structlog.get_logger(__name__)

MATERIALIZE_MAX_ATTEMPTS = 3


class SessionCatalog:
    """Owns materialized session instances and their seat counters."""

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        tz_name: str,
        default_capacity: int = 20,
    ) -> None:
        self._session_factory = session_factory
        self._tz_name = tz_name
        self._default_capacity = default_capacity

    @property
    def tz_name(self) -> str:
        return self._tz_name

    async def create_template(
        self,
        *,
        academy_id: UUID,
        title: str,
        capacity: int | None = None,
        instructor_id: UUID | None = None,
        hall_id: UUID | None = None,
        access_group: str | None = None,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> ClassTemplate:
        template = ClassTemplate(
            id=uuid4(),
            academy_id=academy_id,
            title=title,
            capacity=capacity if capacity is not None else self._default_capacity,
            instructor_id=instructor_id,
            hall_id=hall_id,
            access_group=access_group,
            created_at=now_utc or utc_now(),
        )
        async with session_scope(self._session_factory, session) as db:
            return await ClassTemplatesRepo.create(db, template=template)

    async def get_template(
        self,
        template_id: UUID,
        *,
        session: AsyncSession | None = None,
    ) -> ClassTemplate:
        async with session_scope(self._session_factory, session) as db:
            template = await ClassTemplatesRepo.get_by_id(db, template_id)
        if template is None:
            raise TemplateNotFoundError(f"template {template_id} not found")
        return template

    async def link_ticket(
        self,
        *,
        ticket_id: UUID,
        template_id: UUID,
        session: AsyncSession | None = None,
    ) -> None:
        async with session_scope(self._session_factory, session) as db:
            await ClassTemplatesRepo.add_ticket_link(db, ticket_id=ticket_id, template_id=template_id)

    async def materialize(
        self,
        template_id: UUID,
        rule: RecurrenceRule,
        date_from: date | None = None,
        date_to: date | None = None,
        *,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> MaterializeResult:
        starts = restrict(expand(rule), date_from=date_from, date_to=date_to, tz_name=rule.tz_name)
        starts_utc = [start.astimezone(timezone.utc) for start in starts]
        created_at = now_utc or utc_now()

        attempt = 1
        while True:
            try:
                async with session_scope(self._session_factory, session) as db:
                    template = await ClassTemplatesRepo.get_by_id(db, template_id)
                    if template is None:
                        raise TemplateNotFoundError(f"template {template_id} not found")
                    created = await self._insert_missing(
                        db,
                        template=template,
                        rule=rule,
                        starts_utc=starts_utc,
                        now_utc=created_at,
                    )
            except IntegrityError:
                if session is not None or attempt >= MATERIALIZE_MAX_ATTEMPTS:
                    raise
                logger.info(
                    "sessions_materialize_conflict",
                    template_id=str(template_id),
                    attempt=attempt,
                )
                attempt += 1
                continue

            result = MaterializeResult(created=created, skipped=len(starts_utc) - len(created))
            logger.info(
                "sessions_materialized",
                template_id=str(template_id),
                created=len(result.created),
                skipped=result.skipped,
            )
            return result

    async def _insert_missing(
        self,
        db: AsyncSession,
        *,
        template: ClassTemplate,
        rule: RecurrenceRule,
        starts_utc: list[datetime],
        now_utc: datetime,
    ) -> list[UUID]:
        existing = await SessionInstancesRepo.list_start_times_for_template(
            db,
            template_id=template.id,
            start_times=starts_utc,
        )
        instances: list[SessionInstance] = []
        for start in starts_utc:
            if start in existing:
                continue
            _, end = session_window(start, rule)
            instances.append(
                SessionInstance(
                    id=uuid4(),
                    template_id=template.id,
                    academy_id=template.academy_id,
                    start_time=start,
                    end_time=end,
                    hall_id=template.hall_id,
                    instructor_id=template.instructor_id,
                    capacity=template.capacity,
                    booked_count=0,
                    canceled=False,
                    created_at=now_utc,
                    updated_at=now_utc,
                )
            )
        if instances:
            await SessionInstancesRepo.add_many(db, instances)
        return [instance.id for instance in instances]

    async def cancel(
        self,
        instance_id: UUID,
        reason: str,
        *,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> SessionInstance:
        """Mark an instance canceled. Rows are never deleted; repeating is a no-op."""
        async with session_scope(self._session_factory, session) as db:
            changed = await SessionInstancesRepo.mark_canceled(
                db,
                instance_id=instance_id,
                reason=reason,
                now_utc=now_utc or utc_now(),
            )
            instance = await SessionInstancesRepo.get_fresh(db, instance_id)
        if instance is None:
            raise SessionNotFoundError(f"session {instance_id} not found")
        if changed:
            logger.info("session_canceled", session_instance_id=str(instance_id), reason=reason)
        return instance

    async def substitute(
        self,
        instance_id: UUID,
        instructor_id: UUID | None,
        *,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> SessionInstance:
        async with session_scope(self._session_factory, session) as db:
            instance = await SessionInstancesRepo.get_fresh(db, instance_id)
            if instance is None:
                raise SessionNotFoundError(f"session {instance_id} not found")
            if instance.canceled:
                raise SessionCanceledError(f"session {instance_id} is canceled")
            await SessionInstancesRepo.set_substitute_instructor(
                db,
                instance_id=instance_id,
                instructor_id=instructor_id,
                now_utc=now_utc or utc_now(),
            )
            instance = await SessionInstancesRepo.get_fresh(db, instance_id)
        logger.info(
            "session_instructor_substituted",
            session_instance_id=str(instance_id),
            instructor_id=str(instructor_id) if instructor_id else None,
        )
        return instance

    async def reserve_capacity(
        self,
        instance_id: UUID,
        *,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> bool:
        async with session_scope(self._session_factory, session) as db:
            return await SessionInstancesRepo.try_reserve_seat(
                db,
                instance_id=instance_id,
                now_utc=now_utc or utc_now(),
            )

    async def release_capacity(
        self,
        instance_id: UUID,
        *,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> bool:
        async with session_scope(self._session_factory, session) as db:
            released = await SessionInstancesRepo.try_release_seat(
                db,
                instance_id=instance_id,
                now_utc=now_utc or utc_now(),
            )
        if not released:
            logger.warning("capacity_release_noop", session_instance_id=str(instance_id))
        return released

    async def get(
        self,
        instance_id: UUID,
        *,
        session: AsyncSession | None = None,
    ) -> SessionInstance:
        async with session_scope(self._session_factory, session) as db:
            instance = await SessionInstancesRepo.get_fresh(db, instance_id)
        if instance is None:
            raise SessionNotFoundError(f"session {instance_id} not found")
        return instance

    async def list_for_template(
        self,
        template_id: UUID,
        date_from: date | None = None,
        date_to: date | None = None,
        *,
        include_canceled: bool = True,
        session: AsyncSession | None = None,
    ) -> list[SessionInstance]:
        tz = ZoneInfo(self._tz_name)
        start_from_utc = None
        start_before_utc = None
        if date_from is not None:
            start_from_utc = datetime.combine(date_from, time.min, tzinfo=tz).astimezone(timezone.utc)
        if date_to is not None:
            start_before_utc = datetime.combine(
                date_to + timedelta(days=1), time.min, tzinfo=tz
            ).astimezone(timezone.utc)

        async with session_scope(self._session_factory, session) as db:
            return await SessionInstancesRepo.list_for_template(
                db,
                template_id=template_id,
                start_from_utc=start_from_utc,
                start_before_utc=start_before_utc,
                include_canceled=include_canceled,
            )

    async def regenerate(
        self,
        template_id: UUID,
        rule: RecurrenceRule,
        *,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> RegenerationResult:
        """Apply an edited rule to future instances only.

        Future instances the new rule no longer produces are canceled with
        ``RULE_CHANGED``; kept ones take the new duration; missing future
        instances are created. Past instances are left alone.
        """
        now = now_utc or utc_now()
        wanted_utc = [
            start.astimezone(timezone.utc) for start in expand(rule) if start >= now
        ]
        wanted = set(wanted_utc)
        result = RegenerationResult()

        async with session_scope(self._session_factory, session) as db:
            template = await ClassTemplatesRepo.get_by_id(db, template_id)
            if template is None:
                raise TemplateNotFoundError(f"template {template_id} not found")

            upcoming = await SessionInstancesRepo.list_for_template(
                db,
                template_id=template_id,
                start_from_utc=now,
                include_canceled=False,
            )
            for instance in upcoming:
                if instance.start_time in wanted:
                    result.kept += 1
                    _, end = session_window(instance.start_time, rule)
                    if await SessionInstancesRepo.set_end_time(
                        db,
                        instance_id=instance.id,
                        end_time=end,
                        now_utc=now,
                    ):
                        result.updated.append(instance.id)
                    continue
                await SessionInstancesRepo.mark_canceled(
                    db,
                    instance_id=instance.id,
                    reason=RULE_CHANGED_REASON,
                    now_utc=now,
                )
                result.retired.append(instance.id)

            result.created = await self._insert_missing(
                db,
                template=template,
                rule=rule,
                starts_utc=wanted_utc,
                now_utc=now,
            )

        logger.info(
            "sessions_regenerated",
            template_id=str(template_id),
            created=len(result.created),
            retired=len(result.retired),
            updated=len(result.updated),
            kept=result.kept,
        )
        return result
