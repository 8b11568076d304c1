from __future__ import annotations

from datetime import date, datetime
from uuid import UUID, uuid4

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from classbook.core.errors import ConcurrencyConflictError, RejectReason, ValidationError
from classbook.core.time import local_date, utc_now
from classbook.db.models.ticket_ledger_entries import TicketLedgerEntry
from classbook.db.models.user_tickets import UserTicket
from classbook.db.repo.ticket_ledger_repo import TicketLedgerRepo
from classbook.db.repo.tickets_repo import TicketsRepo
from classbook.db.repo.user_tickets_repo import UserTicketsRepo
from classbook.db.retry import with_conflict_retry
from classbook.db.session import SessionFactory, session_scope
from classbook.entitlements.errors import (
    DuplicateIssuanceError,
    TicketCancelledError,
    TicketExpiredError,
    TicketNotFoundError,
)
from classbook.entitlements.rules import (
    classify_consume_rejection,
    compute_expiry_date,
    effective_status,
    is_clock_expired,
    resolve_extension_target,
)
from classbook.entitlements.types import (
    ConsumeResult,
    LedgerEntryType,
    PaymentCompleted,
    TicketKind,
    UserTicketStatus,
    UserTicketView,
)

logger = structlog.get_logger(__name__)


def to_view(user_ticket: UserTicket, *, today: date) -> UserTicketView:
    return UserTicketView(
        id=user_ticket.id,
        user_id=user_ticket.user_id,
        ticket_id=user_ticket.ticket_id,
        academy_id=user_ticket.academy_id,
        kind=TicketKind(user_ticket.kind),
        status=effective_status(user_ticket.status, user_ticket.expiry_date, today),
        remaining_count=user_ticket.remaining_count,
        total_count=user_ticket.total_count,
        start_date=user_ticket.start_date,
        expiry_date=user_ticket.expiry_date,
        purchased_at=user_ticket.purchased_at,
    )


class EntitlementLedger:
    """Issues user tickets and moves their balances.

    Every movement is a single predicate-guarded update followed by an
    append-only ledger entry whose idempotency key makes retries safe.
    """

    def __init__(
        self,
        session_factory: SessionFactory,
        *,
        tz_name: str,
        retry_attempts: int = 3,
        retry_base_delay: float = 0.05,
    ) -> None:
        self._session_factory = session_factory
        self._tz_name = tz_name
        self._retry_attempts = retry_attempts
        self._retry_base_delay = retry_base_delay

    @property
    def tz_name(self) -> str:
        return self._tz_name

    def today(self, now_utc: datetime | None = None) -> date:
        return local_date(now_utc or utc_now(), self._tz_name)

    async def issue(
        self,
        event: PaymentCompleted,
        *,
        now_utc: datetime | None = None,
    ) -> UserTicketView:
        now = now_utc or utc_now()
        today = self.today(now)
        try:
            async with self._session_factory.begin() as db:
                existing = await UserTicketsRepo.get_by_idempotency_key(db, event.idempotency_key)
                if existing is not None:
                    raise DuplicateIssuanceError(
                        f"payment {event.idempotency_key} already issued ticket {existing.id}"
                    )

                ticket = await TicketsRepo.get_by_id(db, event.ticket_id)
                if ticket is None:
                    raise TicketNotFoundError(f"ticket {event.ticket_id} not found")
                if ticket.academy_id != event.academy_id:
                    raise ValidationError("payment academy does not match the ticket academy")

                start_date = event.start_date or local_date(event.paid_at, self._tz_name)
                kind = TicketKind(ticket.kind)
                remaining = ticket.total_count if kind == TicketKind.COUNT else None
                user_ticket = await UserTicketsRepo.create(
                    db,
                    user_ticket=UserTicket(
                        id=uuid4(),
                        user_id=event.user_id,
                        ticket_id=ticket.id,
                        academy_id=ticket.academy_id,
                        kind=kind.value,
                        status=UserTicketStatus.ACTIVE.value,
                        remaining_count=remaining,
                        total_count=remaining,
                        start_date=start_date,
                        expiry_date=compute_expiry_date(start_date, ticket.valid_days),
                        purchased_at=event.paid_at,
                        idempotency_key=event.idempotency_key,
                        updated_at=now,
                    ),
                )
                await TicketLedgerRepo.create(
                    db,
                    user_ticket_id=user_ticket.id,
                    entry_type=LedgerEntryType.ISSUE.value,
                    delta=remaining or 0,
                    balance_after=remaining,
                    idempotency_key=f"issue:{event.idempotency_key}",
                    created_at=now,
                    metadata={"amount": str(event.amount), "ticket_id": str(ticket.id)},
                )
        except IntegrityError as exc:
            raise DuplicateIssuanceError(
                f"payment {event.idempotency_key} already issued"
            ) from exc

        logger.info(
            "ticket_issued",
            user_ticket_id=str(user_ticket.id),
            user_id=str(event.user_id),
            ticket_id=str(event.ticket_id),
            kind=kind.value,
            remaining_count=remaining,
            expiry_date=user_ticket.expiry_date.isoformat() if user_ticket.expiry_date else None,
        )
        return to_view(user_ticket, today=today)

    async def try_consume(
        self,
        user_ticket_id: UUID,
        session_date: date,
        *,
        idempotency_key: str,
        booking_id: UUID | None = None,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> ConsumeResult:
        now = now_utc or utc_now()
        today = self.today(now)
        async with session_scope(self._session_factory, session) as db:
            replay = await TicketLedgerRepo.get_by_idempotency_key(db, idempotency_key)
            if replay is not None:
                return ConsumeResult.accepted(replay.balance_after, idempotent_replay=True)

            user_ticket = await UserTicketsRepo.get_by_id(db, user_ticket_id)
            if user_ticket is None:
                raise TicketNotFoundError(f"user ticket {user_ticket_id} not found")

            if user_ticket.kind == TicketKind.COUNT.value:
                remaining = await UserTicketsRepo.try_consume_count_unit(
                    db,
                    user_ticket_id=user_ticket_id,
                    session_date=session_date,
                    today=today,
                    now_utc=now,
                )
                if remaining is None:
                    reason = await self._classify_rejection(
                        db,
                        user_ticket_id=user_ticket_id,
                        session_date=session_date,
                        today=today,
                        now_utc=now,
                    )
                    return ConsumeResult.rejected(reason)
                delta = -1
            else:
                reason = classify_consume_rejection(
                    kind=user_ticket.kind,
                    status=user_ticket.status,
                    remaining_count=user_ticket.remaining_count,
                    start_date=user_ticket.start_date,
                    expiry_date=user_ticket.expiry_date,
                    session_date=session_date,
                    today=today,
                )
                if reason is not None:
                    await self._persist_clock_expiry(db, user_ticket, today=today, now_utc=now)
                    logger.info(
                        "ticket_consume_rejected",
                        user_ticket_id=str(user_ticket_id),
                        reason=reason.value,
                    )
                    return ConsumeResult.rejected(reason)
                remaining = None
                delta = 0

            await TicketLedgerRepo.create(
                db,
                user_ticket_id=user_ticket_id,
                booking_id=booking_id,
                entry_type=LedgerEntryType.CONSUME.value,
                delta=delta,
                balance_after=remaining,
                idempotency_key=idempotency_key,
                created_at=now,
                metadata={"session_date": session_date.isoformat()},
            )

        logger.info(
            "ticket_consumed",
            user_ticket_id=str(user_ticket_id),
            booking_id=str(booking_id) if booking_id else None,
            remaining_count=remaining,
        )
        return ConsumeResult.accepted(remaining)

    async def _classify_rejection(
        self,
        db: AsyncSession,
        *,
        user_ticket_id: UUID,
        session_date: date,
        today: date,
        now_utc: datetime,
    ) -> RejectReason:
        user_ticket = await UserTicketsRepo.get_by_id(db, user_ticket_id)
        if user_ticket is None:
            raise TicketNotFoundError(f"user ticket {user_ticket_id} not found")

        reason = classify_consume_rejection(
            kind=user_ticket.kind,
            status=user_ticket.status,
            remaining_count=user_ticket.remaining_count,
            start_date=user_ticket.start_date,
            expiry_date=user_ticket.expiry_date,
            session_date=session_date,
            today=today,
        )
        if reason is None:
            # Guard failed but the row now looks usable: a concurrent restore landed in between.
            raise ConcurrencyConflictError(f"user ticket {user_ticket_id} changed during consume")

        await self._persist_clock_expiry(db, user_ticket, today=today, now_utc=now_utc)
        logger.info(
            "ticket_consume_rejected",
            user_ticket_id=str(user_ticket_id),
            reason=reason.value,
        )
        return reason

    async def _persist_clock_expiry(
        self,
        db: AsyncSession,
        user_ticket: UserTicket,
        *,
        today: date,
        now_utc: datetime,
    ) -> None:
        if user_ticket.status not in (UserTicketStatus.ACTIVE.value, UserTicketStatus.DEPLETED.value):
            return
        if not is_clock_expired(user_ticket.expiry_date, today):
            return

        expired = await UserTicketsRepo.mark_expired(
            db,
            user_ticket_id=user_ticket.id,
            today=today,
            now_utc=now_utc,
        )
        if expired:
            await TicketLedgerRepo.create(
                db,
                user_ticket_id=user_ticket.id,
                entry_type=LedgerEntryType.EXPIRE.value,
                delta=0,
                balance_after=user_ticket.remaining_count,
                idempotency_key=f"expire:{user_ticket.id}",
                created_at=now_utc,
            )
            logger.info("ticket_expired", user_ticket_id=str(user_ticket.id))

    async def restore(
        self,
        user_ticket_id: UUID,
        *,
        idempotency_key: str,
        booking_id: UUID | None = None,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> bool:
        """Give one unit back to a COUNT ticket. Returns False when nothing changed."""
        now = now_utc or utc_now()
        today = self.today(now)
        async with session_scope(self._session_factory, session) as db:
            if await TicketLedgerRepo.get_by_idempotency_key(db, idempotency_key) is not None:
                return False

            user_ticket = await UserTicketsRepo.get_by_id(db, user_ticket_id)
            if user_ticket is None:
                raise TicketNotFoundError(f"user ticket {user_ticket_id} not found")
            if user_ticket.kind != TicketKind.COUNT.value:
                return False

            remaining = await UserTicketsRepo.try_restore_count_unit(
                db,
                user_ticket_id=user_ticket_id,
                today=today,
                now_utc=now,
            )
            if remaining is None:
                await self._persist_clock_expiry(db, user_ticket, today=today, now_utc=now)
                logger.info(
                    "ticket_restore_noop",
                    user_ticket_id=str(user_ticket_id),
                    status=user_ticket.status,
                )
                return False

            await TicketLedgerRepo.create(
                db,
                user_ticket_id=user_ticket_id,
                booking_id=booking_id,
                entry_type=LedgerEntryType.RESTORE.value,
                delta=1,
                balance_after=remaining,
                idempotency_key=idempotency_key,
                created_at=now,
            )

        logger.info(
            "ticket_restored",
            user_ticket_id=str(user_ticket_id),
            booking_id=str(booking_id) if booking_id else None,
            remaining_count=remaining,
        )
        return True

    async def extend(
        self,
        user_ticket_id: UUID,
        *,
        new_expiry_date: date | str | None = None,
        extend_by_days: int | None = None,
        allow_shorten: bool = False,
        idempotency_key: str | None = None,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> UserTicketView:
        """Move the expiry date, re-reading it on each attempt when a concurrent edit wins."""
        now = now_utc or utc_now()

        async def _attempt() -> UserTicketView:
            return await self._extend_once(
                user_ticket_id,
                new_expiry_date=new_expiry_date,
                extend_by_days=extend_by_days,
                allow_shorten=allow_shorten,
                idempotency_key=idempotency_key,
                now=now,
                session=session,
            )

        if session is not None:
            return await _attempt()
        return await with_conflict_retry(
            "extend_ticket",
            _attempt,
            max_attempts=self._retry_attempts,
            base_delay=self._retry_base_delay,
        )

    async def _extend_once(
        self,
        user_ticket_id: UUID,
        *,
        new_expiry_date: date | str | None,
        extend_by_days: int | None,
        allow_shorten: bool,
        idempotency_key: str | None,
        now: datetime,
        session: AsyncSession | None,
    ) -> UserTicketView:
        today = self.today(now)
        async with session_scope(self._session_factory, session) as db:
            if idempotency_key is not None:
                replay = await TicketLedgerRepo.get_by_idempotency_key(db, idempotency_key)
                if replay is not None:
                    current = await UserTicketsRepo.get_by_id(db, user_ticket_id)
                    if current is None:
                        raise TicketNotFoundError(f"user ticket {user_ticket_id} not found")
                    return to_view(current, today=today)

            user_ticket = await UserTicketsRepo.get_by_id(db, user_ticket_id)
            if user_ticket is None:
                raise TicketNotFoundError(f"user ticket {user_ticket_id} not found")

            status = effective_status(user_ticket.status, user_ticket.expiry_date, today)
            if status == UserTicketStatus.CANCELLED:
                raise TicketCancelledError(f"user ticket {user_ticket_id} is cancelled")
            if status == UserTicketStatus.EXPIRED:
                raise TicketExpiredError(f"user ticket {user_ticket_id} has expired")

            previous_expiry = user_ticket.expiry_date
            target = resolve_extension_target(
                current_expiry=previous_expiry,
                today=today,
                new_expiry_date=new_expiry_date,
                extend_by_days=extend_by_days,
                allow_shorten=allow_shorten,
            )
            updated = await UserTicketsRepo.set_expiry_date(
                db,
                user_ticket_id=user_ticket_id,
                expected_expiry_date=previous_expiry,
                new_expiry_date=target,
                now_utc=now,
            )
            if not updated:
                raise ConcurrencyConflictError(f"user ticket {user_ticket_id} changed during extend")

            await TicketLedgerRepo.create(
                db,
                user_ticket_id=user_ticket_id,
                entry_type=LedgerEntryType.EXTEND.value,
                delta=0,
                balance_after=user_ticket.remaining_count,
                idempotency_key=idempotency_key or f"extend:{user_ticket_id}:{uuid4().hex}",
                created_at=now,
                metadata={
                    "previous_expiry_date": previous_expiry.isoformat() if previous_expiry else None,
                    "new_expiry_date": target.isoformat(),
                },
            )
            await db.refresh(user_ticket)

        logger.info(
            "ticket_extended",
            user_ticket_id=str(user_ticket_id),
            previous_expiry_date=previous_expiry.isoformat() if previous_expiry else None,
            new_expiry_date=target.isoformat(),
        )
        return to_view(user_ticket, today=today)

    async def cancel_ticket(
        self,
        user_ticket_id: UUID,
        *,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> UserTicketView:
        now = now_utc or utc_now()
        async with session_scope(self._session_factory, session) as db:
            before = await UserTicketsRepo.get_by_id(db, user_ticket_id)
            if before is None:
                raise TicketNotFoundError(f"user ticket {user_ticket_id} not found")
            previous_status = before.status

            revoked = await UserTicketsRepo.mark_cancelled(db, user_ticket_id=user_ticket_id, now_utc=now)
            if revoked:
                await TicketLedgerRepo.create(
                    db,
                    user_ticket_id=user_ticket_id,
                    entry_type=LedgerEntryType.REVOKE.value,
                    delta=0,
                    balance_after=before.remaining_count,
                    idempotency_key=f"revoke:{user_ticket_id}",
                    created_at=now,
                    metadata={"previous_status": previous_status},
                )
            await db.refresh(before)

        if revoked:
            logger.info("ticket_revoked", user_ticket_id=str(user_ticket_id), previous_status=previous_status)
        return to_view(before, today=self.today(now))

    async def get(
        self,
        user_ticket_id: UUID,
        *,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> UserTicketView:
        async with session_scope(self._session_factory, session) as db:
            user_ticket = await UserTicketsRepo.get_by_id(db, user_ticket_id)
        if user_ticket is None:
            raise TicketNotFoundError(f"user ticket {user_ticket_id} not found")
        return to_view(user_ticket, today=self.today(now_utc))

    async def list_for_user(
        self,
        user_id: UUID,
        academy_id: UUID | None = None,
        include_inactive: bool = False,
        *,
        now_utc: datetime | None = None,
        session: AsyncSession | None = None,
    ) -> list[UserTicketView]:
        today = self.today(now_utc)
        async with session_scope(self._session_factory, session) as db:
            rows = await UserTicketsRepo.list_for_user(db, user_id=user_id, academy_id=academy_id)

        views = [to_view(row, today=today) for row in rows]
        if include_inactive:
            return views
        return [view for view in views if view.status == UserTicketStatus.ACTIVE]

    async def history(
        self,
        user_ticket_id: UUID,
        *,
        session: AsyncSession | None = None,
    ) -> list[TicketLedgerEntry]:
        async with session_scope(self._session_factory, session) as db:
            return await TicketLedgerRepo.list_for_user_ticket(db, user_ticket_id)
