from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, CheckConstraint, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from classbook.db.models.base import Base
from classbook.db.models.types import UTCDateTime


class TicketLedgerEntry(Base):
    __tablename__ = "ticket_ledger_entries"
    __table_args__ = (
        CheckConstraint(
            "entry_type IN ('ISSUE','CONSUME','RESTORE','EXTEND','EXPIRE','REVOKE')",
            name="entry_type",
        ),
        Index("idx_ticket_ledger_user_ticket_created", "user_ticket_id", "created_at"),
        Index("idx_ticket_ledger_booking", "booking_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_ticket_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("user_tickets.id"), nullable=False
    )
    booking_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    entry_type: Mapped[str] = mapped_column(String(16), nullable=False)
    delta: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    balance_after: Mapped[int | None] = mapped_column(Integer, nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(160), unique=True, nullable=False)
    metadata_: Mapped[dict[str, object]] = mapped_column(
        "metadata", JSON, nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
