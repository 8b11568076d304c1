from __future__ import annotations

from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from classbook.db.models.base import Base
from classbook.db.models.types import UTCDateTime


class UserTicket(Base):
    __tablename__ = "user_tickets"
    __table_args__ = (
        CheckConstraint("kind IN ('COUNT','PERIOD')", name="kind"),
        CheckConstraint(
            "status IN ('ACTIVE','DEPLETED','EXPIRED','CANCELLED')",
            name="status",
        ),
        CheckConstraint(
            "remaining_count IS NULL OR remaining_count >= 0",
            name="remaining_count_non_negative",
        ),
        Index("idx_user_tickets_user_status", "user_id", "status"),
        Index("idx_user_tickets_ticket", "ticket_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False)
    academy_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    remaining_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    total_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    expiry_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    purchased_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
