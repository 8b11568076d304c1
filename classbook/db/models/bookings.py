from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Index, String, Uuid, text
from sqlalchemy.orm import Mapped, mapped_column

from classbook.db.models.base import Base
from classbook.db.models.types import UTCDateTime


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint(
            "status IN ('PENDING','CONFIRMED','CANCELLED','COMPLETED')",
            name="status",
        ),
        Index(
            "uq_bookings_confirmed_session_user",
            "session_instance_id",
            "user_id",
            unique=True,
            postgresql_where=text("status = 'CONFIRMED'"),
            sqlite_where=text("status = 'CONFIRMED'"),
        ),
        Index("idx_bookings_session_status", "session_instance_id", "status"),
        Index("idx_bookings_user_ticket", "user_ticket_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    session_instance_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("session_instances.id"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    user_ticket_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("user_tickets.id"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    cancelled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
