from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from classbook.db.models.base import Base
from classbook.db.models.types import UTCDateTime


class Ticket(Base):
    __tablename__ = "tickets"
    __table_args__ = (
        CheckConstraint("kind IN ('COUNT','PERIOD')", name="kind"),
        CheckConstraint(
            "kind <> 'COUNT' OR (total_count IS NOT NULL AND total_count > 0)",
            name="count_total",
        ),
        CheckConstraint(
            "kind <> 'PERIOD' OR (valid_days IS NOT NULL AND valid_days > 0)",
            name="period_valid_days",
        ),
        Index("idx_tickets_academy", "academy_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    academy_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    kind: Mapped[str] = mapped_column(String(16), nullable=False)
    total_count: Mapped[int | None] = mapped_column(Integer, nullable=True)
    valid_days: Mapped[int | None] = mapped_column(Integer, nullable=True)
    access_group: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_on_sale: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_public: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
