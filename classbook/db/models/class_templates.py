from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, ForeignKey, Index, Integer, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from classbook.db.models.base import Base
from classbook.db.models.types import UTCDateTime


class ClassTemplate(Base):
    __tablename__ = "class_templates"
    __table_args__ = (
        CheckConstraint("capacity > 0", name="capacity_positive"),
        Index("idx_class_templates_academy", "academy_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    academy_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    instructor_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    hall_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    access_group: Mapped[str | None] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class TicketClassLink(Base):
    __tablename__ = "ticket_class_links"
    __table_args__ = (
        UniqueConstraint("ticket_id", "template_id", name="uq_ticket_class_links_pair"),
        Index("idx_ticket_class_links_template", "template_id"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    ticket_id: Mapped[UUID] = mapped_column(Uuid, ForeignKey("tickets.id"), nullable=False)
    template_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("class_templates.id"), nullable=False
    )
