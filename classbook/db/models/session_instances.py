from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    Uuid,
    false,
)
from sqlalchemy.orm import Mapped, mapped_column

from classbook.db.models.base import Base
from classbook.db.models.types import UTCDateTime


class SessionInstance(Base):
    __tablename__ = "session_instances"
    __table_args__ = (
        CheckConstraint("booked_count >= 0", name="booked_count_non_negative"),
        CheckConstraint("capacity > 0", name="capacity_positive"),
        UniqueConstraint("template_id", "start_time", name="uq_session_instances_template_start"),
        Index("idx_session_instances_start", "start_time"),
        Index("idx_session_instances_academy_start", "academy_id", "start_time"),
    )

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    template_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("class_templates.id"), nullable=False
    )
    academy_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    start_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    end_time: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    hall_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    instructor_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    capacity: Mapped[int] = mapped_column(Integer, nullable=False)
    booked_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    canceled: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False, server_default=false()
    )
    cancel_reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    substitute_instructor_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    @property
    def effective_instructor_id(self) -> UUID | None:
        return self.substitute_instructor_id or self.instructor_id
