"""Multi-step sequence (drip campaign) models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base
from app.utils.datetime_parsing import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Sequence(Base):
    """
    Ordered list of delayed steps an entity is enrolled into.

    `steps` holds dicts of {action_type, delay_hours, template, subject}.
    A null `trigger_phase` means the sequence is started manually only.
    """

    __tablename__ = "automation_sequences"
    __table_args__ = (Index("idx_sequences_trigger", "entity_type", "trigger_phase", "enabled"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    entity_type: Mapped[str] = mapped_column(String(20), default="client", nullable=False)
    trigger_phase: Mapped[str | None] = mapped_column(String(50), nullable=True)
    enabled: Mapped[bool] = mapped_column(default=True)
    stop_on_response: Mapped[bool] = mapped_column(default=True)
    steps: Mapped[list] = mapped_column(default=list)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )

    enrollments: Mapped[list["SequenceEnrollment"]] = relationship(
        back_populates="sequence", cascade="all, delete-orphan"
    )


class SequenceEnrollment(Base):
    """
    One entity's progress through one sequence.

    At most one `active` enrollment per (sequence, entity); the partial
    unique index enforces it for concurrent enrollers.
    """

    __tablename__ = "sequence_enrollments"
    __table_args__ = (
        Index(
            "uq_enrollment_active",
            "sequence_id",
            "entity_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("idx_enrollments_entity", "entity_id", "status"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    sequence_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("automation_sequences.id", ondelete="CASCADE"),
        nullable=False,
    )
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), default="client", nullable=False)

    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    current_step: Mapped[int] = mapped_column(Integer, default=0)
    start_from_step: Mapped[int] = mapped_column(Integer, default=0)
    started_by: Mapped[str] = mapped_column(String(100), default="system")

    started_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    last_step_executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # response_detected | manual | phase_changed
    cancel_reason: Mapped[str | None] = mapped_column(String(30), nullable=True)
    cancelled_by: Mapped[str | None] = mapped_column(String(100), nullable=True)
    cancelled_at: Mapped[datetime | None] = mapped_column(nullable=True)

    sequence: Mapped["Sequence"] = relationship(back_populates="enrollments")


class SequenceLogEntry(Base):
    """Per-step record: `executed` inline, or `pending` until the scheduler picks it up."""

    __tablename__ = "sequence_log"
    __table_args__ = (
        Index(
            "idx_seqlog_due",
            "scheduled_at",
            postgresql_where=text("status = 'pending'"),
        ),
        Index("idx_seqlog_enrollment", "enrollment_id", "step_index"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    sequence_id: Mapped[str] = mapped_column(String(36), nullable=False)
    enrollment_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("sequence_enrollments.id", ondelete="CASCADE"),
        nullable=False,
    )
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    step_index: Mapped[int] = mapped_column(Integer, nullable=False)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    content: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    scheduled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
