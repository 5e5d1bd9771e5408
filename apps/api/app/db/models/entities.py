"""Pipeline entity models (caregivers and clients).

Rows are owned by the record storage layer. The automation engine reads
them as snapshots and only writes notes, tasks and individual fields.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.utils.datetime_parsing import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Caregiver(Base):
    """
    Caregiver moving through the recruiting pipeline.

    The phase is derived from task completion; `phase_override` pins it.
    """

    __tablename__ = "caregivers"
    __table_args__ = (Index("idx_caregivers_archived", "archived"),)

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    phase_override: Mapped[str | None] = mapped_column(String(50), nullable=True)
    tasks: Mapped[dict] = mapped_column(default=dict)
    notes: Mapped[list] = mapped_column(default=list)
    # phase -> epoch ms of first entry
    phase_timestamps: Mapped[dict] = mapped_column(default=dict)

    application_date: Mapped[datetime | None] = mapped_column(nullable=True)
    hca_expiration: Mapped[str | None] = mapped_column(String(20), nullable=True)  # YYYY-MM-DD
    documents: Mapped[dict] = mapped_column(default=dict)

    archived: Mapped[bool] = mapped_column(default=False)
    archive_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class Client(Base):
    """Client (care recipient household) moving through the sales pipeline."""

    __tablename__ = "clients"
    __table_args__ = (
        Index("idx_clients_phase", "phase"),
        Index("idx_clients_archived", "archived"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    first_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    last_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    contact_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    care_recipient_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    referral_source: Mapped[str | None] = mapped_column(String(100), nullable=True)

    phase: Mapped[str] = mapped_column(String(50), default="new_lead", nullable=False)
    tasks: Mapped[dict] = mapped_column(default=dict)
    notes: Mapped[list] = mapped_column(default=list)
    phase_timestamps: Mapped[dict] = mapped_column(default=dict)

    lost_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    archived: Mapped[bool] = mapped_column(default=False)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )
