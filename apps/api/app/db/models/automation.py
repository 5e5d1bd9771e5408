"""Automation rule, action item rule and execution log models."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import Index, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base
from app.utils.datetime_parsing import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class AutomationRule(Base):
    """
    Declarative "when X happens and Y holds, do Z" rule.

    Edited by administrators; the engine reads enabled rules fresh on every
    trigger.
    """

    __tablename__ = "automation_rules"
    __table_args__ = (
        # Matching rules at trigger time
        Index("idx_rules_matching", "trigger_type", "entity_type", "enabled"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), default="caregiver", nullable=False)

    trigger_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # phase / to_phase / task_id / keyword / min_days
    conditions: Mapped[dict] = mapped_column(default=dict)

    action_type: Mapped[str] = mapped_column(String(50), nullable=False)
    action_config: Mapped[dict] = mapped_column(default=dict)
    message_template: Mapped[str | None] = mapped_column(Text, nullable=True)

    enabled: Mapped[bool] = mapped_column(default=True)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), onupdate=utcnow, nullable=False
    )


class ExecutionLogEntry(Base):
    """
    Append-only audit row for every attempted automated action.

    Written once per attempt. The only permitted update is the scheduler
    flipping a `pending` row to `executed` or `failed`.
    """

    __tablename__ = "automation_log"
    __table_args__ = (
        Index("idx_autolog_entity", "entity_type", "entity_id", "executed_at"),
        Index("idx_autolog_rule", "rule_id", "executed_at"),
        Index("idx_autolog_dedupe", "dedupe_key"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    rule_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    sequence_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    step_index: Mapped[int | None] = mapped_column(Integer, nullable=True)

    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    trigger_type: Mapped[str | None] = mapped_column(String(50), nullable=True)
    action_type: Mapped[str] = mapped_column(String(50), nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    # Sweep triggers: one firing per rule/entity/day
    dedupe_key: Mapped[str | None] = mapped_column(String(200), nullable=True)

    scheduled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    executed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )


class ActionItemRule(Base):
    """Configurable follow-up rule evaluated by the action item scorer."""

    __tablename__ = "action_item_rules"
    __table_args__ = (Index("idx_action_item_rules_entity", "entity_type", "enabled", "sort_order"),)

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    entity_type: Mapped[str] = mapped_column(String(20), nullable=False)
    name: Mapped[str | None] = mapped_column(String(200), nullable=True)

    condition_type: Mapped[str] = mapped_column(String(50), nullable=False)
    condition_config: Mapped[dict] = mapped_column(default=dict)

    urgency: Mapped[str] = mapped_column(String(20), default="warning", nullable=False)
    # {"min_days": int, "urgency": str}
    urgency_escalation: Mapped[dict | None] = mapped_column(nullable=True)

    title_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    detail_template: Mapped[str | None] = mapped_column(Text, nullable=True)
    action_template: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Generic rule: dropped when a more specific item exists for the entity
    suppressible: Mapped[bool] = mapped_column(default=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0)
    enabled: Mapped[bool] = mapped_column(default=True)

    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
