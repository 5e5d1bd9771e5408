"""Storage boundary for the automation engine.

`AutomationStore` is what the dispatcher, the enrollment manager and the
sweeps depend on. `SqlAutomationStore` implements it over a SQLAlchemy
session. Methods are async so the engine can interleave independent work;
each write commits on its own, so one failed write never rolls back
another.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Protocol

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.db.enums import EnrollmentStatus, EntityType, ExecutionStatus
from app.db.models import (
    ActionItemRule,
    AutomationRule,
    Caregiver,
    Client,
    ExecutionLogEntry,
    Sequence,
    SequenceEnrollment,
    SequenceLogEntry,
)
from app.services.automation_errors import EnrollmentConflictError, EntityNotFoundError
from app.services.entity_snapshot import EntitySnapshot
from app.services.execution_log import mark_pending_entry
from app.services.pipeline_helpers import is_terminal_phase
from app.utils.datetime_parsing import ensure_utc, to_epoch_ms, utcnow

logger = logging.getLogger(__name__)

ENTITY_MODELS: dict[str, type[Caregiver] | type[Client]] = {
    EntityType.CAREGIVER.value: Caregiver,
    EntityType.CLIENT.value: Client,
}


# =============================================================================
# Records returned to the engine (detached from the session)
# =============================================================================


@dataclass(frozen=True)
class RuleRecord:
    id: str
    name: str
    entity_type: str
    trigger_type: str
    conditions: dict[str, Any]
    action_type: str
    action_config: dict[str, Any]
    message_template: str | None

    @classmethod
    def from_model(cls, row: AutomationRule) -> "RuleRecord":
        return cls(
            id=row.id,
            name=row.name,
            entity_type=row.entity_type,
            trigger_type=row.trigger_type,
            conditions=dict(row.conditions or {}),
            action_type=row.action_type,
            action_config=dict(row.action_config or {}),
            message_template=row.message_template,
        )


@dataclass(frozen=True)
class SequenceStep:
    index: int
    action_type: str
    delay_hours: float = 0.0
    template: str | None = None
    subject: str | None = None

    @classmethod
    def from_mapping(cls, index: int, data: dict[str, Any]) -> "SequenceStep":
        action = data.get("action_type") or data.get("actionType") or data.get("action") or ""
        delay = data.get("delay_hours", data.get("delayHours", 0)) or 0
        template = data.get("template")
        if template is None:
            template = data.get("message") or data.get("body")
        return cls(
            index=index,
            action_type=str(action),
            delay_hours=max(0.0, float(delay)),
            template=template,
            subject=data.get("subject"),
        )


@dataclass(frozen=True)
class SequenceRecord:
    id: str
    name: str
    entity_type: str
    trigger_phase: str | None
    enabled: bool
    stop_on_response: bool
    steps: tuple[SequenceStep, ...] = ()

    @classmethod
    def from_model(cls, row: Sequence) -> "SequenceRecord":
        steps = tuple(
            SequenceStep.from_mapping(index, raw)
            for index, raw in enumerate(raw for raw in row.steps or [] if isinstance(raw, dict))
        )
        return cls(
            id=row.id,
            name=row.name,
            entity_type=row.entity_type,
            trigger_phase=row.trigger_phase,
            enabled=bool(row.enabled),
            stop_on_response=bool(row.stop_on_response),
            steps=steps,
        )


@dataclass(frozen=True)
class EnrollmentRecord:
    id: str
    sequence_id: str
    entity_id: str
    entity_type: str
    status: str
    current_step: int
    start_from_step: int
    started_by: str
    started_at: datetime
    last_step_executed_at: datetime | None = None
    completed_at: datetime | None = None
    cancel_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None

    @classmethod
    def from_model(cls, row: SequenceEnrollment) -> "EnrollmentRecord":
        return cls(
            id=row.id,
            sequence_id=row.sequence_id,
            entity_id=row.entity_id,
            entity_type=row.entity_type,
            status=row.status,
            current_step=row.current_step,
            start_from_step=row.start_from_step,
            started_by=row.started_by,
            started_at=ensure_utc(row.started_at),
            last_step_executed_at=_maybe_utc(row.last_step_executed_at),
            completed_at=_maybe_utc(row.completed_at),
            cancel_reason=row.cancel_reason,
            cancelled_by=row.cancelled_by,
            cancelled_at=_maybe_utc(row.cancelled_at),
        )


@dataclass(frozen=True)
class SequenceLogRecord:
    id: str
    sequence_id: str
    enrollment_id: str
    entity_id: str
    step_index: int
    action_type: str
    status: str
    scheduled_at: datetime | None
    executed_at: datetime | None = None
    content: str | None = None
    error_detail: str | None = None

    @classmethod
    def from_model(cls, row: SequenceLogEntry) -> "SequenceLogRecord":
        return cls(
            id=row.id,
            sequence_id=row.sequence_id,
            enrollment_id=row.enrollment_id,
            entity_id=row.entity_id,
            step_index=row.step_index,
            action_type=row.action_type,
            status=row.status,
            scheduled_at=_maybe_utc(row.scheduled_at),
            executed_at=_maybe_utc(row.executed_at),
            content=row.content,
            error_detail=row.error_detail,
        )


@dataclass(frozen=True)
class ExecutionLogRecord:
    id: str
    entity_id: str
    entity_type: str
    action_type: str
    status: str
    rule_id: str | None = None
    sequence_id: str | None = None
    step_index: int | None = None
    trigger_type: str | None = None
    message: str | None = None
    error_detail: str | None = None
    dedupe_key: str | None = None
    executed_at: datetime | None = None

    @classmethod
    def from_model(cls, row: ExecutionLogEntry) -> "ExecutionLogRecord":
        return cls(
            id=row.id,
            entity_id=row.entity_id,
            entity_type=row.entity_type,
            action_type=row.action_type,
            status=row.status,
            rule_id=row.rule_id,
            sequence_id=row.sequence_id,
            step_index=row.step_index,
            trigger_type=row.trigger_type,
            message=row.message,
            error_detail=row.error_detail,
            dedupe_key=row.dedupe_key,
            executed_at=_maybe_utc(row.executed_at),
        )


def _maybe_utc(value: datetime | None) -> datetime | None:
    return ensure_utc(value) if value is not None else None


# =============================================================================
# Boundary
# =============================================================================


class AutomationStore(Protocol):
    async def get_enabled_rules(self, trigger_type: str, entity_type: str) -> list[RuleRecord]: ...

    async def get_enabled_sequences(
        self, trigger_phase: str, entity_type: str | None = None
    ) -> list[SequenceRecord]: ...

    async def get_sequence(self, sequence_id: str) -> SequenceRecord | None: ...

    async def list_action_item_rules(self, entity_type: str) -> list[ActionItemRule]: ...

    async def get_active_enrollments(self, sequence_id: str, entity_id: str) -> list[EnrollmentRecord]: ...

    async def list_entity_enrollments(
        self, entity_id: str, status: str | None = None
    ) -> list[EnrollmentRecord]: ...

    async def get_enrollment(self, enrollment_id: str) -> EnrollmentRecord | None: ...

    async def insert_enrollment(self, record: dict[str, Any]) -> EnrollmentRecord: ...

    async def update_enrollment(self, enrollment_id: str, patch: dict[str, Any]) -> None: ...

    async def insert_log_entry(self, record: dict[str, Any]) -> str: ...

    async def has_log_entry(self, dedupe_key: str) -> bool: ...

    async def insert_sequence_log_entry(self, record: dict[str, Any]) -> str: ...

    async def list_sequence_log(self, enrollment_id: str) -> list[SequenceLogRecord]: ...

    async def get_sequence_log_entry(self, entry_id: str) -> SequenceLogRecord | None: ...

    async def mark_sequence_log_entry(
        self,
        entry_id: str,
        status: str,
        *,
        executed_at: datetime | None = None,
        error_detail: str | None = None,
    ) -> None: ...

    async def list_due_sequence_steps(self, now: datetime, limit: int) -> list[SequenceLogRecord]: ...

    async def get_entity(self, entity_type: str, entity_id: str) -> EntitySnapshot | None: ...

    async def list_active_entities(self, entity_type: str) -> list[EntitySnapshot]: ...

    async def append_entity_note(self, entity_type: str, entity_id: str, note: dict[str, Any]) -> None: ...

    async def update_entity_field(
        self, entity_id: str, patch: dict[str, Any], *, entity_type: str
    ) -> None: ...

    async def update_entity_phase(
        self, entity_type: str, entity_id: str, phase: str, *, now: datetime | None = None
    ) -> None: ...

    async def complete_entity_task(
        self,
        entity_type: str,
        entity_id: str,
        task_id: str,
        *,
        completed_by: str,
        now: datetime | None = None,
    ) -> None: ...


class SqlAutomationStore:
    """AutomationStore over a synchronous SQLAlchemy session."""

    def __init__(self, db: Session) -> None:
        self.db = db

    # -- helpers ----------------------------------------------------------

    def _commit(self) -> None:
        try:
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def _entity_row(self, entity_type: str, entity_id: str) -> Caregiver | Client:
        model = ENTITY_MODELS.get(entity_type)
        if model is None:
            raise EntityNotFoundError(entity_type, entity_id)
        row = self.db.query(model).filter(model.id == entity_id).first()
        if row is None:
            raise EntityNotFoundError(entity_type, entity_id)
        return row

    # -- rules and sequences ----------------------------------------------

    async def get_enabled_rules(self, trigger_type: str, entity_type: str) -> list[RuleRecord]:
        rows = (
            self.db.query(AutomationRule)
            .filter(
                AutomationRule.trigger_type == trigger_type,
                AutomationRule.entity_type == entity_type,
                AutomationRule.enabled.is_(True),
            )
            .order_by(AutomationRule.sort_order, AutomationRule.created_at, AutomationRule.id)
            .all()
        )
        return [RuleRecord.from_model(row) for row in rows]

    async def get_enabled_sequences(
        self, trigger_phase: str, entity_type: str | None = None
    ) -> list[SequenceRecord]:
        query = self.db.query(Sequence).filter(
            Sequence.trigger_phase == trigger_phase,
            Sequence.enabled.is_(True),
        )
        if entity_type:
            query = query.filter(Sequence.entity_type == entity_type)
        rows = query.order_by(Sequence.created_at, Sequence.id).all()
        return [SequenceRecord.from_model(row) for row in rows]

    async def get_sequence(self, sequence_id: str) -> SequenceRecord | None:
        row = self.db.query(Sequence).filter(Sequence.id == sequence_id).first()
        return SequenceRecord.from_model(row) if row else None

    async def list_action_item_rules(self, entity_type: str) -> list[ActionItemRule]:
        return (
            self.db.query(ActionItemRule)
            .filter(
                ActionItemRule.entity_type == entity_type,
                ActionItemRule.enabled.is_(True),
            )
            .order_by(ActionItemRule.sort_order, ActionItemRule.id)
            .all()
        )

    # -- enrollments ------------------------------------------------------

    async def get_active_enrollments(self, sequence_id: str, entity_id: str) -> list[EnrollmentRecord]:
        rows = (
            self.db.query(SequenceEnrollment)
            .filter(
                SequenceEnrollment.sequence_id == sequence_id,
                SequenceEnrollment.entity_id == entity_id,
                SequenceEnrollment.status == EnrollmentStatus.ACTIVE.value,
            )
            .all()
        )
        return [EnrollmentRecord.from_model(row) for row in rows]

    async def list_entity_enrollments(
        self, entity_id: str, status: str | None = None
    ) -> list[EnrollmentRecord]:
        query = self.db.query(SequenceEnrollment).filter(SequenceEnrollment.entity_id == entity_id)
        if status:
            query = query.filter(SequenceEnrollment.status == status)
        rows = query.order_by(SequenceEnrollment.started_at.desc()).all()
        return [EnrollmentRecord.from_model(row) for row in rows]

    async def get_enrollment(self, enrollment_id: str) -> EnrollmentRecord | None:
        row = self.db.get(SequenceEnrollment, enrollment_id)
        return EnrollmentRecord.from_model(row) if row else None

    async def insert_enrollment(self, record: dict[str, Any]) -> EnrollmentRecord:
        """
        Insert an enrollment row.

        Raises:
            EnrollmentConflictError: the partial unique index rejected a second
                active enrollment for the same (sequence, entity).
        """
        row = SequenceEnrollment(**record)
        self.db.add(row)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            raise EnrollmentConflictError(record["sequence_id"], record["entity_id"])
        self.db.refresh(row)
        return EnrollmentRecord.from_model(row)

    async def update_enrollment(self, enrollment_id: str, patch: dict[str, Any]) -> None:
        row = self.db.get(SequenceEnrollment, enrollment_id)
        if row is None:
            logger.warning("Enrollment not found for update", extra={"enrollment_id": enrollment_id})
            return
        for key, value in patch.items():
            setattr(row, key, value)
        self._commit()

    # -- logs -------------------------------------------------------------

    async def insert_log_entry(self, record: dict[str, Any]) -> str:
        row = ExecutionLogEntry(**record)
        self.db.add(row)
        self._commit()
        return row.id

    async def has_log_entry(self, dedupe_key: str) -> bool:
        return (
            self.db.query(ExecutionLogEntry.id)
            .filter(ExecutionLogEntry.dedupe_key == dedupe_key)
            .first()
            is not None
        )

    async def list_execution_log(self, entity_id: str, limit: int = 100) -> list[ExecutionLogRecord]:
        rows = (
            self.db.query(ExecutionLogEntry)
            .filter(ExecutionLogEntry.entity_id == entity_id)
            .order_by(ExecutionLogEntry.created_at.desc())
            .limit(limit)
            .all()
        )
        return [ExecutionLogRecord.from_model(row) for row in rows]

    async def insert_sequence_log_entry(self, record: dict[str, Any]) -> str:
        row = SequenceLogEntry(**record)
        self.db.add(row)
        self._commit()
        return row.id

    async def get_sequence_log_entry(self, entry_id: str) -> SequenceLogRecord | None:
        row = self.db.get(SequenceLogEntry, entry_id)
        return SequenceLogRecord.from_model(row) if row else None

    async def list_sequence_log(self, enrollment_id: str) -> list[SequenceLogRecord]:
        rows = (
            self.db.query(SequenceLogEntry)
            .filter(SequenceLogEntry.enrollment_id == enrollment_id)
            .order_by(SequenceLogEntry.step_index, SequenceLogEntry.created_at)
            .all()
        )
        return [SequenceLogRecord.from_model(row) for row in rows]

    async def mark_sequence_log_entry(
        self,
        entry_id: str,
        status: str,
        *,
        executed_at: datetime | None = None,
        error_detail: str | None = None,
    ) -> None:
        row = self.db.get(SequenceLogEntry, entry_id)
        if row is None:
            logger.warning("Sequence log entry not found", extra={"entry_id": entry_id})
            return
        mark_pending_entry(row, status, executed_at=executed_at, error_detail=error_detail)
        self._commit()

    async def list_due_sequence_steps(self, now: datetime, limit: int) -> list[SequenceLogRecord]:
        """Pending steps that are due and whose enrollment is still active."""
        rows = (
            self.db.query(SequenceLogEntry)
            .join(SequenceEnrollment, SequenceEnrollment.id == SequenceLogEntry.enrollment_id)
            .filter(
                SequenceLogEntry.status == ExecutionStatus.PENDING.value,
                SequenceLogEntry.scheduled_at <= now,
                SequenceEnrollment.status == EnrollmentStatus.ACTIVE.value,
            )
            .order_by(SequenceLogEntry.scheduled_at, SequenceLogEntry.step_index)
            .limit(limit)
            .all()
        )
        return [SequenceLogRecord.from_model(row) for row in rows]

    # -- entities ---------------------------------------------------------

    async def get_entity(self, entity_type: str, entity_id: str) -> EntitySnapshot | None:
        model = ENTITY_MODELS.get(entity_type)
        if model is None:
            return None
        row = self.db.query(model).filter(model.id == entity_id).first()
        return EntitySnapshot.from_model(row) if row else None

    async def list_active_entities(self, entity_type: str) -> list[EntitySnapshot]:
        """Non-archived entities outside terminal phases."""
        model = ENTITY_MODELS.get(entity_type)
        if model is None:
            return []
        rows = self.db.query(model).filter(model.archived.is_(False)).all()
        snapshots = [EntitySnapshot.from_model(row) for row in rows]
        return [snapshot for snapshot in snapshots if not is_terminal_phase(snapshot)]

    async def append_entity_note(self, entity_type: str, entity_id: str, note: dict[str, Any]) -> None:
        row = self._entity_row(entity_type, entity_id)
        # Reassign so the JSON column is flagged dirty
        row.notes = [*(row.notes or []), note]
        self._commit()

    async def update_entity_field(
        self, entity_id: str, patch: dict[str, Any], *, entity_type: str
    ) -> None:
        row = self._entity_row(entity_type, entity_id)
        for key, value in patch.items():
            if not hasattr(type(row), key):
                raise ValueError(f"Unknown {entity_type} field: {key}")
            setattr(row, key, value)
        self._commit()

    async def update_entity_phase(
        self, entity_type: str, entity_id: str, phase: str, *, now: datetime | None = None
    ) -> None:
        row = self._entity_row(entity_type, entity_id)
        if isinstance(row, Caregiver):
            row.phase_override = phase
        else:
            row.phase = phase
        timestamps = dict(row.phase_timestamps or {})
        timestamps.setdefault(phase, to_epoch_ms(now or utcnow()))
        row.phase_timestamps = timestamps
        self._commit()

    async def complete_entity_task(
        self,
        entity_type: str,
        entity_id: str,
        task_id: str,
        *,
        completed_by: str,
        now: datetime | None = None,
    ) -> None:
        row = self._entity_row(entity_type, entity_id)
        tasks = dict(row.tasks or {})
        tasks[task_id] = {
            "completed": True,
            "completed_at": to_epoch_ms(now or utcnow()),
            "completed_by": completed_by,
        }
        row.tasks = tasks
        self._commit()
