"""Sequence enrollment manager.

An enrollment moves active -> completed (last step executed) or
active -> cancelled (manual stop, reply received, terminal phase). Delay-zero
steps at the head of the remaining sequence run inline at enrollment; every
later step is written to `sequence_log` as `pending` for the scheduler sweep,
which calls `execute_due_step` once the step is due.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Iterable

from app.core.constants import (
    AUTOMATION_NOTE_AUTHOR,
    MS_PER_HOUR,
    SYSTEM_ACTOR,
    SYSTEM_NOTE_AUTHOR,
)
from app.core.pipeline_definitions import get_phase_label
from app.core.structured_logging import build_log_context
from app.db.enums import (
    AutomationActionType,
    CancelReason,
    EnrollmentStatus,
    ExecutionStatus,
)
from app.services.automation_errors import EnrollmentConflictError
from app.services.automation_executor import (
    ActionExecutor,
    ActionRequest,
    ActionResult,
    log_and_continue,
)
from app.services.automation_store import (
    AutomationStore,
    EnrollmentRecord,
    SequenceLogRecord,
    SequenceRecord,
    SequenceStep,
)
from app.services.entity_snapshot import EntitySnapshot
from app.services.execution_log import build_sequence_log_entry, record_attempt
from app.services.merge_fields import resolve
from app.services.pipeline_helpers import current_phase, is_terminal_phase
from app.utils.datetime_parsing import to_epoch_ms, utcnow

logger = logging.getLogger(__name__)

ENROLLED = "enrolled"
ALREADY_ENROLLED = "already_enrolled"
NOT_ENROLLED = "not_enrolled"

_ACTION_ALIASES = {
    "sms": AutomationActionType.SEND_SMS.value,
    "email": AutomationActionType.SEND_EMAIL.value,
    "task": AutomationActionType.CREATE_TASK.value,
}

# User-facing delay units, as hours per unit
DELAY_UNIT_HOURS = {
    "minutes": 1 / 60,
    "hours": 1,
    "days": 24,
}


# =============================================================================
# Pure helpers
# =============================================================================


def normalize_sequence_action(action_type: str) -> str:
    """Map shorthand step actions (sms, email, task) to action types."""
    return _ACTION_ALIASES.get(action_type, action_type)


def _status_of(enrollment: Any) -> str | None:
    if isinstance(enrollment, dict):
        return enrollment.get("status")
    return getattr(enrollment, "status", None)


def should_auto_enroll(enrollments: Iterable[Any] | None) -> bool:
    """True unless one of the existing enrollments is still active."""
    if not enrollments:
        return True
    return not any(_status_of(e) == EnrollmentStatus.ACTIVE.value for e in enrollments)


def build_enrollment_record(
    entity_id: str,
    sequence_id: str,
    started_by: str,
    start_from_step: int = 0,
    *,
    entity_type: str = "client",
    started_at: datetime | None = None,
) -> dict[str, Any]:
    return {
        "entity_id": entity_id,
        "entity_type": entity_type,
        "sequence_id": sequence_id,
        "status": EnrollmentStatus.ACTIVE.value,
        "current_step": start_from_step,
        "started_by": started_by,
        "start_from_step": start_from_step,
        "started_at": started_at or utcnow(),
    }


def decompose_delay(hours: float) -> tuple[int, str]:
    """
    Split a delay in hours into the value/unit pair shown to users.

    Whole days win, then whole hours; anything else is rounded to minutes.
    """
    if not hours:
        return 0, "minutes"
    if float(hours).is_integer() and int(hours) % 24 == 0:
        return int(hours) // 24, "days"
    if hours >= 1 and float(hours).is_integer():
        return int(hours), "hours"
    return round(hours * 60), "minutes"


def compose_delay(value: float, unit: str) -> float:
    """Inverse of `decompose_delay`: value + unit back to hours."""
    return value * DELAY_UNIT_HOURS.get(unit, 1)


def delay_to_deadline(start: datetime, delay_hours: float) -> datetime:
    return start + timedelta(milliseconds=round(delay_hours * MS_PER_HOUR))


# =============================================================================
# Manager
# =============================================================================


@dataclass
class EnrollmentOutcome:
    status: str  # enrolled | already_enrolled | not_enrolled
    sequence_id: str
    entity_id: str
    enrollment: EnrollmentRecord | None = None
    step_results: list[ActionResult] = field(default_factory=list)
    scheduled_steps: int = 0
    detail: str | None = None


class SequenceEnrollmentManager:
    def __init__(
        self,
        store: AutomationStore,
        executor: ActionExecutor,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.executor = executor
        self.clock = clock

    # -- enrollment -------------------------------------------------------

    async def enroll(
        self,
        sequence: SequenceRecord,
        entity: EntitySnapshot,
        *,
        started_by: str = SYSTEM_ACTOR,
        start_from_step: int = 0,
    ) -> EnrollmentOutcome:
        """
        Enroll an entity, run the leading delay-zero steps and schedule the rest.

        An existing active enrollment (seen up front, or raced in and rejected
        by the unique index) is not an error: a note is written on the entity
        and `already_enrolled` is returned.
        """
        outcome = EnrollmentOutcome(status=NOT_ENROLLED, sequence_id=sequence.id, entity_id=entity.id)
        if not sequence.enabled:
            outcome.detail = "Sequence is disabled"
            return outcome
        if not sequence.steps:
            outcome.detail = "Sequence has no steps"
            return outcome
        if start_from_step < 0 or start_from_step >= len(sequence.steps):
            outcome.detail = f"Invalid start step: {start_from_step}"
            return outcome

        log_context = build_log_context(
            entity_type=entity.entity_type, entity_id=entity.id, sequence_id=sequence.id
        )
        existing = await self.store.get_active_enrollments(sequence.id, entity.id)
        if not should_auto_enroll(existing):
            await self._note_already_enrolled(sequence, entity)
            outcome.status = ALREADY_ENROLLED
            outcome.enrollment = existing[0]
            return outcome

        now = self.clock()
        record = build_enrollment_record(
            entity.id,
            sequence.id,
            started_by,
            start_from_step,
            entity_type=entity.entity_type,
            started_at=now,
        )
        try:
            enrollment = await self.store.insert_enrollment(record)
        except EnrollmentConflictError:
            logger.info("Concurrent enrollment rejected by unique index", extra=log_context)
            await self._note_already_enrolled(sequence, entity)
            outcome.status = ALREADY_ENROLLED
            return outcome

        try:
            await self._start(sequence, enrollment, entity, outcome, now)
        except Exception as exc:
            # The enrollment row is committed; leaving it active would block
            # re-enrollment with nothing scheduled to finish it
            logger.exception("Enrollment failed after insert", extra=log_context)
            outcome.status = NOT_ENROLLED
            outcome.detail = f"Enrollment failed: {exc.__class__.__name__}"
            outcome.enrollment = await self._abandon(enrollment, log_context)
            return outcome

        logger.info(
            "Enrolled entity in sequence (%d inline, %d scheduled)",
            len(outcome.step_results),
            outcome.scheduled_steps,
            extra=log_context,
        )
        return outcome

    async def _start(
        self,
        sequence: SequenceRecord,
        enrollment: EnrollmentRecord,
        entity: EntitySnapshot,
        outcome: EnrollmentOutcome,
        now: datetime,
    ) -> None:
        outcome.status = ENROLLED
        step_index = enrollment.current_step
        executed_any = False
        while step_index < len(sequence.steps) and sequence.steps[step_index].delay_hours == 0:
            step = sequence.steps[step_index]
            result = await self._run_step(sequence, enrollment, step, entity)
            outcome.step_results.append(result)
            await self.store.insert_sequence_log_entry(
                build_sequence_log_entry(
                    sequence_id=sequence.id,
                    enrollment_id=enrollment.id,
                    entity_id=entity.id,
                    step_index=step.index,
                    action_type=normalize_sequence_action(step.action_type),
                    status=_inline_log_status(result),
                    content=result.detail if result.status == ExecutionStatus.SKIPPED else None,
                    scheduled_at=now,
                    executed_at=self.clock(),
                    error_detail=result.detail if result.status == ExecutionStatus.FAILED else None,
                )
            )
            executed_any = True
            step_index += 1

        for step in sequence.steps[step_index:]:
            await self.store.insert_sequence_log_entry(
                build_sequence_log_entry(
                    sequence_id=sequence.id,
                    enrollment_id=enrollment.id,
                    entity_id=entity.id,
                    step_index=step.index,
                    action_type=normalize_sequence_action(step.action_type),
                    status=ExecutionStatus.PENDING,
                    scheduled_at=delay_to_deadline(enrollment.started_at, step.delay_hours),
                )
            )
            outcome.scheduled_steps += 1

        if executed_any:
            patch: dict[str, Any] = {"current_step": step_index, "last_step_executed_at": self.clock()}
            if step_index >= len(sequence.steps):
                patch["status"] = EnrollmentStatus.COMPLETED.value
                patch["completed_at"] = self.clock()
            await self.store.update_enrollment(enrollment.id, patch)

        outcome.enrollment = await self.store.get_enrollment(enrollment.id) or enrollment

    async def _abandon(self, enrollment: EnrollmentRecord, log_context: dict[str, Any]) -> EnrollmentRecord | None:
        """Cancel a half-written enrollment; returns None if that fails too."""
        try:
            return await self.cancel(enrollment.id, reason=CancelReason.ENROLLMENT_FAILED)
        except Exception:
            logger.warning("Failed to cancel half-written enrollment", extra=log_context, exc_info=True)
            return None

    async def _note_already_enrolled(self, sequence: SequenceRecord, entity: EntitySnapshot) -> None:
        await self._append_system_note(
            entity,
            f'Already active in sequence "{sequence.name}"; duplicate enrollment skipped.',
        )

    async def _append_system_note(self, entity: EntitySnapshot, text: str) -> None:
        note = {
            "text": text,
            "type": "auto",
            "timestamp": to_epoch_ms(self.clock()),
            "author": SYSTEM_NOTE_AUTHOR,
        }
        try:
            await self.store.append_entity_note(entity.entity_type, entity.id, note)
        except Exception:
            logger.warning(
                "Failed to write sequence note",
                extra=build_log_context(entity_type=entity.entity_type, entity_id=entity.id),
                exc_info=True,
            )

    # -- step execution ---------------------------------------------------

    async def _run_step(
        self,
        sequence: SequenceRecord,
        enrollment: EnrollmentRecord,
        step: SequenceStep,
        entity: EntitySnapshot,
    ) -> ActionResult:
        now = self.clock()
        action_type = normalize_sequence_action(step.action_type)
        request = ActionRequest(
            entity=entity,
            action_type=action_type,
            rendered_template=resolve(step.template, entity, now=now),
            action_config={"subject": step.subject} if step.subject else {},
            trigger_context={"enrollment_id": enrollment.id},
            sequence_id=sequence.id,
            step_index=step.index,
            subject=resolve(step.subject, entity, now=now) if step.subject else None,
        )
        if action_type == AutomationActionType.CREATE_TASK.value:
            return await log_and_continue(self._create_task_note(sequence, request), request)
        return await log_and_continue(self.executor.execute(request), request)

    async def _create_task_note(self, sequence: SequenceRecord, request: ActionRequest) -> ActionResult:
        """Follow-up tasks become task notes on the entity."""
        note = {
            "text": request.rendered_template,
            "type": "task",
            "timestamp": to_epoch_ms(self.clock()),
            "author": AUTOMATION_NOTE_AUTHOR,
            "outcome": f"Sequence: {sequence.name}, Step {(request.step_index or 0) + 1}",
        }
        try:
            await self.store.append_entity_note(request.entity_type, request.entity_id, note)
            result = ActionResult.success(request)
        except Exception as exc:
            result = ActionResult.failed(request, f"{exc.__class__.__name__}: {exc}")
        await record_attempt(
            self.store,
            entity_id=request.entity_id,
            entity_type=request.entity_type,
            action_type=request.action_type,
            status=result.status,
            sequence_id=request.sequence_id,
            step_index=request.step_index,
            message=request.rendered_template or None,
            error_detail=result.detail,
            executed_at=self.clock(),
        )
        return result

    async def execute_due_step(self, entry: SequenceLogRecord | str) -> ActionResult | None:
        """
        Run one pending step picked up by the scheduler.

        Returns None when nothing ran: the row is no longer pending or its
        enrollment is not active (cancelled enrollments never execute).
        """
        if isinstance(entry, str):
            loaded = await self.store.get_sequence_log_entry(entry)
            if loaded is None:
                return None
            entry = loaded
        if entry.status != ExecutionStatus.PENDING.value:
            return None

        enrollment = await self.store.get_enrollment(entry.enrollment_id)
        if enrollment is None or enrollment.status != EnrollmentStatus.ACTIVE.value:
            return None

        log_context = build_log_context(
            entity_id=entry.entity_id,
            sequence_id=entry.sequence_id,
            enrollment_id=entry.enrollment_id,
            step_index=entry.step_index,
        )
        sequence = await self.store.get_sequence(entry.sequence_id)
        if sequence is None or entry.step_index >= len(sequence.steps):
            logger.warning("Due step has no matching sequence step", extra=log_context)
            await self.store.mark_sequence_log_entry(
                entry.id, ExecutionStatus.FAILED.value, executed_at=self.clock(), error_detail="Sequence step not found"
            )
            return None

        entity = await self.store.get_entity(enrollment.entity_type, enrollment.entity_id)
        if entity is None:
            logger.warning("Due step entity not found", extra=log_context)
            await self.store.mark_sequence_log_entry(
                entry.id, ExecutionStatus.FAILED.value, executed_at=self.clock(), error_detail="Entity not found"
            )
            return None

        step = sequence.steps[entry.step_index]
        result = await self._run_step(sequence, enrollment, step, entity)
        if result.status == ExecutionStatus.FAILED:
            await self.store.mark_sequence_log_entry(
                entry.id, ExecutionStatus.FAILED.value, executed_at=self.clock(), error_detail=result.detail
            )
        else:
            # Pending rows only move to executed/failed; a skip is an executed no-op
            detail = f"Skipped: {result.detail}" if result.status == ExecutionStatus.SKIPPED else None
            await self.store.mark_sequence_log_entry(
                entry.id, ExecutionStatus.EXECUTED.value, executed_at=self.clock(), error_detail=detail
            )

        # Delays are measured from enrollment, so steps can come due out of
        # order; the enrollment completes only once no step is left pending
        remaining = [
            row
            for row in await self.store.list_sequence_log(enrollment.id)
            if row.status == ExecutionStatus.PENDING.value
        ]
        next_step = max(enrollment.current_step, entry.step_index + 1)
        patch: dict[str, Any] = {"current_step": next_step, "last_step_executed_at": self.clock()}
        if not remaining:
            patch["status"] = EnrollmentStatus.COMPLETED.value
            patch["completed_at"] = self.clock()
        await self.store.update_enrollment(enrollment.id, patch)
        return result

    # -- cancellation -----------------------------------------------------

    async def cancel(
        self,
        enrollment_id: str,
        *,
        reason: CancelReason | str = CancelReason.MANUAL,
        cancelled_by: str = SYSTEM_ACTOR,
    ) -> EnrollmentRecord | None:
        """
        Cancel an active enrollment. Returns None when it was not active.

        Pending log rows are left in place; the scheduler skips them because
        the enrollment is no longer active.
        """
        reason_value = reason.value if isinstance(reason, CancelReason) else str(reason)
        enrollment = await self.store.get_enrollment(enrollment_id)
        if enrollment is None or enrollment.status != EnrollmentStatus.ACTIVE.value:
            return None

        await self.store.update_enrollment(
            enrollment_id,
            {
                "status": EnrollmentStatus.CANCELLED.value,
                "cancel_reason": reason_value,
                "cancelled_by": cancelled_by,
                "cancelled_at": self.clock(),
            },
        )

        sequence = await self.store.get_sequence(enrollment.sequence_id)
        entity = await self.store.get_entity(enrollment.entity_type, enrollment.entity_id)
        if entity is not None:
            name = sequence.name if sequence else "Unknown"
            await self._append_system_note(entity, _cancel_note_text(name, reason_value, cancelled_by, entity))

        logger.info(
            "Sequence enrollment cancelled (%s)",
            reason_value,
            extra=build_log_context(
                entity_id=enrollment.entity_id,
                sequence_id=enrollment.sequence_id,
                enrollment_id=enrollment_id,
            ),
        )
        return await self.store.get_enrollment(enrollment_id)

    async def cancel_active_for_entity(
        self,
        entity: EntitySnapshot,
        *,
        reason: CancelReason | str,
        cancelled_by: str = SYSTEM_ACTOR,
        stop_on_response_only: bool = False,
    ) -> list[EnrollmentRecord]:
        active = await self.store.list_entity_enrollments(entity.id, status=EnrollmentStatus.ACTIVE.value)
        cancelled: list[EnrollmentRecord] = []
        for enrollment in active:
            if stop_on_response_only:
                sequence = await self.store.get_sequence(enrollment.sequence_id)
                if sequence is None or not sequence.stop_on_response:
                    continue
            record = await self.cancel(enrollment.id, reason=reason, cancelled_by=cancelled_by)
            if record is not None:
                cancelled.append(record)
        return cancelled

    # -- trigger hooks ----------------------------------------------------

    async def on_phase_changed(self, entity: EntitySnapshot, to_phase: str) -> list[EnrollmentOutcome]:
        """Cancel on terminal phases, then auto-enroll sequences keyed to the new phase."""
        if is_terminal_phase(entity, to_phase):
            await self.cancel_active_for_entity(entity, reason=CancelReason.PHASE_CHANGED)

        sequences = await self.store.get_enabled_sequences(to_phase, entity.entity_type)
        outcomes: list[EnrollmentOutcome] = []
        for sequence in sequences:
            try:
                outcomes.append(await self.enroll(sequence, entity))
            except Exception:
                logger.exception(
                    "Auto-enrollment failed",
                    extra=build_log_context(
                        entity_type=entity.entity_type, entity_id=entity.id, sequence_id=sequence.id
                    ),
                )
        return outcomes

    async def on_inbound_message(self, entity: EntitySnapshot) -> list[EnrollmentRecord]:
        """A reply stops every active sequence configured to stop on response."""
        return await self.cancel_active_for_entity(
            entity,
            reason=CancelReason.RESPONSE_DETECTED,
            stop_on_response_only=True,
        )


def _inline_log_status(result: ActionResult) -> ExecutionStatus:
    if result.status == ExecutionStatus.SUCCESS:
        return ExecutionStatus.EXECUTED
    return result.status


def _cancel_note_text(sequence_name: str, reason: str, cancelled_by: str, entity: EntitySnapshot) -> str:
    if reason == CancelReason.MANUAL.value:
        return f'Sequence "{sequence_name}" manually cancelled by {cancelled_by}.'
    if reason == CancelReason.RESPONSE_DETECTED.value:
        return f'Sequence "{sequence_name}" stopped: response received.'
    if reason == CancelReason.ENROLLMENT_FAILED.value:
        return f'Sequence "{sequence_name}" stopped: enrollment could not be saved.'
    phase = current_phase(entity)
    return f'Sequence "{sequence_name}" cancelled: moved to {get_phase_label(entity.entity_type, phase)}.'
