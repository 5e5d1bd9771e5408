"""Automation triggers - hooks the record mutation path calls after commit.

Each helper only enqueues an event; it returns immediately and never raises,
so a broken automation can never fail or roll back the mutation itself.
"""

from __future__ import annotations

from app.db.enums import AutomationTriggerType
from app.services.automation_engine import engine
from app.services.automation_queue import AutomationEventQueue, TriggerEvent

event_queue = AutomationEventQueue(engine.process)


def _emit(
    trigger_type: AutomationTriggerType,
    entity_type: str,
    entity_id: str,
    context: dict | None = None,
    queue: AutomationEventQueue | None = None,
) -> bool:
    event = TriggerEvent(
        trigger_type=trigger_type.value,
        entity_type=entity_type,
        entity_id=str(entity_id),
        context=context or {},
    )
    return (queue or event_queue).emit(event)


# =============================================================================
# Record lifecycle
# =============================================================================


def trigger_record_created(
    entity_type: str, entity_id: str, *, queue: AutomationEventQueue | None = None
) -> bool:
    """New caregiver or client saved."""
    return _emit(AutomationTriggerType.NEW_RECORD, entity_type, entity_id, queue=queue)


def trigger_phase_changed(
    entity_type: str,
    entity_id: str,
    from_phase: str | None,
    to_phase: str,
    *,
    queue: AutomationEventQueue | None = None,
) -> bool:
    if from_phase == to_phase:
        return False
    return _emit(
        AutomationTriggerType.PHASE_CHANGE,
        entity_type,
        entity_id,
        {"from_phase": from_phase, "to_phase": to_phase},
        queue=queue,
    )


def trigger_task_completed(
    entity_type: str, entity_id: str, task_id: str, *, queue: AutomationEventQueue | None = None
) -> bool:
    return _emit(
        AutomationTriggerType.TASK_COMPLETED,
        entity_type,
        entity_id,
        {"task_id": task_id},
        queue=queue,
    )


# =============================================================================
# Documents
# =============================================================================


def trigger_document_uploaded(
    entity_type: str,
    entity_id: str,
    document_type: str | None = None,
    *,
    queue: AutomationEventQueue | None = None,
) -> bool:
    return _emit(
        AutomationTriggerType.DOCUMENT_UPLOADED,
        entity_type,
        entity_id,
        {"document_type": document_type},
        queue=queue,
    )


def trigger_document_signed(
    entity_type: str,
    entity_id: str,
    document_name: str | None = None,
    *,
    queue: AutomationEventQueue | None = None,
) -> bool:
    return _emit(
        AutomationTriggerType.DOCUMENT_SIGNED,
        entity_type,
        entity_id,
        {"document_name": document_name},
        queue=queue,
    )


# =============================================================================
# Messaging
# =============================================================================


def trigger_inbound_message(
    entity_type: str,
    entity_id: str,
    message_text: str,
    channel: str = "sms",
    *,
    queue: AutomationEventQueue | None = None,
) -> bool:
    """Inbound SMS/email reply matched to an entity."""
    return _emit(
        AutomationTriggerType.INBOUND_MESSAGE,
        entity_type,
        entity_id,
        {"message_text": message_text, "channel": channel},
        queue=queue,
    )
