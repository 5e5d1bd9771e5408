"""Automation engine: processes one trigger event end to end."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from sqlalchemy.orm import Session

from app.db.enums import AutomationTriggerType
from app.db.session import SessionLocal
from app.services.automation_dispatcher import AutomationDispatcher
from app.services.automation_executor import ActionResult, DefaultActionExecutor
from app.services.automation_queue import TriggerEvent
from app.services.automation_store import EnrollmentRecord, SqlAutomationStore
from app.services.message_sender import MessageSender, WebhookMessageSender
from app.services.pipeline_helpers import current_phase
from app.services.sequence_service import EnrollmentOutcome, SequenceEnrollmentManager
from app.utils.datetime_parsing import utcnow

logger = logging.getLogger(__name__)


@dataclass
class EventOutcome:
    event: TriggerEvent
    rule_results: list[ActionResult] = field(default_factory=list)
    enrollments: list[EnrollmentOutcome] = field(default_factory=list)
    cancelled: list[EnrollmentRecord] = field(default_factory=list)
    error: str | None = None


class AutomationEngine:
    """
    Runs rules and sequence hooks for trigger events.

    Each event gets its own session and a freshly loaded entity snapshot, so
    nothing read for one event leaks into another.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session] = SessionLocal,
        sender: MessageSender | None = None,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.session_factory = session_factory
        self.sender = sender or WebhookMessageSender()
        self.clock = clock

    def build_components(self, db: Session) -> tuple[SqlAutomationStore, AutomationDispatcher, SequenceEnrollmentManager]:
        store = SqlAutomationStore(db)
        executor = DefaultActionExecutor(store, self.sender, clock=self.clock)
        dispatcher = AutomationDispatcher(store, executor, clock=self.clock)
        manager = SequenceEnrollmentManager(store, executor, clock=self.clock)
        return store, dispatcher, manager

    async def process(self, event: TriggerEvent) -> EventOutcome:
        outcome = EventOutcome(event=event)
        db = self.session_factory()
        try:
            store, dispatcher, manager = self.build_components(db)
            entity = await store.get_entity(event.entity_type, event.entity_id)
            if entity is None:
                logger.warning("Trigger entity not found", extra=event.log_context())
                outcome.error = "entity_not_found"
                return outcome

            # Replies stop drip sequences before any reply rules fire
            if event.trigger_type == AutomationTriggerType.INBOUND_MESSAGE.value:
                outcome.cancelled = await manager.on_inbound_message(entity)

            outcome.rule_results = await dispatcher.fire(
                event.trigger_type,
                entity,
                event.context,
                dedupe_key=event.dedupe_key,
            )

            if event.trigger_type == AutomationTriggerType.PHASE_CHANGE.value:
                to_phase = event.context.get("to_phase") or current_phase(entity)
                outcome.enrollments = await manager.on_phase_changed(entity, to_phase)
            elif event.trigger_type == AutomationTriggerType.NEW_RECORD.value:
                outcome.enrollments = await manager.on_phase_changed(entity, current_phase(entity))
        except Exception as exc:
            db.rollback()
            logger.exception("Automation event processing failed", extra=event.log_context())
            outcome.error = exc.__class__.__name__
        finally:
            db.close()
        return outcome


engine = AutomationEngine()
