"""Action execution boundary.

Every automated side effect goes through an `ActionExecutor`. Executors
return an explicit `ActionResult` instead of raising; `log_and_continue`
turns anything that still raises into a `failed` result so callers can fire
many actions without one failure stopping the rest.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Protocol

from app.core.config import settings
from app.core.constants import AUTOMATION_NOTE_AUTHOR
from app.core.pipeline_definitions import is_known_phase
from app.core.structured_logging import build_log_context
from app.db.enums import AutomationActionType, ExecutionStatus
from app.services.automation_store import AutomationStore
from app.services.entity_snapshot import EntitySnapshot
from app.services.execution_log import record_attempt
from app.services.merge_fields import render_template
from app.services.message_sender import MessageSender, OutboundMessage
from app.services.pipeline_helpers import current_phase, is_task_done
from app.utils.datetime_parsing import to_epoch_ms, utcnow
from app.utils.normalization import normalize_email, normalize_phone

logger = logging.getLogger(__name__)

# Fields an update_field action may write
ALLOWED_UPDATE_FIELDS: dict[str, frozenset[str]] = {
    "caregiver": frozenset(
        {"first_name", "last_name", "phone", "email", "hca_expiration", "archived", "archive_reason"}
    ),
    "client": frozenset(
        {
            "first_name",
            "last_name",
            "phone",
            "email",
            "contact_name",
            "care_recipient_name",
            "referral_source",
            "lost_reason",
            "archived",
        }
    ),
}


@dataclass(frozen=True)
class ActionRequest:
    entity: EntitySnapshot
    action_type: str
    rendered_template: str = ""
    action_config: dict[str, Any] = field(default_factory=dict)
    trigger_context: dict[str, Any] = field(default_factory=dict)
    rule_id: str | None = None
    sequence_id: str | None = None
    step_index: int | None = None
    trigger_type: str | None = None
    subject: str | None = None
    dedupe_key: str | None = None

    @property
    def entity_id(self) -> str:
        return self.entity.id

    @property
    def entity_type(self) -> str:
        return self.entity.entity_type

    @property
    def source_id(self) -> str | None:
        return self.rule_id or self.sequence_id

    def log_context(self) -> dict[str, Any]:
        return build_log_context(
            entity_type=self.entity_type,
            entity_id=self.entity_id,
            trigger_type=self.trigger_type,
            rule_id=self.rule_id,
            sequence_id=self.sequence_id,
            step_index=self.step_index,
            action_type=self.action_type,
        )


@dataclass(frozen=True)
class ActionResult:
    status: ExecutionStatus
    action_type: str
    entity_id: str
    rule_id: str | None = None
    sequence_id: str | None = None
    step_index: int | None = None
    detail: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == ExecutionStatus.SUCCESS

    @classmethod
    def success(cls, request: ActionRequest, detail: str | None = None) -> "ActionResult":
        return cls._for(request, ExecutionStatus.SUCCESS, detail)

    @classmethod
    def failed(cls, request: ActionRequest, detail: str | None = None) -> "ActionResult":
        return cls._for(request, ExecutionStatus.FAILED, detail)

    @classmethod
    def skipped(cls, request: ActionRequest, detail: str | None = None) -> "ActionResult":
        return cls._for(request, ExecutionStatus.SKIPPED, detail)

    @classmethod
    def _for(cls, request: ActionRequest, status: ExecutionStatus, detail: str | None) -> "ActionResult":
        return cls(
            status=status,
            action_type=request.action_type,
            entity_id=request.entity_id,
            rule_id=request.rule_id,
            sequence_id=request.sequence_id,
            step_index=request.step_index,
            detail=detail,
        )


class ActionExecutor(Protocol):
    async def execute(self, request: ActionRequest) -> ActionResult:
        """Perform the action and record it; must not raise."""


async def log_and_continue(awaitable: Awaitable[ActionResult], request: ActionRequest) -> ActionResult:
    """Await an action; any exception becomes a `failed` result and a log line."""
    try:
        return await awaitable
    except Exception as exc:
        logger.exception("Automation action raised", extra=request.log_context())
        return ActionResult.failed(request, f"{exc.__class__.__name__}: {exc}")


def _error_detail(exc: Exception) -> str:
    return f"{exc.__class__.__name__}: {exc}" if str(exc) else exc.__class__.__name__


Handler = Callable[[ActionRequest], Awaitable[ActionResult]]


class DefaultActionExecutor:
    """Executes actions against the store and the messaging boundary."""

    def __init__(
        self,
        store: AutomationStore,
        sender: MessageSender,
        *,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self.store = store
        self.sender = sender
        self.clock = clock
        self._handlers: dict[AutomationActionType, Handler] = {
            AutomationActionType.SEND_SMS: self._send_sms,
            AutomationActionType.SEND_EMAIL: self._send_email,
            AutomationActionType.SEND_DOCUMENT_PACKET: self._send_document_packet,
            AutomationActionType.UPDATE_PHASE: self._update_phase,
            AutomationActionType.COMPLETE_TASK: self._complete_task,
            AutomationActionType.ADD_NOTE: self._add_note,
            AutomationActionType.UPDATE_FIELD: self._update_field,
            AutomationActionType.CREATE_TASK: self._create_task,
        }
        missing = set(AutomationActionType) - set(self._handlers)
        if missing:
            names = ", ".join(sorted(action.value for action in missing))
            raise ValueError(f"No handler for action types: {names}")

    async def execute(self, request: ActionRequest) -> ActionResult:
        try:
            action = AutomationActionType(request.action_type)
        except ValueError:
            result = ActionResult.skipped(request, f"Unknown action type: {request.action_type}")
        else:
            try:
                result = await self._handlers[action](request)
            except Exception as exc:
                logger.warning(
                    "Automation action failed: %s", exc.__class__.__name__, extra=request.log_context()
                )
                result = ActionResult.failed(request, _error_detail(exc))

        await record_attempt(
            self.store,
            entity_id=request.entity_id,
            entity_type=request.entity_type,
            action_type=request.action_type,
            status=result.status,
            rule_id=request.rule_id,
            sequence_id=request.sequence_id,
            step_index=request.step_index,
            trigger_type=request.trigger_type,
            message=request.rendered_template or None,
            error_detail=result.detail if result.status != ExecutionStatus.SUCCESS else None,
            dedupe_key=request.dedupe_key,
            executed_at=self.clock(),
        )
        return result

    # -- messaging --------------------------------------------------------

    def _metadata(self, request: ActionRequest) -> dict[str, Any]:
        return {
            "entity_type": request.entity_type,
            "entity_id": request.entity_id,
            "rule_id": request.rule_id,
            "sequence_id": request.sequence_id,
            "step_index": request.step_index,
        }

    def _email_subject(self, request: ActionRequest) -> str:
        subject = request.subject or request.action_config.get("subject")
        if subject:
            return subject
        return render_template(settings.DEFAULT_EMAIL_SUBJECT, {"company_name": settings.COMPANY_NAME})

    async def _send_sms(self, request: ActionRequest) -> ActionResult:
        phone = normalize_phone(request.entity.phone)
        if not phone:
            return ActionResult.skipped(request, "No valid phone number")
        if not request.rendered_template.strip():
            return ActionResult.skipped(request, "Empty message")
        receipt = await self.sender.send(
            OutboundMessage(channel="sms", to=phone, body=request.rendered_template, metadata=self._metadata(request))
        )
        return ActionResult.success(request, receipt.provider_message_id)

    async def _send_email(self, request: ActionRequest) -> ActionResult:
        email = normalize_email(request.entity.email)
        if not email:
            return ActionResult.skipped(request, "No email address")
        if not request.rendered_template.strip():
            return ActionResult.skipped(request, "Empty message")
        receipt = await self.sender.send(
            OutboundMessage(
                channel="email",
                to=email,
                subject=self._email_subject(request),
                body=request.rendered_template,
                metadata=self._metadata(request),
            )
        )
        return ActionResult.success(request, receipt.provider_message_id)

    async def _send_document_packet(self, request: ActionRequest) -> ActionResult:
        email = normalize_email(request.entity.email)
        if not email:
            return ActionResult.skipped(request, "No email address")
        documents = request.action_config.get("documents") or request.action_config.get("template_ids")
        if not documents:
            return ActionResult.skipped(request, "No documents configured")
        receipt = await self.sender.send(
            OutboundMessage(
                channel="document_packet",
                to=email,
                subject=self._email_subject(request),
                body=request.rendered_template,
                metadata={**self._metadata(request), "documents": list(documents)},
            )
        )
        return ActionResult.success(request, receipt.provider_message_id)

    # -- record mutations -------------------------------------------------

    async def _update_phase(self, request: ActionRequest) -> ActionResult:
        target = request.action_config.get("phase") or request.action_config.get("to_phase")
        if not is_known_phase(request.entity_type, target):
            return ActionResult.skipped(request, f"Unknown phase: {target}")
        if current_phase(request.entity) == target:
            return ActionResult.skipped(request, "Already in phase")
        await self.store.update_entity_phase(request.entity_type, request.entity_id, target, now=self.clock())
        return ActionResult.success(request)

    async def _complete_task(self, request: ActionRequest) -> ActionResult:
        task_id = request.action_config.get("task_id")
        if not task_id:
            return ActionResult.skipped(request, "No task configured")
        if is_task_done(request.entity.tasks.get(task_id)):
            return ActionResult.skipped(request, "Task already complete")
        await self.store.complete_entity_task(
            request.entity_type,
            request.entity_id,
            task_id,
            completed_by=AUTOMATION_NOTE_AUTHOR,
            now=self.clock(),
        )
        return ActionResult.success(request)

    async def _add_note(self, request: ActionRequest) -> ActionResult:
        text = request.rendered_template or request.action_config.get("text") or ""
        if not text.strip():
            return ActionResult.skipped(request, "Empty note")
        note = {
            "text": text,
            "type": "auto",
            "timestamp": to_epoch_ms(self.clock()),
            "author": AUTOMATION_NOTE_AUTHOR,
        }
        await self.store.append_entity_note(request.entity_type, request.entity_id, note)
        return ActionResult.success(request)

    async def _update_field(self, request: ActionRequest) -> ActionResult:
        field_name = request.action_config.get("field")
        if not field_name:
            return ActionResult.skipped(request, "No field configured")
        if field_name not in ALLOWED_UPDATE_FIELDS.get(request.entity_type, frozenset()):
            return ActionResult.skipped(request, f"Field not updatable: {field_name}")
        value = request.action_config.get("value")
        await self.store.update_entity_field(
            request.entity_id, {field_name: value}, entity_type=request.entity_type
        )
        return ActionResult.success(request)

    async def _create_task(self, request: ActionRequest) -> ActionResult:
        text = request.rendered_template or request.action_config.get("text") or ""
        if not text.strip():
            return ActionResult.skipped(request, "Empty task")
        note = {
            "text": text,
            "type": "task",
            "timestamp": to_epoch_ms(self.clock()),
            "author": AUTOMATION_NOTE_AUTHOR,
        }
        outcome = request.action_config.get("outcome")
        if outcome:
            note["outcome"] = outcome
        await self.store.append_entity_note(request.entity_type, request.entity_id, note)
        return ActionResult.success(request)

