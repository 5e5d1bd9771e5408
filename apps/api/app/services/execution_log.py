"""Execution log plumbing.

Log rows are written once per attempt and never rewritten. The single
permitted update is the scheduler pickup flipping a `pending` sequence step
to `executed` or `failed`.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any

from app.db.enums import PENDING_TERMINAL_STATUSES, ExecutionStatus
from app.db.models import ExecutionLogEntry, SequenceLogEntry
from app.services.automation_errors import InvalidLogTransitionError
from app.utils.datetime_parsing import utcnow

if TYPE_CHECKING:
    from app.services.automation_store import AutomationStore

logger = logging.getLogger(__name__)

# Cap stored error text; provider errors can be long
MAX_ERROR_DETAIL_LENGTH = 2000


def _truncate(detail: str | None) -> str | None:
    if detail is None:
        return None
    return detail[:MAX_ERROR_DETAIL_LENGTH]


def _status_value(status: ExecutionStatus | str) -> str:
    return status.value if isinstance(status, ExecutionStatus) else str(status)


def build_action_log_entry(
    *,
    entity_id: str,
    entity_type: str,
    action_type: str,
    status: ExecutionStatus | str,
    rule_id: str | None = None,
    sequence_id: str | None = None,
    step_index: int | None = None,
    trigger_type: str | None = None,
    message: str | None = None,
    error_detail: str | None = None,
    dedupe_key: str | None = None,
    scheduled_at: datetime | None = None,
    executed_at: datetime | None = None,
) -> dict[str, Any]:
    """Row values for `automation_log`; every attempted action gets one."""
    status_value = _status_value(status)
    if executed_at is None and status_value != ExecutionStatus.PENDING.value:
        executed_at = utcnow()
    return {
        "rule_id": rule_id,
        "sequence_id": sequence_id,
        "step_index": step_index,
        "entity_id": entity_id,
        "entity_type": entity_type,
        "trigger_type": trigger_type,
        "action_type": action_type,
        "status": status_value,
        "message": message,
        "error_detail": _truncate(error_detail),
        "dedupe_key": dedupe_key,
        "scheduled_at": scheduled_at,
        "executed_at": executed_at,
    }


def build_sequence_log_entry(
    *,
    sequence_id: str,
    enrollment_id: str,
    entity_id: str,
    step_index: int,
    action_type: str,
    status: ExecutionStatus | str,
    content: str | None = None,
    scheduled_at: datetime | None = None,
    executed_at: datetime | None = None,
    error_detail: str | None = None,
) -> dict[str, Any]:
    """Row values for `sequence_log` (inline step or pending schedule)."""
    return {
        "sequence_id": sequence_id,
        "enrollment_id": enrollment_id,
        "entity_id": entity_id,
        "step_index": step_index,
        "action_type": action_type,
        "status": _status_value(status),
        "content": content,
        "scheduled_at": scheduled_at,
        "executed_at": executed_at,
        "error_detail": _truncate(error_detail),
    }


def mark_pending_entry(
    entry: SequenceLogEntry | ExecutionLogEntry,
    status: ExecutionStatus | str,
    *,
    executed_at: datetime | None = None,
    error_detail: str | None = None,
) -> None:
    """
    Flip a pending row to its terminal status in place.

    Raises:
        InvalidLogTransitionError: row is not pending, or target is not
            executed/failed.
    """
    target = _status_value(status)
    if entry.status != ExecutionStatus.PENDING.value:
        raise InvalidLogTransitionError(entry.status, target)
    if target not in {s.value for s in PENDING_TERMINAL_STATUSES}:
        raise InvalidLogTransitionError(entry.status, target)

    entry.status = target
    entry.executed_at = executed_at or utcnow()
    if error_detail is not None:
        entry.error_detail = _truncate(error_detail)


async def record_attempt(store: "AutomationStore", **fields: Any) -> str | None:
    """Write one execution log row; a failed write is logged, never raised."""
    try:
        return await store.insert_log_entry(build_action_log_entry(**fields))
    except Exception:
        logger.exception(
            "Failed to write execution log entry",
            extra={
                "entity_id": fields.get("entity_id"),
                "rule_id": fields.get("rule_id"),
                "sequence_id": fields.get("sequence_id"),
            },
        )
        return None
