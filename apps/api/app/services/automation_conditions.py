"""Condition evaluation for automation rules.

The condition vocabulary is closed: phase, to_phase, task_id, keyword and
min_days. Set filters are AND-ed; unset (or empty) filters never exclude, so
a rule with no filters matches every event of its trigger type. Unknown keys
are ignored.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Mapping

from app.services.entity_snapshot import EntitySnapshot, as_snapshot
from app.services.pipeline_helpers import current_phase, days_in_phase

logger = logging.getLogger(__name__)

CONDITION_KEYS = ("phase", "to_phase", "task_id", "keyword", "min_days")

_KEY_ALIASES = {
    "toPhase": "to_phase",
    "taskId": "task_id",
    "minDays": "min_days",
    "messageText": "message_text",
    "daysInactive": "days_inactive",
    "fromPhase": "from_phase",
}


def _normalize(raw: Any) -> dict[str, Any]:
    if not isinstance(raw, Mapping):
        return {}
    return {_KEY_ALIASES.get(key, key): value for key, value in raw.items()}


def _is_set(value: Any) -> bool:
    return value is not None and value != ""


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            return None
    return None


def _inactive_days(entity: EntitySnapshot, context: dict[str, Any], now: datetime | None) -> float:
    supplied = _as_number(context.get("days_inactive"))
    if supplied is not None:
        return supplied
    return days_in_phase(entity, now)


def _evaluate(
    conditions: dict[str, Any],
    entity: EntitySnapshot,
    context: dict[str, Any],
    now: datetime | None,
) -> bool:
    phase = conditions.get("phase")
    if _is_set(phase) and current_phase(entity) != phase:
        return False

    to_phase = conditions.get("to_phase")
    if _is_set(to_phase) and context.get("to_phase") != to_phase:
        return False

    task_id = conditions.get("task_id")
    if _is_set(task_id) and context.get("task_id") != task_id:
        return False

    keyword = conditions.get("keyword")
    if _is_set(keyword):
        message_text = context.get("message_text") or ""
        if str(keyword).lower() not in str(message_text).lower():
            return False

    min_days = _as_number(conditions.get("min_days"))
    if min_days is not None and min_days > 0:
        if _inactive_days(entity, context, now) < min_days:
            return False

    return True


def matches(
    conditions: Mapping[str, Any] | None,
    entity: EntitySnapshot | Mapping[str, Any],
    trigger_context: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> bool:
    """Return True when every set filter agrees with the entity and context."""
    try:
        return _evaluate(
            _normalize(conditions),
            as_snapshot(entity),
            _normalize(trigger_context),
            now,
        )
    except Exception as exc:
        # Malformed snapshot data: treat as a non-match
        logger.warning("Condition evaluation failed: %s", exc.__class__.__name__)
        return False
