"""Configurable action item engine.

Evaluates action item rules (from `action_item_rules`, or the defaults in
`core.action_item_defaults`) against entity snapshots and produces
urgency-ranked follow-up items. Pure given a fixed `now`.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Callable, Iterable, Mapping

from app.core.action_item_defaults import DEFAULT_RULES_BY_ENTITY
from app.core.pipeline_definitions import get_phase_label
from app.db.enums import ActionItemConditionType, Urgency
from app.db.models import ActionItemRule
from app.services.entity_snapshot import EntitySnapshot, as_snapshot
from app.services.merge_fields import render_template
from app.services.pipeline_helpers import (
    current_phase,
    days_in_phase,
    days_since_created,
    days_since_last_activity,
    is_task_done,
    is_terminal_phase,
    minutes_since_created,
    phase_entered_at,
    whole_days_between,
)
from app.utils.datetime_parsing import to_datetime, utcnow

if TYPE_CHECKING:
    from app.services.automation_store import AutomationStore

logger = logging.getLogger(__name__)

URGENCY_ORDER = {
    Urgency.CRITICAL.value: 0,
    Urgency.WARNING.value: 1,
    Urgency.INFO.value: 2,
}

# Pseudo-phase: any phase not listed in exclude_phases
ANY_ACTIVE_PHASE = "_any_active"


@dataclass(frozen=True)
class ActionItemRuleConfig:
    id: str
    entity_type: str
    condition_type: str
    condition_config: dict[str, Any] = field(default_factory=dict)
    urgency: str = Urgency.WARNING.value
    urgency_escalation: dict[str, Any] | None = None
    title_template: str | None = None
    detail_template: str | None = None
    action_template: str | None = None
    suppressible: bool = False
    name: str | None = None


@dataclass(frozen=True)
class ActionItem:
    entity_id: str
    entity_type: str
    name: str
    type: str
    urgency: str
    title: str
    detail: str
    action: str
    phase: str
    rule_id: str

    @property
    def severity(self) -> str:
        return self.urgency

    @property
    def message(self) -> str:
        return self.detail

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def coerce_rule(rule: ActionItemRuleConfig | ActionItemRule | Mapping[str, Any]) -> ActionItemRuleConfig:
    if isinstance(rule, ActionItemRuleConfig):
        return rule
    if isinstance(rule, ActionItemRule):
        return ActionItemRuleConfig(
            id=rule.id,
            entity_type=rule.entity_type,
            condition_type=rule.condition_type,
            condition_config=dict(rule.condition_config or {}),
            urgency=rule.urgency,
            urgency_escalation=dict(rule.urgency_escalation) if rule.urgency_escalation else None,
            title_template=rule.title_template,
            detail_template=rule.detail_template,
            action_template=rule.action_template,
            suppressible=bool(rule.suppressible),
            name=rule.name,
        )
    return ActionItemRuleConfig(
        id=str(rule["id"]),
        entity_type=rule["entity_type"],
        condition_type=rule["condition_type"],
        condition_config=dict(rule.get("condition_config") or {}),
        urgency=rule.get("urgency") or Urgency.WARNING.value,
        urgency_escalation=rule.get("urgency_escalation"),
        title_template=rule.get("title_template"),
        detail_template=rule.get("detail_template"),
        action_template=rule.get("action_template"),
        suppressible=bool(rule.get("suppressible", False)),
        name=rule.get("name"),
    )


def default_rules(entity_type: str) -> list[ActionItemRuleConfig]:
    return [coerce_rule(rule) for rule in DEFAULT_RULES_BY_ENTITY.get(entity_type, [])]


# =============================================================================
# Condition evaluators
# Each returns a template context when the rule matches, else None.
# =============================================================================


def _exceeds(value: float, threshold: Any) -> bool:
    """Unset thresholds always pass; set thresholds must be strictly exceeded."""
    if threshold is None:
        return True
    return value > threshold


def _phase_ok(entity: EntitySnapshot, config: dict[str, Any]) -> bool:
    target = config.get("phase")
    return not target or current_phase(entity) == target


def evaluate_time_since_creation(
    entity: EntitySnapshot, config: dict[str, Any], now: datetime
) -> dict[str, Any] | None:
    if not _phase_ok(entity, config):
        return None
    task_not_done = config.get("task_not_done")
    if task_not_done and is_task_done(entity.tasks.get(task_not_done)):
        return None
    if entity.created_at is None:
        return None

    phase = current_phase(entity)
    if config.get("min_minutes") is not None:
        minutes = minutes_since_created(entity, now)
        if not _exceeds(minutes, config["min_minutes"]):
            return None
        return {
            "minutes_since_created": round(minutes),
            "days_since_created": days_since_created(entity, now),
            "phase_name": phase,
        }
    if config.get("min_days") is not None:
        days = days_since_created(entity, now)
        if not _exceeds(days, config["min_days"]):
            return None
        return {"days_since_created": days, "phase_name": phase}
    return None


def evaluate_phase_time(
    entity: EntitySnapshot, config: dict[str, Any], now: datetime
) -> dict[str, Any] | None:
    phase = current_phase(entity)
    target = config.get("phase")
    if target == ANY_ACTIVE_PHASE:
        if phase in (config.get("exclude_phases") or []):
            return None
    elif target and phase != target:
        return None

    days = days_in_phase(entity, now)
    if not _exceeds(days, config.get("min_days")):
        return None
    return {"days_in_phase": days, "phase_name": phase}


def evaluate_task_incomplete(
    entity: EntitySnapshot, config: dict[str, Any], now: datetime
) -> dict[str, Any] | None:
    if not _phase_ok(entity, config):
        return None
    task_id = config.get("task_id")
    if not task_id or is_task_done(entity.tasks.get(task_id)):
        return None

    in_phase = days_in_phase(entity, now)
    since_created = days_since_created(entity, now)
    # Phase-scoped rules measure time in phase; others time since creation
    relevant = in_phase if config.get("phase") else since_created
    if not _exceeds(relevant, config.get("min_days")):
        return None
    return {
        "days_in_phase": in_phase,
        "days_since_created": since_created,
        "phase_name": current_phase(entity),
        "task_name": task_id,
    }


def evaluate_task_stale(
    entity: EntitySnapshot, config: dict[str, Any], now: datetime
) -> dict[str, Any] | None:
    if not _phase_ok(entity, config):
        return None
    if not is_task_done(entity.tasks.get(config.get("done_task_id") or "")):
        return None
    if is_task_done(entity.tasks.get(config.get("pending_task_id") or "")):
        return None

    started = phase_entered_at(entity, config.get("phase"))
    if started is None:
        return None
    days = whole_days_between(started, now)
    if not _exceeds(days, config.get("min_days")):
        return None
    return {"days_in_phase": days, "phase_name": current_phase(entity)}


def evaluate_last_note_stale(
    entity: EntitySnapshot, config: dict[str, Any], now: datetime
) -> dict[str, Any] | None:
    if not _phase_ok(entity, config):
        return None
    days = days_since_last_activity(entity, now)
    if not _exceeds(days, config.get("min_days")):
        return None
    return {"days_since_last_note": days, "phase_name": current_phase(entity)}


def _format_short_date(value: datetime) -> str:
    return f"{value:%b} {value.day}"


def evaluate_date_expiring(
    entity: EntitySnapshot, config: dict[str, Any], now: datetime
) -> dict[str, Any] | None:
    expires = to_datetime(entity.get_field(config.get("field") or ""))
    if expires is None:
        return None
    days_until = math.ceil((expires - now) / timedelta(days=1))
    expiry_date = _format_short_date(expires)

    # "Expired" rules are configured with a negative days_until
    days_until_config = config.get("days_until")
    if days_until_config is not None and days_until_config < 0:
        if days_until >= 0:
            return None
        return {"days_until_expiry": abs(days_until), "expiry_date": expiry_date}

    days_warning = config.get("days_warning") or 30
    exclude_under = config.get("days_exclude_under") or 0
    if days_until < 0 or days_until > days_warning:
        return None
    if exclude_under > 0 and days_until <= exclude_under:
        return None
    return {"days_until_expiry": days_until, "expiry_date": expiry_date}


def evaluate_sprint_deadline(
    entity: EntitySnapshot, config: dict[str, Any], now: datetime
) -> dict[str, Any] | None:
    if not _phase_ok(entity, config):
        return None
    started = phase_entered_at(entity, config.get("phase"))
    if started is None and config.get("fallback_phase"):
        started = phase_entered_at(entity, config["fallback_phase"])
    if started is None:
        return None

    sprint_day = whole_days_between(started, now)
    # Sprint days are reached, not exceeded
    if sprint_day < (config.get("warning_day") or 3):
        return None
    expired_day = config.get("expired_day") or 7
    return {
        "sprint_day": sprint_day,
        "sprint_remaining": max(0, expired_day - sprint_day),
        "days_in_phase": sprint_day,
        "phase_name": current_phase(entity),
    }


Evaluator = Callable[[EntitySnapshot, dict[str, Any], datetime], dict[str, Any] | None]

EVALUATORS: dict[str, Evaluator] = {
    ActionItemConditionType.TIME_SINCE_CREATION.value: evaluate_time_since_creation,
    ActionItemConditionType.PHASE_TIME.value: evaluate_phase_time,
    ActionItemConditionType.TASK_INCOMPLETE.value: evaluate_task_incomplete,
    ActionItemConditionType.TASK_STALE.value: evaluate_task_stale,
    ActionItemConditionType.LAST_NOTE_STALE.value: evaluate_last_note_stale,
    ActionItemConditionType.DATE_EXPIRING.value: evaluate_date_expiring,
    ActionItemConditionType.SPRINT_DEADLINE.value: evaluate_sprint_deadline,
}


def resolve_urgency(rule: ActionItemRuleConfig, entity: EntitySnapshot, now: datetime) -> str:
    """Escalate when the entity has been around at least `min_days`."""
    escalation = rule.urgency_escalation
    if not escalation:
        return rule.urgency
    min_days = escalation.get("min_days")
    target = escalation.get("urgency")
    if not min_days or not target:
        return rule.urgency
    relevant = max(days_in_phase(entity, now), days_since_created(entity, now))
    if relevant >= min_days:
        return target
    return rule.urgency


def evaluate_rules_for_entity(
    entity: EntitySnapshot | Mapping[str, Any],
    rules: Iterable[ActionItemRuleConfig | ActionItemRule | Mapping[str, Any]],
    now: datetime | None = None,
) -> list[ActionItem]:
    """Apply rules in order to one entity. Terminal-phase entities yield nothing."""
    snapshot = as_snapshot(entity)
    now = now or utcnow()
    if is_terminal_phase(snapshot):
        return []

    items: list[ActionItem] = []
    for raw_rule in rules:
        rule = coerce_rule(raw_rule)
        if rule.entity_type != snapshot.entity_type:
            continue
        evaluator = EVALUATORS.get(rule.condition_type)
        if evaluator is None:
            continue
        if rule.suppressible and items:
            continue

        try:
            context = evaluator(snapshot, rule.condition_config, now)
        except Exception:
            # A bad rule must not take down the whole list
            logger.warning(
                "Action item rule failed",
                extra={"rule_id": rule.id, "entity_id": snapshot.id},
                exc_info=True,
            )
            continue
        if context is None:
            continue

        phase = current_phase(snapshot)
        full_context = {
            **context,
            "name": snapshot.display_name,
            "phase_label": get_phase_label(snapshot.entity_type, phase),
        }
        items.append(
            ActionItem(
                entity_id=snapshot.id,
                entity_type=snapshot.entity_type,
                name=snapshot.display_name,
                type=rule.id,
                urgency=resolve_urgency(rule, snapshot, now),
                title=render_template(rule.title_template, full_context),
                detail=render_template(rule.detail_template, full_context),
                action=render_template(rule.action_template, full_context),
                phase=phase,
                rule_id=rule.id,
            )
        )
    return items


def sort_items(items: Iterable[ActionItem]) -> list[ActionItem]:
    """Critical, then warning, then info; input order is kept within a level."""
    return sorted(items, key=lambda item: URGENCY_ORDER.get(item.urgency, len(URGENCY_ORDER)))


def score(
    entities: Iterable[EntitySnapshot | Mapping[str, Any]],
    rules: Iterable[ActionItemRuleConfig | ActionItemRule | Mapping[str, Any]] | None = None,
    now: datetime | None = None,
) -> list[ActionItem]:
    """Produce ranked action items for a batch of entities.

    With no `rules`, each entity is scored against the default rule set for
    its type.
    """
    now = now or utcnow()
    configured = [coerce_rule(rule) for rule in rules] if rules is not None else None

    items: list[ActionItem] = []
    for entity in entities:
        snapshot = as_snapshot(entity)
        entity_rules = configured if configured is not None else default_rules(snapshot.entity_type)
        items.extend(evaluate_rules_for_entity(snapshot, entity_rules, now))
    return sort_items(items)


async def collect_action_items(
    store: "AutomationStore",
    entity_type: str,
    now: datetime | None = None,
) -> list[ActionItem]:
    """Score every active entity of a type with its configured rules (or the defaults)."""
    configured = await store.list_action_item_rules(entity_type)
    rules = [coerce_rule(rule) for rule in configured] or default_rules(entity_type)
    entities = await store.list_active_entities(entity_type)
    return score(entities, rules, now)
