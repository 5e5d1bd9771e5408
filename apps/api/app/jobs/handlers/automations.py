"""Automation rule job handlers."""

from __future__ import annotations

import logging

from app.db.enums import AutomationTriggerType, EntityType, ExecutionStatus

logger = logging.getLogger(__name__)


def inactivity_dedupe_key(entity_id: str, day: str) -> str:
    """One days_inactive firing per entity per day (the dispatcher prefixes the rule id)."""
    return f"{entity_id}:{AutomationTriggerType.DAYS_INACTIVE.value}:{day}"


async def process_inactivity_sweep(db, job) -> dict[str, int]:
    """
    Process an INACTIVITY_SWEEP job - fire days_inactive rules.

    Every non-archived entity outside a terminal phase is dispatched with
    trigger_context.days_inactive. Rules carry min_days; the dedupe key keeps
    each rule to one firing per entity per day.

    Payload:
        - entity_types: list of entity types to sweep (default: all)
    """
    from app.services.automation_engine import AutomationEngine
    from app.services.pipeline_helpers import days_inactive

    entity_types = job.payload.get("entity_types") or [e.value for e in EntityType]
    automation = AutomationEngine(sender=job.sender, clock=job.clock)
    store, dispatcher, _manager = automation.build_components(db)

    now = job.clock()
    today = now.date().isoformat()
    trigger = AutomationTriggerType.DAYS_INACTIVE.value
    counts = {"entities": 0, "actions": 0, "failed": 0}

    for entity_type in entity_types:
        rules = await store.get_enabled_rules(trigger, entity_type)
        if not rules:
            continue

        entities = await store.list_active_entities(entity_type)
        logger.info("Inactivity sweep: type=%s, entities=%s", entity_type, len(entities))
        for entity in entities:
            counts["entities"] += 1
            results = await dispatcher.fire(
                trigger,
                entity,
                {"days_inactive": days_inactive(entity, now)},
                dedupe_key=inactivity_dedupe_key(entity.id, today),
            )
            counts["actions"] += len(results)
            counts["failed"] += sum(1 for r in results if r.status == ExecutionStatus.FAILED)

    logger.info("Inactivity sweep finished: %s", counts)
    return counts
