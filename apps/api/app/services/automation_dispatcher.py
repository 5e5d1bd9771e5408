"""Rule dispatcher: trigger + entity -> matching rules -> actions.

Rules are read fresh from storage on every dispatch. Each surviving rule is
executed as its own task, so a slow or failing action never holds up the
others. Nothing here raises to the caller.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Callable, Mapping

from app.core.structured_logging import build_log_context
from app.db.enums import AutomationTriggerType
from app.services.automation_conditions import matches
from app.services.automation_executor import ActionExecutor, ActionRequest, ActionResult, log_and_continue
from app.services.automation_store import AutomationStore, RuleRecord
from app.services.entity_snapshot import EntitySnapshot, as_snapshot
from app.services.merge_fields import render_config, resolve
from app.utils.datetime_parsing import utcnow

logger = logging.getLogger(__name__)


def rule_dedupe_key(rule_id: str, dedupe_key: str) -> str:
    return f"{rule_id}:{dedupe_key}"


class AutomationDispatcher:
    """Fires enabled automation rules for one trigger on one entity."""

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

    async def fire(
        self,
        trigger_type: AutomationTriggerType | str,
        entity: EntitySnapshot | Mapping[str, Any],
        trigger_context: Mapping[str, Any] | None = None,
        dedupe_key: str | None = None,
    ) -> list[ActionResult]:
        """
        Dispatch every matching rule and return one result per attempted action.

        Rules whose conditions do not match are not attempted and produce no
        result. With `dedupe_key`, a rule already fired under that key is
        skipped (sweep triggers fire at most once per rule per key).
        """
        trigger = trigger_type.value if isinstance(trigger_type, AutomationTriggerType) else str(trigger_type)
        context = dict(trigger_context or {})
        try:
            snapshot = as_snapshot(entity)
        except (TypeError, ValueError):
            logger.warning("Automation dispatch skipped: unsupported entity", extra={"trigger_type": trigger})
            return []
        log_context = build_log_context(
            entity_type=snapshot.entity_type, entity_id=snapshot.id, trigger_type=trigger
        )

        try:
            rules = await self.store.get_enabled_rules(trigger, snapshot.entity_type)
        except Exception:
            # Best effort: without rules there is nothing to dispatch
            logger.warning("Automation rules unavailable; dispatch abandoned", extra=log_context, exc_info=True)
            return []

        now = self.clock()
        requests: list[ActionRequest] = []
        for rule in rules:
            request = await self._prepare(rule, snapshot, trigger, context, dedupe_key, now)
            if request is not None:
                requests.append(request)

        if not requests:
            return []

        results = await asyncio.gather(
            *(log_and_continue(self.executor.execute(request), request) for request in requests)
        )
        logger.info(
            "Dispatched %d automation action(s)",
            len(results),
            extra=log_context,
        )
        return list(results)

    async def _prepare(
        self,
        rule: RuleRecord,
        entity: EntitySnapshot,
        trigger: str,
        context: dict[str, Any],
        dedupe_key: str | None,
        now: datetime,
    ) -> ActionRequest | None:
        if not matches(rule.conditions, entity, context, now=now):
            return None

        key = rule_dedupe_key(rule.id, dedupe_key) if dedupe_key else None
        if key:
            try:
                if await self.store.has_log_entry(key):
                    logger.debug("Rule already fired for dedupe key", extra={"rule_id": rule.id})
                    return None
            except Exception:
                logger.warning("Dedupe check failed; rule skipped", extra={"rule_id": rule.id}, exc_info=True)
                return None

        try:
            rendered = resolve(rule.message_template, entity, now=now)
            config = render_config(rule.action_config, entity, now=now)
        except Exception:
            logger.warning("Template rendering failed; rule skipped", extra={"rule_id": rule.id}, exc_info=True)
            return None

        return ActionRequest(
            entity=entity,
            action_type=rule.action_type,
            rendered_template=rendered,
            action_config=config,
            trigger_context=context,
            rule_id=rule.id,
            trigger_type=trigger,
            subject=config.get("subject"),
            dedupe_key=key,
        )
