"""Sequence-related job handlers."""

from __future__ import annotations

import logging

from app.core.config import settings
from app.db.enums import ExecutionStatus

logger = logging.getLogger(__name__)


async def process_sequence_step_sweep(db, job) -> dict[str, int]:
    """
    Process a SEQUENCE_STEP_SWEEP job - run delayed sequence steps that are due.

    Picks up `sequence_log` rows with status pending, scheduled_at <= now and
    an active enrollment. Steps of cancelled enrollments are never selected.

    Payload:
        - limit: max steps per run (defaults to SEQUENCE_SWEEP_BATCH_SIZE)
    """
    from app.services.automation_engine import AutomationEngine

    limit = int(job.payload.get("limit") or settings.SEQUENCE_SWEEP_BATCH_SIZE)
    automation = AutomationEngine(sender=job.sender, clock=job.clock)
    store, _dispatcher, manager = automation.build_components(db)

    due = await store.list_due_sequence_steps(job.clock(), limit)
    counts = {"due": len(due), "executed": 0, "failed": 0, "skipped": 0, "not_run": 0}
    logger.info("Starting sequence step sweep: due=%s", len(due))

    for entry in due:
        try:
            result = await manager.execute_due_step(entry)
        except Exception as e:
            logger.error("Sequence step %s failed: %s", entry.id, e.__class__.__name__)
            db.rollback()
            counts["failed"] += 1
            continue

        if result is None:
            counts["not_run"] += 1
        elif result.status == ExecutionStatus.FAILED:
            counts["failed"] += 1
        elif result.status == ExecutionStatus.SKIPPED:
            counts["skipped"] += 1
        else:
            counts["executed"] += 1

    logger.info("Sequence step sweep finished: %s", counts)
    return counts
