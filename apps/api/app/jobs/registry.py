"""Job handler registry."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Mapping

from app.db.enums import JobType
from app.jobs.handlers import automations, sequences
from app.services.message_sender import MessageSender
from app.utils.datetime_parsing import utcnow


@dataclass(frozen=True)
class ScheduledJob:
    """One invocation from the external scheduler (cron endpoint or CLI)."""

    job_type: str
    payload: dict[str, Any] = field(default_factory=dict)
    sender: MessageSender | None = None
    clock: Callable[[], datetime] = utcnow


JobHandler = Callable[[object, ScheduledJob], Awaitable[dict[str, int]]]

JOB_HANDLERS: Mapping[str, JobHandler] = {
    JobType.SEQUENCE_STEP_SWEEP.value: sequences.process_sequence_step_sweep,
    JobType.INACTIVITY_SWEEP.value: automations.process_inactivity_sweep,
}


async def run_job(db, job: ScheduledJob) -> dict[str, int]:
    handler = JOB_HANDLERS.get(job.job_type)
    if handler is None:
        raise ValueError(f"Unknown job type: {job.job_type}")
    return await handler(db, job)
