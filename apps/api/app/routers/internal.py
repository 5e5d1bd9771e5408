"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron (Render/Railway/GH Actions).
"""

from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_message_sender, verify_internal_secret
from app.db.enums import JobType
from app.jobs.registry import ScheduledJob, run_job
from app.schemas.automation import InactivitySweepResponse, SequenceSweepResponse
from app.services.message_sender import MessageSender


router = APIRouter(
    prefix="/internal/scheduled",
    tags=["internal"],
    dependencies=[Depends(verify_internal_secret)],
)


@router.post("/sequence-steps", response_model=SequenceSweepResponse)
async def run_sequence_step_sweep(
    limit: int | None = Body(default=None, embed=True),
    db: Session = Depends(get_db),
    sender: MessageSender = Depends(get_message_sender),
):
    """
    Execute delayed sequence steps that are due.

    Only pending steps of active enrollments run; each flips to
    executed/failed exactly once.
    """
    payload = {"limit": limit} if limit else {}
    job = ScheduledJob(job_type=JobType.SEQUENCE_STEP_SWEEP.value, payload=payload, sender=sender)
    return await run_job(db, job)


@router.post("/inactivity-sweep", response_model=InactivitySweepResponse)
async def run_inactivity_sweep(
    entity_types: list[str] | None = Body(default=None, embed=True),
    db: Session = Depends(get_db),
    sender: MessageSender = Depends(get_message_sender),
):
    """Daily sweep firing days_inactive rules (at most once per rule/entity/day)."""
    payload = {"entity_types": entity_types} if entity_types else {}
    job = ScheduledJob(job_type=JobType.INACTIVITY_SWEEP.value, payload=payload, sender=sender)
    return await run_job(db, job)
