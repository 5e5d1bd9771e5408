"""Automation admin endpoints: enrollments, execution log and action items.

Protected by the same X-Internal-Secret header as the scheduled endpoints.
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from app.core.deps import get_db, get_message_sender, verify_internal_secret
from app.db.enums import EntityType
from app.schemas.automation import (
    ActionItemRead,
    EnrollmentCancel,
    EnrollmentCreate,
    EnrollmentRead,
    EnrollmentResponse,
    ExecutionLogRead,
    SequenceLogRead,
    StepResultRead,
)
from app.services.action_item_engine import collect_action_items
from app.services.automation_executor import DefaultActionExecutor
from app.services.automation_store import SqlAutomationStore
from app.services.message_sender import MessageSender
from app.services.sequence_service import SequenceEnrollmentManager


router = APIRouter(
    prefix="/automations",
    tags=["automations"],
    dependencies=[Depends(verify_internal_secret)],
)


def _manager(db: Session, sender: MessageSender) -> tuple[SqlAutomationStore, SequenceEnrollmentManager]:
    store = SqlAutomationStore(db)
    return store, SequenceEnrollmentManager(store, DefaultActionExecutor(store, sender))


@router.post("/enrollments", response_model=EnrollmentResponse)
async def create_enrollment(
    data: EnrollmentCreate,
    db: Session = Depends(get_db),
    sender: MessageSender = Depends(get_message_sender),
):
    """Manually enroll an entity; an active enrollment returns already_enrolled."""
    store, manager = _manager(db, sender)
    sequence = await store.get_sequence(data.sequence_id)
    if sequence is None:
        raise HTTPException(status_code=404, detail="Sequence not found")
    entity = await store.get_entity(data.entity_type.value, data.entity_id)
    if entity is None:
        raise HTTPException(status_code=404, detail=f"{data.entity_type.value.title()} not found")
    if sequence.entity_type != entity.entity_type:
        raise HTTPException(status_code=422, detail="Sequence does not apply to this entity type")

    outcome = await manager.enroll(
        sequence,
        entity,
        started_by=data.started_by,
        start_from_step=data.start_from_step,
    )
    return EnrollmentResponse(
        status=outcome.status,
        enrollment=EnrollmentRead.model_validate(outcome.enrollment) if outcome.enrollment else None,
        step_results=[
            StepResultRead(
                status=result.status.value,
                action_type=result.action_type,
                step_index=result.step_index,
                detail=result.detail,
            )
            for result in outcome.step_results
        ],
        scheduled_steps=outcome.scheduled_steps,
        detail=outcome.detail,
    )


@router.post("/enrollments/{enrollment_id}/cancel", response_model=EnrollmentRead)
async def cancel_enrollment(
    enrollment_id: str,
    data: EnrollmentCancel,
    db: Session = Depends(get_db),
    sender: MessageSender = Depends(get_message_sender),
):
    store, manager = _manager(db, sender)
    existing = await store.get_enrollment(enrollment_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    cancelled = await manager.cancel(enrollment_id, reason=data.reason, cancelled_by=data.cancelled_by)
    if cancelled is None:
        raise HTTPException(status_code=409, detail=f"Enrollment is {existing.status}")
    return EnrollmentRead.model_validate(cancelled)


@router.get("/enrollments/{enrollment_id}/steps", response_model=list[SequenceLogRead])
async def list_enrollment_steps(enrollment_id: str, db: Session = Depends(get_db)):
    store = SqlAutomationStore(db)
    if await store.get_enrollment(enrollment_id) is None:
        raise HTTPException(status_code=404, detail="Enrollment not found")
    entries = await store.list_sequence_log(enrollment_id)
    return [SequenceLogRead.model_validate(entry) for entry in entries]


@router.get("/entities/{entity_type}/{entity_id}/enrollments", response_model=list[EnrollmentRead])
async def list_entity_enrollments(
    entity_type: EntityType,
    entity_id: str,
    status: str | None = None,
    db: Session = Depends(get_db),
):
    store = SqlAutomationStore(db)
    if await store.get_entity(entity_type.value, entity_id) is None:
        raise HTTPException(status_code=404, detail=f"{entity_type.value.title()} not found")
    enrollments = await store.list_entity_enrollments(entity_id, status=status)
    return [EnrollmentRead.model_validate(e) for e in enrollments]


@router.get("/entities/{entity_type}/{entity_id}/log", response_model=list[ExecutionLogRead])
async def list_entity_log(
    entity_type: EntityType,
    entity_id: str,
    limit: int = 100,
    db: Session = Depends(get_db),
):
    store = SqlAutomationStore(db)
    if await store.get_entity(entity_type.value, entity_id) is None:
        raise HTTPException(status_code=404, detail=f"{entity_type.value.title()} not found")
    entries = await store.list_execution_log(entity_id, limit=min(max(limit, 1), 500))
    return [ExecutionLogRead.model_validate(entry) for entry in entries]


@router.get("/action-items/{entity_type}", response_model=list[ActionItemRead])
async def list_action_items(entity_type: EntityType, db: Session = Depends(get_db)):
    """Ranked follow-up items (critical first) for every active entity of a type."""
    items = await collect_action_items(SqlAutomationStore(db), entity_type.value)
    return [ActionItemRead.model_validate(item) for item in items]
