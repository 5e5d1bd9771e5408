"""Pydantic schemas for automation admin and scheduled endpoints."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from app.db.enums import CancelReason, EntityType


# =============================================================================
# Scheduled sweeps
# =============================================================================


class SequenceSweepResponse(BaseModel):
    due: int
    executed: int
    failed: int
    skipped: int
    not_run: int


class InactivitySweepResponse(BaseModel):
    entities: int
    actions: int
    failed: int


# =============================================================================
# Enrollments
# =============================================================================


class EnrollmentCreate(BaseModel):
    """Manual enrollment request."""

    sequence_id: str
    entity_type: EntityType = EntityType.CLIENT
    entity_id: str
    started_by: str = Field(default="system", max_length=100)
    start_from_step: int = Field(default=0, ge=0)


class EnrollmentCancel(BaseModel):
    cancelled_by: str = Field(default="system", max_length=100)
    reason: CancelReason = CancelReason.MANUAL


class EnrollmentRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sequence_id: str
    entity_id: str
    entity_type: str
    status: str
    current_step: int
    start_from_step: int
    started_by: str
    started_at: datetime
    last_step_executed_at: datetime | None = None
    completed_at: datetime | None = None
    cancel_reason: str | None = None
    cancelled_by: str | None = None
    cancelled_at: datetime | None = None


class StepResultRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    action_type: str
    step_index: int | None = None
    detail: str | None = None


class EnrollmentResponse(BaseModel):
    status: str  # enrolled | already_enrolled | not_enrolled
    enrollment: EnrollmentRead | None = None
    step_results: list[StepResultRead] = Field(default_factory=list)
    scheduled_steps: int = 0
    detail: str | None = None


# =============================================================================
# Logs and action items
# =============================================================================


class ExecutionLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    rule_id: str | None = None
    sequence_id: str | None = None
    step_index: int | None = None
    entity_id: str
    entity_type: str
    trigger_type: str | None = None
    action_type: str
    status: str
    message: str | None = None
    error_detail: str | None = None
    executed_at: datetime | None = None


class SequenceLogRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    sequence_id: str
    enrollment_id: str
    step_index: int
    action_type: str
    status: str
    scheduled_at: datetime | None = None
    executed_at: datetime | None = None
    error_detail: str | None = None


class ActionItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

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
