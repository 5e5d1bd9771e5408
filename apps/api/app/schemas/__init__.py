"""Pydantic schemas for API request/response models."""

from app.schemas.automation import (
    ActionItemRead,
    EnrollmentCancel,
    EnrollmentCreate,
    EnrollmentRead,
    EnrollmentResponse,
    ExecutionLogRead,
    InactivitySweepResponse,
    SequenceLogRead,
    SequenceSweepResponse,
    StepResultRead,
)

__all__ = [
    "ActionItemRead",
    "EnrollmentCancel",
    "EnrollmentCreate",
    "EnrollmentRead",
    "EnrollmentResponse",
    "ExecutionLogRead",
    "InactivitySweepResponse",
    "SequenceLogRead",
    "SequenceSweepResponse",
    "StepResultRead",
]
