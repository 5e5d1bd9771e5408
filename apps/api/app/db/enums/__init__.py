"""Enum definitions for application constants."""

from app.db.enums.automation import (
    MESSAGE_ACTION_TYPES,
    PENDING_TERMINAL_STATUSES,
    ActionItemConditionType,
    AutomationActionType,
    AutomationTriggerType,
    CancelReason,
    EnrollmentStatus,
    ExecutionStatus,
    Urgency,
)
from app.db.enums.entities import EntityType
from app.db.enums.jobs import JobType

__all__ = [
    "MESSAGE_ACTION_TYPES",
    "PENDING_TERMINAL_STATUSES",
    "ActionItemConditionType",
    "AutomationActionType",
    "AutomationTriggerType",
    "CancelReason",
    "EnrollmentStatus",
    "EntityType",
    "ExecutionStatus",
    "JobType",
    "Urgency",
]
