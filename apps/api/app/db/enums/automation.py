"""Automation-related enums."""

from enum import Enum


class AutomationTriggerType(str, Enum):
    """Business events that can fire automation rules."""

    NEW_RECORD = "new_record"
    DAYS_INACTIVE = "days_inactive"
    PHASE_CHANGE = "phase_change"
    TASK_COMPLETED = "task_completed"
    DOCUMENT_UPLOADED = "document_uploaded"
    DOCUMENT_SIGNED = "document_signed"
    INBOUND_MESSAGE = "inbound_message"


class AutomationActionType(str, Enum):
    """Actions an automation rule or sequence step can execute."""

    SEND_SMS = "send_sms"
    SEND_EMAIL = "send_email"
    UPDATE_PHASE = "update_phase"
    COMPLETE_TASK = "complete_task"
    ADD_NOTE = "add_note"
    UPDATE_FIELD = "update_field"
    SEND_DOCUMENT_PACKET = "send_document_packet"
    CREATE_TASK = "create_task"  # sequence steps only


class ExecutionStatus(str, Enum):
    """Outcome recorded for an attempted action."""

    EXECUTED = "executed"
    PENDING = "pending"  # delayed sequence step waiting for scheduler pickup
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"  # attempted but not applicable (e.g. no phone number)


class EnrollmentStatus(str, Enum):
    """Sequence enrollment lifecycle."""

    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class CancelReason(str, Enum):
    """Why an active enrollment was cancelled."""

    RESPONSE_DETECTED = "response_detected"
    MANUAL = "manual"
    PHASE_CHANGED = "phase_changed"
    ENROLLMENT_FAILED = "enrollment_failed"  # storage failed part-way through enroll


class Urgency(str, Enum):
    """Action item urgency, most urgent first."""

    CRITICAL = "critical"
    WARNING = "warning"
    INFO = "info"


class ActionItemConditionType(str, Enum):
    """Condition vocabulary for configurable action item rules."""

    TIME_SINCE_CREATION = "time_since_creation"
    PHASE_TIME = "phase_time"
    TASK_INCOMPLETE = "task_incomplete"
    TASK_STALE = "task_stale"
    LAST_NOTE_STALE = "last_note_stale"
    DATE_EXPIRING = "date_expiring"
    SPRINT_DEADLINE = "sprint_deadline"


# Action types that deliver a message to the entity
MESSAGE_ACTION_TYPES = frozenset(
    {
        AutomationActionType.SEND_SMS,
        AutomationActionType.SEND_EMAIL,
        AutomationActionType.SEND_DOCUMENT_PACKET,
    }
)

# Pending log rows may only move to one of these
PENDING_TERMINAL_STATUSES = frozenset({ExecutionStatus.EXECUTED, ExecutionStatus.FAILED})
