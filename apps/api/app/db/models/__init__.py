"""SQLAlchemy ORM models."""

from app.db.models.automation import ActionItemRule, AutomationRule, ExecutionLogEntry
from app.db.models.entities import Caregiver, Client
from app.db.models.sequences import Sequence, SequenceEnrollment, SequenceLogEntry

__all__ = [
    # Pipeline entities
    "Caregiver",
    "Client",
    # Rules and audit
    "ActionItemRule",
    "AutomationRule",
    "ExecutionLogEntry",
    # Sequences
    "Sequence",
    "SequenceEnrollment",
    "SequenceLogEntry",
]
