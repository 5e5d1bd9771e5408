"""Automation engine exceptions.

None of these reach the business mutation path: the dispatcher, the
enrollment manager and the trigger queue contain them and record outcomes
in the execution log. They surface only through the admin HTTP routes.
"""


class AutomationError(Exception):
    """Base exception for automation engine errors."""

    pass


class EntityNotFoundError(AutomationError):
    """Caregiver or client row does not exist."""

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} {entity_id} not found")


class EnrollmentConflictError(AutomationError):
    """An active enrollment already exists for this (sequence, entity) pair."""

    def __init__(self, sequence_id: str, entity_id: str):
        self.sequence_id = sequence_id
        self.entity_id = entity_id
        super().__init__(f"Entity {entity_id} already has an active enrollment in sequence {sequence_id}")


class InvalidLogTransitionError(AutomationError):
    """Log rows only move from pending to executed or failed."""

    def __init__(self, current: str, target: str):
        self.current = current
        self.target = target
        super().__init__(f"Invalid log transition: {current} -> {target}")


class MessageDeliveryError(AutomationError):
    """Messaging provider rejected or failed to accept a message."""

    pass
