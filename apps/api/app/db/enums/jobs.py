"""Scheduled job enums."""

from enum import Enum


class JobType(str, Enum):
    """Background sweeps invoked by the external scheduler."""

    SEQUENCE_STEP_SWEEP = "sequence_step_sweep"
    INACTIVITY_SWEEP = "inactivity_sweep"
