"""Pipeline entity enums."""

from enum import Enum


class EntityType(str, Enum):
    """Entity types watched by the automation engine."""

    CAREGIVER = "caregiver"
    CLIENT = "client"
