"""Pipeline state helpers shared by conditions, merge fields and action items.

Every time calculation takes an explicit `now` so callers can pin the clock.
Elapsed days are whole days, floored.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Any

from app.core.pipeline_definitions import (
    CAREGIVER_PHASE_ORDER,
    CAREGIVER_PHASE_TASKS,
    ENTRY_PHASE_BY_ENTITY,
    TERMINAL_PHASES_BY_ENTITY,
)
from app.db.enums import EntityType
from app.services.entity_snapshot import EntitySnapshot
from app.utils.datetime_parsing import to_datetime, utcnow

__all__ = [
    "current_phase",
    "days_in_phase",
    "days_inactive",
    "days_since_created",
    "days_since_last_activity",
    "is_task_done",
    "is_terminal_phase",
    "last_activity_at",
    "last_note_at",
    "minutes_since_created",
    "phase_entered_at",
    "to_datetime",
    "whole_days_between",
]

_ONE_DAY = timedelta(days=1)


def is_task_done(value: Any) -> bool:
    """Tasks are stored as a bare bool or as {completed, completed_at, completed_by}."""
    if isinstance(value, bool):
        return value
    if isinstance(value, dict):
        return bool(value.get("completed"))
    return False


def _calculated_caregiver_phase(tasks: dict[str, Any]) -> str:
    for phase in CAREGIVER_PHASE_ORDER:
        phase_tasks = CAREGIVER_PHASE_TASKS.get(phase, [])
        if not phase_tasks:
            continue
        if not all(is_task_done(tasks.get(task_id)) for task_id in phase_tasks):
            return phase
    return CAREGIVER_PHASE_ORDER[-1]


def current_phase(entity: EntitySnapshot) -> str:
    if entity.entity_type == EntityType.CAREGIVER.value:
        if entity.phase:
            return entity.phase
        return _calculated_caregiver_phase(entity.tasks)
    return entity.phase or ENTRY_PHASE_BY_ENTITY.get(entity.entity_type, "")


def is_terminal_phase(entity: EntitySnapshot, phase: str | None = None) -> bool:
    phase = phase or current_phase(entity)
    return phase in TERMINAL_PHASES_BY_ENTITY.get(entity.entity_type, frozenset())


def whole_days_between(start: datetime, now: datetime) -> int:
    return (now - start) // _ONE_DAY


def phase_entered_at(entity: EntitySnapshot, phase: str | None = None) -> datetime | None:
    phase = phase or current_phase(entity)
    return to_datetime(entity.phase_timestamps.get(phase))


def days_in_phase(entity: EntitySnapshot, now: datetime | None = None) -> int:
    """Whole days since the entity entered its current phase (0 if unknown)."""
    entered = phase_entered_at(entity)
    if entered is None:
        return 0
    return whole_days_between(entered, now or utcnow())


def days_since_created(entity: EntitySnapshot, now: datetime | None = None) -> int:
    if entity.created_at is None:
        return 0
    return whole_days_between(entity.created_at, now or utcnow())


def minutes_since_created(entity: EntitySnapshot, now: datetime | None = None) -> float:
    if entity.created_at is None:
        return 0.0
    return ((now or utcnow()) - entity.created_at).total_seconds() / 60


def last_note_at(entity: EntitySnapshot) -> datetime | None:
    latest: datetime | None = None
    for note in entity.notes:
        if not isinstance(note, dict):
            continue
        ts = to_datetime(note.get("timestamp") or note.get("date"))
        if ts is not None and (latest is None or ts > latest):
            latest = ts
    return latest


def days_since_last_activity(entity: EntitySnapshot, now: datetime | None = None) -> int:
    """Days since the latest note; falls back to days since creation."""
    now = now or utcnow()
    latest = last_note_at(entity)
    if latest is None:
        return days_since_created(entity, now)
    return whole_days_between(latest, now)


def last_activity_at(entity: EntitySnapshot) -> datetime | None:
    """Most recent of creation, current phase entry and latest note."""
    candidates = [entity.created_at, phase_entered_at(entity), last_note_at(entity)]
    known = [value for value in candidates if value is not None]
    return max(known) if known else None


def days_inactive(entity: EntitySnapshot, now: datetime | None = None) -> int:
    latest = last_activity_at(entity)
    if latest is None:
        return 0
    return whole_days_between(latest, now or utcnow())
