"""Read-only entity snapshots consumed by the automation engine.

The engine never holds ORM rows across awaits. Triggers and sweeps build a
snapshot from a freshly loaded row (or from a plain mapping in tests and
API payloads) and pass it into the pure evaluators.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping

from app.db.enums import EntityType
from app.db.models import Caregiver, Client
from app.utils.datetime_parsing import to_datetime
from app.utils.normalization import normalize_name

# Extra fields merge templates and action item rules may read
_EXTRA_FIELDS = ("care_recipient_name", "contact_name", "hca_expiration", "referral_source")

_CAMEL_ALIASES = {
    "firstName": "first_name",
    "lastName": "last_name",
    "phaseOverride": "phase_override",
    "phaseTimestamps": "phase_timestamps",
    "createdAt": "created_at",
    "applicationDate": "application_date",
    "careRecipientName": "care_recipient_name",
    "contactName": "contact_name",
    "hcaExpiration": "hca_expiration",
    "referralSource": "referral_source",
    "entityType": "entity_type",
}


@dataclass(frozen=True)
class EntitySnapshot:
    entity_type: str
    id: str
    first_name: str | None = None
    last_name: str | None = None
    phone: str | None = None
    email: str | None = None
    # Explicit phase: client phase, or caregiver phase override
    phase: str | None = None
    tasks: dict[str, Any] = field(default_factory=dict)
    notes: tuple[dict[str, Any], ...] = ()
    phase_timestamps: dict[str, Any] = field(default_factory=dict)
    # Pipeline start (caregiver application date, else row creation)
    created_at: datetime | None = None
    archived: bool = False
    extras: dict[str, Any] = field(default_factory=dict)

    @property
    def full_name(self) -> str:
        return normalize_name(f"{self.first_name or ''} {self.last_name or ''}") or ""

    @property
    def display_name(self) -> str:
        return self.full_name or "Unnamed"

    def get_field(self, name: str) -> Any:
        if name in self.extras:
            return self.extras[name]
        return getattr(self, name, None)

    @classmethod
    def from_model(cls, row: Caregiver | Client) -> "EntitySnapshot":
        if isinstance(row, Caregiver):
            entity_type = EntityType.CAREGIVER.value
            phase = row.phase_override
            created_at = row.application_date or row.created_at
        else:
            entity_type = EntityType.CLIENT.value
            phase = row.phase
            created_at = row.created_at
        extras = {name: getattr(row, name) for name in _EXTRA_FIELDS if hasattr(row, name)}
        return cls(
            entity_type=entity_type,
            id=str(row.id),
            first_name=row.first_name,
            last_name=row.last_name,
            phone=row.phone,
            email=row.email,
            phase=phase,
            tasks=dict(row.tasks or {}),
            notes=tuple(row.notes or ()),
            phase_timestamps=dict(row.phase_timestamps or {}),
            created_at=to_datetime(created_at),
            archived=bool(row.archived),
            extras=extras,
        )

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any], entity_type: str | None = None) -> "EntitySnapshot":
        """Build from a dict with snake_case or camelCase keys."""
        values = {_CAMEL_ALIASES.get(key, key): value for key, value in data.items()}
        resolved_type = entity_type or values.get("entity_type") or EntityType.CLIENT.value
        if isinstance(resolved_type, EntityType):
            resolved_type = resolved_type.value

        if resolved_type == EntityType.CAREGIVER.value:
            phase = values.get("phase_override") or values.get("phase")
            created_raw = values.get("application_date") or values.get("created_at")
        else:
            phase = values.get("phase")
            created_raw = values.get("created_at")

        extras = {name: values[name] for name in _EXTRA_FIELDS if name in values}
        return cls(
            entity_type=resolved_type,
            id=str(values.get("id") or ""),
            first_name=values.get("first_name"),
            last_name=values.get("last_name"),
            phone=values.get("phone"),
            email=values.get("email"),
            phase=phase,
            tasks=dict(values.get("tasks") or {}),
            notes=tuple(values.get("notes") or ()),
            phase_timestamps=dict(values.get("phase_timestamps") or {}),
            created_at=to_datetime(created_raw),
            archived=bool(values.get("archived", False)),
            extras=extras,
        )


def as_snapshot(entity: Any, entity_type: str | None = None) -> EntitySnapshot:
    """Accept a snapshot, an ORM row, or a mapping."""
    if isinstance(entity, EntitySnapshot):
        return entity
    if isinstance(entity, (Caregiver, Client)):
        return EntitySnapshot.from_model(entity)
    if isinstance(entity, Mapping):
        return EntitySnapshot.from_mapping(entity, entity_type)
    raise TypeError(f"Unsupported entity type: {type(entity).__name__}")
