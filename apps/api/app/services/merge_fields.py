"""Merge field resolution for automation templates.

Tokens look like `{{ first_name }}`. Token names are case-insensitive and
accepted in snake_case or camelCase. Known tokens with no value render as an
empty string; unknown tokens are left verbatim so template authors notice
typos.
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Mapping

from app.core.config import settings
from app.core.pipeline_definitions import get_phase_label
from app.services.entity_snapshot import EntitySnapshot, as_snapshot
from app.services.pipeline_helpers import current_phase, days_in_phase

__all__ = [
    "MERGE_FIELDS",
    "VARIABLE_PATTERN",
    "build_merge_context",
    "extract_merge_fields",
    "render_config",
    "render_template",
    "resolve",
    "unknown_merge_fields",
]

# Shared token extraction pattern: {{ variable_name }} (whitespace allowed)
VARIABLE_PATTERN = re.compile(r"{{\s*([a-zA-Z0-9_]+)\s*}}")

MERGE_FIELDS = (
    "first_name",
    "last_name",
    "full_name",
    "name",
    "phone",
    "email",
    "phase",
    "phase_label",
    "days_in_phase",
    "care_recipient_name",
    "contact_name",
    "company_name",
)


def _token_key(name: str) -> str:
    # first_name, firstName and FIRSTNAME all collapse to "firstname"
    return name.replace("_", "").lower()


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def build_merge_context(entity: EntitySnapshot, now: datetime | None = None) -> dict[str, str]:
    phase = current_phase(entity)
    return {
        "first_name": _stringify(entity.first_name),
        "last_name": _stringify(entity.last_name),
        "full_name": entity.full_name,
        "name": entity.full_name,
        "phone": _stringify(entity.phone),
        "email": _stringify(entity.email),
        "phase": phase,
        "phase_label": get_phase_label(entity.entity_type, phase),
        "days_in_phase": str(days_in_phase(entity, now)),
        "care_recipient_name": _stringify(entity.get_field("care_recipient_name")),
        "contact_name": _stringify(entity.get_field("contact_name")),
        "company_name": settings.COMPANY_NAME,
    }


def render_template(template: str | None, context: Mapping[str, Any]) -> str:
    """Substitute tokens from `context`; tokens it lacks stay verbatim."""
    if not template:
        return ""
    lookup = {_token_key(key): value for key, value in context.items()}

    def _replace(match: re.Match[str]) -> str:
        key = _token_key(match.group(1))
        if key not in lookup:
            return match.group(0)
        return _stringify(lookup[key])

    return VARIABLE_PATTERN.sub(_replace, template)


def resolve(
    template: str | None,
    entity: EntitySnapshot | Mapping[str, Any],
    extra: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> str:
    """Render `template` against an entity; `extra` values take precedence."""
    if not template:
        return ""
    entity = as_snapshot(entity)
    context: dict[str, Any] = dict(build_merge_context(entity, now))
    if extra:
        context.update(extra)
    return render_template(template, context)


def render_config(
    config: Mapping[str, Any] | None,
    entity: EntitySnapshot,
    extra: Mapping[str, Any] | None = None,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Return a copy of an action config with every string value rendered."""
    if not config:
        return {}

    def _render(value: Any) -> Any:
        if isinstance(value, str):
            return resolve(value, entity, extra, now)
        if isinstance(value, dict):
            return {key: _render(item) for key, item in value.items()}
        if isinstance(value, list):
            return [_render(item) for item in value]
        return value

    return {key: _render(value) for key, value in config.items()}


def extract_merge_fields(template: str | None) -> list[str]:
    if not template:
        return []
    seen: list[str] = []
    for match in VARIABLE_PATTERN.finditer(template):
        token = match.group(1)
        if token not in seen:
            seen.append(token)
    return seen


def unknown_merge_fields(template: str | None) -> list[str]:
    known = {_token_key(name) for name in MERGE_FIELDS}
    return [token for token in extract_merge_fields(template) if _token_key(token) not in known]
