"""Structured logging helpers (PHI-safe)."""

from typing import Any


def build_log_context(
    *,
    entity_type: str | None = None,
    entity_id: str | None = None,
    trigger_type: str | None = None,
    rule_id: str | None = None,
    sequence_id: str | None = None,
    enrollment_id: str | None = None,
    step_index: int | None = None,
    action_type: str | None = None,
) -> dict[str, Any]:
    """Return a PHI-safe log context dict.

    Only identifiers go into log records; names, phone numbers, emails and
    rendered message bodies never do.
    """
    context: dict[str, Any] = {}
    if entity_type:
        context["entity_type"] = entity_type
    if entity_id:
        context["entity_id"] = entity_id
    if trigger_type:
        context["trigger_type"] = trigger_type
    if rule_id:
        context["rule_id"] = rule_id
    if sequence_id:
        context["sequence_id"] = sequence_id
    if enrollment_id:
        context["enrollment_id"] = enrollment_id
    if step_index is not None:
        context["step_index"] = step_index
    if action_type:
        context["action_type"] = action_type
    return context


def configure_logging(level: str = "INFO") -> None:
    """Configure process-wide logging for entry points (API, CLI)."""
    import logging

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
