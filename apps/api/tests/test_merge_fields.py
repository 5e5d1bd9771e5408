from datetime import datetime, timedelta, timezone

import pytest

from app.core.config import settings
from app.services.entity_snapshot import EntitySnapshot
from app.services.merge_fields import (
    extract_merge_fields,
    render_config,
    render_template,
    resolve,
    unknown_merge_fields,
)
from app.utils.datetime_parsing import to_epoch_ms
from app.utils.normalization import normalize_phone

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


def _client(**overrides) -> EntitySnapshot:
    data = {
        "id": "c-1",
        "first_name": "Maria",
        "last_name": "Lopez",
        "phone": "5551234567",
        "email": "maria@example.com",
        "care_recipient_name": "Rosa",
        "contact_name": "Ana",
        "phase": "assessment",
        "phase_timestamps": {"assessment": to_epoch_ms(NOW - timedelta(days=3, hours=2))},
    }
    data.update(overrides)
    return EntitySnapshot.from_mapping(data, "client")


def test_resolve_substitutes_entity_fields():
    rendered = resolve("Hi {{first_name}} {{last_name}}, this is {{company_name}}.", _client(), now=NOW)
    assert rendered == f"Hi Maria Lopez, this is {settings.COMPANY_NAME}."


def test_resolve_accepts_camel_case_and_whitespace():
    rendered = resolve("{{ firstName }}/{{FULL_NAME}}/{{careRecipientName}}", _client(), now=NOW)
    assert rendered == "Maria/Maria Lopez/Rosa"


def test_resolve_phase_fields():
    rendered = resolve("{{phase}} | {{phase_label}} | {{days_in_phase}}", _client(), now=NOW)
    assert rendered == "assessment | In-Home Assessment | 3"


def test_unknown_tokens_stay_verbatim():
    assert resolve("Hello {{favorite_color}}", _client(), now=NOW) == "Hello {{favorite_color}}"


def test_known_token_without_value_renders_empty():
    entity = _client(email=None, last_name=None)
    assert resolve("[{{email}}][{{last_name}}]", entity, now=NOW) == "[][]"


def test_resolve_accepts_plain_mapping():
    assert resolve("Hi {{first_name}}", {"id": "x", "firstName": "Lee"}) == "Hi Lee"


@pytest.mark.parametrize("template", ["", None])
def test_empty_template_renders_empty(template):
    assert resolve(template, _client()) == ""


def test_extra_values_take_precedence():
    rendered = resolve("{{first_name}} {{step}}", _client(), extra={"step": 2, "first_name": "M."}, now=NOW)
    assert rendered == "M. 2"


def test_render_template_without_entity():
    assert render_template("Day {{ sprint_day }} of {{total}}", {"sprint_day": 4}) == "Day 4 of {{total}}"


def test_render_config_renders_nested_strings():
    config = {
        "subject": "Welcome {{first_name}}",
        "value": 3,
        "documents": ["{{last_name}} packet", 7],
        "nested": {"note": "{{contact_name}}"},
    }
    rendered = render_config(config, _client(), now=NOW)
    assert rendered == {
        "subject": "Welcome Maria",
        "value": 3,
        "documents": ["Lopez packet", 7],
        "nested": {"note": "Ana"},
    }
    # Input is left untouched
    assert config["subject"] == "Welcome {{first_name}}"


def test_extract_and_unknown_merge_fields():
    template = "{{first_name}} {{bogus}} {{first_name}} {{firstName}}"
    assert extract_merge_fields(template) == ["first_name", "bogus", "firstName"]
    assert unknown_merge_fields(template) == ["bogus"]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("(555) 123-4567", "+15551234567"),
        ("1-555-123-4567", "+15551234567"),
        ("+15551234567", "+15551234567"),
        ("12345", None),
        ("", None),
        (None, None),
    ],
)
def test_normalize_phone(raw, expected):
    assert normalize_phone(raw) == expected
