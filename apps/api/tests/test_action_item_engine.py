from datetime import datetime, timedelta, timezone

import pytest

from app.services.action_item_engine import (
    ActionItem,
    coerce_rule,
    collect_action_items,
    evaluate_rules_for_entity,
    score,
    sort_items,
)
from app.services.automation_store import SqlAutomationStore
from app.services.entity_snapshot import EntitySnapshot
from app.utils.datetime_parsing import to_epoch_ms

NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


def _client(**overrides) -> EntitySnapshot:
    data = {
        "id": "c-1",
        "first_name": "Maria",
        "last_name": "Lopez",
        "phase": "new_lead",
        "created_at": to_epoch_ms(NOW - timedelta(minutes=5)),
    }
    data.update(overrides)
    return EntitySnapshot.from_mapping(data, "client")


def _caregiver(**overrides) -> EntitySnapshot:
    data = {"id": "cg-1", "first_name": "James", "last_name": "Carter", "created_at": to_epoch_ms(NOW)}
    data.update(overrides)
    return EntitySnapshot.from_mapping(data, "caregiver")


def _item(urgency: str, type_: str) -> ActionItem:
    return ActionItem(
        entity_id="e",
        entity_type="client",
        name="N",
        type=type_,
        urgency=urgency,
        title="",
        detail="",
        action="",
        phase="new_lead",
        rule_id=type_,
    )


def test_sort_items_orders_by_urgency_and_keeps_input_order():
    items = [_item("warning", "a"), _item("critical", "b"), _item("info", "c"), _item("critical", "d")]
    assert [item.type for item in sort_items(items)] == ["b", "d", "a", "c"]


# =============================================================================
# Client defaults
# =============================================================================


def test_speed_to_lead_fires_after_thirty_minutes():
    lead = _client(created_at=to_epoch_ms(NOW - timedelta(minutes=31)))
    items = score([lead], now=NOW)

    assert len(items) == 1
    item = items[0]
    assert item.rule_id == "speed_to_lead"
    assert item.urgency == "critical"
    assert "31 minutes" in item.detail
    assert item.action == "Call Maria Lopez now"


def test_speed_to_lead_quiet_for_fresh_lead():
    assert score([_client(created_at=to_epoch_ms(NOW - timedelta(minutes=10)))], now=NOW) == []


def test_speed_to_lead_threshold_must_be_exceeded():
    assert score([_client(created_at=to_epoch_ms(NOW - timedelta(minutes=30)))], now=NOW) == []


def test_speed_to_lead_quiet_once_call_attempted():
    lead = _client(
        created_at=to_epoch_ms(NOW - timedelta(hours=2)),
        tasks={"initial_call_attempted": {"completed": True}},
    )
    assert score([lead], now=NOW) == []


def test_terminal_phase_yields_nothing():
    won = _client(
        phase="won",
        created_at=to_epoch_ms(NOW - timedelta(days=90)),
        phase_timestamps={"won": to_epoch_ms(NOW - timedelta(days=60))},
    )
    assert score([won], now=NOW) == []


def test_stale_lead_is_suppressed_by_specific_item():
    entity = _client(
        phase="assessment",
        created_at=to_epoch_ms(NOW - timedelta(days=30)),
        phase_timestamps={"assessment": to_epoch_ms(NOW - timedelta(days=20))},
    )
    items = score([entity], now=NOW)
    assert [item.type for item in items] == ["assessment_overdue"]
    assert items[0].detail.startswith("Assessment phase open 20 days.")


def test_stale_lead_fires_alone():
    entity = _client(
        phase="consultation",
        created_at=to_epoch_ms(NOW - timedelta(days=30)),
        phase_timestamps={"consultation": to_epoch_ms(NOW - timedelta(days=15))},
    )
    items = score([entity], now=NOW)
    assert [item.type for item in items] == ["stale_lead"]
    assert items[0].detail.startswith("15 days in Consultation phase.")


def test_nurture_check_uses_last_note():
    entity = _client(
        phase="nurture",
        created_at=to_epoch_ms(NOW - timedelta(days=200)),
        phase_timestamps={"nurture": to_epoch_ms(NOW - timedelta(days=100))},
        notes=[{"text": "Called", "timestamp": to_epoch_ms(NOW - timedelta(days=45))}],
    )
    items = score([entity], now=NOW)
    assert [(item.type, item.urgency) for item in items] == [("nurture_check", "info")]
    assert items[0].detail.startswith("45 days since last activity.")


# =============================================================================
# Caregiver defaults
# =============================================================================


@pytest.mark.parametrize(
    ("age", "expected"),
    [
        (timedelta(hours=12), []),
        (timedelta(days=1, hours=1), [("interview_not_scheduled", "warning")]),
        (timedelta(days=3), [("interview_not_scheduled", "critical")]),
    ],
)
def test_interview_not_scheduled_escalates(age, expected):
    caregiver = _caregiver(created_at=to_epoch_ms(NOW - age))
    items = score([caregiver], now=NOW)
    assert [(item.type, item.urgency) for item in items] == expected


def test_hca_expiring_soon():
    caregiver = _caregiver(
        phaseOverride="orientation",
        tasks={"invite_sent": True},
        hca_expiration=(NOW + timedelta(days=10)).date().isoformat(),
    )
    items = score([caregiver], now=NOW)
    assert [item.type for item in items] == ["hca_expiring"]
    assert items[0].title == "HCA expiring in 10 days"
    assert items[0].detail == "Expires Mar 12. Begin renewal process."


def test_hca_expired_is_critical():
    caregiver = _caregiver(
        phaseOverride="orientation",
        tasks={"invite_sent": True},
        hca_expiration=(NOW - timedelta(days=5)).date().isoformat(),
    )
    items = score([caregiver], now=NOW)
    assert [(item.type, item.urgency) for item in items] == [("hca_expired", "critical")]


def test_hca_renewal_planning_window():
    caregiver = _caregiver(
        phaseOverride="orientation",
        tasks={"invite_sent": True},
        hca_expiration=(NOW + timedelta(days=60)).date().isoformat(),
    )
    assert [item.type for item in score([caregiver], now=NOW)] == ["hca_expiring_later"]


def test_onboarding_sprint_counts_from_fallback_phase():
    caregiver = _caregiver(
        phaseOverride="onboarding",
        phase_timestamps={"interview": to_epoch_ms(NOW - timedelta(days=4))},
    )
    items = score([caregiver], now=NOW)
    assert [item.type for item in items] == ["onboarding_sprint"]
    assert items[0].title == "Onboarding docs incomplete, day 4"
    assert items[0].detail == "3 days remaining in the 7-day sprint."


# =============================================================================
# Configured rules
# =============================================================================


def test_rules_for_other_entity_types_are_ignored():
    rule = {
        "id": "r",
        "entity_type": "caregiver",
        "condition_type": "time_since_creation",
        "condition_config": {"min_minutes": 1},
    }
    assert evaluate_rules_for_entity(_client(), [rule], NOW) == []


def test_unknown_condition_type_is_ignored():
    rule = coerce_rule({"id": "r", "entity_type": "client", "condition_type": "moon_phase"})
    assert evaluate_rules_for_entity(_client(), [rule], NOW) == []


def test_broken_rule_does_not_hide_other_items():
    broken = {
        "id": "broken",
        "entity_type": "client",
        "condition_type": "phase_time",
        "condition_config": {"min_days": "soon"},
    }
    speed = {
        "id": "speed",
        "entity_type": "client",
        "condition_type": "time_since_creation",
        "condition_config": {"min_minutes": 1},
        "urgency": "critical",
        "title_template": "{{name}}",
    }
    items = evaluate_rules_for_entity(_client(), [broken, speed], NOW)
    assert [item.type for item in items] == ["speed"]
    assert items[0].title == "Maria Lopez"


@pytest.mark.asyncio
async def test_collect_action_items_prefers_configured_rules(db, make_client, make_action_item_rule):
    make_client(
        phase="consultation",
        phase_timestamps={"consultation": to_epoch_ms(NOW - timedelta(days=2))},
        created_at=NOW - timedelta(days=2),
    )
    make_client(first_name="Won", phase="won")
    make_action_item_rule()

    items = await collect_action_items(SqlAutomationStore(db), "client", now=NOW)

    assert len(items) == 1
    assert items[0].rule_id == "custom_rule"
    assert items[0].detail == "Maria Lopez: 2 days in Consultation"


@pytest.mark.asyncio
async def test_collect_action_items_falls_back_to_defaults(db, make_client):
    make_client(created_at=NOW - timedelta(hours=1))

    items = await collect_action_items(SqlAutomationStore(db), "client", now=NOW)

    assert [item.rule_id for item in items] == ["speed_to_lead"]
    assert "60 minutes" in items[0].detail
