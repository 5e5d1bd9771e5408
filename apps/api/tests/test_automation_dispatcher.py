import pytest

from app.core.config import settings
from app.db.enums import ExecutionStatus
from app.db.models import Client, ExecutionLogEntry
from app.services.automation_dispatcher import AutomationDispatcher, rule_dedupe_key
from app.services.automation_executor import ActionResult, DefaultActionExecutor
from app.services.automation_store import SqlAutomationStore
from app.services.entity_snapshot import EntitySnapshot


def _dispatcher(db, sender, clock) -> AutomationDispatcher:
    store = SqlAutomationStore(db)
    return AutomationDispatcher(store, DefaultActionExecutor(store, sender, clock=clock), clock=clock)


@pytest.mark.asyncio
async def test_fire_runs_only_matching_enabled_rules(db, sender, clock, make_client, make_rule):
    lead = make_client()
    welcome = make_rule()
    make_rule(name="Proposal only", conditions={"phase": "proposal"})
    make_rule(name="Disabled", enabled=False)
    make_rule(name="Caregiver rule", entity_type="caregiver")
    make_rule(name="Other trigger", trigger_type="phase_change")

    results = await _dispatcher(db, sender, clock).fire("new_record", EntitySnapshot.from_model(lead))

    assert [r.rule_id for r in results] == [welcome.id]
    assert results[0].status == ExecutionStatus.SUCCESS
    assert len(sender.sent) == 1
    message = sender.sent[0]
    assert message.channel == "sms"
    assert message.to == "+15551234567"
    assert message.body == f"Hi Maria, thanks for contacting {settings.COMPANY_NAME}!"

    log = db.query(ExecutionLogEntry).all()
    assert len(log) == 1
    assert log[0].rule_id == welcome.id
    assert log[0].status == "success"
    assert log[0].trigger_type == "new_record"
    assert log[0].message == message.body


@pytest.mark.asyncio
async def test_failed_delivery_is_logged_and_other_rules_still_run(
    db, failing_sender, clock, make_client, make_rule
):
    lead = make_client()
    sms = make_rule(sort_order=0)
    note = make_rule(
        name="Note",
        action_type="add_note",
        message_template="Welcome text queued for {{first_name}}",
        sort_order=1,
    )

    results = await _dispatcher(db, failing_sender, clock).fire("new_record", EntitySnapshot.from_model(lead))

    by_rule = {r.rule_id: r for r in results}
    assert by_rule[sms.id].status == ExecutionStatus.FAILED
    assert "Messaging provider returned 503" in by_rule[sms.id].detail
    assert by_rule[note.id].status == ExecutionStatus.SUCCESS

    failed = db.query(ExecutionLogEntry).filter(ExecutionLogEntry.rule_id == sms.id).one()
    assert failed.status == "failed"
    assert failed.error_detail.startswith("MessageDeliveryError")

    db.expire_all()
    notes = db.get(Client, lead.id).notes
    assert notes[-1]["text"] == "Welcome text queued for Maria"
    assert notes[-1]["type"] == "auto"


@pytest.mark.asyncio
async def test_missing_phone_is_skipped_not_failed(db, sender, clock, make_client, make_rule):
    lead = make_client(phone=None)
    make_rule()

    results = await _dispatcher(db, sender, clock).fire("new_record", EntitySnapshot.from_model(lead))

    assert [r.status for r in results] == [ExecutionStatus.SKIPPED]
    assert sender.sent == []
    assert db.query(ExecutionLogEntry).one().status == "skipped"


@pytest.mark.asyncio
async def test_keyword_rule_matches_inbound_text(db, sender, clock, make_client, make_rule):
    lead = make_client()
    rule = make_rule(
        trigger_type="inbound_message",
        conditions={"keyword": "pricing"},
        action_type="add_note",
        message_template="Asked about pricing",
    )
    dispatcher = _dispatcher(db, sender, clock)
    snapshot = EntitySnapshot.from_model(lead)

    assert await dispatcher.fire("inbound_message", snapshot, {"message_text": "hello"}) == []
    results = await dispatcher.fire("inbound_message", snapshot, {"message_text": "What is your PRICING?"})
    assert [r.rule_id for r in results] == [rule.id]


@pytest.mark.asyncio
async def test_dedupe_key_limits_rule_to_one_firing(db, sender, clock, make_client, make_rule):
    lead = make_client()
    rule = make_rule(trigger_type="days_inactive", conditions={"min_days": 3})
    dispatcher = _dispatcher(db, sender, clock)
    snapshot = EntitySnapshot.from_model(lead)

    first = await dispatcher.fire("days_inactive", snapshot, {"days_inactive": 4}, dedupe_key="c:2026-03-02")
    second = await dispatcher.fire("days_inactive", snapshot, {"days_inactive": 4}, dedupe_key="c:2026-03-02")
    next_day = await dispatcher.fire("days_inactive", snapshot, {"days_inactive": 5}, dedupe_key="c:2026-03-03")

    assert len(first) == 1
    assert second == []
    assert len(next_day) == 1
    keys = {row.dedupe_key for row in db.query(ExecutionLogEntry).all()}
    assert keys == {rule_dedupe_key(rule.id, "c:2026-03-02"), rule_dedupe_key(rule.id, "c:2026-03-03")}


@pytest.mark.asyncio
async def test_action_config_is_rendered(db, sender, clock, make_client, make_rule):
    lead = make_client()
    make_rule(
        action_type="send_email",
        action_config={"subject": "Welcome, {{first_name}}"},
        message_template="Dear {{contact_name}}",
    )

    await _dispatcher(db, sender, clock).fire("new_record", EntitySnapshot.from_model(lead))

    assert sender.sent[0].subject == "Welcome, Maria"
    assert sender.sent[0].body == "Dear Ana Lopez"
    assert sender.sent[0].to == "maria@example.com"


class _BrokenStore:
    async def get_enabled_rules(self, trigger_type, entity_type):
        raise RuntimeError("database unavailable")


class _RaisingExecutor:
    async def execute(self, request):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_rule_read_failure_returns_no_results(clock):
    dispatcher = AutomationDispatcher(_BrokenStore(), _RaisingExecutor(), clock=clock)
    assert await dispatcher.fire("new_record", {"id": "c-1"}) == []


@pytest.mark.asyncio
async def test_executor_exception_becomes_failed_result(db, clock, make_client, make_rule):
    lead = make_client()
    rule = make_rule()
    dispatcher = AutomationDispatcher(SqlAutomationStore(db), _RaisingExecutor(), clock=clock)

    results = await dispatcher.fire("new_record", EntitySnapshot.from_model(lead))

    assert results == [
        ActionResult(
            status=ExecutionStatus.FAILED,
            action_type="send_sms",
            entity_id=lead.id,
            rule_id=rule.id,
            detail="RuntimeError: boom",
        )
    ]


@pytest.mark.asyncio
async def test_unsupported_entity_is_ignored(db, sender, clock, make_rule):
    make_rule()
    assert await _dispatcher(db, sender, clock).fire("new_record", object()) == []


@pytest.mark.asyncio
async def test_malformed_entity_mapping_is_ignored(db, sender, clock, make_rule):
    make_rule()
    entity = {"id": "c-1", "entity_type": "client", "phase": "new_lead", "tasks": ["call back"]}
    assert await _dispatcher(db, sender, clock).fire("new_record", entity) == []
