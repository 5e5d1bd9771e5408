from datetime import timedelta

import pytest

from app.db.enums import CancelReason, EnrollmentStatus, ExecutionStatus
from app.db.models import Client, ExecutionLogEntry, SequenceEnrollment
from app.services.automation_executor import DefaultActionExecutor
from app.services.automation_store import SqlAutomationStore
from app.services.entity_snapshot import EntitySnapshot
from app.services.sequence_service import (
    ALREADY_ENROLLED,
    ENROLLED,
    NOT_ENROLLED,
    SequenceEnrollmentManager,
    build_enrollment_record,
    compose_delay,
    decompose_delay,
    delay_to_deadline,
    normalize_sequence_action,
    should_auto_enroll,
)


def _manager(db, sender, clock, store=None):
    store = store or SqlAutomationStore(db)
    executor = DefaultActionExecutor(store, sender, clock=clock)
    return store, SequenceEnrollmentManager(store, executor, clock=clock)


def _notes(db, client_id: str) -> list[str]:
    db.expire_all()
    return [note["text"] for note in db.get(Client, client_id).notes]


# =============================================================================
# Pure helpers
# =============================================================================


@pytest.mark.parametrize(
    ("enrollments", "expected"),
    [
        (None, True),
        ([], True),
        ([{"status": "completed"}, {"status": "cancelled"}], True),
        ([{"status": "completed"}, {"status": "active"}], False),
    ],
)
def test_should_auto_enroll(enrollments, expected):
    assert should_auto_enroll(enrollments) is expected


def test_build_enrollment_record(clock):
    record = build_enrollment_record("c-1", "s-1", "ana", 2, entity_type="client", started_at=clock())
    assert record == {
        "entity_id": "c-1",
        "entity_type": "client",
        "sequence_id": "s-1",
        "status": "active",
        "current_step": 2,
        "started_by": "ana",
        "start_from_step": 2,
        "started_at": clock(),
    }


@pytest.mark.parametrize(
    ("hours", "value", "unit"),
    [
        (0, 0, "minutes"),
        (0.5, 30, "minutes"),
        (1, 1, "hours"),
        (36, 36, "hours"),
        (24, 1, "days"),
        (48, 2, "days"),
    ],
)
def test_delay_decomposition_round_trips(hours, value, unit):
    assert decompose_delay(hours) == (value, unit)
    assert compose_delay(value, unit) == pytest.approx(hours)


def test_delay_to_deadline(clock):
    assert delay_to_deadline(clock(), 1.5) == clock() + timedelta(minutes=90)
    assert delay_to_deadline(clock(), 0) == clock()


def test_normalize_sequence_action():
    assert normalize_sequence_action("sms") == "send_sms"
    assert normalize_sequence_action("email") == "send_email"
    assert normalize_sequence_action("task") == "create_task"
    assert normalize_sequence_action("add_note") == "add_note"


# =============================================================================
# Enrollment
# =============================================================================


@pytest.mark.asyncio
async def test_enroll_runs_immediate_step_and_schedules_the_rest(
    db, sender, clock, make_client, make_sequence
):
    lead = make_client()
    sequence_row = make_sequence()
    store, manager = _manager(db, sender, clock)
    sequence = await store.get_sequence(sequence_row.id)

    outcome = await manager.enroll(sequence, EntitySnapshot.from_model(lead), started_by="ana")

    assert outcome.status == ENROLLED
    assert outcome.enrollment.status == EnrollmentStatus.ACTIVE.value
    assert outcome.enrollment.current_step == 1
    assert outcome.enrollment.started_by == "ana"
    assert [r.status for r in outcome.step_results] == [ExecutionStatus.SUCCESS]
    assert outcome.scheduled_steps == 1
    assert [(m.channel, m.body) for m in sender.sent] == [("sms", "Hi Maria!")]

    steps = await store.list_sequence_log(outcome.enrollment.id)
    assert [(s.step_index, s.status) for s in steps] == [(0, "executed"), (1, "pending")]
    assert steps[0].executed_at == clock()
    assert steps[1].scheduled_at == clock() + timedelta(hours=24)
    assert steps[1].executed_at is None

    log = db.query(ExecutionLogEntry).one()
    assert (log.sequence_id, log.step_index, log.status) == (sequence.id, 0, "success")


@pytest.mark.asyncio
async def test_enroll_completes_when_every_step_is_immediate(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence(
        steps=[
            {"action_type": "sms", "delay_hours": 0, "template": "One"},
            {"action_type": "add_note", "delay_hours": 0, "template": "Two"},
        ]
    )
    store, manager = _manager(db, sender, clock)

    outcome = await manager.enroll(await store.get_sequence(sequence_row.id), EntitySnapshot.from_model(lead))

    assert outcome.enrollment.status == EnrollmentStatus.COMPLETED.value
    assert outcome.enrollment.current_step == 2
    assert outcome.enrollment.completed_at == clock()
    assert outcome.scheduled_steps == 0


@pytest.mark.asyncio
async def test_enroll_from_later_step(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence()
    store, manager = _manager(db, sender, clock)

    outcome = await manager.enroll(
        await store.get_sequence(sequence_row.id), EntitySnapshot.from_model(lead), start_from_step=1
    )

    assert outcome.status == ENROLLED
    assert outcome.step_results == []
    assert outcome.enrollment.current_step == 1
    steps = await store.list_sequence_log(outcome.enrollment.id)
    assert [(s.step_index, s.status) for s in steps] == [(1, "pending")]
    assert sender.sent == []


@pytest.mark.asyncio
async def test_duplicate_enrollment_is_not_an_error(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence()
    store, manager = _manager(db, sender, clock)
    sequence = await store.get_sequence(sequence_row.id)

    first = await manager.enroll(sequence, EntitySnapshot.from_model(lead))
    second = await manager.enroll(sequence, EntitySnapshot.from_model(lead))

    assert second.status == ALREADY_ENROLLED
    assert second.enrollment.id == first.enrollment.id
    assert db.query(SequenceEnrollment).count() == 1
    assert len(sender.sent) == 1
    assert 'Already active in sequence "New lead follow-up"; duplicate enrollment skipped.' in _notes(db, lead.id)


class _RacingStore(SqlAutomationStore):
    """Misses the active enrollment on read, as a concurrent enroller would."""

    async def get_active_enrollments(self, sequence_id, entity_id):
        return []


@pytest.mark.asyncio
async def test_concurrent_enrollment_rejected_by_unique_index(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence()
    store, manager = _manager(db, sender, clock, store=_RacingStore(db))
    sequence = await store.get_sequence(sequence_row.id)

    await manager.enroll(sequence, EntitySnapshot.from_model(lead))
    raced = await manager.enroll(sequence, EntitySnapshot.from_model(lead))

    assert raced.status == ALREADY_ENROLLED
    assert raced.step_results == []
    assert db.query(SequenceEnrollment).count() == 1
    assert len(sender.sent) == 1


@pytest.mark.asyncio
async def test_reenroll_after_completion(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence(steps=[{"action_type": "add_note", "delay_hours": 0, "template": "Hi"}])
    store, manager = _manager(db, sender, clock)
    sequence = await store.get_sequence(sequence_row.id)

    first = await manager.enroll(sequence, EntitySnapshot.from_model(lead))
    second = await manager.enroll(sequence, EntitySnapshot.from_model(lead))

    assert first.enrollment.status == "completed"
    assert second.status == ENROLLED
    assert db.query(SequenceEnrollment).count() == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("overrides", "start", "detail"),
    [
        ({"enabled": False}, 0, "Sequence is disabled"),
        ({"steps": []}, 0, "Sequence has no steps"),
        ({}, 5, "Invalid start step: 5"),
    ],
)
async def test_enroll_rejects_unusable_sequences(
    db, sender, clock, make_client, make_sequence, overrides, start, detail
):
    lead = make_client()
    sequence_row = make_sequence(**overrides)
    store, manager = _manager(db, sender, clock)

    outcome = await manager.enroll(
        await store.get_sequence(sequence_row.id), EntitySnapshot.from_model(lead), start_from_step=start
    )

    assert outcome.status == NOT_ENROLLED
    assert outcome.detail == detail
    assert db.query(SequenceEnrollment).count() == 0


@pytest.mark.asyncio
async def test_task_step_becomes_task_note(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence(
        name="Consult prep",
        steps=[{"action_type": "task", "delay_hours": 0, "template": "Call {{first_name}} to confirm"}],
    )
    store, manager = _manager(db, sender, clock)

    outcome = await manager.enroll(await store.get_sequence(sequence_row.id), EntitySnapshot.from_model(lead))

    assert outcome.step_results[0].ok
    db.expire_all()
    note = db.get(Client, lead.id).notes[-1]
    assert note["text"] == "Call Maria to confirm"
    assert note["type"] == "task"
    assert note["outcome"] == "Sequence: Consult prep, Step 1"
    log = db.query(ExecutionLogEntry).one()
    assert (log.action_type, log.status) == ("create_task", "success")


# =============================================================================
# Cancellation and trigger hooks
# =============================================================================


@pytest.mark.asyncio
async def test_manual_cancel(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence()
    store, manager = _manager(db, sender, clock)
    outcome = await manager.enroll(await store.get_sequence(sequence_row.id), EntitySnapshot.from_model(lead))

    clock.advance(hours=2)
    cancelled = await manager.cancel(outcome.enrollment.id, cancelled_by="ana")

    assert cancelled.status == "cancelled"
    assert cancelled.cancel_reason == CancelReason.MANUAL.value
    assert cancelled.cancelled_by == "ana"
    assert cancelled.cancelled_at == clock()
    assert 'Sequence "New lead follow-up" manually cancelled by ana.' in _notes(db, lead.id)
    # Already cancelled: nothing to do
    assert await manager.cancel(outcome.enrollment.id) is None


@pytest.mark.asyncio
async def test_cancelled_enrollment_never_runs_pending_steps(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence()
    store, manager = _manager(db, sender, clock)
    outcome = await manager.enroll(await store.get_sequence(sequence_row.id), EntitySnapshot.from_model(lead))
    await manager.cancel(outcome.enrollment.id)

    clock.advance(hours=25)
    assert await store.list_due_sequence_steps(clock(), 10) == []

    pending = (await store.list_sequence_log(outcome.enrollment.id))[1]
    assert await manager.execute_due_step(pending.id) is None
    assert len(sender.sent) == 1
    assert (await store.get_sequence_log_entry(pending.id)).status == "pending"


@pytest.mark.asyncio
async def test_inbound_message_stops_only_stop_on_response_sequences(
    db, sender, clock, make_client, make_sequence
):
    lead = make_client()
    stopping = make_sequence(name="Stops")
    continuing = make_sequence(name="Keeps going", stop_on_response=False)
    store, manager = _manager(db, sender, clock)
    snapshot = EntitySnapshot.from_model(lead)
    await manager.enroll(await store.get_sequence(stopping.id), snapshot)
    await manager.enroll(await store.get_sequence(continuing.id), snapshot)

    cancelled = await manager.on_inbound_message(snapshot)

    assert [(e.sequence_id, e.cancel_reason) for e in cancelled] == [(stopping.id, "response_detected")]
    active = await store.list_entity_enrollments(lead.id, status="active")
    assert [e.sequence_id for e in active] == [continuing.id]
    assert 'Sequence "Stops" stopped: response received.' in _notes(db, lead.id)


@pytest.mark.asyncio
async def test_phase_change_auto_enrolls_matching_sequences(db, sender, clock, make_client, make_sequence):
    lead = make_client(phase="consultation")
    consult = make_sequence(name="Consult", trigger_phase="consultation")
    make_sequence(name="Manual only", trigger_phase=None)
    make_sequence(name="Caregivers", entity_type="caregiver", trigger_phase="consultation")
    _, manager = _manager(db, sender, clock)

    outcomes = await manager.on_phase_changed(EntitySnapshot.from_model(lead), "consultation")

    assert [(o.sequence_id, o.status) for o in outcomes] == [(consult.id, ENROLLED)]


@pytest.mark.asyncio
async def test_terminal_phase_cancels_active_enrollments(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence()
    store, manager = _manager(db, sender, clock)
    await manager.enroll(await store.get_sequence(sequence_row.id), EntitySnapshot.from_model(lead))

    lead_row = db.get(Client, lead.id)
    lead_row.phase = "won"
    db.commit()
    await manager.on_phase_changed(EntitySnapshot.from_model(lead_row), "won")

    enrollments = await store.list_entity_enrollments(lead.id)
    assert [(e.status, e.cancel_reason) for e in enrollments] == [("cancelled", "phase_changed")]
    assert 'Sequence "New lead follow-up" cancelled: moved to Won.' in _notes(db, lead.id)


def _sms_steps(*delays: float) -> list[dict]:
    return [
        {"action_type": "send_sms", "delay_hours": delay, "template": f"Step {index}"}
        for index, delay in enumerate(delays)
    ]


async def _sweep(store, manager, clock) -> None:
    for entry in await store.list_due_sequence_steps(clock(), 10):
        await manager.execute_due_step(entry)


@pytest.mark.asyncio
async def test_out_of_order_delays_run_every_step_before_completing(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence(steps=_sms_steps(0, 48, 24))
    store, manager = _manager(db, sender, clock)
    outcome = await manager.enroll(await store.get_sequence(sequence_row.id), EntitySnapshot.from_model(lead))

    clock.advance(hours=25)
    await _sweep(store, manager, clock)

    enrollment = await store.get_enrollment(outcome.enrollment.id)
    assert enrollment.status == "active"
    assert enrollment.completed_at is None
    steps = await store.list_sequence_log(enrollment.id)
    assert [(s.step_index, s.status) for s in steps] == [(0, "executed"), (1, "pending"), (2, "executed")]

    clock.advance(hours=24)
    await _sweep(store, manager, clock)

    enrollment = await store.get_enrollment(outcome.enrollment.id)
    assert enrollment.status == "completed"
    assert enrollment.completed_at == clock()
    assert [m.body for m in sender.sent] == ["Step 0", "Step 2", "Step 1"]


@pytest.mark.asyncio
async def test_steps_sharing_a_delay_all_run_before_completing(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence(steps=_sms_steps(0, 24, 24))
    store, manager = _manager(db, sender, clock)
    outcome = await manager.enroll(await store.get_sequence(sequence_row.id), EntitySnapshot.from_model(lead))

    clock.advance(hours=25)
    first, second = await store.list_due_sequence_steps(clock(), 10)

    await manager.execute_due_step(first)
    assert (await store.get_enrollment(outcome.enrollment.id)).status == "active"

    await manager.execute_due_step(second)
    enrollment = await store.get_enrollment(outcome.enrollment.id)
    assert enrollment.status == "completed"
    assert enrollment.current_step == 3
    assert len(sender.sent) == 3


class _FlakyLogStore(SqlAutomationStore):
    """Fails the second sequence log write, after the first step was sent."""

    def __init__(self, db) -> None:
        super().__init__(db)
        self.log_writes = 0

    async def insert_sequence_log_entry(self, record):
        self.log_writes += 1
        if self.log_writes == 2:
            raise RuntimeError("database is locked")
        return await super().insert_sequence_log_entry(record)


@pytest.mark.asyncio
async def test_storage_failure_mid_enroll_releases_the_enrollment(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence()
    store, manager = _manager(db, sender, clock, store=_FlakyLogStore(db))

    outcome = await manager.enroll(await store.get_sequence(sequence_row.id), EntitySnapshot.from_model(lead))

    assert outcome.status == NOT_ENROLLED
    assert outcome.detail == "Enrollment failed: RuntimeError"
    assert (outcome.enrollment.status, outcome.enrollment.cancel_reason) == ("cancelled", "enrollment_failed")
    assert await store.list_entity_enrollments(lead.id, status="active") == []
    assert 'Sequence "New lead follow-up" stopped: enrollment could not be saved.' in _notes(db, lead.id)

    # Nothing left behind blocks a later attempt
    store, manager = _manager(db, sender, clock)
    retry = await manager.enroll(await store.get_sequence(sequence_row.id), EntitySnapshot.from_model(lead))
    assert retry.status == ENROLLED


@pytest.mark.asyncio
async def test_phase_change_reports_enrollment_that_failed_to_save(db, sender, clock, make_client, make_sequence):
    lead = make_client(phase="new_lead")
    sequence_row = make_sequence()
    store, manager = _manager(db, sender, clock, store=_FlakyLogStore(db))

    outcomes = await manager.on_phase_changed(EntitySnapshot.from_model(lead), "new_lead")

    assert [(o.sequence_id, o.status) for o in outcomes] == [(sequence_row.id, NOT_ENROLLED)]
    assert await store.list_entity_enrollments(lead.id, status="active") == []
    assert len(sender.sent) == 1


@pytest.mark.asyncio
async def test_malformed_step_entries_do_not_shift_step_indices(db, sender, clock, make_client, make_sequence):
    lead = make_client()
    sequence_row = make_sequence(steps=["not a step", *_sms_steps(0, 24)])
    store, manager = _manager(db, sender, clock)

    sequence = await store.get_sequence(sequence_row.id)
    assert [(s.index, s.template) for s in sequence.steps] == [(0, "Step 0"), (1, "Step 1")]

    outcome = await manager.enroll(sequence, EntitySnapshot.from_model(lead))
    clock.advance(hours=25)
    await _sweep(store, manager, clock)

    assert [m.body for m in sender.sent] == ["Step 0", "Step 1"]
    assert (await store.get_enrollment(outcome.enrollment.id)).status == "completed"
