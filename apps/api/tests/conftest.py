"""
Test configuration and fixtures.

Provides:
- In-memory SQLite database with the full schema (fresh per test)
- A frozen, advanceable clock for every time-based test
- A recording message sender (no provider calls)
- Factories for caregivers, clients, rules and sequences
- HTTPX AsyncClient bound to the app with the test session
"""
import os
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Generator

# Settings are read at import time; keep tests off real databases and providers
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["MESSAGING_WEBHOOK_URL"] = ""

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.core.deps import get_db, get_message_sender
from app.db.base import Base
from app.db.models import ActionItemRule, AutomationRule, Caregiver, Client, Sequence
from app.main import app
from app.services.automation_errors import MessageDeliveryError
from app.services.message_sender import DeliveryReceipt, OutboundMessage
from app.utils.datetime_parsing import to_epoch_ms


# 2026-03-02 is a Monday
NOW = datetime(2026, 3, 2, 15, 0, tzinfo=timezone.utc)


# =============================================================================
# Clock and messaging
# =============================================================================


class FrozenClock:
    """Callable clock pinned to a fixed instant; tests move it explicitly."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSender:
    """MessageSender that records messages instead of delivering them."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.sent: list[OutboundMessage] = []

    async def send(self, message: OutboundMessage) -> DeliveryReceipt:
        if self.fail:
            raise MessageDeliveryError("Messaging provider returned 503")
        self.sent.append(message)
        return DeliveryReceipt(provider_message_id=f"msg-{len(self.sent)}")


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


@pytest.fixture
def sender() -> RecordingSender:
    return RecordingSender()


@pytest.fixture
def failing_sender() -> RecordingSender:
    return RecordingSender(fail=True)


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest.fixture(scope="function")
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, autocommit=False, autoflush=False)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Factories
# =============================================================================


@pytest.fixture
def make_client(db: Session):
    def _make(**overrides) -> Client:
        phase = overrides.pop("phase", "new_lead")
        values = {
            "first_name": "Maria",
            "last_name": "Lopez",
            "phone": "(555) 123-4567",
            "email": "maria@example.com",
            "contact_name": "Ana Lopez",
            "care_recipient_name": "Rosa Lopez",
            "phase": phase,
            "tasks": {},
            "notes": [],
            "phase_timestamps": {phase: to_epoch_ms(NOW)},
            "created_at": NOW,
        }
        values.update(overrides)
        row = Client(**values)
        db.add(row)
        db.commit()
        return row

    return _make


@pytest.fixture
def make_caregiver(db: Session):
    def _make(**overrides) -> Caregiver:
        values = {
            "first_name": "James",
            "last_name": "Carter",
            "phone": "555-987-6543",
            "email": "james@example.com",
            "tasks": {},
            "notes": [],
            "phase_timestamps": {},
            "created_at": NOW,
        }
        values.update(overrides)
        row = Caregiver(**values)
        db.add(row)
        db.commit()
        return row

    return _make


@pytest.fixture
def make_rule(db: Session):
    def _make(**overrides) -> AutomationRule:
        values = {
            "name": "Welcome text",
            "entity_type": "client",
            "trigger_type": "new_record",
            "conditions": {},
            "action_type": "send_sms",
            "action_config": {},
            "message_template": "Hi {{first_name}}, thanks for contacting {{company_name}}!",
            "enabled": True,
        }
        values.update(overrides)
        row = AutomationRule(**values)
        db.add(row)
        db.commit()
        return row

    return _make


@pytest.fixture
def make_sequence(db: Session):
    def _make(**overrides) -> Sequence:
        values = {
            "name": "New lead follow-up",
            "entity_type": "client",
            "trigger_phase": "new_lead",
            "enabled": True,
            "stop_on_response": True,
            "steps": [
                {"action_type": "send_sms", "delay_hours": 0, "template": "Hi {{first_name}}!"},
                {
                    "action_type": "send_email",
                    "delay_hours": 24,
                    "template": "Checking in, {{first_name}}.",
                    "subject": "Following up",
                },
            ],
        }
        values.update(overrides)
        row = Sequence(**values)
        db.add(row)
        db.commit()
        return row

    return _make


@pytest.fixture
def make_action_item_rule(db: Session):
    def _make(**overrides) -> ActionItemRule:
        values = {
            "id": "custom_rule",
            "entity_type": "client",
            "name": "Custom",
            "condition_type": "phase_time",
            "condition_config": {"phase": "consultation", "min_days": 1},
            "urgency": "info",
            "title_template": "Consultation pending",
            "detail_template": "{{name}}: {{days_in_phase}} days in {{phase_label}}",
            "action_template": "Book the consultation",
        }
        values.update(overrides)
        row = ActionItemRule(**values)
        db.add(row)
        db.commit()
        return row

    return _make


# =============================================================================
# Client Fixtures
# =============================================================================


@pytest.fixture(scope="function")
async def client(db: Session, sender: RecordingSender) -> AsyncGenerator[AsyncClient, None]:
    """AsyncClient with the test session and recording sender injected."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_message_sender] = lambda: sender

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as c:
        yield c

    app.dependency_overrides.clear()
