"""Shared fixtures: in-memory run store, directory, manager, engine and matcher.

Everything runs in-process; no database, Redis or sending service.
"""

from datetime import datetime, timezone

import pytest

from cadence.adapters import InMemoryDirectory, LoggingEmailSender
from cadence.engine import ExecutionEngine, InMemoryRunStore
from cadence.triggers import EventBus, TriggerMatcher
from cadence.types import TriggerConfig, TriggerType
from cadence.workflows import WorkflowManager

from helpers import FakeClock, RecordingCallback, welcome_series

PUBLICATION_ID = "pub-1"


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture
def directory():
    d = InMemoryDirectory()
    d.add_publication(PUBLICATION_ID, "The Weekly Letter", url="https://weekly.example.com")
    d.add_subscriber(
        PUBLICATION_ID, "sub-ada",
        email="ada@example.com", first_name="Ada", last_name="Lovelace",
        tags=["vip", "new"], tier="premium", tier_name="Premium",
    )
    d.add_subscriber(
        PUBLICATION_ID, "sub-bob",
        email="bob@example.com", name="Bob Stone", tags=["new"],
    )
    return d


@pytest.fixture
def run_store():
    return InMemoryRunStore()


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def manager(run_store):
    return WorkflowManager(run_store=run_store)


@pytest.fixture
def sender():
    return LoggingEmailSender()


@pytest.fixture
def recorder():
    return RecordingCallback()


@pytest.fixture
def engine(manager, run_store, sender, directory, event_bus, recorder, clock):
    return ExecutionEngine(
        workflow_manager=manager,
        run_store=run_store,
        email_sender=sender,
        tag_store=directory,
        subscriber_store=directory,
        publication_store=directory,
        callbacks=[recorder],
        event_bus=event_bus,
        owner_id="test-worker",
        clock=clock,
    )


@pytest.fixture
def matcher(manager, run_store, event_bus, clock):
    return TriggerMatcher(manager, run_store, event_bus=event_bus, clock=clock)


@pytest.fixture
def make_active(manager):
    """Create and activate a workflow; defaults to the welcome series on SUBSCRIBE."""

    async def _make(definition=None, trigger=TriggerType.SUBSCRIBE, trigger_config=None, name="Welcome series"):
        workflow = await manager.create(
            publication_id=PUBLICATION_ID,
            name=name,
            trigger=trigger,
            trigger_config=trigger_config or TriggerConfig(),
            definition=definition or welcome_series(),
        )
        return await manager.activate(workflow.id, PUBLICATION_ID)

    return _make
