"""TriggerMatcher and CustomDateSweeper: which events start which runs."""

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from cadence.triggers import EVENT_RUN_CREATED, EVENT_RUN_FAILED, CustomDateSweeper, EventBus, matches
from cadence.types import (
    PlatformEvent,
    RunStatus,
    TriggerConfig,
    TriggerType,
    Workflow,
)

from helpers import chain, email_node, trigger_node

PUB = "pub-1"


def _event(kind=TriggerType.SUBSCRIBE, subscriber_id="sub-ada", **fields) -> PlatformEvent:
    return PlatformEvent(kind=kind, publication_id=PUB, subscriber_id=subscriber_id, **fields)


def _tag_workflow(target_id=None) -> Workflow:
    return Workflow(
        publication_id=PUB,
        name="tagged",
        trigger=TriggerType.TAG_ADDED,
        trigger_config=TriggerConfig(target_id=target_id),
        definition=chain(trigger_node(trigger_type="TAG_ADDED"), email_node("e")),
    )


# ── Pure matching rule ──────────────────────────────────────────────────────

def test_matches_requires_same_kind_and_publication():
    wf = _tag_workflow()
    assert matches(wf, _event(TriggerType.TAG_ADDED, tag_id="vip"))
    assert not matches(wf, _event(TriggerType.TAG_REMOVED, tag_id="vip"))
    other_pub = PlatformEvent(kind=TriggerType.TAG_ADDED, publication_id="pub-2", subscriber_id="s", tag_id="vip")
    assert not matches(wf, other_pub)


def test_targeted_trigger_matches_only_its_target():
    wf = _tag_workflow(target_id="vip")
    assert matches(wf, _event(TriggerType.TAG_ADDED, tag_id="vip"))
    assert not matches(wf, _event(TriggerType.TAG_ADDED, tag_id="new"))


def test_custom_date_events_are_rejected():
    with pytest.raises(ValidationError):
        _event(TriggerType.CUSTOM_DATE)


def test_idempotency_key_prefers_upstream_id():
    at = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)
    assert _event(id="delivery-7").idempotency_key() == "delivery-7"
    assert _event(occurred_at=at).idempotency_key() == _event(occurred_at=at).idempotency_key()
    assert _event(occurred_at=at).idempotency_key() != _event(subscriber_id="sub-bob", occurred_at=at).idempotency_key()
    later = at + timedelta(days=1)
    assert _event(occurred_at=at).idempotency_key() != _event(occurred_at=later).idempotency_key()


# ── match() ─────────────────────────────────────────────────────────────────

async def test_event_starts_run_at_trigger_node(make_active, matcher, event_bus):
    created = []
    event_bus.subscribe(EVENT_RUN_CREATED, created.append)
    wf = await make_active()

    (run,) = await matcher.match(_event(payload={"post": {"title": "Hello"}}))

    assert run.workflow_id == wf.id
    assert run.subscriber_id == "sub-ada"
    assert run.status == RunStatus.RUNNING
    assert run.current_node_id == "trigger"
    assert run.workflow_version == wf.version
    assert run.context["payload"] == {"post": {"title": "Hello"}}
    assert created[0]["run_id"] == run.id


async def test_rapid_fire_duplicate_events_create_one_run(make_active, matcher, run_store):
    wf = await make_active()
    first = await matcher.match(_event(id="delivery-1"))
    second = await matcher.match(_event(id="delivery-1"))
    assert len(first) == 1
    assert second == []
    assert len(await run_store.list_runs(wf.id)) == 1


async def test_same_event_without_id_later_starts_another_run(make_active, matcher, run_store):
    wf = await make_active()
    at = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)

    assert len(await matcher.match(_event(occurred_at=at))) == 1
    assert await matcher.match(_event(occurred_at=at)) == []
    assert len(await matcher.match(_event(occurred_at=at + timedelta(days=90)))) == 1

    assert len(await run_store.list_runs(wf.id)) == 2


async def test_distinct_subscribers_get_independent_runs(make_active, matcher, run_store):
    wf = await make_active()
    await matcher.match(_event(subscriber_id="sub-ada"))
    await matcher.match(_event(subscriber_id="sub-bob"))
    runs = await run_store.list_runs(wf.id)
    assert sorted(r.subscriber_id for r in runs) == ["sub-ada", "sub-bob"]


async def test_one_event_fans_out_to_every_matching_workflow(make_active, matcher):
    await make_active(name="one")
    await make_active(name="two")
    assert len(await matcher.match(_event())) == 2


async def test_paused_workflow_starts_nothing(make_active, manager, matcher):
    wf = await make_active()
    await manager.pause(wf.id, PUB)
    assert await matcher.match(_event()) == []


async def test_draft_workflow_starts_nothing(manager, matcher):
    await manager.create(PUB, "draft", TriggerType.SUBSCRIBE, definition=chain(trigger_node(), email_node("e")))
    assert await matcher.match(_event()) == []


async def test_run_keeps_its_definition_snapshot(make_active, manager, matcher, run_store):
    wf = await make_active()
    (run,) = await matcher.match(_event())
    await manager.pause(wf.id, PUB)
    updated, _ = await manager.replace_definition(wf.id, PUB, chain(trigger_node(), email_node("other")))

    stored = await run_store.get_run(run.id)
    assert updated.version == 2
    assert stored.workflow_version == 1
    assert [n.id for n in stored.definition.nodes] == [n.id for n in wf.definition.nodes]


# ── CUSTOM_DATE sweeper ─────────────────────────────────────────────────────

@pytest.fixture
def sweeper(manager, matcher, directory, clock):
    return CustomDateSweeper(manager, matcher, directory, clock=clock)


async def _custom_date_workflow(make_active, when: datetime):
    return await make_active(
        definition=chain(trigger_node(trigger_type="CUSTOM_DATE"), email_node("e")),
        trigger=TriggerType.CUSTOM_DATE,
        trigger_config=TriggerConfig(custom_date=when),
        name="Anniversary",
    )


async def test_custom_date_fires_once_for_every_subscriber(make_active, sweeper, run_store, clock):
    wf = await _custom_date_workflow(make_active, clock.now - timedelta(minutes=1))

    assert await sweeper.sweep() == 2
    assert await sweeper.sweep() == 0

    runs = await run_store.list_runs(wf.id)
    assert sorted(r.subscriber_id for r in runs) == ["sub-ada", "sub-bob"]
    assert runs[0].context["kind"] == "CUSTOM_DATE"


async def test_custom_date_waits_for_its_date(make_active, sweeper, manager, clock):
    wf = await _custom_date_workflow(make_active, clock.now + timedelta(hours=1))

    assert await sweeper.sweep() == 0
    assert (await manager.get(wf.id, PUB)).custom_date_fired_at is None

    clock.advance(hours=1)
    assert await sweeper.sweep() == 2
    assert (await manager.get(wf.id, PUB)).custom_date_fired_at == clock.now


async def test_custom_date_naive_datetime_is_utc(make_active, sweeper, clock):
    naive = datetime(2026, 3, 2, 8, 0)
    await _custom_date_workflow(make_active, naive)
    assert await sweeper.sweep(now=datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)) == 2


# ── Event bus ───────────────────────────────────────────────────────────────

async def test_event_bus_delivers_to_sync_and_async_handlers():
    bus = EventBus()
    seen = []

    async def on_async(data):
        seen.append(("async", data["run_id"]))

    def broken(data):
        raise RuntimeError("boom")

    bus.subscribe(EVENT_RUN_FAILED, broken)
    bus.subscribe(EVENT_RUN_FAILED, on_async)
    remove = bus.subscribe(EVENT_RUN_FAILED, lambda data: seen.append(("sync", data["run_id"])))

    assert await bus.emit(EVENT_RUN_FAILED, {"run_id": "r1"}) == 2
    remove()
    assert await bus.emit(EVENT_RUN_FAILED, {"run_id": "r2"}) == 1
    assert seen == [("async", "r1"), ("sync", "r1"), ("async", "r2")]
    assert await bus.emit("nobody.listens") == 0
