"""EventDispatcher, arq task functions, engine wiring and the audit log callback."""

import json
import logging
from types import SimpleNamespace
from unittest.mock import AsyncMock

from cadence.callbacks import LoggingCallback
from cadence.config import CadenceConfig
from cadence.engine import ExecutionEngine, RunScheduler
from cadence.engine.runner import build_engine
from cadence.triggers import TriggerMatcher
from cadence.types import PlatformEvent, RunStatus, TriggerType
from cadence.workers.dispatcher import EventDispatcher
from cadence.workers.queue import (
    WorkerSettings,
    advance_run_task,
    process_event_task,
    scheduler_tick_task,
)
from cadence.workflows import WorkflowManager

from helpers import chain, tag_node, trigger_node

EVENT = PlatformEvent(id="evt-9", kind=TriggerType.SUBSCRIBE, publication_id="pub-1", subscriber_id="sub-ada")


# ── EventDispatcher ─────────────────────────────────────────────────────────

async def test_inline_dispatch_matches_and_advances(make_active, matcher, engine, run_store):
    await make_active(chain(trigger_node(), tag_node("t", "x")))
    dispatcher = EventDispatcher(matcher, engine, inline=True)

    outcome = await dispatcher.dispatch(EVENT)

    assert outcome["mode"] == "inline"
    (run_id,) = outcome["run_ids"]
    assert (await run_store.get_run(run_id)).status == RunStatus.COMPLETED


async def test_inline_dispatch_survives_engine_errors(make_active, matcher):
    await make_active(chain(trigger_node(), tag_node("t", "x")))
    broken = AsyncMock()
    broken.advance.side_effect = RuntimeError("boom")

    outcome = await EventDispatcher(matcher, broken).dispatch(EVENT)

    assert len(outcome["run_ids"]) == 1


async def test_background_dispatch_enqueues():
    pool = AsyncMock()
    pool.enqueue_job.return_value = SimpleNamespace(job_id="job-42")
    matcher = AsyncMock()
    dispatcher = EventDispatcher(matcher, AsyncMock(), redis_pool=pool)

    outcome = await dispatcher.dispatch(EVENT)

    assert outcome == {"mode": "background", "job_id": "job-42", "run_ids": []}
    name, payload = pool.enqueue_job.await_args.args
    assert name == "process_event_task"
    assert payload["subscriberId"] == "sub-ada"
    matcher.match.assert_not_awaited()


async def test_inline_flag_wins_over_pool(make_active, matcher, engine):
    dispatcher = EventDispatcher(matcher, engine, redis_pool=AsyncMock(), inline=True)
    assert dispatcher.background is False
    assert (await dispatcher.dispatch(EVENT))["mode"] == "inline"


async def test_job_status_without_pool():
    status = await EventDispatcher(AsyncMock(), AsyncMock()).get_job_status("job-1")
    assert status["status"] == "not_found"


# ── arq tasks ───────────────────────────────────────────────────────────────

async def test_process_event_task(make_active, matcher, engine, run_store):
    await make_active(chain(trigger_node(), tag_node("t", "x")))
    ctx = {"matcher": matcher, "engine": engine}

    result = await process_event_task(ctx, EVENT.model_dump(mode="json", by_alias=True))

    assert result["event_key"] == "evt-9"
    assert result["advanced"] == 1
    (run_id,) = result["run_ids"]
    assert (await run_store.get_run(run_id)).status == RunStatus.COMPLETED

    again = await process_event_task(ctx, EVENT.model_dump(mode="json", by_alias=True))
    assert again["run_ids"] == []


async def test_advance_and_tick_tasks(make_active, matcher, engine, run_store, clock):
    await make_active(chain(trigger_node(), tag_node("t", "x")))
    (run,) = await matcher.match(EVENT)

    assert await advance_run_task({"engine": engine}, run.id) == {"run_id": run.id, "status": "COMPLETED"}
    assert await advance_run_task({"engine": engine}, run.id) == {"run_id": run.id, "status": None}

    scheduler = RunScheduler(engine, run_store, clock=clock)
    assert await scheduler_tick_task({"scheduler": scheduler}) == {"advanced": 0}


def test_worker_settings_register_tasks():
    names = {f.__name__ for f in WorkerSettings.functions}
    assert {"process_event_task", "advance_run_task", "sweep_custom_dates_task", "scheduler_tick_task"} <= names
    assert len(WorkerSettings.cron_jobs) == 2


# ── Wiring ──────────────────────────────────────────────────────────────────

def test_build_engine_shares_repository(run_store, sender, directory):
    cfg = CadenceConfig(claim_lease_seconds=30, max_steps_per_advance=10)
    manager, engine, matcher = build_engine(run_store, cfg, sender, directory)

    assert isinstance(manager, WorkflowManager)
    assert isinstance(engine, ExecutionEngine)
    assert isinstance(matcher, TriggerMatcher)
    assert isinstance(engine.callbacks[0], LoggingCallback)


# ── LoggingCallback ─────────────────────────────────────────────────────────

async def test_logging_callback_emits_json_lines(caplog):
    callback = LoggingCallback()
    with caplog.at_level(logging.INFO, logger="cadence.audit"):
        await callback("run_started", {"run_id": "r1", "workflow_version": 3})
        await callback("run_failed", {"run_id": "r1", "error": "x" * 500})
        await callback("unknown_event", {"run_id": "r1"})

    started, failed = [r for r in caplog.records if r.name == "cadence.audit"]
    assert json.loads(started.getMessage())["event"] == "run_started"
    assert json.loads(started.getMessage())["workflow_version"] == 3
    assert failed.levelno == logging.ERROR
    assert len(json.loads(failed.getMessage())["error"]) == 200


async def test_engine_drives_logging_callback(make_active, manager, matcher, run_store, sender, directory, clock, caplog):
    engine = ExecutionEngine(manager, run_store, sender, directory, directory, directory,
                             callbacks=[LoggingCallback()], clock=clock)
    await make_active(chain(trigger_node(), tag_node("t", "x")))
    (run,) = await matcher.match(EVENT)

    with caplog.at_level(logging.INFO, logger="cadence.audit"):
        await engine.advance(run.id)

    events = [json.loads(r.getMessage())["event"] for r in caplog.records if r.name == "cadence.audit"]
    assert events == ["run_started", "step_completed", "run_completed"]
