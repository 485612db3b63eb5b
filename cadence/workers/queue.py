"""ARQ task functions and WorkerSettings for cadence background workers."""

from __future__ import annotations

import logging
import time

from arq import cron
from arq.connections import RedisSettings

from cadence.config import config as _config
from cadence.types import PlatformEvent

logger = logging.getLogger(__name__)


# ── Task functions ────────────────────────────────────────────────────────────

async def process_event_task(ctx: dict, event: dict) -> dict:
    """Match a platform event and advance every run it started."""
    matcher = ctx["matcher"]
    engine = ctx["engine"]

    started = time.monotonic()
    parsed = PlatformEvent.model_validate(event)
    runs = await matcher.match(parsed)
    advanced = 0
    for run in runs:
        try:
            if await engine.advance(run.id) is not None:
                advanced += 1
        except Exception:
            logger.exception("process_event_task: advancing run=%s raised", run.id)
    return {
        "event_key": parsed.idempotency_key(),
        "run_ids": [r.id for r in runs],
        "advanced": advanced,
        "duration_ms": int((time.monotonic() - started) * 1000),
    }


async def advance_run_task(ctx: dict, run_id: str) -> dict:
    """Advance one run (e.g. re-driven manually or by an external scheduler)."""
    run = await ctx["engine"].advance(run_id)
    return {
        "run_id": run_id,
        "status": run.status.value if run is not None else None,
    }


async def sweep_custom_dates_task(ctx: dict) -> dict:
    created = await ctx["sweeper"].sweep()
    return {"runs_created": created}


async def scheduler_tick_task(ctx: dict) -> dict:
    advanced = await ctx["scheduler"].tick()
    return {"advanced": advanced}


# ── Worker lifecycle ──────────────────────────────────────────────────────────

async def startup(ctx: dict) -> None:
    """Initialize all cadence components for the worker process."""
    from cadence.adapters import build_directory, build_email_sender
    from cadence.db.database import async_session, init_db
    from cadence.db.repository import ScopedRepository
    from cadence.engine.runner import build_engine
    from cadence.engine.scheduler import RunScheduler
    from cadence.triggers.custom_date import CustomDateSweeper

    logger.info("cadence worker starting up...")
    await init_db()

    # Each call opens its own session; workers are long-lived.
    repository = ScopedRepository(async_session)
    email_sender = build_email_sender(_config)
    directory = build_directory(_config)
    workflow_manager, engine, matcher = build_engine(repository, _config, email_sender, directory)

    ctx["repository"] = repository
    ctx["engine"] = engine
    ctx["matcher"] = matcher
    ctx["scheduler"] = RunScheduler(
        engine,
        repository,
        batch_size=_config.scheduler_batch_size,
        concurrency=_config.scheduler_concurrency,
    )
    ctx["sweeper"] = CustomDateSweeper(workflow_manager, matcher, directory)
    ctx["_closables"] = [email_sender, directory]

    logger.info("cadence worker startup complete")


async def shutdown(ctx: dict) -> None:
    """Clean up worker resources."""
    logger.info("cadence worker shutting down...")
    for closable in ctx.get("_closables", []):
        close = getattr(closable, "close", None)
        if close is None:
            continue
        try:
            await close()
        except Exception:
            logger.warning("Closing %s failed", type(closable).__name__, exc_info=True)


# ── WorkerSettings ────────────────────────────────────────────────────────────

class WorkerSettings:
    functions = [process_event_task, advance_run_task, sweep_custom_dates_task, scheduler_tick_task]
    cron_jobs = [
        cron(scheduler_tick_task, second=0),
        cron(sweep_custom_dates_task, second=30),
    ]
    on_startup = startup
    on_shutdown = shutdown
    redis_settings = RedisSettings.from_dsn(_config.task_queue_url)
    max_jobs = _config.worker_concurrency
    job_timeout = 600
    max_tries = 3
    keep_result = 86400
