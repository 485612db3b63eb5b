"""Standalone entry point for the run scheduler and the CUSTOM_DATE sweeper.

Start with:  python -m cadence.engine.runner   (or ``cadence scheduler``)

Runs as a singleton process (enforced by a Redis lock).  Claims already
keep concurrent schedulers from double-advancing a run; the lock keeps the
fleet to one poller so the database is not scanned N times per tick.  The
heartbeat key ``cadence:scheduler:heartbeat`` lets Docker/Kubernetes verify
liveness.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import uuid

logger = logging.getLogger(__name__)

# ── Redis lock constants ────────────────────────────────────────────────────

LOCK_KEY        = "cadence:scheduler:lock"
HEARTBEAT_KEY   = "cadence:scheduler:heartbeat"
LOCK_TTL_S      = 30   # lock expires after 30 s if the holder crashes
RENEW_INTERVAL  = 10   # renew lock + write heartbeat every 10 s
RETRY_INTERVAL  = 5    # retry lock acquisition every 5 s when another instance holds it

# Lua CAS renew: only renew if we still own the lock
_LUA_RENEW = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('EXPIRE', KEYS[1], ARGV[2])
else
    return 0
end
"""

# Lua CAS release: only delete if we still own the lock
_LUA_RELEASE = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""


def build_engine(repository, cfg, email_sender, directory, event_bus=None):
    """Wire manager, engine and matcher around one repository. Shared with the arq worker."""
    from cadence.adapters.alerts import attach_alerts
    from cadence.callbacks import LoggingCallback
    from cadence.engine.executor import ExecutionEngine
    from cadence.engine.monitor import DeliveryFailureMonitor
    from cadence.triggers.event_bus import EventBus
    from cadence.triggers.matcher import TriggerMatcher
    from cadence.workflows.compiler import WorkflowCompiler
    from cadence.workflows.manager import WorkflowManager

    event_bus = event_bus or EventBus()
    attach_alerts(event_bus, cfg)
    compiler = WorkflowCompiler()
    workflow_manager = WorkflowManager(repository=repository, run_store=repository, compiler=compiler)
    monitor = DeliveryFailureMonitor(
        threshold=cfg.delivery_failure_alert_threshold,
        window_seconds=cfg.delivery_failure_window_seconds,
        event_bus=event_bus,
    )
    engine = ExecutionEngine(
        workflow_manager=workflow_manager,
        run_store=repository,
        email_sender=email_sender,
        tag_store=directory,
        subscriber_store=directory,
        publication_store=directory,
        compiler=compiler,
        callbacks=[LoggingCallback()],
        event_bus=event_bus,
        monitor=monitor,
        lease_seconds=cfg.claim_lease_seconds,
        max_steps=cfg.max_steps_per_advance,
    )
    matcher = TriggerMatcher(workflow_manager, repository, event_bus=event_bus)
    return workflow_manager, engine, matcher


async def run() -> None:
    """Initialise dependencies and run the scheduler loops."""
    import redis.asyncio as aioredis

    from cadence.adapters import build_directory, build_email_sender
    from cadence.config import config
    from cadence.db.database import async_session
    from cadence.db.repository import ScopedRepository
    from cadence.engine.scheduler import RunScheduler
    from cadence.triggers.custom_date import CustomDateSweeper

    instance_id = str(uuid.uuid4())
    stop_event  = asyncio.Event()

    # ── Signal handling (asyncio-safe via loop.add_signal_handler) ──────────

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGTERM, stop_event.set)
    loop.add_signal_handler(signal.SIGINT,  stop_event.set)

    # ── Dependency chain ────────────────────────────────────────────────────

    # One session per call; the process is long-running.
    repository   = ScopedRepository(async_session)
    email_sender = build_email_sender(config)
    directory    = build_directory(config)

    workflow_manager, engine, matcher = build_engine(repository, config, email_sender, directory)

    scheduler = RunScheduler(
        engine,
        repository,
        tick_seconds=config.scheduler_tick_seconds,
        batch_size=config.scheduler_batch_size,
        concurrency=config.scheduler_concurrency,
    )
    sweeper = CustomDateSweeper(
        workflow_manager,
        matcher,
        directory,
        tick_seconds=config.custom_date_sweep_seconds,
    )

    # ── Redis connection for lock + heartbeat ───────────────────────────────

    redis_client = await aioredis.from_url(
        config.redis_url,
        encoding="utf-8",
        decode_responses=True,
    )

    script_renew   = redis_client.register_script(_LUA_RENEW)
    script_release = redis_client.register_script(_LUA_RELEASE)

    async def acquire_lock() -> bool:
        result = await redis_client.set(LOCK_KEY, instance_id, nx=True, ex=LOCK_TTL_S)
        return result is not None

    async def renew_lock() -> bool:
        result = await script_renew(keys=[LOCK_KEY], args=[instance_id, LOCK_TTL_S])
        return bool(result)

    async def release_lock() -> None:
        await script_release(keys=[LOCK_KEY], args=[instance_id])
        logger.info("Scheduler lock released (instance=%s)", instance_id)

    async def close_resources() -> None:
        await redis_client.aclose()
        for closable in (email_sender, directory):
            close = getattr(closable, "close", None)
            if close is not None:
                await close()

    while not stop_event.is_set():
        if await acquire_lock():
            logger.info("Scheduler lock acquired (instance=%s)", instance_id)
            break
        holder = await redis_client.get(LOCK_KEY)
        logger.info("Lock held by %s, retrying in %ds", holder, RETRY_INTERVAL)
        try:
            await asyncio.wait_for(stop_event.wait(), timeout=float(RETRY_INTERVAL))
        except asyncio.TimeoutError:
            pass

    if stop_event.is_set():
        logger.info("Stop requested before lock acquired, exiting cleanly")
        await close_resources()
        return

    # ── Heartbeat + renew loop (runs concurrently with the schedulers) ──────

    async def _heartbeat_loop() -> None:
        while not stop_event.is_set():
            try:
                await asyncio.wait_for(stop_event.wait(), timeout=float(RENEW_INTERVAL))
            except asyncio.TimeoutError:
                pass
            if stop_event.is_set():
                break
            if not await renew_lock():
                logger.error(
                    "Scheduler lock lost (instance=%s); another process took over, stopping.",
                    instance_id,
                )
                stop_event.set()
                break
            await redis_client.set(HEARTBEAT_KEY, instance_id, ex=LOCK_TTL_S * 2)

    # ── Run ─────────────────────────────────────────────────────────────────

    await scheduler.start()
    await sweeper.start()
    await redis_client.set(HEARTBEAT_KEY, instance_id, ex=LOCK_TTL_S * 2)
    heartbeat_task = asyncio.create_task(_heartbeat_loop(), name="cadence-scheduler-heartbeat")

    logger.info(
        "Scheduler running (instance=%s, tick=%ds, custom-date sweep=%ds)",
        instance_id, config.scheduler_tick_seconds, config.custom_date_sweep_seconds,
    )

    await stop_event.wait()

    # ── Graceful shutdown ───────────────────────────────────────────────────

    logger.info("Shutting down scheduler…")
    heartbeat_task.cancel()
    try:
        await heartbeat_task
    except asyncio.CancelledError:
        pass

    await sweeper.stop()
    await scheduler.stop()
    await release_lock()
    await close_resources()
    logger.info("Scheduler shut down cleanly")


def main() -> None:
    from cadence.config import config

    logging.basicConfig(
        level=config.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    asyncio.run(run())


if __name__ == "__main__":
    main()
