"""RunScheduler — asyncio loop that advances due runs.

Resume times live in the run store, not in memory, so a restarted
scheduler picks up exactly where the previous one stopped.  Several
schedulers may run side by side; claims keep them from advancing the same
run twice.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable

from cadence.types import utcnow

logger = logging.getLogger(__name__)

_DEFAULT_TICK_SECONDS = 15


class RunScheduler:
    """Polls the run store every *tick_seconds* and advances due runs concurrently."""

    def __init__(
        self,
        engine,
        run_store,
        tick_seconds: int = _DEFAULT_TICK_SECONDS,
        batch_size: int = 100,
        concurrency: int = 20,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._engine       = engine
        self._run_store    = run_store
        self._tick_seconds = tick_seconds
        self._batch_size   = batch_size
        self._concurrency  = concurrency
        self._clock        = clock
        self._task: asyncio.Task | None = None

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop(), name="cadence-run-scheduler")
        logger.info(
            "RunScheduler started (tick=%ss, batch=%d, concurrency=%d)",
            self._tick_seconds, self._batch_size, self._concurrency,
        )

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("RunScheduler stopped")

    async def tick(self, now: datetime | None = None) -> int:
        """Advance every run due at *now*. Returns how many were advanced."""
        now = now or self._clock()
        run_ids = await self._run_store.list_due_run_ids(now, limit=self._batch_size)
        if not run_ids:
            return 0

        semaphore = asyncio.Semaphore(self._concurrency)

        async def _advance(run_id: str) -> bool:
            async with semaphore:
                try:
                    return await self._engine.advance(run_id) is not None
                except Exception:
                    logger.exception("Advancing run %s raised", run_id)
                    return False

        results = await asyncio.gather(*(_advance(run_id) for run_id in run_ids))
        advanced = sum(1 for ok in results if ok)
        logger.debug("Scheduler tick: %d due, %d advanced", len(run_ids), advanced)
        return advanced

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            try:
                await self.tick()
            except Exception:
                logger.exception("RunScheduler tick raised unexpectedly")
