"""EventDispatcher — routes platform events inline or to the background queue."""

from __future__ import annotations

import logging
import time
from typing import Any

from arq.jobs import Job

from cadence.types import PlatformEvent

logger = logging.getLogger(__name__)


class EventDispatcher:
    """Matches events in-process, or enqueues ``process_event_task`` when an ARQ pool is set.

    Inline mode never lets an engine failure escape: a run that blows up is
    failed by the engine, and anything past that is logged here, so event
    ingestion keeps answering.
    """

    def __init__(self, matcher, engine, redis_pool=None, inline: bool = False) -> None:
        self._matcher = matcher
        self._engine = engine
        self._redis = redis_pool
        self._inline = inline

    @property
    def background(self) -> bool:
        return self._redis is not None and not self._inline

    # ── Public API ────────────────────────────────────────────────────────────

    async def dispatch(self, event: PlatformEvent) -> dict[str, Any]:
        if self.background:
            return await self._enqueue(event)
        return await self._run_inline(event)

    async def get_job_status(self, job_id: str) -> dict:
        """Query ARQ for job status.

        Returns: {job_id, status, result, error}
        """
        if self._redis is None:
            return {"job_id": job_id, "status": "not_found", "result": None, "error": "no task queue configured"}
        try:
            job = Job(job_id, redis=self._redis)
            status = await job.status()
            status_str = status.value if hasattr(status, "value") else str(status)
            result = None
            error = None
            if status_str == "complete":
                try:
                    result = await job.result(timeout=0)
                except Exception as exc:
                    error = str(exc)
            return {"job_id": job_id, "status": status_str, "result": result, "error": error}
        except Exception as exc:
            logger.warning("get_job_status failed for job_id=%s: %s", job_id, exc)
            return {"job_id": job_id, "status": "not_found", "result": None, "error": str(exc)}

    # ── Private helpers ───────────────────────────────────────────────────────

    async def _enqueue(self, event: PlatformEvent) -> dict[str, Any]:
        job = await self._redis.enqueue_job(
            "process_event_task",
            event.model_dump(mode="json", by_alias=True),
        )
        job_id = job.job_id if job else None
        logger.info(
            "Enqueued event kind=%s publication=%s job_id=%s",
            event.kind.value, event.publication_id, job_id,
        )
        return {"mode": "background", "job_id": job_id, "run_ids": []}

    async def _run_inline(self, event: PlatformEvent) -> dict[str, Any]:
        started = time.monotonic()
        runs = await self._matcher.match(event)
        for run in runs:
            try:
                await self._engine.advance(run.id)
            except Exception:
                logger.exception("Inline advance of run=%s raised", run.id)
        return {
            "mode": "inline",
            "job_id": None,
            "run_ids": [r.id for r in runs],
            "duration_ms": int((time.monotonic() - started) * 1000),
        }
