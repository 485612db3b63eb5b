"""CustomDateSweeper — asyncio loop that fires CUSTOM_DATE workflows once their date passes."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable

from cadence.types import TriggerType, Workflow, utcnow

logger = logging.getLogger(__name__)

_DEFAULT_TICK_SECONDS = 60


def _aware(value: datetime) -> datetime:
    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


class CustomDateSweeper:
    """Polls ACTIVE CUSTOM_DATE workflows every *tick_seconds*.

    Each workflow fires at most once: the fire is claimed (persisted) BEFORE
    any run is created, so a crash mid-fan-out never causes a second fire.
    Runs use a per-subscriber idempotency key, so a sweeper racing another
    instance cannot double-start a subscriber either.
    """

    def __init__(
        self,
        workflow_manager,
        matcher,
        subscriber_store,
        tick_seconds: int = _DEFAULT_TICK_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._workflow_manager = workflow_manager
        self._matcher          = matcher
        self._subscribers      = subscriber_store
        self._tick_seconds     = tick_seconds
        self._clock            = clock
        self._task: asyncio.Task | None = None

    # ── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self) -> None:
        self._task = asyncio.create_task(self._loop(), name="cadence-custom-date-sweeper")
        logger.info("CustomDateSweeper started (tick=%ss)", self._tick_seconds)

    async def stop(self) -> None:
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("CustomDateSweeper stopped")

    # ── Core tick ────────────────────────────────────────────────────────────

    async def sweep(self, now: datetime | None = None) -> int:
        """Fire every due, not-yet-fired CUSTOM_DATE workflow. Returns runs created."""
        now = now or self._clock()
        workflows = await self._workflow_manager.list_active(trigger=TriggerType.CUSTOM_DATE)
        created = 0
        for workflow in workflows:
            if not self._is_due(workflow, now):
                continue
            if not await self._workflow_manager.claim_custom_date_fire(workflow, now):
                continue
            try:
                created += await self._fire(workflow)
            except Exception:
                logger.exception("CUSTOM_DATE fire for workflow=%s raised", workflow.id)
        return created

    # ── Internal ─────────────────────────────────────────────────────────────

    @staticmethod
    def _is_due(workflow: Workflow, now: datetime) -> bool:
        fire_at = workflow.trigger_config.custom_date
        return (
            fire_at is not None
            and workflow.custom_date_fired_at is None
            and _aware(fire_at) <= now
        )

    async def _fire(self, workflow: Workflow) -> int:
        fire_at = _aware(workflow.trigger_config.custom_date)
        subscriber_ids = await self._subscribers.list_subscribers(workflow.publication_id)
        context = {
            "kind": TriggerType.CUSTOM_DATE.value,
            "publicationId": workflow.publication_id,
            "customDate": fire_at.isoformat(),
        }
        created = 0
        for subscriber_id in subscriber_ids:
            run = await self._matcher.start_run(
                workflow,
                subscriber_id=subscriber_id,
                context={**context, "subscriberId": subscriber_id},
                idempotency_key=f"custom-date:{workflow.id}:{fire_at.isoformat()}:{subscriber_id}",
            )
            if run is not None:
                created += 1
        logger.info(
            "CUSTOM_DATE workflow=%s fired for %d/%d subscribers",
            workflow.id, created, len(subscriber_ids),
        )
        return created

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self._tick_seconds)
            try:
                await self.sweep()
            except Exception:
                logger.exception("CustomDateSweeper tick raised unexpectedly")
