"""TriggerMatcher — turns platform events into new workflow runs.

Responsibilities:
- Decide which ACTIVE workflows of a publication an event starts
- Create one run per match, positioned on the trigger node, with the event
  payload captured as execution context and the definition snapshotted
- Suppress duplicate runs for redelivered events via an idempotency key
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Optional

from cadence.exceptions import InvalidDefinition, TriggerMatchConflict
from cadence.types import (
    PlatformEvent,
    RunStatus,
    TriggerType,
    Workflow,
    WorkflowRun,
    utcnow,
)

from .event_bus import EVENT_RUN_CREATED

logger = logging.getLogger(__name__)

# Event kinds whose trigger may be scoped to one target (tag / post / course)
_TARGETED = {
    TriggerType.TAG_ADDED,
    TriggerType.TAG_REMOVED,
    TriggerType.POST_PUBLISHED,
    TriggerType.POST_VIEWED,
    TriggerType.COURSE_ENROLLED,
}


def matches(workflow: Workflow, event: PlatformEvent) -> bool:
    """Pure matching rule between one workflow's trigger and one event."""
    if workflow.trigger != event.kind or workflow.publication_id != event.publication_id:
        return False
    if workflow.trigger == TriggerType.CUSTOM_DATE:
        return False
    if workflow.trigger in _TARGETED:
        target = workflow.trigger_config.target_id
        return target is None or target == event.subject_id
    return True


def run_key(event_key: str, workflow_id: str) -> str:
    return f"{event_key}:{workflow_id}"


class TriggerMatcher:
    """Matches events against ACTIVE workflows and creates their runs."""

    def __init__(
        self,
        workflow_manager,
        run_store,
        event_bus=None,
        clock: Callable = utcnow,
    ) -> None:
        self._workflow_manager = workflow_manager
        self._run_store = run_store
        self._event_bus = event_bus
        self._clock = clock

    async def match(self, event: PlatformEvent) -> list[WorkflowRun]:
        """Create a run for every ACTIVE workflow the event matches.

        PAUSED and ARCHIVED workflows never start runs.  Returns only runs
        created by this call; duplicates of earlier deliveries are skipped.
        """
        candidates = await self._workflow_manager.list_active(
            publication_id=event.publication_id, trigger=event.kind
        )
        event_key = event.idempotency_key()
        context = event.to_context()

        runs: list[WorkflowRun] = []
        for workflow in candidates:
            if not matches(workflow, event):
                continue
            run = await self.start_run(
                workflow,
                subscriber_id=event.subscriber_id,
                context=context,
                idempotency_key=run_key(event_key, workflow.id),
            )
            if run is not None:
                runs.append(run)

        logger.info(
            "Event kind=%s publication=%s subscriber=%s matched %d/%d workflows",
            event.kind.value, event.publication_id, event.subscriber_id, len(runs), len(candidates),
        )
        return runs

    async def start_run(
        self,
        workflow: Workflow,
        subscriber_id: str,
        context: dict[str, Any],
        idempotency_key: str,
    ) -> Optional[WorkflowRun]:
        """Create one run at the workflow's trigger node. None if suppressed."""
        try:
            compiled = self._workflow_manager.compiled(workflow)
        except InvalidDefinition as exc:
            logger.error(
                "Active workflow=%s failed to compile, not starting run: %s",
                workflow.id, exc.violations,
            )
            return None

        now = self._clock()
        run = WorkflowRun(
            workflow_id=workflow.id,
            publication_id=workflow.publication_id,
            subscriber_id=subscriber_id,
            workflow_version=workflow.version,
            definition=workflow.definition,
            current_node_id=compiled.entry_node_id,
            status=RunStatus.RUNNING,
            context=context,
            idempotency_key=idempotency_key,
            created_at=now,
            updated_at=now,
        )
        try:
            run = await self._run_store.create_run(run)
        except TriggerMatchConflict as exc:
            logger.info("Duplicate trigger suppressed key=%s", exc.idempotency_key)
            return None

        if self._event_bus is not None:
            await self._event_bus.emit(EVENT_RUN_CREATED, {
                "run_id": run.id,
                "workflow_id": workflow.id,
                "subscriber_id": subscriber_id,
            })
        return run
