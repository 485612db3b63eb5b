"""ExecutionEngine — advances workflow runs through their compiled graph.

One ``advance(run_id)`` call:

    claim → [status check → execute node → conditional commit] * → release

Every node is committed on its own (pointer, step sequence, status and a
journal row in one store call), and each commit is conditional on the claim
owner and the expected step sequence.  A commit that keeps the claim renews
its lease, so a long advance is not re-claimed between nodes.  A worker that
lost its claim stops without further side effects; a worker that crashed
between a side effect and its commit is replayed by the next claimer with
the same email idempotency key, so the sending service de-duplicates the
resend.
"""

from __future__ import annotations

import inspect
import logging
import os
import socket
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Optional, assert_never
from uuid import uuid4

from cadence.exceptions import (
    ClaimLost,
    ConditionEvaluationError,
    DeliveryError,
    WorkflowNotFound,
)
from cadence.personalization import build_variables, render
from cadence.triggers.event_bus import EVENT_RUN_COMPLETED, EVENT_RUN_FAILED
from cadence.types import (
    Branch,
    CustomFieldData,
    HasTagData,
    NodeKind,
    RunStatus,
    RunStep,
    SendEmailData,
    TagData,
    TierData,
    TriggerNodeData,
    WaitData,
    WorkflowRun,
    WorkflowStatus,
    utcnow,
)
from cadence.workflows.compiler import CompiledWorkflow, WorkflowCompiler
from cadence.workflows.conditions import evaluate_condition
from cadence.workflows.manager import ARCHIVE_CANCEL_REASON

logger = logging.getLogger(__name__)


def default_owner_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}"


@dataclass
class _StepResult:
    """What executing one node decided. ``error`` set means the run fails."""
    node_kind: Optional[str]
    outcome: str
    detail: str = ""
    next_node_id: Optional[str] = None
    resume_at: Optional[datetime] = None
    error: Optional[str] = None


def _fallback_variables(personalization: dict[str, str]) -> dict[str, str]:
    """Node-level personalization values, keyed as ``{{namespace.field}}`` tokens."""
    values = {}
    for key, value in personalization.items():
        token = key if key.startswith("{{") else "{{" + key + "}}"
        values[token] = value
    return values


class ExecutionEngine:
    """Advances runs one node at a time against injected adapters.

    Constructor dependencies:
        - workflow_manager: live workflow status lookups
        - run_store: RunStore (SQL repository or InMemoryRunStore)
        - email_sender / tag_store / subscriber_store / publication_store: adapters
        - compiler: WorkflowCompiler shared with the manager (snapshot cache)
        - callbacks: async callables ``cb(event, data)`` for lifecycle events
        - event_bus, monitor: optional run outcome fan-out and failure aggregation
    """

    def __init__(
        self,
        workflow_manager,
        run_store,
        email_sender,
        tag_store,
        subscriber_store,
        publication_store=None,
        compiler: Optional[WorkflowCompiler] = None,
        callbacks: Optional[list] = None,
        event_bus=None,
        monitor=None,
        lease_seconds: int = 120,
        max_steps: int = 200,
        owner_id: Optional[str] = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._workflow_manager = workflow_manager
        self._run_store = run_store
        self._email = email_sender
        self._tags = tag_store
        self._subscribers = subscriber_store
        self._publications = publication_store
        self._compiler = compiler or WorkflowCompiler()
        self.callbacks = callbacks or []
        self._event_bus = event_bus
        self._monitor = monitor
        self._lease_seconds = lease_seconds
        self._max_steps = max_steps
        self._owner_id = owner_id or default_owner_id()
        self._clock = clock

    # ── Public API ───────────────────────────────────────────────────────────

    async def advance(self, run_id: str) -> Optional[WorkflowRun]:
        """
        Claim *run_id* and execute nodes until it waits, parks or finishes.

        Returns the run's state after this call, or None when the run was not
        claimable (unknown, terminal, claimed elsewhere, or still waiting) or
        the claim was lost mid-way.
        """
        owner = f"{self._owner_id}:{uuid4().hex[:12]}"
        run = await self._run_store.claim_run(run_id, owner, self._clock(), self._lease_seconds)
        if run is None:
            logger.debug("Run %s not claimable", run_id)
            return None
        try:
            return await self._drive(run, owner)
        except ClaimLost as exc:
            logger.warning("Run %s: %s; stopping without further side effects", run_id, exc.message)
            return None

    # ── Run loop ─────────────────────────────────────────────────────────────

    async def _drive(self, run: WorkflowRun, owner: str) -> Optional[WorkflowRun]:
        if run.step_seq == 0:
            await self._fire_callbacks("run_started", {
                "run_id": run.id,
                "workflow_id": run.workflow_id,
                "subscriber_id": run.subscriber_id,
                "workflow_version": run.workflow_version,
            })

        if run.status == RunStatus.WAITING:
            # Only handed out once resume_at has passed; persisted with the next commit.
            run = run.model_copy(update={"status": RunStatus.RUNNING, "resume_at": None})

        for _ in range(self._max_steps):
            try:
                workflow = await self._workflow_manager.get(run.workflow_id, run.publication_id)
            except WorkflowNotFound:
                return await self._commit(run, owner, _StepResult(
                    node_kind=None, outcome="failed", error="workflow not found",
                ))

            if workflow.status == WorkflowStatus.ARCHIVED:
                return await self._commit(run, owner, _StepResult(
                    node_kind=None, outcome="cancelled", error=ARCHIVE_CANCEL_REASON,
                ))
            if workflow.status != WorkflowStatus.ACTIVE:
                return await self._park(run, owner, workflow.status)

            if run.current_node_id is None:
                return await self._commit(run, owner, _StepResult(node_kind=None, outcome="completed"))

            try:
                result = await self._execute(run)
            except Exception as exc:
                logger.exception("Run %s failed at node %s", run.id, run.current_node_id)
                result = _StepResult(
                    node_kind=None,
                    outcome="failed",
                    error=f"{type(exc).__name__}: {exc}",
                )

            run = await self._commit(run, owner, result)
            if run.status != RunStatus.RUNNING:
                return run

        logger.warning(
            "Run %s hit the %d-step cap in one advance; releasing for the next tick",
            run.id, self._max_steps,
        )
        await self._run_store.release_claim(run.id, owner)
        return run

    async def _park(self, run: WorkflowRun, owner: str, status: WorkflowStatus) -> Optional[WorkflowRun]:
        await self._run_store.release_claim(run.id, owner)
        logger.info("Run %s parked: workflow %s is %s", run.id, run.workflow_id, status.value)
        await self._fire_callbacks("run_parked", {
            "run_id": run.id,
            "workflow_id": run.workflow_id,
            "workflow_status": status.value,
        })
        return await self._run_store.get_run(run.id)

    async def _commit(self, run: WorkflowRun, owner: str, result: _StepResult) -> WorkflowRun:
        expected_seq = run.step_seq
        seq = expected_seq + 1
        now = self._clock()

        updates: dict[str, Any] = {"step_seq": seq, "updated_at": now}
        if result.error is not None:
            updates.update(status=RunStatus.FAILED, error=result.error, resume_at=None, completed_at=now)
        elif result.resume_at is not None:
            updates.update(
                status=RunStatus.WAITING,
                resume_at=result.resume_at,
                current_node_id=result.next_node_id,
            )
        elif result.next_node_id is None:
            updates.update(status=RunStatus.COMPLETED, current_node_id=None, resume_at=None, completed_at=now)
        else:
            updates.update(status=RunStatus.RUNNING, current_node_id=result.next_node_id)
        updated = run.model_copy(update=updates)

        step = RunStep(
            run_id=run.id,
            seq=seq,
            node_id=run.current_node_id,
            node_kind=result.node_kind,
            outcome=result.outcome,
            detail=result.error or result.detail,
            created_at=now,
        )
        committed = await self._run_store.commit_step(
            updated,
            owner,
            expected_seq,
            step,
            release=updated.status == RunStatus.WAITING,
            lease_until=now + timedelta(seconds=self._lease_seconds),
        )
        if not committed:
            raise ClaimLost(f"Commit of step {seq} rejected", run_id=run.id)

        await self._after_commit(updated, step)
        return updated

    async def _after_commit(self, run: WorkflowRun, step: RunStep) -> None:
        data = {
            "run_id": run.id,
            "workflow_id": run.workflow_id,
            "subscriber_id": run.subscriber_id,
            "seq": step.seq,
            "node_id": step.node_id,
            "outcome": step.outcome,
        }
        if run.status == RunStatus.RUNNING:
            await self._fire_callbacks("step_completed", data)
        elif run.status == RunStatus.WAITING:
            await self._fire_callbacks("run_waiting", {
                **data, "resume_at": run.resume_at.isoformat() if run.resume_at else None,
            })
        elif run.status == RunStatus.COMPLETED:
            await self._fire_callbacks("run_completed", data)
            if self._event_bus is not None:
                await self._event_bus.emit(EVENT_RUN_COMPLETED, data)
        else:
            logger.warning("Run %s failed at node %s: %s", run.id, step.node_id, run.error)
            await self._fire_callbacks("run_failed", {**data, "error": run.error})
            if self._event_bus is not None:
                await self._event_bus.emit(EVENT_RUN_FAILED, {**data, "error": run.error})

    # ── Node execution ───────────────────────────────────────────────────────

    async def _execute(self, run: WorkflowRun) -> _StepResult:
        compiled = self._compiler.compile(run.workflow_id, run.workflow_version, run.definition)
        node_id = run.current_node_id
        data = compiled.node(node_id)

        if isinstance(data, TriggerNodeData):
            return _StepResult(
                node_kind=NodeKind.TRIGGER.value,
                outcome="triggered",
                next_node_id=compiled.step(node_id),
            )
        if isinstance(data, SendEmailData):
            return await self._send_email(run, compiled, node_id, data)
        if isinstance(data, TagData):
            return await self._apply_tags(run, compiled, node_id, data)
        if isinstance(data, WaitData):
            resume_at = self._clock() + data.config.delay()
            return _StepResult(
                node_kind=NodeKind.ACTION.value,
                outcome="waiting",
                detail=f"until {resume_at.isoformat()}",
                next_node_id=compiled.step(node_id),
                resume_at=resume_at,
            )
        if isinstance(data, (HasTagData, TierData, CustomFieldData)):
            return await self._evaluate(run, compiled, node_id, data)
        assert_never(data)

    async def _send_email(
        self, run: WorkflowRun, compiled: CompiledWorkflow, node_id: str, data: SendEmailData
    ) -> _StepResult:
        subscriber = await self._subscribers.get_context(run.subscriber_id)
        if subscriber is None or not subscriber.email:
            return _StepResult(
                node_kind=NodeKind.ACTION.value,
                outcome="delivery_failed",
                error=f"subscriber '{run.subscriber_id}' has no email address",
            )
        publication = None
        if self._publications is not None:
            publication = await self._publications.get_publication(run.publication_id)

        variables = {
            **_fallback_variables(data.config.personalization),
            **build_variables(subscriber, publication, run.context, self._clock().date()),
        }
        subject = render(data.config.subject, variables)
        body = render(data.config.content, variables)

        try:
            delivery = await self._email.send(
                subscriber.email,
                subject,
                body,
                idempotency_key=f"{run.id}:{run.step_seq + 1}",
            )
        except DeliveryError as exc:
            if self._monitor is not None:
                await self._monitor.record_failure(run.workflow_id, exc.message)
            kind = "transient" if exc.transient else "permanent"
            return _StepResult(
                node_kind=NodeKind.ACTION.value,
                outcome="delivery_failed",
                error=f"email delivery failed ({kind}): {exc.message}",
            )

        return _StepResult(
            node_kind=NodeKind.ACTION.value,
            outcome="sent",
            detail=f"delivery_id={delivery.delivery_id}",
            next_node_id=compiled.step(node_id),
        )

    async def _apply_tags(
        self, run: WorkflowRun, compiled: CompiledWorkflow, node_id: str, data: TagData
    ) -> _StepResult:
        adding = data.action_type == "ADD_TAG"
        for tag_id in data.config.tag_ids:
            if adding:
                await self._tags.add_tag(run.subscriber_id, tag_id)
            else:
                await self._tags.remove_tag(run.subscriber_id, tag_id)
        return _StepResult(
            node_kind=NodeKind.ACTION.value,
            outcome="tagged" if adding else "untagged",
            detail=",".join(data.config.tag_ids),
            next_node_id=compiled.step(node_id),
        )

    async def _evaluate(
        self,
        run: WorkflowRun,
        compiled: CompiledWorkflow,
        node_id: str,
        data: HasTagData | TierData | CustomFieldData,
    ) -> _StepResult:
        subscriber = await self._subscribers.get_context(run.subscriber_id)
        detail = ""
        try:
            matched = evaluate_condition(data, subscriber)
        except ConditionEvaluationError as exc:
            matched = False
            detail = exc.message
        branch = Branch.TRUE if matched else Branch.FALSE
        return _StepResult(
            node_kind=NodeKind.CONDITION.value,
            outcome=f"branch:{branch.value}",
            detail=detail,
            next_node_id=compiled.step(node_id, matched),
        )

    # ── Callbacks ────────────────────────────────────────────────────────────

    async def _fire_callbacks(self, event: str, data: dict) -> None:
        """Invoke all registered callbacks for a lifecycle event."""
        for cb in self.callbacks:
            try:
                result = cb(event, data)
                if inspect.isawaitable(result):
                    await result
            except Exception as cb_exc:
                logger.warning("Callback error on '%s': %s", event, cb_exc)
