"""
Run persistence contract and its in-memory implementation.

``cadence.db.repository.Repository`` satisfies the same protocol against
SQL; ``InMemoryRunStore`` backs tests and single-process local use.  Both
enforce the same claim rules:

* a run is claimable when it is not terminal, is unclaimed or holds an
  expired claim, and (if WAITING) its resume time has passed;
* a step commit succeeds only for the current claim owner at the expected
  step sequence, so a replay or a revoked claim is detected, never applied;
* a commit that keeps the claim may push its lease out to ``lease_until``.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Optional, Protocol, runtime_checkable

from cadence.exceptions import TriggerMatchConflict
from cadence.types import RunStatus, RunStep, WorkflowRun, utcnow


@runtime_checkable
class RunStore(Protocol):
    async def create_run(self, run: WorkflowRun) -> WorkflowRun: ...

    async def get_run(self, run_id: str) -> Optional[WorkflowRun]: ...

    async def list_runs(
        self,
        workflow_id: str,
        status: Optional[RunStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WorkflowRun]: ...

    async def list_due_run_ids(self, now: datetime, limit: int = 100) -> list[str]: ...

    async def claim_run(
        self, run_id: str, owner: str, now: datetime, lease_seconds: int
    ) -> Optional[WorkflowRun]: ...

    async def commit_step(
        self,
        run: WorkflowRun,
        owner: str,
        expected_seq: int,
        step: Optional[RunStep] = None,
        release: bool = False,
        lease_until: Optional[datetime] = None,
    ) -> bool: ...

    async def release_claim(self, run_id: str, owner: str) -> None: ...

    async def cancel_runs(self, workflow_id: str, reason: str) -> int: ...

    async def count_runs_by_status(self, workflow_id: str) -> dict[str, int]: ...

    async def list_run_steps(self, run_id: str) -> list[RunStep]: ...


def is_due(run: WorkflowRun, now: datetime) -> bool:
    """True when a scheduler should try to advance *run* at *now*."""
    if run.is_terminal:
        return False
    if run.claim_owner is not None and run.claim_expires_at is not None and run.claim_expires_at > now:
        return False
    if run.status == RunStatus.WAITING:
        return run.resume_at is not None and run.resume_at <= now
    return True


class InMemoryRunStore:
    """Dict-backed RunStore. Returns copies so callers never alias stored state."""

    def __init__(self) -> None:
        self._runs: dict[str, WorkflowRun] = {}
        self._keys: dict[str, str] = {}              # idempotency_key → run_id
        self._steps: dict[str, list[RunStep]] = {}
        self._lock = asyncio.Lock()

    async def create_run(self, run: WorkflowRun) -> WorkflowRun:
        async with self._lock:
            if run.idempotency_key in self._keys:
                raise TriggerMatchConflict(
                    f"Run already exists for key '{run.idempotency_key}'",
                    idempotency_key=run.idempotency_key,
                )
            self._keys[run.idempotency_key] = run.id
            self._runs[run.id] = run.model_copy(deep=True)
            return run.model_copy(deep=True)

    async def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        run = self._runs.get(run_id)
        return run.model_copy(deep=True) if run is not None else None

    async def list_runs(
        self,
        workflow_id: str,
        status: Optional[RunStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WorkflowRun]:
        runs = [
            r for r in self._runs.values()
            if r.workflow_id == workflow_id and (status is None or r.status == status)
        ]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in runs[offset: offset + limit]]

    async def list_due_run_ids(self, now: datetime, limit: int = 100) -> list[str]:
        due = [r for r in self._runs.values() if is_due(r, now)]
        due.sort(key=lambda r: r.resume_at or r.created_at)
        return [r.id for r in due[:limit]]

    async def claim_run(
        self, run_id: str, owner: str, now: datetime, lease_seconds: int
    ) -> Optional[WorkflowRun]:
        async with self._lock:
            run = self._runs.get(run_id)
            if run is None or not is_due(run, now):
                return None
            run.claim_owner = owner
            run.claim_expires_at = now + timedelta(seconds=lease_seconds)
            return run.model_copy(deep=True)

    async def commit_step(
        self,
        run: WorkflowRun,
        owner: str,
        expected_seq: int,
        step: Optional[RunStep] = None,
        release: bool = False,
        lease_until: Optional[datetime] = None,
    ) -> bool:
        async with self._lock:
            stored = self._runs.get(run.id)
            if (
                stored is None
                or stored.is_terminal
                or stored.claim_owner != owner
                or stored.step_seq != expected_seq
            ):
                return False
            updated = run.model_copy(deep=True, update={"updated_at": utcnow()})
            if release or updated.is_terminal:
                updated.claim_owner = None
                updated.claim_expires_at = None
            else:
                updated.claim_owner = stored.claim_owner
                updated.claim_expires_at = lease_until or stored.claim_expires_at
            self._runs[run.id] = updated
            if step is not None:
                self._steps.setdefault(run.id, []).append(step.model_copy())
            return True

    async def release_claim(self, run_id: str, owner: str) -> None:
        async with self._lock:
            run = self._runs.get(run_id)
            if run is not None and run.claim_owner == owner:
                run.claim_owner = None
                run.claim_expires_at = None

    async def cancel_runs(self, workflow_id: str, reason: str) -> int:
        now = utcnow()
        cancelled = 0
        async with self._lock:
            for run in self._runs.values():
                if run.workflow_id != workflow_id or run.is_terminal:
                    continue
                run.status = RunStatus.FAILED
                run.error = reason
                run.resume_at = None
                run.claim_owner = None
                run.claim_expires_at = None
                run.completed_at = now
                run.updated_at = now
                self._steps.setdefault(run.id, []).append(RunStep(
                    run_id=run.id,
                    seq=run.step_seq + 1,
                    node_id=run.current_node_id,
                    outcome="cancelled",
                    detail=reason,
                ))
                run.step_seq += 1
                cancelled += 1
        return cancelled

    async def count_runs_by_status(self, workflow_id: str) -> dict[str, int]:
        counts = {s.value: 0 for s in RunStatus}
        for run in self._runs.values():
            if run.workflow_id == workflow_id:
                counts[run.status.value] += 1
        return counts

    async def list_run_steps(self, run_id: str) -> list[RunStep]:
        return [s.model_copy() for s in self._steps.get(run_id, [])]
