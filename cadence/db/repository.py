"""Data access layer. Every workflow query is publication-scoped.

This is the ONLY layer that talks to the database.  ``Repository`` serves
both the WorkflowManager (workflow metadata and graph rows) and the
execution engine (the RunStore protocol: runs, claims and step journal).
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from cadence.db.models import (
    WorkflowEdgeModel,
    WorkflowModel,
    WorkflowNodeModel,
    WorkflowRunModel,
    WorkflowRunStepModel,
)
from cadence.exceptions import TriggerMatchConflict
from cadence.types import (
    RunStatus,
    RunStep,
    TriggerConfig,
    TriggerType,
    Workflow,
    WorkflowDefinition,
    WorkflowEdge,
    WorkflowNode,
    WorkflowRun,
    WorkflowStatus,
)

_ACTIVE_RUN_STATUSES = (RunStatus.RUNNING.value, RunStatus.WAITING.value)

_WORKFLOW_UPDATE_KEYS = {
    "name", "description", "trigger", "trigger_config", "status",
    "custom_date_fired_at", "updated_at",
}


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; everything stored is UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def _column_value(key: str, value: Any) -> Any:
    if key == "trigger_config" and isinstance(value, TriggerConfig):
        return value.model_dump(mode="json", by_alias=True, exclude_none=True)
    if key in ("trigger", "status") and hasattr(value, "value"):
        return value.value
    return value


class Repository:
    """All database operations. Workflow queries are scoped to a publication."""

    def __init__(self, session: AsyncSession):
        self.session = session

    # ── Converters ──

    @staticmethod
    def _node_rows(workflow_id: str, definition: WorkflowDefinition) -> list[WorkflowNodeModel]:
        return [
            WorkflowNodeModel(
                workflow_id=workflow_id,
                node_id=node.id,
                node_type=node.type.value if node.type is not None else None,
                kind=node.kind.value,
                subtype=node.subtype,
                position=node.position.model_dump(mode="json"),
                data=node.data.model_dump(mode="json", by_alias=True),
                ordinal=index,
            )
            for index, node in enumerate(definition.nodes)
        ]

    @staticmethod
    def _edge_rows(workflow_id: str, definition: WorkflowDefinition) -> list[WorkflowEdgeModel]:
        return [
            WorkflowEdgeModel(
                workflow_id=workflow_id,
                edge_id=edge.id,
                source=edge.source,
                target=edge.target,
                source_handle=edge.source_handle,
                target_handle=edge.target_handle,
                label=edge.label,
                animated=edge.animated,
                edge_type=edge.type,
                branch=edge.branch.value if edge.branch is not None else None,
                ordinal=index,
            )
            for index, edge in enumerate(definition.edges)
        ]

    @staticmethod
    def _rows_to_definition(
        nodes: list[WorkflowNodeModel], edges: list[WorkflowEdgeModel]
    ) -> WorkflowDefinition:
        return WorkflowDefinition(
            nodes=[
                WorkflowNode.model_validate({
                    "id": n.node_id,
                    "type": n.node_type,
                    "position": n.position or {},
                    "data": n.data,
                })
                for n in sorted(nodes, key=lambda n: n.ordinal)
            ],
            edges=[
                WorkflowEdge(
                    id=e.edge_id,
                    source=e.source,
                    target=e.target,
                    source_handle=e.source_handle,
                    target_handle=e.target_handle,
                    label=e.label,
                    animated=bool(e.animated),
                    type=e.edge_type,
                    branch=e.branch,
                )
                for e in sorted(edges, key=lambda e: e.ordinal)
            ],
        )

    @staticmethod
    def _model_to_workflow(m: WorkflowModel, definition: WorkflowDefinition) -> Workflow:
        """Convert a WorkflowModel ORM row plus its graph rows to a Workflow."""
        return Workflow(
            id=m.id,
            publication_id=m.publication_id,
            name=m.name,
            description=m.description or "",
            trigger=TriggerType(m.trigger),
            trigger_config=TriggerConfig.model_validate(m.trigger_config or {}),
            status=WorkflowStatus(m.status),
            version=m.version,
            definition=definition,
            custom_date_fired_at=_aware(m.custom_date_fired_at),
            created_at=_aware(m.created_at),
            updated_at=_aware(m.updated_at),
        )

    @staticmethod
    def _model_to_run(m: WorkflowRunModel) -> WorkflowRun:
        return WorkflowRun(
            id=m.id,
            workflow_id=m.workflow_id,
            publication_id=m.publication_id,
            subscriber_id=m.subscriber_id,
            workflow_version=m.workflow_version,
            definition=WorkflowDefinition.model_validate(m.definition or {}),
            current_node_id=m.current_node_id,
            status=RunStatus(m.status),
            resume_at=_aware(m.resume_at),
            context=m.context or {},
            step_seq=m.step_seq,
            idempotency_key=m.idempotency_key,
            claim_owner=m.claim_owner,
            claim_expires_at=_aware(m.claim_expires_at),
            error=m.error,
            created_at=_aware(m.created_at),
            updated_at=_aware(m.updated_at),
            completed_at=_aware(m.completed_at),
        )

    @staticmethod
    def _model_to_step(m: WorkflowRunStepModel) -> RunStep:
        return RunStep(
            run_id=m.run_id,
            seq=m.seq,
            node_id=m.node_id,
            node_kind=m.node_kind,
            outcome=m.outcome,
            detail=m.detail or "",
            created_at=_aware(m.created_at),
        )

    async def _hydrate(self, rows: list[WorkflowModel]) -> list[Workflow]:
        """Attach graph rows to workflow rows with one query per child table."""
        if not rows:
            return []
        ids = [r.id for r in rows]
        node_result = await self.session.execute(
            select(WorkflowNodeModel).where(WorkflowNodeModel.workflow_id.in_(ids))
        )
        edge_result = await self.session.execute(
            select(WorkflowEdgeModel).where(WorkflowEdgeModel.workflow_id.in_(ids))
        )
        nodes: dict[str, list[WorkflowNodeModel]] = {}
        for n in node_result.scalars().all():
            nodes.setdefault(n.workflow_id, []).append(n)
        edges: dict[str, list[WorkflowEdgeModel]] = {}
        for e in edge_result.scalars().all():
            edges.setdefault(e.workflow_id, []).append(e)
        return [
            self._model_to_workflow(r, self._rows_to_definition(nodes.get(r.id, []), edges.get(r.id, [])))
            for r in rows
        ]

    # ── Workflows ──

    async def create_workflow(self, workflow: Workflow) -> Workflow:
        """Persist a new workflow with its node and edge rows."""
        record = WorkflowModel(
            id=workflow.id,
            publication_id=workflow.publication_id,
            name=workflow.name,
            description=workflow.description,
            trigger=workflow.trigger.value,
            trigger_config=_column_value("trigger_config", workflow.trigger_config),
            status=workflow.status.value,
            version=workflow.version,
            custom_date_fired_at=workflow.custom_date_fired_at,
            created_at=workflow.created_at,
            updated_at=workflow.updated_at,
        )
        self.session.add(record)
        await self.session.flush()
        self.session.add_all(self._node_rows(workflow.id, workflow.definition))
        self.session.add_all(self._edge_rows(workflow.id, workflow.definition))
        await self.session.commit()
        return await self.get_workflow(workflow.publication_id, workflow.id)

    async def get_workflow(self, publication_id: str, workflow_id: str) -> Optional[Workflow]:
        """Get workflow by ID within publication, graph included."""
        result = await self.session.execute(
            select(WorkflowModel).where(
                WorkflowModel.id == workflow_id,
                WorkflowModel.publication_id == publication_id,
            ).execution_options(populate_existing=True)
        )
        m = result.scalar_one_or_none()
        if m is None:
            return None
        return (await self._hydrate([m]))[0]

    async def list_workflows(
        self,
        publication_id: str,
        status: Optional[WorkflowStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Workflow]:
        """List a publication's workflows, newest first."""
        query = select(WorkflowModel).where(WorkflowModel.publication_id == publication_id)
        if status is not None:
            query = query.where(WorkflowModel.status == status.value)
        query = query.order_by(WorkflowModel.created_at.desc()).limit(limit).offset(offset)
        query = query.execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return await self._hydrate(list(result.scalars().all()))

    async def list_active_workflows(
        self,
        publication_id: Optional[str] = None,
        trigger: Optional[TriggerType] = None,
    ) -> list[Workflow]:
        """ACTIVE workflows. ``publication_id=None`` spans all publications (CUSTOM_DATE sweep)."""
        query = select(WorkflowModel).where(WorkflowModel.status == WorkflowStatus.ACTIVE.value)
        if publication_id is not None:
            query = query.where(WorkflowModel.publication_id == publication_id)
        if trigger is not None:
            query = query.where(WorkflowModel.trigger == trigger.value)
        query = query.execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return await self._hydrate(list(result.scalars().all()))

    async def update_workflow(
        self, publication_id: str, workflow_id: str, updates: dict
    ) -> Optional[Workflow]:
        """Apply partial metadata updates. The graph goes through ``replace_definition``."""
        bad = set(updates) - _WORKFLOW_UPDATE_KEYS
        if bad:
            raise ValueError(f"Unknown workflow update keys: {bad}")
        result = await self.session.execute(
            select(WorkflowModel).where(
                WorkflowModel.publication_id == publication_id,
                WorkflowModel.id == workflow_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None
        for key, value in updates.items():
            setattr(record, key, _column_value(key, value))
        record.updated_at = updates.get("updated_at") or datetime.now(timezone.utc)
        await self.session.commit()
        return await self.get_workflow(publication_id, workflow_id)

    async def replace_definition(
        self, publication_id: str, workflow_id: str, definition: WorkflowDefinition
    ) -> Optional[Workflow]:
        """Swap the node/edge rows and bump the version in one transaction."""
        result = await self.session.execute(
            select(WorkflowModel).where(
                WorkflowModel.publication_id == publication_id,
                WorkflowModel.id == workflow_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            return None
        await self.session.execute(delete(WorkflowEdgeModel).where(WorkflowEdgeModel.workflow_id == workflow_id))
        await self.session.execute(delete(WorkflowNodeModel).where(WorkflowNodeModel.workflow_id == workflow_id))
        self.session.add_all(self._node_rows(workflow_id, definition))
        self.session.add_all(self._edge_rows(workflow_id, definition))
        record.version = (record.version or 1) + 1
        record.updated_at = datetime.now(timezone.utc)
        await self.session.commit()
        return await self.get_workflow(publication_id, workflow_id)

    async def delete_workflow(self, publication_id: str, workflow_id: str) -> bool:
        """Hard-delete a workflow and cascade to graph rows, runs and run steps."""
        result = await self.session.execute(
            select(WorkflowModel).where(
                WorkflowModel.publication_id == publication_id,
                WorkflowModel.id == workflow_id,
            )
        )
        record = result.scalar_one_or_none()
        if record is None:
            return False
        # Explicit cascade: SQLite only honours ON DELETE with foreign_keys=ON
        run_ids = select(WorkflowRunModel.id).where(WorkflowRunModel.workflow_id == workflow_id)
        await self.session.execute(delete(WorkflowRunStepModel).where(WorkflowRunStepModel.run_id.in_(run_ids)))
        await self.session.execute(delete(WorkflowRunModel).where(WorkflowRunModel.workflow_id == workflow_id))
        await self.session.execute(delete(WorkflowEdgeModel).where(WorkflowEdgeModel.workflow_id == workflow_id))
        await self.session.execute(delete(WorkflowNodeModel).where(WorkflowNodeModel.workflow_id == workflow_id))
        await self.session.delete(record)
        await self.session.commit()
        return True

    async def claim_custom_date_fire(self, workflow_id: str, fired_at: datetime) -> bool:
        """Set ``custom_date_fired_at`` only if unset. True when this caller won."""
        result = await self.session.execute(
            update(WorkflowModel)
            .where(WorkflowModel.id == workflow_id, WorkflowModel.custom_date_fired_at.is_(None))
            .values(custom_date_fired_at=fired_at)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1

    async def find_workflows_using(self, publication_id: str, subtype: str, value: str) -> list[str]:
        """IDs of workflows with a node of *subtype* whose config mentions *value* (e.g. a tag id)."""
        result = await self.session.execute(
            select(WorkflowNodeModel.workflow_id, WorkflowNodeModel.data)
            .join(WorkflowModel, WorkflowModel.id == WorkflowNodeModel.workflow_id)
            .where(WorkflowModel.publication_id == publication_id, WorkflowNodeModel.subtype == subtype)
        )
        found: list[str] = []
        for workflow_id, data in result.all():
            config = (data or {}).get("config") or {}
            referenced = [v for v in config.values() if isinstance(v, str)]
            for v in config.values():
                if isinstance(v, list):
                    referenced.extend(str(item) for item in v)
            if value in referenced and workflow_id not in found:
                found.append(workflow_id)
        return found

    # ── Runs ──

    async def create_run(self, run: WorkflowRun) -> WorkflowRun:
        """Insert a run. A repeated idempotency key raises TriggerMatchConflict."""
        record = WorkflowRunModel(
            id=run.id,
            workflow_id=run.workflow_id,
            publication_id=run.publication_id,
            subscriber_id=run.subscriber_id,
            workflow_version=run.workflow_version,
            definition=run.definition.model_dump(mode="json", by_alias=True),
            current_node_id=run.current_node_id,
            status=run.status.value,
            resume_at=run.resume_at,
            context=run.context,
            step_seq=run.step_seq,
            idempotency_key=run.idempotency_key,
            claim_owner=run.claim_owner,
            claim_expires_at=run.claim_expires_at,
            error=run.error,
            created_at=run.created_at,
            updated_at=run.updated_at,
            completed_at=run.completed_at,
        )
        self.session.add(record)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise TriggerMatchConflict(
                f"Run already exists for key '{run.idempotency_key}'",
                idempotency_key=run.idempotency_key,
            ) from None
        await self.session.refresh(record)
        return self._model_to_run(record)

    async def get_run(self, run_id: str) -> Optional[WorkflowRun]:
        result = await self.session.execute(
            select(WorkflowRunModel)
            .where(WorkflowRunModel.id == run_id)
            .execution_options(populate_existing=True)
        )
        m = result.scalar_one_or_none()
        return self._model_to_run(m) if m is not None else None

    async def list_runs(
        self,
        workflow_id: str,
        status: Optional[RunStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[WorkflowRun]:
        query = select(WorkflowRunModel).where(WorkflowRunModel.workflow_id == workflow_id)
        if status is not None:
            query = query.where(WorkflowRunModel.status == status.value)
        query = query.order_by(WorkflowRunModel.created_at.desc()).limit(limit).offset(offset)
        query = query.execution_options(populate_existing=True)
        result = await self.session.execute(query)
        return [self._model_to_run(m) for m in result.scalars().all()]

    @staticmethod
    def _claimable(now: datetime):
        return and_(
            WorkflowRunModel.status.in_(_ACTIVE_RUN_STATUSES),
            or_(
                WorkflowRunModel.claim_owner.is_(None),
                WorkflowRunModel.claim_expires_at <= now,
            ),
            or_(
                WorkflowRunModel.status == RunStatus.RUNNING.value,
                WorkflowRunModel.resume_at <= now,
            ),
        )

    async def list_due_run_ids(self, now: datetime, limit: int = 100) -> list[str]:
        """Due runs of ACTIVE workflows, oldest resume time first.

        Runs of paused workflows are skipped here so they stay parked
        without being claimed on every tick.
        """
        result = await self.session.execute(
            select(WorkflowRunModel.id)
            .join(WorkflowModel, WorkflowModel.id == WorkflowRunModel.workflow_id)
            .where(self._claimable(now), WorkflowModel.status == WorkflowStatus.ACTIVE.value)
            .order_by(func.coalesce(WorkflowRunModel.resume_at, WorkflowRunModel.created_at))
            .limit(limit)
        )
        return list(result.scalars().all())

    async def claim_run(
        self, run_id: str, owner: str, now: datetime, lease_seconds: int
    ) -> Optional[WorkflowRun]:
        """Conditional lease: succeeds only for an unclaimed (or expired) due run."""
        result = await self.session.execute(
            update(WorkflowRunModel)
            .where(WorkflowRunModel.id == run_id, self._claimable(now))
            .values(claim_owner=owner, claim_expires_at=now + timedelta(seconds=lease_seconds))
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        if result.rowcount != 1:
            return None
        return await self.get_run(run_id)

    async def commit_step(
        self,
        run: WorkflowRun,
        owner: str,
        expected_seq: int,
        step: Optional[RunStep] = None,
        release: bool = False,
        lease_until: Optional[datetime] = None,
    ) -> bool:
        """Write the run's new state and journal row iff *owner* still holds it at *expected_seq*."""
        values: dict[str, Any] = {
            "current_node_id": run.current_node_id,
            "status": run.status.value,
            "resume_at": run.resume_at,
            "context": run.context,
            "step_seq": run.step_seq,
            "error": run.error,
            "updated_at": datetime.now(timezone.utc),
            "completed_at": run.completed_at,
        }
        if release or run.is_terminal:
            values["claim_owner"] = None
            values["claim_expires_at"] = None
        elif lease_until is not None:
            values["claim_expires_at"] = lease_until
        result = await self.session.execute(
            update(WorkflowRunModel)
            .where(
                WorkflowRunModel.id == run.id,
                WorkflowRunModel.claim_owner == owner,
                WorkflowRunModel.step_seq == expected_seq,
                WorkflowRunModel.status.in_(_ACTIVE_RUN_STATUSES),
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.session.rollback()
            return False
        if step is not None:
            self.session.add(WorkflowRunStepModel(
                run_id=step.run_id,
                seq=step.seq,
                node_id=step.node_id,
                node_kind=step.node_kind,
                outcome=step.outcome,
                detail=step.detail,
                created_at=step.created_at,
            ))
        await self.session.commit()
        return True

    async def release_claim(self, run_id: str, owner: str) -> None:
        await self.session.execute(
            update(WorkflowRunModel)
            .where(WorkflowRunModel.id == run_id, WorkflowRunModel.claim_owner == owner)
            .values(claim_owner=None, claim_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()

    async def cancel_runs(self, workflow_id: str, reason: str) -> int:
        """Fail every in-flight run of a workflow with *reason*. Returns how many."""
        result = await self.session.execute(
            select(WorkflowRunModel.id, WorkflowRunModel.step_seq, WorkflowRunModel.current_node_id).where(
                WorkflowRunModel.workflow_id == workflow_id,
                WorkflowRunModel.status.in_(_ACTIVE_RUN_STATUSES),
            )
        )
        now = datetime.now(timezone.utc)
        cancelled = 0
        for run_id, step_seq, node_id in result.all():
            updated = await self.session.execute(
                update(WorkflowRunModel)
                .where(WorkflowRunModel.id == run_id, WorkflowRunModel.step_seq == step_seq)
                .values(
                    status=RunStatus.FAILED.value,
                    error=reason,
                    resume_at=None,
                    claim_owner=None,
                    claim_expires_at=None,
                    step_seq=step_seq + 1,
                    completed_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if updated.rowcount != 1:
                continue
            self.session.add(WorkflowRunStepModel(
                run_id=run_id,
                seq=step_seq + 1,
                node_id=node_id,
                outcome="cancelled",
                detail=reason,
                created_at=now,
            ))
            cancelled += 1
        await self.session.commit()
        return cancelled

    async def count_runs_by_status(self, workflow_id: str) -> dict[str, int]:
        result = await self.session.execute(
            select(WorkflowRunModel.status, func.count(WorkflowRunModel.id))
            .where(WorkflowRunModel.workflow_id == workflow_id)
            .group_by(WorkflowRunModel.status)
        )
        counts = {s.value: 0 for s in RunStatus}
        for status, count in result.all():
            counts[status] = count
        return counts

    async def list_run_steps(self, run_id: str) -> list[RunStep]:
        result = await self.session.execute(
            select(WorkflowRunStepModel)
            .where(WorkflowRunStepModel.run_id == run_id)
            .order_by(WorkflowRunStepModel.seq)
        )
        return [self._model_to_step(m) for m in result.scalars().all()]


class ScopedRepository:
    """Session-per-call proxy for long-running processes.

    The Repository class takes a single AsyncSession; keeping one session open
    for the lifetime of a process risks stale connections and transaction
    timeouts.  This proxy opens a fresh session for every public Repository
    method instead, so it satisfies both the manager's repository contract
    and the RunStore protocol.
    """

    def __init__(self, session_factory) -> None:
        self._sf = session_factory

    def __getattr__(self, name: str):
        if name.startswith("_") or not callable(getattr(Repository, name, None)):
            raise AttributeError(name)

        async def _call(*args, **kwargs):
            async with self._sf() as session:
                return await getattr(Repository(session), name)(*args, **kwargs)

        _call.__name__ = name
        return _call
