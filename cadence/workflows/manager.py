"""
WorkflowManager — lifecycle management for automation workflows.

Supports both in-memory operation (no repository, for tests and CLI) and
full persistence when a Repository is provided.  With a repository the
database is the source of truth, so API processes, workers and the
scheduler all see the same workflow state.
"""

from __future__ import annotations

import copy
import json
import logging
from datetime import datetime
from typing import Any, Optional
from uuid import uuid4

from pydantic import ValidationError

from cadence.exceptions import (
    InvalidDefinition,
    WorkflowImportError,
    WorkflowNotFound,
    WorkflowStateError,
)
from cadence.types import (
    TriggerConfig,
    TriggerType,
    ValidationResult,
    Workflow,
    WorkflowDefinition,
    WorkflowStatus,
    utcnow,
)

from .compiler import CompiledWorkflow, WorkflowCompiler
from .validator import WorkflowValidator

logger = logging.getLogger(__name__)

ARCHIVE_CANCEL_REASON = "cancelled: workflow archived"

_ACTIVATABLE = {WorkflowStatus.DRAFT, WorkflowStatus.PAUSED}


class WorkflowManager:
    """
    Manages the full lifecycle of Workflow objects.

    Args:
        repository:  Optional Repository (or session-per-call proxy).
                     When None, all state is kept in-memory.
        run_store:   Optional RunStore; archiving cancels in-flight runs
                     through it.
        validator:   WorkflowValidator instance.
        compiler:    WorkflowCompiler instance (shared compile cache).
    """

    def __init__(
        self,
        repository: Any = None,
        run_store: Any = None,
        validator: Optional[WorkflowValidator] = None,
        compiler: Optional[WorkflowCompiler] = None,
    ) -> None:
        self._repository = repository
        self._run_store = run_store
        self._validator = validator or WorkflowValidator()
        self._compiler = compiler or WorkflowCompiler(validator=self._validator)
        self._store: dict[str, Workflow] = {}

    @property
    def validator(self) -> WorkflowValidator:
        return self._validator

    def set_run_store(self, run_store: Any) -> None:
        self._run_store = run_store

    # ── Internal helpers ──────────────────────────────────────────────────────

    def _raise_if_invalid(self, workflow: Workflow) -> ValidationResult:
        result = self._validator.validate_workflow(workflow)
        if not result.valid:
            raise InvalidDefinition(
                f"Workflow '{workflow.name}' has an invalid definition",
                violations=result.violations,
            )
        return result

    async def _write(
        self, workflow: Workflow, updates: dict[str, Any]
    ) -> Workflow:
        updates = {**updates, "updated_at": utcnow()}
        if self._repository is None:
            updated = workflow.model_copy(update=updates)
            self._store[updated.id] = updated
            return updated
        updated = await self._repository.update_workflow(
            workflow.publication_id, workflow.id, updates
        )
        if updated is None:
            raise WorkflowNotFound(f"Workflow '{workflow.id}' not found.", workflow_id=workflow.id)
        return updated

    # ── CRUD ──────────────────────────────────────────────────────────────────

    async def create(
        self,
        publication_id: str,
        name: str,
        trigger: TriggerType,
        description: str = "",
        trigger_config: Optional[TriggerConfig] = None,
        definition: Optional[WorkflowDefinition] = None,
    ) -> Workflow:
        """Persist a new workflow in DRAFT status. Drafts may hold incomplete graphs."""
        now = utcnow()
        workflow = Workflow(
            id=str(uuid4()),
            publication_id=publication_id,
            name=name,
            description=description,
            trigger=trigger,
            trigger_config=trigger_config or TriggerConfig(),
            status=WorkflowStatus.DRAFT,
            version=1,
            definition=definition or WorkflowDefinition(),
            created_at=now,
            updated_at=now,
        )
        if self._repository is None:
            self._store[workflow.id] = workflow
        else:
            workflow = await self._repository.create_workflow(workflow)
        logger.info("Created workflow=%s publication=%s trigger=%s", workflow.id, publication_id, trigger.value)
        return workflow

    async def get(self, workflow_id: str, publication_id: str) -> Workflow:
        """
        Load a workflow by ID.

        Raises:
            WorkflowNotFound: if not found or owned by another publication.
        """
        if self._repository is None:
            workflow = self._store.get(workflow_id)
        else:
            workflow = await self._repository.get_workflow(publication_id, workflow_id)
        if workflow is None or workflow.publication_id != publication_id:
            raise WorkflowNotFound(
                f"Workflow '{workflow_id}' not found.", workflow_id=workflow_id
            )
        return workflow

    async def list(
        self,
        publication_id: str,
        status: Optional[WorkflowStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[Workflow]:
        """Return a publication's workflows, newest first."""
        if self._repository is not None:
            return await self._repository.list_workflows(
                publication_id, status=status, limit=limit, offset=offset
            )
        results = [
            wf for wf in self._store.values()
            if wf.publication_id == publication_id
            and (status is None or wf.status == status)
        ]
        results.sort(key=lambda w: w.created_at, reverse=True)
        return results[offset: offset + limit]

    async def list_active(
        self,
        publication_id: Optional[str] = None,
        trigger: Optional[TriggerType] = None,
    ) -> list[Workflow]:
        """ACTIVE workflows, optionally narrowed to one publication and/or trigger kind."""
        if self._repository is not None:
            return await self._repository.list_active_workflows(
                publication_id=publication_id, trigger=trigger
            )
        return [
            wf for wf in self._store.values()
            if wf.status == WorkflowStatus.ACTIVE
            and (publication_id is None or wf.publication_id == publication_id)
            and (trigger is None or wf.trigger == trigger)
        ]

    async def update(
        self,
        workflow_id: str,
        publication_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        trigger: Optional[TriggerType] = None,
        trigger_config: Optional[TriggerConfig] = None,
        status: Optional[WorkflowStatus] = None,
    ) -> Workflow:
        """
        Update workflow metadata and, optionally, move it to *status*.

        The transition is checked against the updated workflow before anything
        is written, so a refused transition leaves the metadata untouched too.
        An ACTIVE workflow is re-validated when its trigger changes, since the
        graph's trigger node must keep matching it.

        Raises:
            WorkflowNotFound: if the workflow does not exist.
            InvalidDefinition: if the workflow would be ACTIVE with an invalid graph.
            WorkflowStateError: if the status transition is not allowed.
        """
        existing = await self.get(workflow_id, publication_id)

        updates: dict[str, Any] = {}
        if name is not None:
            updates["name"] = name
        if description is not None:
            updates["description"] = description
        if trigger is not None:
            updates["trigger"] = trigger
        if trigger_config is not None:
            updates["trigger_config"] = trigger_config
        candidate = existing.model_copy(update=updates)
        target = status if status is not None and status != existing.status else None
        if target is not None:
            self._check_transition(candidate, target)
            updates["status"] = target
        elif existing.status == WorkflowStatus.ACTIVE and (trigger is not None or trigger_config is not None):
            self._raise_if_invalid(candidate)
        if not updates:
            return existing

        updated = await self._write(existing, updates)
        if target is not None:
            logger.info("Workflow=%s moved %s -> %s", workflow_id, existing.status.value, target.value)
        if target == WorkflowStatus.ARCHIVED:
            await self._cancel_runs(workflow_id)
        return updated

    async def replace_definition(
        self,
        workflow_id: str,
        publication_id: str,
        definition: WorkflowDefinition,
    ) -> tuple[Workflow, ValidationResult]:
        """
        Replace the stored graph and bump the version.

        Runs already in flight keep the snapshot they started with.  Drafts
        accept invalid graphs (the result lists the violations); an ACTIVE
        workflow refuses them.

        Raises:
            InvalidDefinition: if the workflow is ACTIVE and the graph is invalid.
        """
        existing = await self.get(workflow_id, publication_id)
        candidate = existing.model_copy(update={"definition": definition})
        result = self._validator.validate_workflow(candidate)
        if existing.status == WorkflowStatus.ACTIVE and not result.valid:
            raise InvalidDefinition(
                "Active workflows only accept valid definitions",
                violations=result.violations,
            )

        if self._repository is None:
            updated = await self._write(
                existing, {"definition": definition, "version": existing.version + 1}
            )
        else:
            updated = await self._repository.replace_definition(
                publication_id, workflow_id, definition
            )
            if updated is None:
                raise WorkflowNotFound(f"Workflow '{workflow_id}' not found.", workflow_id=workflow_id)
        logger.info(
            "Replaced definition workflow=%s v%d (%d nodes, %d edges, valid=%s)",
            workflow_id, updated.version, len(definition.nodes), len(definition.edges), result.valid,
        )
        return updated, result

    async def validate(self, workflow_id: str, publication_id: str) -> ValidationResult:
        workflow = await self.get(workflow_id, publication_id)
        return self._validator.validate_workflow(workflow)

    async def delete(self, workflow_id: str, publication_id: str) -> bool:
        """Delete a workflow; nodes, edges and runs go with it."""
        await self.get(workflow_id, publication_id)
        if self._repository is None:
            self._store.pop(workflow_id, None)
            deleted = True
        else:
            deleted = await self._repository.delete_workflow(publication_id, workflow_id)
        self._compiler.invalidate(workflow_id)
        return deleted

    # ── Status transitions ────────────────────────────────────────────────────

    def _check_transition(self, workflow: Workflow, target: WorkflowStatus) -> None:
        """Raise unless *workflow* may move to *target*. Writes nothing."""
        if target == workflow.status or target == WorkflowStatus.ARCHIVED:
            return
        if target == WorkflowStatus.ACTIVE:
            if workflow.status not in _ACTIVATABLE:
                raise WorkflowStateError(
                    f"Cannot activate a {workflow.status.value} workflow."
                )
            self._raise_if_invalid(workflow)
        elif target == WorkflowStatus.PAUSED:
            if workflow.status != WorkflowStatus.ACTIVE:
                raise WorkflowStateError(
                    f"Only ACTIVE workflows can be paused (status is {workflow.status.value})."
                )
        else:
            raise WorkflowStateError(
                f"Cannot move a {workflow.status.value} workflow back to DRAFT."
            )

    async def _cancel_runs(self, workflow_id: str) -> int:
        cancelled = 0
        if self._run_store is not None:
            cancelled = await self._run_store.cancel_runs(workflow_id, ARCHIVE_CANCEL_REASON)
        logger.info("Archived workflow=%s cancelled_runs=%d", workflow_id, cancelled)
        return cancelled

    async def activate(self, workflow_id: str, publication_id: str) -> Workflow:
        """
        Validate and activate a DRAFT or PAUSED workflow.

        Raises:
            InvalidDefinition: listing every violation, if the graph is invalid.
            WorkflowStateError: if the workflow is ARCHIVED.
        """
        workflow = await self.get(workflow_id, publication_id)
        if workflow.status == WorkflowStatus.ACTIVE:
            return workflow
        self._check_transition(workflow, WorkflowStatus.ACTIVE)
        updated = await self._write(workflow, {"status": WorkflowStatus.ACTIVE})
        logger.info("Activated workflow=%s", workflow_id)
        return updated

    async def pause(self, workflow_id: str, publication_id: str) -> Workflow:
        """Pause an ACTIVE workflow. In-flight runs are parked, not terminated."""
        workflow = await self.get(workflow_id, publication_id)
        if workflow.status == WorkflowStatus.PAUSED:
            return workflow
        self._check_transition(workflow, WorkflowStatus.PAUSED)
        updated = await self._write(workflow, {"status": WorkflowStatus.PAUSED})
        logger.info("Paused workflow=%s", workflow_id)
        return updated

    async def archive(self, workflow_id: str, publication_id: str) -> Workflow:
        """Archive a workflow (terminal) and fail every in-flight run with a cancellation reason."""
        workflow = await self.get(workflow_id, publication_id)
        if workflow.status == WorkflowStatus.ARCHIVED:
            return workflow
        updated = await self._write(workflow, {"status": WorkflowStatus.ARCHIVED})
        await self._cancel_runs(workflow_id)
        return updated

    async def set_status(
        self, workflow_id: str, publication_id: str, status: WorkflowStatus
    ) -> Workflow:
        """Route a requested status through the matching transition."""
        if status == WorkflowStatus.ACTIVE:
            return await self.activate(workflow_id, publication_id)
        if status == WorkflowStatus.PAUSED:
            return await self.pause(workflow_id, publication_id)
        if status == WorkflowStatus.ARCHIVED:
            return await self.archive(workflow_id, publication_id)
        workflow = await self.get(workflow_id, publication_id)
        self._check_transition(workflow, status)
        return workflow

    # ── Compilation & scheduling support ──────────────────────────────────────

    def compiled(self, workflow: Workflow) -> CompiledWorkflow:
        """Compiled graph of the workflow's current definition (cached per version)."""
        return self._compiler.compile(workflow.id, workflow.version, workflow.definition)

    async def claim_custom_date_fire(self, workflow: Workflow, fired_at: datetime) -> bool:
        """Mark a CUSTOM_DATE workflow as fired. Returns False if it already was."""
        if self._repository is not None:
            return await self._repository.claim_custom_date_fire(workflow.id, fired_at)
        stored = self._store.get(workflow.id)
        if stored is None or stored.custom_date_fired_at is not None:
            return False
        self._store[workflow.id] = stored.model_copy(update={"custom_date_fired_at": fired_at})
        return True

    # ── Copy / import / export ────────────────────────────────────────────────

    async def duplicate(
        self,
        workflow_id: str,
        publication_id: str,
        new_name: Optional[str] = None,
    ) -> Workflow:
        """Copy a workflow as a new DRAFT with fresh node and edge IDs."""
        source = await self.get(workflow_id, publication_id)
        return await self._clone_as_new(source, publication_id, new_name or f"{source.name} (copy)")

    async def _clone_as_new(
        self,
        source: Workflow,
        publication_id: str,
        name: str,
    ) -> Workflow:
        node_id_map: dict[str, str] = {}
        new_nodes = []
        for node in source.definition.nodes:
            new_id = str(uuid4())
            node_id_map[node.id] = new_id
            new_nodes.append(node.model_copy(update={"id": new_id}, deep=True))

        new_edges = [
            edge.model_copy(
                update={
                    "id": str(uuid4()),
                    "source": node_id_map.get(edge.source, edge.source),
                    "target": node_id_map.get(edge.target, edge.target),
                }
            )
            for edge in source.definition.edges
        ]

        return await self.create(
            publication_id=publication_id,
            name=name[:100],
            trigger=source.trigger,
            description=source.description,
            trigger_config=copy.deepcopy(source.trigger_config),
            definition=WorkflowDefinition(nodes=new_nodes, edges=new_edges),
        )

    async def export_json(self, workflow_id: str, publication_id: str) -> str:
        """Serialize a workflow in the editor's camelCase format."""
        workflow = await self.get(workflow_id, publication_id)
        return workflow.model_dump_json(by_alias=True, indent=2)

    async def import_json(self, json_str: str, publication_id: str) -> Workflow:
        """
        Import a workflow exported by ``export_json`` as a new DRAFT.

        Raises:
            WorkflowImportError: if the payload is not valid JSON or not a workflow.
        """
        try:
            data = json.loads(json_str)
            if isinstance(data, dict):
                data = {**data, "publicationId": publication_id}
            source = Workflow.model_validate(data)
        except (ValueError, ValidationError) as exc:
            raise WorkflowImportError(f"Invalid workflow import payload: {exc}") from exc
        return await self._clone_as_new(source, publication_id, source.name)
