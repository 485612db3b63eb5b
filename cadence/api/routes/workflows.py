"""Automation workflow API routes consumed by the visual editor."""

import json
import logging
from typing import Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Query
from fastapi.responses import Response

from cadence.api.deps import get_email_sender, get_manager, get_run_store, http_error
from cadence.api.schemas import (
    CreateWorkflowRequest,
    PreviewRequest,
    ReplaceStepsRequest,
    RunStatsResponse,
    TestEmailRequest,
    UpdateWorkflowRequest,
)
from cadence.exceptions import CadenceError, DeliveryError, RunNotFound
from cadence.personalization import render_preview
from cadence.types import RunStatus, Workflow, WorkflowRun, WorkflowStatus

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/publications/{publication_id}/automation", tags=["automation"])


def _dump(workflow: Workflow) -> dict:
    return workflow.model_dump(mode="json", by_alias=True)


def _dump_run(run: WorkflowRun) -> dict:
    return run.model_dump(mode="json", by_alias=True, exclude={"definition"})


# ─────────────────────────────────────────────────────────────────────────────
# Workflow CRUD
# ─────────────────────────────────────────────────────────────────────────────

@router.get("")
async def list_workflows(
    publication_id: str,
    status: Optional[WorkflowStatus] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    manager=Depends(get_manager),
):
    workflows = await manager.list(publication_id, status=status, limit=limit, offset=offset)
    return {"workflows": [_dump(w) for w in workflows]}


@router.post("", status_code=201)
async def create_workflow(
    publication_id: str,
    body: CreateWorkflowRequest,
    manager=Depends(get_manager),
):
    """Create a DRAFT workflow. Drafts may hold an incomplete graph."""
    workflow = await manager.create(
        publication_id=publication_id,
        name=body.name,
        trigger=body.trigger,
        description=body.description,
        trigger_config=body.trigger_config,
        definition=body.definition,
    )
    return {"workflow": _dump(workflow)}


@router.post("/import", status_code=201)
async def import_workflow(
    publication_id: str,
    payload: dict = Body(...),
    manager=Depends(get_manager),
):
    try:
        workflow = await manager.import_json(json.dumps(payload), publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    return {"workflow": _dump(workflow)}


@router.get("/{workflow_id}")
async def get_workflow(publication_id: str, workflow_id: str, manager=Depends(get_manager)):
    try:
        workflow = await manager.get(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    return {"workflow": _dump(workflow)}


@router.put("/{workflow_id}")
async def update_workflow(
    publication_id: str,
    workflow_id: str,
    body: UpdateWorkflowRequest,
    manager=Depends(get_manager),
):
    """Update metadata; a requested ``status`` goes through the transition rules.

    Metadata and status are written together: a refused transition changes nothing.
    """
    try:
        workflow = await manager.update(
            workflow_id,
            publication_id,
            name=body.name,
            description=body.description,
            trigger=body.trigger,
            trigger_config=body.trigger_config,
            status=body.status,
        )
    except CadenceError as exc:
        raise http_error(exc)
    return {"workflow": _dump(workflow)}


@router.delete("/{workflow_id}")
async def delete_workflow(publication_id: str, workflow_id: str, manager=Depends(get_manager)):
    try:
        await manager.delete(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    return {"success": True}


@router.put("/{workflow_id}/steps")
async def replace_steps(
    publication_id: str,
    workflow_id: str,
    body: ReplaceStepsRequest,
    manager=Depends(get_manager),
):
    """Replace the whole graph atomically. Returns the validation result alongside."""
    try:
        workflow, validation = await manager.replace_definition(workflow_id, publication_id, body.definition)
    except CadenceError as exc:
        raise http_error(exc)
    return {
        "workflow": _dump(workflow),
        "validation": validation.model_dump(by_alias=True),
    }


@router.get("/{workflow_id}/validate")
async def validate_workflow(publication_id: str, workflow_id: str, manager=Depends(get_manager)):
    try:
        result = await manager.validate(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    return result.model_dump(by_alias=True)


@router.get("/{workflow_id}/export")
async def export_workflow(publication_id: str, workflow_id: str, manager=Depends(get_manager)):
    try:
        payload = await manager.export_json(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    return Response(content=payload, media_type="application/json")


@router.post("/{workflow_id}/duplicate", status_code=201)
async def duplicate_workflow(publication_id: str, workflow_id: str, manager=Depends(get_manager)):
    try:
        workflow = await manager.duplicate(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    return {"workflow": _dump(workflow)}


# ─────────────────────────────────────────────────────────────────────────────
# Status transitions
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/{workflow_id}/activate")
async def activate_workflow(publication_id: str, workflow_id: str, manager=Depends(get_manager)):
    try:
        workflow = await manager.activate(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    return {"workflow": _dump(workflow)}


@router.post("/{workflow_id}/pause")
async def pause_workflow(publication_id: str, workflow_id: str, manager=Depends(get_manager)):
    try:
        workflow = await manager.pause(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    return {"workflow": _dump(workflow)}


@router.post("/{workflow_id}/archive")
async def archive_workflow(publication_id: str, workflow_id: str, manager=Depends(get_manager)):
    try:
        workflow = await manager.archive(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    return {"workflow": _dump(workflow)}


# ─────────────────────────────────────────────────────────────────────────────
# Preview / test send
# ─────────────────────────────────────────────────────────────────────────────

@router.post("/{workflow_id}/preview")
async def preview_email(
    publication_id: str,
    workflow_id: str,
    body: PreviewRequest,
    manager=Depends(get_manager),
):
    """Render subject and content with sample data. Nothing is sent."""
    try:
        await manager.get(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    preview = render_preview(body.subject, body.content, body.personalization)
    return {"preview": preview.model_dump(by_alias=True)}


@router.post("/{workflow_id}/test")
async def send_test_email(
    publication_id: str,
    workflow_id: str,
    body: TestEmailRequest,
    manager=Depends(get_manager),
    email_sender=Depends(get_email_sender),
):
    """Render with sample data and send to one address. No run is created."""
    try:
        workflow = await manager.get(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    preview = render_preview(body.subject, body.content, body.personalization)
    try:
        await email_sender.send(body.email, preview.subject, preview.content)
    except DeliveryError as exc:
        logger.warning("Test email for workflow=%s failed: %s", workflow.id, exc.message)
        raise HTTPException(status_code=502, detail={"error": "Failed to send test email", "reason": exc.message})
    return {
        "success": True,
        "message": "Test email sent successfully",
        "testEmail": {"to": body.email, "subject": preview.subject, "content": preview.content},
    }


# ─────────────────────────────────────────────────────────────────────────────
# Run history
# ─────────────────────────────────────────────────────────────────────────────

@router.get("/{workflow_id}/runs")
async def list_runs(
    publication_id: str,
    workflow_id: str,
    status: Optional[RunStatus] = None,
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    manager=Depends(get_manager),
    run_store=Depends(get_run_store),
):
    try:
        await manager.get(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    runs = await run_store.list_runs(workflow_id, status=status, limit=limit, offset=offset)
    return {"runs": [_dump_run(r) for r in runs]}


@router.get("/{workflow_id}/runs/stats", response_model=RunStatsResponse, response_model_by_alias=True)
async def run_stats(
    publication_id: str,
    workflow_id: str,
    manager=Depends(get_manager),
    run_store=Depends(get_run_store),
):
    try:
        await manager.get(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    counts = await run_store.count_runs_by_status(workflow_id)
    return RunStatsResponse(
        workflow_id=workflow_id,
        counts=counts,
        total=sum(counts.values()),
        failed=counts.get(RunStatus.FAILED.value, 0),
    )


@router.get("/{workflow_id}/runs/{run_id}")
async def get_run(
    publication_id: str,
    workflow_id: str,
    run_id: str,
    manager=Depends(get_manager),
    run_store=Depends(get_run_store),
):
    try:
        await manager.get(workflow_id, publication_id)
    except CadenceError as exc:
        raise http_error(exc)
    run = await run_store.get_run(run_id)
    if run is None or run.workflow_id != workflow_id:
        raise http_error(RunNotFound(f"Run '{run_id}' not found.", run_id=run_id))
    steps = await run_store.list_run_steps(run_id)
    return {
        "run": _dump_run(run),
        "steps": [s.model_dump(mode="json", by_alias=True) for s in steps],
    }
