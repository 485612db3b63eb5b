"""Pydantic models for API request/response. Mirrors types.py for API I/O.

Bodies use the editor's camelCase field names; snake_case is accepted too.
"""

from typing import Any, Optional

from pydantic import BaseModel, Field

from cadence.types import (
    EditorModel,
    PlatformEvent,
    TriggerConfig,
    TriggerType,
    WorkflowDefinition,
    WorkflowStatus,
)


# ── Requests ──

class CreateWorkflowRequest(EditorModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    trigger: TriggerType
    trigger_config: Optional[TriggerConfig] = None
    definition: Optional[WorkflowDefinition] = None


class UpdateWorkflowRequest(EditorModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=500)
    trigger: Optional[TriggerType] = None
    trigger_config: Optional[TriggerConfig] = None
    status: Optional[WorkflowStatus] = None   # routed through activate/pause/archive


class ReplaceStepsRequest(EditorModel):
    definition: WorkflowDefinition


class PreviewRequest(EditorModel):
    subject: str
    content: str
    personalization: Optional[dict[str, str]] = None


class TestEmailRequest(EditorModel):
    email: str = Field(..., pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
    subject: str
    content: str
    personalization: Optional[dict[str, str]] = None


class ValidateTemplateRequest(EditorModel):
    template: str
    variables: Optional[dict[str, str]] = None


class IngestEventRequest(PlatformEvent):
    """A platform event as posted by upstream services.

    The delivery ``id`` is required here: redeliveries repeat it, and the
    runs an event starts are keyed on it.
    """

    id: str = Field(..., min_length=1, max_length=200)


# ── Responses ──

class EventAcceptedResponse(EditorModel):
    accepted: bool = True
    mode: str
    job_id: Optional[str] = None
    run_ids: list[str] = Field(default_factory=list)


class RunStatsResponse(EditorModel):
    workflow_id: str
    counts: dict[str, int]
    total: int
    failed: int


class HealthResponse(BaseModel):
    status: str
    version: str
    services: dict[str, bool]


class ErrorResponse(BaseModel):
    error: str
    violations: list[str] = []
    details: dict[str, Any] = {}
