"""All shared types, enums, and type aliases. Everything imports from here.

Graph models use camelCase aliases on the wire so the visual editor's
``{nodes, edges}`` payloads validate as-is; Python code uses snake_case.
"""

import hashlib
import uuid
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator, model_validator
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


# ── Enums ──────────────────────────────────────────────────────────────

class WorkflowStatus(str, Enum):
    DRAFT = "DRAFT"
    ACTIVE = "ACTIVE"
    PAUSED = "PAUSED"
    ARCHIVED = "ARCHIVED"

class TriggerType(str, Enum):
    SUBSCRIBE = "SUBSCRIBE"
    UNSUBSCRIBE = "UNSUBSCRIBE"
    POST_PUBLISHED = "POST_PUBLISHED"
    COURSE_ENROLLED = "COURSE_ENROLLED"
    TAG_ADDED = "TAG_ADDED"
    TAG_REMOVED = "TAG_REMOVED"
    TIER_CHANGED = "TIER_CHANGED"
    CUSTOM_DATE = "CUSTOM_DATE"      # time-driven, fired by the sweeper
    FORM_SUBMITTED = "FORM_SUBMITTED"
    POST_VIEWED = "POST_VIEWED"

class ActionType(str, Enum):
    SEND_EMAIL = "SEND_EMAIL"
    ADD_TAG = "ADD_TAG"
    REMOVE_TAG = "REMOVE_TAG"
    WAIT = "WAIT"

class ConditionType(str, Enum):
    HAS_TAG = "HAS_TAG"
    SUBSCRIPTION_TIER = "SUBSCRIPTION_TIER"
    CUSTOM_FIELD = "CUSTOM_FIELD"

class NodeKind(str, Enum):
    TRIGGER = "trigger"
    ACTION = "action"
    CONDITION = "condition"

class DelayUnit(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"

class FieldOperator(str, Enum):
    EQUALS = "equals"
    CONTAINS = "contains"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"

class Branch(str, Enum):
    TRUE = "true"
    FALSE = "false"

class RunStatus(str, Enum):
    RUNNING = "RUNNING"
    WAITING = "WAITING"      # parked on a WAIT node until resume_at
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


TERMINAL_RUN_STATUSES = frozenset({RunStatus.COMPLETED, RunStatus.FAILED})

_MINUTES_PER_UNIT = {
    DelayUnit.MINUTES: 1,
    DelayUnit.HOURS: 60,
    DelayUnit.DAYS: 1440,
}


class EditorModel(BaseModel):
    """Base for every model that crosses the editor/API boundary."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Node configurations ────────────────────────────────────────────────

class TriggerConfig(EditorModel):
    target_id: Optional[str] = None       # post / course / tag the trigger is scoped to
    target_name: Optional[str] = None
    custom_date: Optional[datetime] = None
    form_id: Optional[str] = None

class SendEmailConfig(EditorModel):
    template_id: Optional[str] = None
    subject: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    personalization: dict[str, str] = Field(default_factory=dict)  # token → fallback value

class TagConfig(EditorModel):
    tag_ids: list[str] = Field(..., min_length=1)

class WaitConfig(EditorModel):
    delay_minutes: int = Field(..., ge=1)     # the amount; unit below
    delay_unit: DelayUnit = DelayUnit.MINUTES

    def total_minutes(self) -> int:
        return self.delay_minutes * _MINUTES_PER_UNIT[self.delay_unit]

    def delay(self) -> timedelta:
        return timedelta(minutes=self.total_minutes())

class HasTagConfig(EditorModel):
    tag_id: str = Field(..., min_length=1)
    has_tag: bool = True

class TierConfig(EditorModel):
    tier_id: str = Field(..., min_length=1)

class CustomFieldConfig(EditorModel):
    field_name: str = Field(..., min_length=1)
    operator: FieldOperator
    value: str


# ── Node data variants ─────────────────────────────────────────────────
# data.type selects the node kind; actionType / conditionType select the variant.

class TriggerNodeData(EditorModel):
    type: Literal["trigger"] = "trigger"
    trigger_type: TriggerType
    label: str = ""
    config: TriggerConfig = Field(default_factory=TriggerConfig)

class SendEmailData(EditorModel):
    type: Literal["action"] = "action"
    action_type: Literal["SEND_EMAIL"] = "SEND_EMAIL"
    label: str = ""
    config: SendEmailConfig

class TagData(EditorModel):
    type: Literal["action"] = "action"
    action_type: Literal["ADD_TAG", "REMOVE_TAG"]
    label: str = ""
    config: TagConfig

class WaitData(EditorModel):
    type: Literal["action"] = "action"
    action_type: Literal["WAIT"] = "WAIT"
    label: str = ""
    config: WaitConfig

class HasTagData(EditorModel):
    type: Literal["condition"] = "condition"
    condition_type: Literal["HAS_TAG"] = "HAS_TAG"
    label: str = ""
    config: HasTagConfig

class TierData(EditorModel):
    type: Literal["condition"] = "condition"
    condition_type: Literal["SUBSCRIPTION_TIER"] = "SUBSCRIPTION_TIER"
    label: str = ""
    config: TierConfig

class CustomFieldData(EditorModel):
    type: Literal["condition"] = "condition"
    condition_type: Literal["CUSTOM_FIELD"] = "CUSTOM_FIELD"
    label: str = ""
    config: CustomFieldConfig


ActionNodeData = Annotated[
    Union[SendEmailData, TagData, WaitData],
    Field(discriminator="action_type"),
]
ConditionNodeData = Annotated[
    Union[HasTagData, TierData, CustomFieldData],
    Field(discriminator="condition_type"),
]
NodeData = Annotated[
    Union[TriggerNodeData, ActionNodeData, ConditionNodeData],
    Field(discriminator="type"),
]


# ── Graph ──────────────────────────────────────────────────────────────

class Position(EditorModel):
    x: float = 0.0
    y: float = 0.0

class WorkflowNode(EditorModel):
    id: str = Field(..., min_length=1)
    type: Optional[NodeKind] = None   # editor node type; defaults to data.type
    position: Position = Field(default_factory=Position)
    data: NodeData

    @model_validator(mode="after")
    def _default_type(self) -> "WorkflowNode":
        if self.type is None:
            self.type = NodeKind(self.data.type)
        return self

    @property
    def kind(self) -> NodeKind:
        return NodeKind(self.data.type)

    @property
    def subtype(self) -> str:
        """triggerType / actionType / conditionType of the node, as a string."""
        data = self.data
        if isinstance(data, TriggerNodeData):
            return data.trigger_type.value
        if isinstance(data, (SendEmailData, TagData, WaitData)):
            return data.action_type
        return data.condition_type


_BRANCH_LABELS = {
    "yes": Branch.TRUE, "true": Branch.TRUE,
    "no": Branch.FALSE, "false": Branch.FALSE,
}


class WorkflowEdge(EditorModel):
    id: str = Field(default_factory=_new_id)
    source: str
    target: str
    source_handle: Optional[str] = None
    target_handle: Optional[str] = None
    label: Optional[str] = None
    animated: bool = False
    type: Optional[str] = None
    branch: Optional[Branch] = None

    def resolved_branch(self) -> Optional[Branch]:
        """Explicit branch, else the editor's "true"/"false" handle, else a Yes/No label."""
        if self.branch is not None:
            return self.branch
        for hint in (self.source_handle, self.label):
            if hint:
                resolved = _BRANCH_LABELS.get(hint.strip().lower())
                if resolved is not None:
                    return resolved
        return None


class WorkflowDefinition(EditorModel):
    nodes: list[WorkflowNode] = Field(default_factory=list)
    edges: list[WorkflowEdge] = Field(default_factory=list)

    def trigger_nodes(self) -> list[WorkflowNode]:
        return [n for n in self.nodes if n.kind == NodeKind.TRIGGER]

    def node_ids(self) -> set[str]:
        return {n.id for n in self.nodes}


class ValidationResult(EditorModel):
    valid: bool
    violations: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


# ── Workflow ───────────────────────────────────────────────────────────

class Workflow(EditorModel):
    id: str = Field(default_factory=_new_id)
    publication_id: str
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    trigger: TriggerType
    trigger_config: TriggerConfig = Field(default_factory=TriggerConfig)
    status: WorkflowStatus = WorkflowStatus.DRAFT
    version: int = 1                      # bumped on every definition replace
    definition: WorkflowDefinition = Field(default_factory=WorkflowDefinition)
    custom_date_fired_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @computed_field(alias="isActive")
    @property
    def is_active(self) -> bool:
        return self.status == WorkflowStatus.ACTIVE


# ── Events & runs ──────────────────────────────────────────────────────

class PlatformEvent(EditorModel):
    id: Optional[str] = None        # upstream delivery id; redeliveries repeat it
    kind: TriggerType
    publication_id: str
    subscriber_id: str
    tag_id: Optional[str] = None
    post_id: Optional[str] = None
    course_id: Optional[str] = None
    form_id: Optional[str] = None
    tier_id: Optional[str] = None
    occurred_at: datetime = Field(default_factory=utcnow)
    payload: dict[str, Any] = Field(default_factory=dict)

    @field_validator("kind")
    @classmethod
    def _not_time_driven(cls, v: TriggerType) -> TriggerType:
        if v == TriggerType.CUSTOM_DATE:
            raise ValueError("CUSTOM_DATE workflows are fired by the sweeper, not by events")
        return v

    @property
    def subject_id(self) -> Optional[str]:
        """The id a trigger's targetId is compared against for this event kind."""
        if self.kind in (TriggerType.TAG_ADDED, TriggerType.TAG_REMOVED):
            return self.tag_id
        if self.kind in (TriggerType.POST_PUBLISHED, TriggerType.POST_VIEWED):
            return self.post_id
        if self.kind == TriggerType.COURSE_ENROLLED:
            return self.course_id
        if self.kind == TriggerType.FORM_SUBMITTED:
            return self.form_id
        if self.kind == TriggerType.TIER_CHANGED:
            return self.tier_id
        return None

    def idempotency_key(self) -> str:
        """Upstream id, else a digest that includes when the event happened.

        The same subscriber may legitimately trigger the same workflow again
        later (re-subscribing, a second view), so identity fields alone are
        not a key.
        """
        if self.id:
            return self.id
        raw = "|".join([
            self.kind.value, self.publication_id, self.subscriber_id, self.subject_id or "",
            self.occurred_at.isoformat(),
        ])
        return "evt-" + hashlib.sha256(raw.encode()).hexdigest()[:32]

    def to_context(self) -> dict[str, Any]:
        """Event fields captured into a run's execution context."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class WorkflowRun(EditorModel):
    id: str = Field(default_factory=_new_id)
    workflow_id: str
    publication_id: str
    subscriber_id: str
    workflow_version: int = 1
    definition: WorkflowDefinition                   # snapshot taken at trigger time
    current_node_id: Optional[str] = None
    status: RunStatus = RunStatus.RUNNING
    resume_at: Optional[datetime] = None
    context: dict[str, Any] = Field(default_factory=dict)
    step_seq: int = 0
    idempotency_key: str
    claim_owner: Optional[str] = None
    claim_expires_at: Optional[datetime] = None
    error: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_RUN_STATUSES


class RunStep(EditorModel):
    run_id: str
    seq: int
    node_id: Optional[str] = None
    node_kind: Optional[str] = None
    outcome: str                 # e.g. "sent", "tagged", "waiting", "branch:true", "failed"
    detail: str = ""
    created_at: datetime = Field(default_factory=utcnow)


# ── Adapter payloads ───────────────────────────────────────────────────

class SubscriberContext(EditorModel):
    subscriber_id: str
    email: Optional[str] = None
    name: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    tier: Optional[str] = None
    tier_name: Optional[str] = None
    custom_fields: dict[str, Any] = Field(default_factory=dict)

class PublicationContext(EditorModel):
    publication_id: str
    name: Optional[str] = None
    url: Optional[str] = None

class DeliveryResult(EditorModel):
    delivery_id: str
    accepted_at: datetime = Field(default_factory=utcnow)


# ── Personalization ────────────────────────────────────────────────────

class PersonalizationVariable(EditorModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    key: str
    label: str
    description: str
    example: str

class TemplateValidation(EditorModel):
    is_valid: bool
    invalid_variables: list[str] = Field(default_factory=list)
    missing_variables: list[str] = Field(default_factory=list)

class Preview(EditorModel):
    subject: str
    content: str
    original_subject: str
    original_content: str
