"""All ORM models. These map 1:1 to the Pydantic types but are SQLAlchemy models.

Tables: workflows, workflow_nodes, workflow_edges, workflow_runs, workflow_run_steps
Workflow queries are scoped by publication_id. Child rows cascade with their workflow.
"""

from sqlalchemy import Column, String, Integer, DateTime, JSON, Boolean, Text, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase
from datetime import datetime, timezone
import uuid


class Base(DeclarativeBase):
    pass


def _now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowModel(Base):
    __tablename__ = "workflows"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    publication_id = Column(String, nullable=False, index=True)
    name = Column(String(100), nullable=False)
    description = Column(Text, default="")
    trigger = Column(String, nullable=False)            # TriggerType value
    trigger_config = Column(JSON, default=dict)
    status = Column(String, default="DRAFT")            # WorkflowStatus value
    version = Column(Integer, default=1)
    custom_date_fired_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (
        Index("ix_workflow_publication_status", "publication_id", "status"),
        Index("ix_workflow_status_trigger", "status", "trigger"),
    )


class WorkflowNodeModel(Base):
    __tablename__ = "workflow_nodes"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    workflow_id = Column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    node_id = Column(String, nullable=False)            # editor node id
    node_type = Column(String, nullable=True)           # editor node type
    kind = Column(String, nullable=False)               # NodeKind value
    subtype = Column(String, nullable=False)            # triggerType / actionType / conditionType
    position = Column(JSON, default=dict)
    data = Column(JSON, nullable=False)
    ordinal = Column(Integer, default=0)

    __table_args__ = (
        UniqueConstraint("workflow_id", "node_id", name="uq_workflow_node"),
        Index("ix_workflow_node_kind_subtype", "kind", "subtype"),
    )


class WorkflowEdgeModel(Base):
    __tablename__ = "workflow_edges"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    workflow_id = Column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    edge_id = Column(String, nullable=False)
    source = Column(String, nullable=False)
    target = Column(String, nullable=False)
    source_handle = Column(String, nullable=True)
    target_handle = Column(String, nullable=True)
    label = Column(String, nullable=True)
    animated = Column(Boolean, default=False)
    edge_type = Column(String, nullable=True)
    branch = Column(String, nullable=True)              # "true" / "false" on condition edges
    ordinal = Column(Integer, default=0)


class WorkflowRunModel(Base):
    __tablename__ = "workflow_runs"
    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    workflow_id = Column(String, ForeignKey("workflows.id", ondelete="CASCADE"), nullable=False, index=True)
    publication_id = Column(String, nullable=False)
    subscriber_id = Column(String, nullable=False, index=True)
    workflow_version = Column(Integer, nullable=False, default=1)
    definition = Column(JSON, nullable=False)           # snapshot taken at trigger time
    current_node_id = Column(String, nullable=True)
    status = Column(String, default="RUNNING")          # RunStatus value
    resume_at = Column(DateTime(timezone=True), nullable=True)
    context = Column(JSON, default=dict)
    step_seq = Column(Integer, nullable=False, default=0)
    idempotency_key = Column(String, nullable=False, unique=True)
    claim_owner = Column(String, nullable=True)
    claim_expires_at = Column(DateTime(timezone=True), nullable=True)
    error = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_now)
    updated_at = Column(DateTime(timezone=True), default=_now)
    completed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_run_status_resume_at", "status", "resume_at"),
        Index("ix_run_workflow_status", "workflow_id", "status"),
    )


class WorkflowRunStepModel(Base):
    __tablename__ = "workflow_run_steps"
    id = Column(Integer, primary_key=True, autoincrement=True)
    run_id = Column(String, ForeignKey("workflow_runs.id", ondelete="CASCADE"), nullable=False, index=True)
    seq = Column(Integer, nullable=False)
    node_id = Column(String, nullable=True)
    node_kind = Column(String, nullable=True)
    outcome = Column(String, nullable=False)
    detail = Column(Text, default="")
    created_at = Column(DateTime(timezone=True), default=_now)

    __table_args__ = (UniqueConstraint("run_id", "seq", name="uq_run_step_seq"),)
