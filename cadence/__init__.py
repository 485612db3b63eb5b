"""cadence — marketing automation workflows for newsletter publications.

Usage:
    from cadence import WorkflowManager, TriggerType

    manager = WorkflowManager()
    workflow = await manager.create("pub_1", "Welcome series", TriggerType.SUBSCRIBE)
"""

from cadence.types import (
    Workflow, WorkflowDefinition, WorkflowNode, WorkflowEdge, WorkflowRun, RunStep,
    WorkflowStatus, TriggerType, RunStatus, NodeKind, PlatformEvent, ValidationResult,
)
from cadence.exceptions import (
    CadenceError, WorkflowNotFound, InvalidDefinition, WorkflowStateError,
    TriggerMatchConflict, RunNotFound, ClaimLost, DeliveryError,
)
from cadence.workflows import WorkflowManager, WorkflowCompiler, WorkflowValidator
from cadence.engine import ExecutionEngine, RunScheduler, InMemoryRunStore
from cadence.triggers import TriggerMatcher, CustomDateSweeper
from cadence.version import __version__

__all__ = [
    "Workflow", "WorkflowDefinition", "WorkflowNode", "WorkflowEdge", "WorkflowRun", "RunStep",
    "WorkflowStatus", "TriggerType", "RunStatus", "NodeKind", "PlatformEvent", "ValidationResult",
    "CadenceError", "WorkflowNotFound", "InvalidDefinition", "WorkflowStateError",
    "TriggerMatchConflict", "RunNotFound", "ClaimLost", "DeliveryError",
    "WorkflowManager", "WorkflowCompiler", "WorkflowValidator",
    "ExecutionEngine", "RunScheduler", "InMemoryRunStore",
    "TriggerMatcher", "CustomDateSweeper",
    "__version__",
]
