"""cadence.workflows — Workflow graph validation, compilation, and lifecycle management."""

from .compiler import CompiledWorkflow, Transition, WorkflowCompiler, compile_definition
from .conditions import evaluate_condition
from .manager import WorkflowManager
from .validator import WorkflowValidator

__all__ = [
    "CompiledWorkflow",
    "Transition",
    "WorkflowCompiler",
    "compile_definition",
    "evaluate_condition",
    "WorkflowManager",
    "WorkflowValidator",
]
