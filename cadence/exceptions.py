"""Typed exception hierarchy. Every error the automation engine can raise."""


class CadenceError(Exception):
    """Base exception for all automation errors."""
    def __init__(self, message: str, details: dict = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ── Workflows ────────────────────────────────────────────────────────────────


class WorkflowError(CadenceError):
    """Base exception for all workflow-related errors."""
    pass


class WorkflowNotFound(WorkflowError):
    """Requested workflow does not exist or belongs to another publication."""
    def __init__(self, message: str, workflow_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.workflow_id = workflow_id


class InvalidDefinition(WorkflowError):
    """Workflow graph is structurally invalid. Carries every violation found."""
    def __init__(self, message: str, violations: list = None, **kwargs):
        super().__init__(message, **kwargs)
        self.violations = violations or []


class WorkflowStateError(WorkflowError):
    """Invalid workflow state transition (e.g., pausing a DRAFT workflow)."""
    pass


class WorkflowImportError(WorkflowError):
    """Malformed or incompatible workflow import payload."""
    pass


class CompilerError(WorkflowError):
    """Compiled graph does not contain a node the engine asked for.

    Unreachable when validation ran first; the affected run is aborted.
    """
    def __init__(self, message: str, node_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.node_id = node_id


# ── Triggers ─────────────────────────────────────────────────────────────────


class TriggerError(CadenceError):
    """A trigger could not be matched or fired."""
    def __init__(self, message: str, trigger_type: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.trigger_type = trigger_type


class TriggerMatchConflict(TriggerError):
    """A run for this event and workflow already exists; the duplicate is suppressed."""
    def __init__(self, message: str, idempotency_key: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.idempotency_key = idempotency_key


# ── Runs ─────────────────────────────────────────────────────────────────────


class RunError(CadenceError):
    """Base exception for workflow run errors."""
    def __init__(self, message: str, run_id: str = "", **kwargs):
        super().__init__(message, **kwargs)
        self.run_id = run_id


class RunNotFound(RunError):
    """Requested run does not exist."""
    pass


class ClaimLost(RunError):
    """The worker's lease on a run expired or was revoked mid-advance."""
    pass


class DeliveryError(CadenceError):
    """The email sending service rejected or failed to accept a message."""
    def __init__(self, message: str, transient: bool = False, status_code: int = None, **kwargs):
        super().__init__(message, **kwargs)
        self.transient = transient
        self.status_code = status_code


class ConditionEvaluationError(CadenceError):
    """A condition referenced subscriber state that is not available.

    Treated as the condition evaluating to false.
    """
    pass
