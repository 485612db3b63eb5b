"""Dependency helpers shared by the route modules, plus domain-error translation."""

from fastapi import HTTPException, Request

from cadence.exceptions import (
    CadenceError,
    InvalidDefinition,
    RunNotFound,
    WorkflowImportError,
    WorkflowNotFound,
    WorkflowStateError,
)


def _state(request: Request, name: str, label: str):
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail=f"{label} not initialised.")
    return value


def get_manager(request: Request):
    return _state(request, "workflow_manager", "WorkflowManager")


def get_run_store(request: Request):
    return _state(request, "run_store", "Run store")


def get_dispatcher(request: Request):
    return _state(request, "dispatcher", "EventDispatcher")


def get_email_sender(request: Request):
    return _state(request, "email_sender", "Email sender")


def http_error(exc: CadenceError) -> HTTPException:
    """Map a domain exception to the HTTP status the editor expects."""
    if isinstance(exc, (WorkflowNotFound, RunNotFound)):
        return HTTPException(status_code=404, detail={"error": exc.message})
    if isinstance(exc, InvalidDefinition):
        return HTTPException(status_code=422, detail={"error": exc.message, "violations": exc.violations})
    if isinstance(exc, WorkflowStateError):
        return HTTPException(status_code=409, detail={"error": exc.message})
    if isinstance(exc, WorkflowImportError):
        return HTTPException(status_code=400, detail={"error": exc.message})
    return HTTPException(status_code=500, detail={"error": exc.message})
