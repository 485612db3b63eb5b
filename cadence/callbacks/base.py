"""Base callback protocol for run lifecycle hooks.

The ExecutionEngine calls every registered callback as
``await cb(event, data)`` at key points of a run.  Implement this protocol
to observe runs without modifying the engine.

Usage:
    class CountFailures(BaseCallback):
        async def on_run_failed(self, data):
            failures[data["workflow_id"]] += 1

    engine = ExecutionEngine(..., callbacks=[CountFailures()])
"""

from typing import Any, Protocol, runtime_checkable

RUN_EVENTS = (
    "run_started",
    "step_completed",
    "run_waiting",
    "run_parked",
    "run_completed",
    "run_failed",
)


@runtime_checkable
class RunCallback(Protocol):
    """Anything the engine can call with ``(event, data)``."""

    async def __call__(self, event: str, data: dict[str, Any]) -> None: ...


class BaseCallback:
    """Routes ``(event, data)`` to a named ``on_<event>`` method.

    Subclass and override only the hooks you need; the rest are no-ops.
    """

    async def __call__(self, event: str, data: dict[str, Any]) -> None:
        handler = getattr(self, f"on_{event}", None)
        if handler is not None:
            await handler(data)

    async def on_run_started(self, data: dict[str, Any]) -> None:
        pass

    async def on_step_completed(self, data: dict[str, Any]) -> None:
        pass

    async def on_run_waiting(self, data: dict[str, Any]) -> None:
        pass

    async def on_run_parked(self, data: dict[str, Any]) -> None:
        pass

    async def on_run_completed(self, data: dict[str, Any]) -> None:
        pass

    async def on_run_failed(self, data: dict[str, Any]) -> None:
        pass
