"""Run lifecycle notifications fanned out inside one process.

Producers (matcher, engine, delivery monitor) emit a name and a dict; the
alert webhook and tests subscribe.  Handlers may be sync or async.
"""

from __future__ import annotations

import inspect
import logging
from collections import defaultdict
from typing import Any, Callable

logger = logging.getLogger(__name__)

# ── Event names ──
EVENT_RUN_CREATED = "run.created"
EVENT_RUN_COMPLETED = "run.completed"
EVENT_RUN_FAILED = "run.failed"
EVENT_WORKFLOW_DEGRADED = "workflow.delivery_degraded"

Handler = Callable[[Any], Any]


class EventBus:
    def __init__(self) -> None:
        self._handlers: defaultdict[str, list[Handler]] = defaultdict(list)

    def subscribe(self, event: str, handler: Handler) -> Callable[[], None]:
        """Register *handler* for *event*; returns a function that removes it again."""
        self._handlers[event].append(handler)
        return lambda: self.unsubscribe(event, handler)

    def unsubscribe(self, event: str, handler: Handler) -> None:
        handlers = self._handlers.get(event)
        if handlers and handler in handlers:
            handlers.remove(handler)

    def has_subscribers(self, event: str) -> bool:
        return bool(self._handlers.get(event))

    async def emit(self, event: str, data: Any = None) -> int:
        """Deliver *data* to every handler of *event*. Returns how many ran cleanly.

        Handlers registered while this call runs are not invoked until the
        next emit.  A handler that raises is logged and skipped.
        """
        delivered = 0
        for handler in tuple(self._handlers.get(event, ())):
            try:
                outcome = handler(data)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception("Handler %r failed for %s", handler, event)
                continue
            delivered += 1
        return delivered
