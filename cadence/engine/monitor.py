"""Aggregate delivery-failure signal per workflow.

Individual delivery failures fail their run; this monitor turns a burst of
them into a single ``workflow.delivery_degraded`` event so operators hear
about a broken workflow once, not once per subscriber.
"""

from __future__ import annotations

import logging
from collections import defaultdict, deque
from datetime import datetime, timedelta
from typing import Callable, Optional

from cadence.triggers.event_bus import EVENT_WORKFLOW_DEGRADED
from cadence.types import utcnow

logger = logging.getLogger(__name__)


class DeliveryFailureMonitor:
    """Sliding-window failure counter; alerts at most once per window per workflow."""

    def __init__(
        self,
        threshold: int = 5,
        window_seconds: int = 3600,
        event_bus=None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._threshold = threshold
        self._window = timedelta(seconds=window_seconds)
        self._event_bus = event_bus
        self._clock = clock
        self._failures: dict[str, deque[datetime]] = defaultdict(deque)
        self._alerted_at: dict[str, datetime] = {}

    def failure_count(self, workflow_id: str, now: Optional[datetime] = None) -> int:
        return len(self._prune(workflow_id, now or self._clock()))

    async def record_failure(self, workflow_id: str, error: str = "") -> bool:
        """Count one failure. Returns True when this failure raised an alert."""
        now = self._clock()
        window = self._prune(workflow_id, now)
        window.append(now)
        count = len(window)
        if count < self._threshold:
            return False

        last = self._alerted_at.get(workflow_id)
        if last is not None and now - last < self._window:
            return False
        self._alerted_at[workflow_id] = now

        logger.warning(
            "Workflow %s degraded: %d delivery failures in the last %ds (latest: %s)",
            workflow_id, count, int(self._window.total_seconds()), error,
        )
        if self._event_bus is not None:
            await self._event_bus.emit(EVENT_WORKFLOW_DEGRADED, {
                "workflow_id": workflow_id,
                "failures": count,
                "window_seconds": int(self._window.total_seconds()),
                "last_error": error,
            })
        return True

    def _prune(self, workflow_id: str, now: datetime) -> deque[datetime]:
        window = self._failures[workflow_id]
        cutoff = now - self._window
        while window and window[0] <= cutoff:
            window.popleft()
        return window
