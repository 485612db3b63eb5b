"""Trigger system — event matching, CUSTOM_DATE sweeping, and the in-process event bus."""

from cadence.triggers.event_bus import (
    EVENT_RUN_COMPLETED,
    EVENT_RUN_CREATED,
    EVENT_RUN_FAILED,
    EVENT_WORKFLOW_DEGRADED,
    EventBus,
)
from cadence.triggers.matcher import TriggerMatcher, matches
from cadence.triggers.custom_date import CustomDateSweeper

__all__ = [
    "EventBus",
    "EVENT_RUN_CREATED",
    "EVENT_RUN_COMPLETED",
    "EVENT_RUN_FAILED",
    "EVENT_WORKFLOW_DEGRADED",
    "TriggerMatcher",
    "matches",
    "CustomDateSweeper",
]
