"""Callback/hook system for run lifecycle events."""

from cadence.callbacks.base import BaseCallback, RunCallback, RUN_EVENTS
from cadence.callbacks.logging import LoggingCallback

__all__ = ["BaseCallback", "RunCallback", "RUN_EVENTS", "LoggingCallback"]
