"""Background processing: ARQ tasks and the event dispatcher."""

from cadence.workers.dispatcher import EventDispatcher

__all__ = ["EventDispatcher"]
