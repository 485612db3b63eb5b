"""Run execution: store protocol, executor, scheduler and failure monitor."""

from cadence.engine.executor import ExecutionEngine
from cadence.engine.monitor import DeliveryFailureMonitor
from cadence.engine.scheduler import RunScheduler
from cadence.engine.store import InMemoryRunStore, RunStore, is_due

__all__ = [
    "ExecutionEngine",
    "DeliveryFailureMonitor",
    "RunScheduler",
    "InMemoryRunStore",
    "RunStore",
    "is_due",
]
