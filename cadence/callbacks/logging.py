"""Structured JSON logging callback for run lifecycle events."""

import json
import logging
from datetime import datetime, timezone
from typing import Any

from cadence.callbacks.base import BaseCallback

logger = logging.getLogger("cadence.audit")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _clip(value: Any) -> Any:
    if value is None or isinstance(value, (int, float, bool)):
        return value
    return str(value)[:200]


class LoggingCallback(BaseCallback):
    """Emits one self-contained JSON log line per run lifecycle event.

    Each line carries ``event`` and ``ts`` (ISO-8601 UTC) plus the run
    fields the engine supplied.  Failures log at ERROR, everything else at
    INFO.  Logger name: ``cadence.audit`` (configure in your logging setup).

        engine = ExecutionEngine(..., callbacks=[LoggingCallback()])
    """

    def _emit(self, event: str, data: dict[str, Any], level: int = logging.INFO) -> None:
        record = {"event": event, "ts": _now()}
        record.update({k: _clip(v) for k, v in data.items()})
        logger.log(level, json.dumps(record))

    async def on_run_started(self, data: dict[str, Any]) -> None:
        self._emit("run_started", data)

    async def on_step_completed(self, data: dict[str, Any]) -> None:
        self._emit("step_completed", data)

    async def on_run_waiting(self, data: dict[str, Any]) -> None:
        self._emit("run_waiting", data)

    async def on_run_parked(self, data: dict[str, Any]) -> None:
        self._emit("run_parked", data)

    async def on_run_completed(self, data: dict[str, Any]) -> None:
        self._emit("run_completed", data)

    async def on_run_failed(self, data: dict[str, Any]) -> None:
        self._emit("run_failed", data, level=logging.ERROR)
