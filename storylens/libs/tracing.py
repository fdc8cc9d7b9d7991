"""Structured run tracing for the analysis pipeline."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

LOG = logging.getLogger(__name__)


@dataclass(frozen=True)
class TraceEvent:
    run_id: str
    stage: str
    status: str
    elapsed_ms: float
    timestamp_utc: str
    detail: dict[str, Any] = field(default_factory=dict)


class RunTracer:
    """Collects pipeline events and mirrors them to a logger.

    A tracer is handed to the orchestrator explicitly, so callers (and tests)
    can inspect ``events`` without touching process-wide logging.
    """

    def __init__(self, logger: Optional[logging.Logger] = None, max_events: int = 10_000) -> None:
        self.logger = logger or LOG
        self.max_events = max_events
        self._events: list[TraceEvent] = []

    def emit(
        self,
        run_id: str,
        stage: str,
        status: str,
        *,
        elapsed_ms: float = 0.0,
        **detail: Any,
    ) -> TraceEvent:
        event = TraceEvent(
            run_id=run_id,
            stage=stage,
            status=status,
            elapsed_ms=round(elapsed_ms, 2),
            timestamp_utc=datetime.now(timezone.utc).isoformat(),
            detail=dict(detail),
        )
        self._events.append(event)
        if len(self._events) > self.max_events:
            del self._events[: len(self._events) - self.max_events]

        level = logging.WARNING if status in ("degraded", "failed", "cancelled") else logging.DEBUG
        self.logger.log(
            level,
            "[run %s] %s -> %s (%.1f ms) %s",
            run_id, stage, status, event.elapsed_ms, detail or "",
        )
        return event

    @property
    def events(self) -> list[TraceEvent]:
        return list(self._events)

    def for_run(self, run_id: str) -> list[TraceEvent]:
        return [event for event in self._events if event.run_id == run_id]

    def stages(self, run_id: str) -> list[str]:
        """Stage names in emission order for one run, without repeats."""
        seen: list[str] = []
        for event in self.for_run(run_id):
            if event.stage not in seen:
                seen.append(event.stage)
        return seen


class Timer:
    """Simple context timer used around pipeline stages."""

    def __init__(self) -> None:
        self._start = 0.0
        self.elapsed_ms = 0.0

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.elapsed_ms = (time.perf_counter() - self._start) * 1000.0
