from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .models import ErrorInfo


@dataclass(frozen=True)
class TraceEvent:
    """One entry of the Chrome trace-event stream."""

    name: str
    category: str
    phase: str
    timestamp_micros: float
    duration_micros: float | None = None
    args: dict[str, Any] = field(default_factory=dict)
    pid: int | None = None
    tid: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "category": self.category,
            "phase": self.phase,
            "timestampMicros": self.timestamp_micros,
            "durationMicros": self.duration_micros,
            "args": self.args,
            "pid": self.pid,
            "tid": self.tid,
        }


@dataclass(frozen=True)
class RawTraceCapture:
    events: tuple[TraceEvent, ...] = ()
    started_at: str | None = None
    stopped_at: str | None = None
    categories_enabled: tuple[str, ...] = ()
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "startedAt": self.started_at,
            "stoppedAt": self.stopped_at,
            "categoriesEnabled": list(self.categories_enabled),
            "metadata": self.metadata,
        }


@dataclass(frozen=True)
class DecodeResult:
    capture: RawTraceCapture
    error: ErrorInfo | None = None

    @property
    def ok(self) -> bool:
        return self.error is None
