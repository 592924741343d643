"""Result types shared by the pipeline.

Everything here is a frozen dataclass; `to_dict()` produces the JSON shape
written to disk (camelCase keys, missing values as null, never zero).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Literal

ErrorKind = Literal["ActionFailed", "NavigationTimeout", "ParseError", "TraceUnavailable"]


@dataclass(frozen=True)
class ErrorInfo:
    kind: ErrorKind
    step: str
    detail: str
    tried_fallbacks: int = 0
    last_error: str | None = None
    recovered: bool = False
    # Specialization of kind, e.g. NavigationTimeout for an ActionFailed.
    cause: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "step": self.step,
            "detail": self.detail,
            "triedFallbacks": self.tried_fallbacks,
            "lastError": self.last_error,
            "recovered": self.recovered,
            "cause": self.cause,
        }


@dataclass(frozen=True)
class CoreWebVitals:
    lcp_millis: float | None = None
    cls_score: float | None = None
    inp_millis: float | None = None
    ttfb_millis: float | None = None
    total_blocking_time_millis: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lcpMillis": self.lcp_millis,
            "clsScore": self.cls_score,
            "inpMillis": self.inp_millis,
            "ttfbMillis": self.ttfb_millis,
            "totalBlockingTimeMillis": self.total_blocking_time_millis,
        }


@dataclass(frozen=True)
class PaintTimings:
    first_paint_millis: float | None = None
    first_contentful_paint_millis: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"fpMillis": self.first_paint_millis, "fcpMillis": self.first_contentful_paint_millis}


@dataclass(frozen=True)
class ResourceEntry:
    url: str
    initiator_type: str
    transfer_size_bytes: int
    decoded_size_bytes: int
    duration_millis: float
    protocol: str = ""
    status: int | None = None
    failed: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "initiatorType": self.initiator_type,
            "transferSizeBytes": self.transfer_size_bytes,
            "decodedSizeBytes": self.decoded_size_bytes,
            "durationMillis": self.duration_millis,
            "protocol": self.protocol,
            "status": self.status,
            "failed": self.failed,
        }


@dataclass(frozen=True)
class ResourceBucket:
    key: str
    count: int
    transfer_bytes: int
    mean_duration_millis: float
    max_duration_millis: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "count": self.count,
            "transferBytes": self.transfer_bytes,
            "meanDurationMillis": self.mean_duration_millis,
            "maxDurationMillis": self.max_duration_millis,
        }


@dataclass(frozen=True)
class ResourceSummary:
    total_count: int = 0
    total_transfer_bytes: int = 0
    cached_count: int = 0
    failed_count: int = 0
    by_type: tuple[ResourceBucket, ...] = ()
    by_origin: tuple[ResourceBucket, ...] = ()
    largest: tuple[ResourceEntry, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalCount": self.total_count,
            "totalTransferBytes": self.total_transfer_bytes,
            "cachedCount": self.cached_count,
            "failedCount": self.failed_count,
            "byType": [b.to_dict() for b in self.by_type],
            "byOrigin": [b.to_dict() for b in self.by_origin],
            "largest": [r.to_dict() for r in self.largest],
        }


@dataclass(frozen=True)
class NavigationTimings:
    """Phases of the document request, in ms.

    Phase fields are durations; `dom_content_loaded_millis`, `load_millis`
    and `total_millis` are offsets from navigation start. A phase the
    browser did not report (or has not reached yet) is None.
    """

    navigation_type: str | None = None
    redirect_millis: float | None = None
    dns_millis: float | None = None
    tcp_millis: float | None = None
    request_millis: float | None = None
    response_millis: float | None = None
    dom_processing_millis: float | None = None
    dom_content_loaded_millis: float | None = None
    load_millis: float | None = None
    total_millis: float | None = None
    transfer_size_bytes: int | None = None
    protocol: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "navigationType": self.navigation_type,
            "redirectMillis": self.redirect_millis,
            "dnsMillis": self.dns_millis,
            "tcpMillis": self.tcp_millis,
            "requestMillis": self.request_millis,
            "responseMillis": self.response_millis,
            "domProcessingMillis": self.dom_processing_millis,
            "domContentLoadedMillis": self.dom_content_loaded_millis,
            "loadMillis": self.load_millis,
            "totalMillis": self.total_millis,
            "transferSizeBytes": self.transfer_size_bytes,
            "protocol": self.protocol,
        }


@dataclass(frozen=True)
class RuntimeCounters:
    """Chrome's Performance.getMetrics counters at the end of a step."""

    js_heap_used_bytes: int | None = None
    js_heap_total_bytes: int | None = None
    dom_nodes: int | None = None
    documents: int | None = None
    frames: int | None = None
    js_event_listeners: int | None = None
    layout_count: int | None = None
    recalc_style_count: int | None = None
    script_duration_millis: float | None = None
    task_duration_millis: float | None = None

    @classmethod
    def from_cdp(cls, metrics: dict[str, float]) -> RuntimeCounters:
        def count(name: str) -> int | None:
            value = metrics.get(name)
            return int(value) if value is not None else None

        def millis(name: str) -> float | None:
            # Durations are reported in seconds.
            value = metrics.get(name)
            return round(value * 1000.0, 3) if value is not None else None

        return cls(
            js_heap_used_bytes=count("JSHeapUsedSize"),
            js_heap_total_bytes=count("JSHeapTotalSize"),
            dom_nodes=count("Nodes"),
            documents=count("Documents"),
            frames=count("Frames"),
            js_event_listeners=count("JSEventListeners"),
            layout_count=count("LayoutCount"),
            recalc_style_count=count("RecalcStyleCount"),
            script_duration_millis=millis("ScriptDuration"),
            task_duration_millis=millis("TaskDuration"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "jsHeapUsedBytes": self.js_heap_used_bytes,
            "jsHeapTotalBytes": self.js_heap_total_bytes,
            "domNodes": self.dom_nodes,
            "documents": self.documents,
            "frames": self.frames,
            "jsEventListeners": self.js_event_listeners,
            "layoutCount": self.layout_count,
            "recalcStyleCount": self.recalc_style_count,
            "scriptDurationMillis": self.script_duration_millis,
            "taskDurationMillis": self.task_duration_millis,
        }


@dataclass(frozen=True)
class LongTask:
    duration_millis: float
    start_millis: float

    def to_dict(self) -> dict[str, Any]:
        return {"durationMillis": self.duration_millis, "startMillis": self.start_millis}


@dataclass(frozen=True)
class StepTimings:
    started_at: str
    action_millis: float
    total_millis: float

    def to_dict(self) -> dict[str, Any]:
        return {"startedAt": self.started_at, "actionMillis": self.action_millis, "totalMillis": self.total_millis}


@dataclass(frozen=True)
class StepResult:
    step_name: str
    vitals: CoreWebVitals = field(default_factory=CoreWebVitals)
    resources: tuple[ResourceEntry, ...] = ()
    resource_summary: ResourceSummary = field(default_factory=ResourceSummary)
    long_tasks: tuple[LongTask, ...] = ()
    paint: PaintTimings = field(default_factory=PaintTimings)
    navigation: NavigationTimings = field(default_factory=NavigationTimings)
    runtime: RuntimeCounters = field(default_factory=RuntimeCounters)
    error: ErrorInfo | None = None
    trace_error: ErrorInfo | None = None
    trace_ref: str | None = None
    metrics_ref: str | None = None
    screenshot_ref: str | None = None
    url: str | None = None
    timings: StepTimings | None = None
    reset_to_blank: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None or self.error.recovered

    def to_dict(self) -> dict[str, Any]:
        return {
            "stepName": self.step_name,
            "url": self.url,
            "traceRef": self.trace_ref,
            "metricsRef": self.metrics_ref,
            "screenshotRef": self.screenshot_ref,
            "resetToBlankFirst": self.reset_to_blank,
            "vitals": self.vitals.to_dict(),
            "paint": self.paint.to_dict(),
            "navigation": self.navigation.to_dict(),
            "runtime": self.runtime.to_dict(),
            "resources": [r.to_dict() for r in self.resources],
            "resourceSummary": self.resource_summary.to_dict(),
            "longTasks": [t.to_dict() for t in self.long_tasks],
            "error": self.error.to_dict() if self.error else None,
            "traceError": self.trace_error.to_dict() if self.trace_error else None,
            "timings": self.timings.to_dict() if self.timings else None,
        }


@dataclass(frozen=True)
class ScenarioReport:
    target_url: str
    generated_at: str
    steps: tuple[StepResult, ...] = ()
    # Set when an infrastructure failure ended the run early.
    aborted_reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "targetUrl": self.target_url,
            "generatedAt": self.generated_at,
            "abortedReason": self.aborted_reason,
            "steps": [s.to_dict() for s in self.steps],
        }
