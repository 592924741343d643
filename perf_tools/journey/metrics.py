"""Reduce one step's trace capture and live snapshot to metrics.

Live observer data is preferred where it exists (it is exactly what the page
reported); the trace events are the fallback. Missing signals stay None; a
measured zero stays 0.0.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar
from urllib.parse import urlsplit

from .models import (
    CoreWebVitals,
    LongTask,
    NavigationTimings,
    PaintTimings,
    ResourceBucket,
    ResourceEntry,
    ResourceSummary,
)
from .redaction import redact_url
from .trace_model import RawTraceCapture, TraceEvent
from .vitals import LiveSnapshot

logger = logging.getLogger("perf.journey.metrics")

LONG_TASK_MS = 50.0
INPUT_EXCLUSION_MS = 500.0
TOP_RESOURCES = 10

_INPUT_EVENT_TYPES = {"pointerdown", "mousedown", "keydown", "click", "touchstart"}

T = TypeVar("T")


@dataclass(frozen=True)
class NavigationCarry:
    """Identity and LCP of the document the last navigation produced."""

    time_origin: float | None
    lcp_millis: float | None


@dataclass(frozen=True)
class StepMetrics:
    vitals: CoreWebVitals = field(default_factory=CoreWebVitals)
    resources: tuple[ResourceEntry, ...] = ()
    resource_summary: ResourceSummary = field(default_factory=ResourceSummary)
    long_tasks: tuple[LongTask, ...] = ()
    paint: PaintTimings = field(default_factory=PaintTimings)
    navigation: NavigationTimings = field(default_factory=NavigationTimings)
    navigated: bool = False
    carry: NavigationCarry | None = None


def _num(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _status(value: Any) -> int | None:
    # 0 means the status was not exposed (opaque or unfinished response).
    number = _num(value)
    return int(number) if number else None


def _guard(label: str, fn: Callable[[], T], default: T) -> T:
    try:
        return fn()
    except Exception:  # noqa: BLE001
        # One broken signal must not cost the step its other metrics.
        logger.debug("metric_failed metric=%s", label, exc_info=True)
        return default


def _data(event: TraceEvent) -> dict[str, Any]:
    data = event.args.get("data")
    return data if isinstance(data, dict) else {}


# ─────────────────────────────────────────────────────────────────────────────
# Trace helpers
# ─────────────────────────────────────────────────────────────────────────────


def _main_frame_ids(events: Iterable[TraceEvent]) -> set[str]:
    frames: set[str] = set()
    for ev in events:
        if ev.name == "TracingStartedInBrowser":
            for frame in _data(ev).get("frames") or []:
                if isinstance(frame, dict) and not frame.get("parent") and frame.get("frame"):
                    frames.add(str(frame["frame"]))
    return frames


def main_frame_navigation_starts(capture: RawTraceCapture) -> list[TraceEvent]:
    """navigationStart marks of the main frame, blank documents excluded."""
    frames = _main_frame_ids(capture.events)
    out: list[TraceEvent] = []
    for ev in capture.events:
        if ev.name != "navigationStart":
            continue
        data = _data(ev)
        url = str(data.get("documentLoaderURL") or "")
        if url.startswith("about:"):
            continue
        frame = ev.args.get("frame")
        if data.get("isLoadingMainFrame") or data.get("isOutermostMainFrame") or (frame and str(frame) in frames):
            out.append(ev)
    return out


def _trace_input_times(capture: RawTraceCapture) -> list[float]:
    times: list[float] = []
    for ev in capture.events:
        if ev.name == "EventDispatch" and str(_data(ev).get("type") or "") in _INPUT_EVENT_TYPES:
            times.append(ev.timestamp_micros)
    return times


def renderer_main_threads(capture: RawTraceCapture) -> set[tuple[int | None, int | None]]:
    threads: set[tuple[int | None, int | None]] = set()
    for ev in capture.events:
        if ev.name == "thread_name" and ev.phase == "M" and ev.args.get("name") == "CrRendererMain":
            threads.add((ev.pid, ev.tid))
    return threads


# ─────────────────────────────────────────────────────────────────────────────
# Individual signals
# ─────────────────────────────────────────────────────────────────────────────


def pick_lcp(candidates: Iterable[tuple[float, float]], first_input: float | None) -> float | None:
    """Pick LCP from (time, size) candidates in emission order.

    A later candidate replaces the current one only when it is at least as
    large; candidates at or after the first input are ignored.
    """
    best_time: float | None = None
    best_size = -1.0
    for time_ms, size in candidates:
        if first_input is not None and time_ms >= first_input:
            continue
        if size >= best_size:
            best_time, best_size = time_ms, size
    return best_time


def _live_lcp(live: LiveSnapshot) -> float | None:
    first_input = min(live.inputs) if live.inputs else None
    candidates = []
    for entry in live.lcp:
        t = _num(entry.get("startTime"))
        if t is None:
            continue
        candidates.append((t, _num(entry.get("size")) or 0.0))
    return pick_lcp(candidates, first_input)


def _trace_lcp(capture: RawTraceCapture) -> float | None:
    starts = main_frame_navigation_starts(capture)
    if not starts:
        return None
    nav_ts = starts[-1].timestamp_micros
    inputs = [t for t in _trace_input_times(capture) if t >= nav_ts]
    first_input = inputs[0] if inputs else None

    best: tuple[float, float] | None = None
    for ev in capture.events:
        if ev.timestamp_micros < nav_ts:
            continue
        if ev.name == "largestContentfulPaint::Invalidate":
            best = None
            continue
        if ev.name != "largestContentfulPaint::Candidate":
            continue
        data = _data(ev)
        if data.get("isOutermostMainFrame") is False or data.get("isMainFrame") is False:
            continue
        if first_input is not None and ev.timestamp_micros >= first_input:
            continue
        size = _num(data.get("size")) or 0.0
        if best is None or size >= best[1]:
            best = (ev.timestamp_micros, size)
    if best is None:
        return None
    return (best[0] - nav_ts) / 1000.0


def cumulative_layout_shift(shifts: Iterable[tuple[float, float, bool]], inputs: Iterable[float]) -> float:
    """Sum (time, score, had_recent_input) shifts that are not input-driven."""
    input_times = sorted(inputs)
    total = 0.0
    for time_ms, score, had_recent_input in shifts:
        if had_recent_input:
            continue
        if any(t <= time_ms < t + INPUT_EXCLUSION_MS for t in input_times):
            continue
        total += max(0.0, score)
    return round(total, 6)


def _live_cls(live: LiveSnapshot) -> float:
    shifts = []
    for entry in live.shifts:
        t = _num(entry.get("startTime"))
        if t is None:
            continue
        shifts.append((t, _num(entry.get("value")) or 0.0, bool(entry.get("hadRecentInput"))))
    return cumulative_layout_shift(shifts, live.inputs)


def _trace_cls(capture: RawTraceCapture) -> float | None:
    if not capture.events:
        return None
    shifts = []
    for ev in capture.events:
        if ev.name != "LayoutShift":
            continue
        data = _data(ev)
        score = _num(data.get("weighted_score_delta"))
        if score is None:
            score = _num(data.get("score")) or 0.0
        shifts.append((ev.timestamp_micros / 1000.0, score, bool(data.get("had_recent_input"))))
    inputs = [t / 1000.0 for t in _trace_input_times(capture)]
    return cumulative_layout_shift(shifts, inputs)


def _live_inp(live: LiveSnapshot) -> float | None:
    durations = [
        d
        for d in (_num(e.get("duration")) for e in live.interactions if e.get("interactionId"))
        if d is not None
    ]
    return max(durations) if durations else None


def ttfb_from_navigation(nav: dict[str, Any] | None) -> float | None:
    if not isinstance(nav, dict):
        return None
    request_start = _num(nav.get("requestStart"))
    response_start = _num(nav.get("responseStart"))
    if request_start is None or response_start is None or request_start < 0:
        return None
    return max(0.0, response_start - request_start)


def _span(nav: dict[str, Any], start: str, end: str) -> float | None:
    a, b = _num(nav.get(start)), _num(nav.get(end))
    # Unreached marks read as 0.
    if a is None or b is None or b <= 0 or b < a:
        return None
    return round(b - a, 3)


def _mark(nav: dict[str, Any], name: str) -> float | None:
    value = _num(nav.get(name))
    return round(value, 3) if value is not None and value > 0 else None


def navigation_timings(nav: dict[str, Any] | None) -> NavigationTimings:
    """Break a navigation timing entry into request phases."""
    if not isinstance(nav, dict):
        return NavigationTimings()
    transfer = _num(nav.get("transferSize"))
    return NavigationTimings(
        navigation_type=str(nav["type"]) if nav.get("type") else None,
        redirect_millis=_span(nav, "redirectStart", "redirectEnd"),
        dns_millis=_span(nav, "domainLookupStart", "domainLookupEnd"),
        tcp_millis=_span(nav, "connectStart", "connectEnd"),
        request_millis=_span(nav, "requestStart", "responseStart"),
        response_millis=_span(nav, "responseStart", "responseEnd"),
        dom_processing_millis=_span(nav, "responseEnd", "domComplete"),
        dom_content_loaded_millis=_mark(nav, "domContentLoadedEventStart"),
        load_millis=_mark(nav, "loadEventStart"),
        total_millis=_mark(nav, "loadEventEnd"),
        transfer_size_bytes=int(transfer) if transfer is not None else None,
        protocol=str(nav["nextHopProtocol"]) if nav.get("nextHopProtocol") else None,
    )


def _trace_ttfb(capture: RawTraceCapture) -> float | None:
    starts = main_frame_navigation_starts(capture)
    if not starts:
        return None
    nav = starts[-1]
    doc_url = str(_data(nav).get("documentLoaderURL") or "")
    doc_request: str | None = None
    # The document request may be stamped slightly before navigationStart; the last one wins.
    for ev in capture.events:
        if ev.name != "ResourceSendRequest":
            continue
        data = _data(ev)
        if data.get("resourceType") == "Document" or (doc_url and data.get("url") == doc_url):
            doc_request = str(data.get("requestId") or "") or doc_request
    if not doc_request:
        return None
    for ev in capture.events:
        if ev.name != "ResourceReceiveResponse" or str(_data(ev).get("requestId") or "") != doc_request:
            continue
        timing = _data(ev).get("timing")
        if not isinstance(timing, dict):
            return None
        send_start = _num(timing.get("sendStart"))
        headers_end = _num(timing.get("receiveHeadersEnd"))
        if send_start is None or headers_end is None or send_start < 0:
            return None
        return max(0.0, headers_end - send_start)
    return None


def total_blocking_time(tasks: Iterable[LongTask]) -> float:
    return sum(max(0.0, t.duration_millis - LONG_TASK_MS) for t in tasks)


def _trace_long_tasks(capture: RawTraceCapture) -> tuple[LongTask, ...] | None:
    run_tasks = [ev for ev in capture.events if ev.name == "RunTask" and ev.phase == "X"]
    if not run_tasks:
        return None
    threads = renderer_main_threads(capture)
    starts = main_frame_navigation_starts(capture)
    origin = starts[-1].timestamp_micros if starts else capture.events[0].timestamp_micros
    out: list[LongTask] = []
    for ev in run_tasks:
        if threads and (ev.pid, ev.tid) not in threads:
            continue
        duration_ms = (ev.duration_micros or 0.0) / 1000.0
        if duration_ms > LONG_TASK_MS:
            out.append(LongTask(duration_millis=duration_ms, start_millis=(ev.timestamp_micros - origin) / 1000.0))
    return tuple(out)


def _live_long_tasks(live: LiveSnapshot) -> tuple[LongTask, ...]:
    out: list[LongTask] = []
    for entry in live.long_tasks:
        duration = _num(entry.get("duration"))
        start = _num(entry.get("startTime"))
        if duration is None or start is None or duration <= LONG_TASK_MS:
            continue
        out.append(LongTask(duration_millis=duration, start_millis=start))
    return tuple(out)


# ─────────────────────────────────────────────────────────────────────────────
# Resources
# ─────────────────────────────────────────────────────────────────────────────


def _live_resources(live: LiveSnapshot) -> tuple[ResourceEntry, ...]:
    indexed = []
    for idx, entry in enumerate(live.resources):
        name = entry.get("name")
        if not isinstance(name, str) or not name:
            continue
        end = _num(entry.get("responseEnd"))
        indexed.append((end if end is not None else float("inf"), idx, entry))
    # Completion order; buffer order breaks ties.
    indexed.sort(key=lambda item: (item[0], item[1]))
    return tuple(
        ResourceEntry(
            url=redact_url(str(entry["name"])),
            initiator_type=str(entry.get("initiatorType") or "other"),
            transfer_size_bytes=int(_num(entry.get("transferSize")) or 0),
            decoded_size_bytes=int(_num(entry.get("decodedBodySize")) or 0),
            duration_millis=round(_num(entry.get("duration")) or 0.0, 3),
            protocol=str(entry.get("nextHopProtocol") or ""),
            status=_status(entry.get("responseStatus")),
            failed=(_status(entry.get("responseStatus")) or 0) >= 400,
        )
        for _, _, entry in indexed
    )


def _trace_resources(capture: RawTraceCapture) -> tuple[ResourceEntry, ...]:
    sent: dict[str, TraceEvent] = {}
    protocol: dict[str, str] = {}
    status: dict[str, int | None] = {}
    out: list[ResourceEntry] = []
    for ev in capture.events:
        data = _data(ev)
        request_id = str(data.get("requestId") or "")
        if not request_id:
            continue
        if ev.name == "ResourceSendRequest":
            sent.setdefault(request_id, ev)
        elif ev.name == "ResourceReceiveResponse":
            protocol[request_id] = str(data.get("protocol") or "")
            status[request_id] = _status(data.get("statusCode"))
        elif ev.name == "ResourceFinish" and request_id in sent:
            start = sent.pop(request_id)
            start_data = _data(start)
            url = str(start_data.get("url") or "")
            if not url:
                continue
            out.append(
                ResourceEntry(
                    url=redact_url(url),
                    initiator_type=str(start_data.get("resourceType") or "other").lower(),
                    transfer_size_bytes=int(_num(data.get("encodedDataLength")) or 0),
                    decoded_size_bytes=int(_num(data.get("decodedBodyLength")) or 0),
                    duration_millis=round((ev.timestamp_micros - start.timestamp_micros) / 1000.0, 3),
                    protocol=protocol.get(request_id, ""),
                    status=status.get(request_id),
                    failed=bool(data.get("didFail")) or (status.get(request_id) or 0) >= 400,
                )
            )
    return tuple(out)


def _origin(url: str) -> str:
    try:
        parts = urlsplit(url)
    except ValueError:
        return "unknown"
    if not parts.scheme or not parts.netloc:
        return parts.scheme or "unknown"
    return f"{parts.scheme}://{parts.netloc}"


def _is_cached(resource: ResourceEntry) -> bool:
    return resource.transfer_size_bytes == 0 and resource.decoded_size_bytes > 0 and not resource.failed


def _buckets(resources: tuple[ResourceEntry, ...], key: Callable[[ResourceEntry], str]) -> tuple[ResourceBucket, ...]:
    groups: dict[str, list[ResourceEntry]] = {}
    for r in resources:
        groups.setdefault(key(r), []).append(r)
    buckets = [
        ResourceBucket(
            key=k,
            count=len(items),
            transfer_bytes=sum(i.transfer_size_bytes for i in items),
            mean_duration_millis=round(sum(i.duration_millis for i in items) / len(items), 3),
            max_duration_millis=max(i.duration_millis for i in items),
        )
        for k, items in groups.items()
    ]
    # Heaviest first; first-seen order among equals.
    return tuple(sorted(buckets, key=lambda b: -b.transfer_bytes))


def summarize_resources(resources: tuple[ResourceEntry, ...], top_n: int = TOP_RESOURCES) -> ResourceSummary:
    if not resources:
        return ResourceSummary()
    return ResourceSummary(
        total_count=len(resources),
        total_transfer_bytes=sum(r.transfer_size_bytes for r in resources),
        cached_count=sum(1 for r in resources if _is_cached(r)),
        failed_count=sum(1 for r in resources if r.failed),
        by_type=_buckets(resources, lambda r: r.initiator_type),
        by_origin=_buckets(resources, lambda r: _origin(r.url)),
        largest=tuple(sorted(resources, key=lambda r: -r.transfer_size_bytes)[: max(0, top_n)]),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────────────────────────────


def _navigated(capture: RawTraceCapture | None, live: LiveSnapshot | None) -> bool:
    if live is not None:
        return not live.same_document
    if capture is not None:
        return bool(main_frame_navigation_starts(capture))
    return False


def _paint(capture: RawTraceCapture | None, live: LiveSnapshot | None) -> PaintTimings:
    if live is not None and live.paint:
        return PaintTimings(
            first_paint_millis=live.paint.get("first-paint"),
            first_contentful_paint_millis=live.paint.get("first-contentful-paint"),
        )
    if capture is None:
        return PaintTimings()
    starts = main_frame_navigation_starts(capture)
    if not starts:
        return PaintTimings()
    nav_ts = starts[-1].timestamp_micros
    found: dict[str, float] = {}
    for ev in capture.events:
        if ev.timestamp_micros >= nav_ts and ev.name in ("firstPaint", "firstContentfulPaint") and ev.name not in found:
            found[ev.name] = (ev.timestamp_micros - nav_ts) / 1000.0
    return PaintTimings(
        first_paint_millis=found.get("firstPaint"),
        first_contentful_paint_millis=found.get("firstContentfulPaint"),
    )


def extract_metrics(
    capture: RawTraceCapture | None,
    live: LiveSnapshot | None = None,
    carry: NavigationCarry | None = None,
) -> StepMetrics:
    """Compute the step's vitals, long tasks and resources. Never raises."""
    has_trace = capture is not None and bool(capture.events)
    navigated = _guard("navigated", lambda: _navigated(capture, live), False)

    # LCP
    if navigated:
        lcp = None
        if live is not None and live.lcp:
            lcp = _guard("lcp.live", lambda: _live_lcp(live), None)
        if lcp is None and has_trace:
            lcp = _guard("lcp.trace", lambda: _trace_lcp(capture), None)
        new_carry = NavigationCarry(time_origin=live.time_origin if live else None, lcp_millis=lcp)
    else:
        same_doc = carry is not None and (live is None or live.time_origin == carry.time_origin)
        lcp = carry.lcp_millis if same_doc and carry is not None else None
        new_carry = carry if same_doc else None

    # CLS
    cls: float | None = None
    if live is not None and live.observes("layout-shift"):
        cls = _guard("cls.live", lambda: _live_cls(live), None)
    if cls is None and has_trace:
        cls = _guard("cls.trace", lambda: _trace_cls(capture), None)

    inp = _guard("inp", lambda: _live_inp(live), None) if live is not None else None

    # TTFB only describes a navigation made by this step.
    ttfb: float | None = None
    if navigated:
        if live is not None:
            ttfb = _guard("ttfb.live", lambda: ttfb_from_navigation(live.navigation), None)
        if ttfb is None and has_trace:
            ttfb = _guard("ttfb.trace", lambda: _trace_ttfb(capture), None)

    long_tasks: tuple[LongTask, ...] | None = None
    if has_trace:
        long_tasks = _guard("long_tasks.trace", lambda: _trace_long_tasks(capture), None)
    if long_tasks is None and live is not None and live.observes("longtask"):
        long_tasks = _guard("long_tasks.live", lambda: _live_long_tasks(live), None)
    tbt = total_blocking_time(long_tasks) if long_tasks is not None else None

    resources: tuple[ResourceEntry, ...] = ()
    if live is not None and live.resources:
        resources = _guard("resources.live", lambda: _live_resources(live), ())
    if not resources and has_trace:
        resources = _guard("resources.trace", lambda: _trace_resources(capture), ())

    paint = _guard("paint", lambda: _paint(capture, live), PaintTimings()) if navigated else PaintTimings()
    navigation = NavigationTimings()
    if navigated and live is not None:
        navigation = _guard("navigation", lambda: navigation_timings(live.navigation), NavigationTimings())

    return StepMetrics(
        vitals=CoreWebVitals(
            lcp_millis=lcp,
            cls_score=cls,
            inp_millis=inp,
            ttfb_millis=ttfb,
            total_blocking_time_millis=tbt,
        ),
        resources=resources,
        resource_summary=_guard("resource_summary", lambda: summarize_resources(resources), ResourceSummary()),
        long_tasks=long_tasks or (),
        paint=paint,
        navigation=navigation,
        navigated=navigated,
        carry=new_carry,
    )


__all__ = [
    "NavigationCarry",
    "StepMetrics",
    "cumulative_layout_shift",
    "extract_metrics",
    "navigation_timings",
    "pick_lcp",
    "summarize_resources",
    "total_blocking_time",
    "ttfb_from_navigation",
]
