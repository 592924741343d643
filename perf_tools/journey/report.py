"""Fold a ScenarioReport into a renderable summary document.

`build_document` is a pure function: same report in, same dict out, and the
report itself is never touched. Rendering (Markdown, HTML, ...) is left to
whoever consumes the JSON.
"""

from __future__ import annotations

from dataclasses import asdict
from typing import Any

from .config import Thresholds
from .models import ScenarioReport, StepResult

HIGH = "High"
MEDIUM = "Medium"

_LCP_RECOMMENDATION = "Optimize critical rendering path, reduce server response time, optimize images"
_CLS_RECOMMENDATION = "Set explicit dimensions for images/media, reserve space for dynamic content"
_TTFB_RECOMMENDATION = "Cache server responses, reduce backend work per request, serve from a closer edge"
_TBT_RECOMMENDATION = "Split long tasks, optimize JavaScript execution, use web workers for heavy computations"
_RESOURCE_RECOMMENDATION = "Optimize and compress large resources, implement lazy loading, use modern image formats"


def _finding(step: str, severity: str, metric: str, value: float, threshold: float, issue: str, impact: str, recommendation: str) -> dict[str, Any]:
    return {
        "step": step,
        "severity": severity,
        "metric": metric,
        "value": value,
        "threshold": threshold,
        "issue": issue,
        "impact": impact,
        "recommendation": recommendation,
    }


def step_findings(step: StepResult, thresholds: Thresholds) -> list[dict[str, Any]]:
    """Threshold violations for one step, most severe first."""
    out: list[dict[str, Any]] = []
    v = step.vitals
    name = step.step_name

    if v.lcp_millis is not None and v.lcp_millis > thresholds.lcp_ms:
        out.append(
            _finding(
                name, HIGH, "lcp", v.lcp_millis, thresholds.lcp_ms,
                f"High Largest Contentful Paint ({v.lcp_millis / 1000:.2f}s)",
                "Poor user experience due to slow content rendering",
                _LCP_RECOMMENDATION,
            )
        )
    if v.cls_score is not None and v.cls_score > thresholds.cls:
        out.append(
            _finding(
                name, HIGH, "cls", v.cls_score, thresholds.cls,
                f"High Cumulative Layout Shift ({v.cls_score:.3f})",
                "Poor user experience due to unexpected layout shifts",
                _CLS_RECOMMENDATION,
            )
        )
    if v.ttfb_millis is not None and v.ttfb_millis > thresholds.ttfb_ms:
        out.append(
            _finding(
                name, MEDIUM, "ttfb", v.ttfb_millis, thresholds.ttfb_ms,
                f"Slow Time To First Byte ({v.ttfb_millis:.0f}ms)",
                "Every later milestone waits for the first byte of the document",
                _TTFB_RECOMMENDATION,
            )
        )
    tbt = v.total_blocking_time_millis
    if tbt is not None and tbt > thresholds.tbt_ms:
        out.append(
            _finding(
                name, MEDIUM, "tbt", tbt, thresholds.tbt_ms,
                f"High Total Blocking Time ({tbt:.2f}ms)",
                "Poor interactivity due to long-running JavaScript tasks",
                _TBT_RECOMMENDATION,
            )
        )
    large = [r for r in step.resources if r.transfer_size_bytes > thresholds.large_resource_bytes]
    if large:
        out.append(
            {
                **_finding(
                    name, MEDIUM, "large_resources", float(len(large)), float(thresholds.large_resource_bytes),
                    f"{len(large)} large resources detected",
                    "Slower page load times and increased bandwidth usage",
                    _RESOURCE_RECOMMENDATION,
                ),
                "resources": [r.url for r in large],
            }
        )
    return out


def _table_row(step: StepResult) -> dict[str, Any]:
    return {
        "step": step.step_name,
        "ok": step.ok,
        **step.vitals.to_dict(),
        "fcpMillis": step.paint.first_contentful_paint_millis,
        "domContentLoadedMillis": step.navigation.dom_content_loaded_millis,
        "loadMillis": step.navigation.load_millis,
        "jsHeapUsedBytes": step.runtime.js_heap_used_bytes,
        "domNodes": step.runtime.dom_nodes,
        "resourceCount": step.resource_summary.total_count,
        "transferBytes": step.resource_summary.total_transfer_bytes,
        "cachedResources": step.resource_summary.cached_count,
        "failedResources": step.resource_summary.failed_count,
        "longTaskCount": len(step.long_tasks),
        "resetToBlankFirst": step.reset_to_blank,
    }


def _degraded(step: StepResult) -> dict[str, Any] | None:
    if step.error is None and step.trace_error is None:
        return None
    entry: dict[str, Any] = {"step": step.step_name}
    if step.error is not None:
        entry.update(
            kind=step.error.kind,
            cause=step.error.cause,
            detail=step.error.detail,
            recovered=step.error.recovered,
            triedFallbacks=step.error.tried_fallbacks,
            lastError=step.error.last_error,
        )
    if step.trace_error is not None:
        entry["traceError"] = {"kind": step.trace_error.kind, "detail": step.trace_error.detail}
    return entry


def _worst(steps: tuple[StepResult, ...], attr: str) -> dict[str, Any] | None:
    best: tuple[float, str] | None = None
    for step in steps:
        value = getattr(step.vitals, attr)
        # Strictly greater: the earliest step wins a tie.
        if value is not None and (best is None or value > best[0]):
            best = (value, step.step_name)
    return {"step": best[1], "value": best[0]} if best else None


def _isolation(steps: tuple[StepResult, ...], reset_every_step: bool) -> dict[str, Any]:
    carried = [s.step_name for s in steps if not s.reset_to_blank]
    note = None
    if carried:
        note = (
            "Steps without a blank reset start on the page the previous step left, so that page's "
            "in-flight requests and tasks can land in their capture. Set PERF_RESET_EVERY_STEP=1 "
            "to reset before every step."
        )
    return {
        "resetEveryStep": reset_every_step,
        "blankResetSteps": [s.step_name for s in steps if s.reset_to_blank],
        "carriedOverSteps": carried,
        "note": note,
    }


def build_document(
    report: ScenarioReport,
    thresholds: Thresholds | None = None,
    *,
    reset_every_step: bool = False,
) -> dict[str, Any]:
    thresholds = thresholds or Thresholds()
    steps = report.steps

    findings: list[dict[str, Any]] = []
    for step in steps:
        findings.extend(step_findings(step, thresholds))

    recommendations: list[str] = []
    for f in findings:
        if f["recommendation"] not in recommendations:
            recommendations.append(f["recommendation"])

    degraded = [d for d in (_degraded(s) for s in steps) if d is not None]

    return {
        "targetUrl": report.target_url,
        "generatedAt": report.generated_at,
        "abortedReason": report.aborted_reason,
        "thresholds": asdict(thresholds),
        "isolation": _isolation(steps, reset_every_step),
        "table": [_table_row(s) for s in steps],
        "findings": findings,
        "degradedSteps": degraded,
        "recommendations": recommendations,
        "summary": {
            "stepCount": len(steps),
            "failedSteps": sum(1 for s in steps if s.error is not None and not s.error.recovered),
            "recoveredSteps": sum(1 for s in steps if s.error is not None and s.error.recovered),
            "traceUnavailableSteps": sum(1 for s in steps if s.trace_error is not None),
            "highFindings": sum(1 for f in findings if f["severity"] == HIGH),
            "mediumFindings": sum(1 for f in findings if f["severity"] == MEDIUM),
            "worstLcp": _worst(steps, "lcp_millis"),
            "worstTbt": _worst(steps, "total_blocking_time_millis"),
            "totalTransferBytes": sum(s.resource_summary.total_transfer_bytes for s in steps),
            "cachedResources": sum(s.resource_summary.cached_count for s in steps),
            "failedResources": sum(s.resource_summary.failed_count for s in steps),
        },
    }


__all__ = ["HIGH", "MEDIUM", "build_document", "step_findings"]
