"""Record a trace around one action and turn it into a StepResult.

The stop/decode/extract half always runs, whatever the action did, so a
failed step still reports what the page was doing. Only
InfrastructureFailure escapes.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Any

from .artifacts import ArtifactStore, step_prefix
from .config import JourneyConfig
from .filmstrip import final_frame_png
from .http_client import HttpClientError, InfrastructureFailure
from .metrics import NavigationCarry, StepMetrics, extract_metrics
from .models import ErrorInfo, RuntimeCounters, StepResult, StepTimings
from .redaction import redact_url, scrub
from .tools.base import ActionFailed
from .tools.executor import ActionOutcome
from .trace_decoder import decode_trace
from .trace_model import RawTraceCapture
from .vitals import VitalsCollector

logger = logging.getLogger("perf.journey.transaction")

ActionFn = Callable[[], Awaitable[ActionOutcome]]


def _iso_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def _fmt(value: float | None, digits: int = 1) -> str:
    return "null" if value is None else f"{value:.{digits}f}"


class TraceTransaction:
    """Owns the trace lifecycle of one page, one step at a time."""

    def __init__(
        self,
        page: Any,
        config: JourneyConfig,
        store: ArtifactStore,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.page = page
        self.config = config
        self.store = store
        self._sleep = sleep
        self._clock = clock
        self._carry: NavigationCarry | None = None
        self._count = 0

    async def run_traced(self, step_name: str, action_fn: ActionFn, reset_to_blank_first: bool = False) -> StepResult:
        self._count += 1
        prefix = step_prefix(self._count, step_name)
        started_at = _iso_now()
        t_start = self._clock()
        trace_error: ErrorInfo | None = None

        if reset_to_blank_first:
            await self._reset_to_blank(step_name)

        collector = VitalsCollector(self.page)
        await collector.arm()

        tracing = False
        trace_started_at: str | None = None
        try:
            await self.page.start_tracing(self.config.categories)
            tracing = True
            trace_started_at = _iso_now()
        except HttpClientError as exc:
            trace_error = ErrorInfo(kind="TraceUnavailable", step=step_name, detail=f"start failed: {exc}")
            logger.warning("trace_start_failed step=%s error=%s", step_name, exc)

        raw: bytes | None = None
        try:
            t_action = self._clock()
            error = await self._run_action(step_name, action_fn)
            action_ms = (self._clock() - t_action) * 1000.0

            # Let late paints, shifts and requests land before anything is read.
            await self._sleep(self.config.settle_seconds)
            live = await collector.sample()
            runtime = await self._runtime_counters(step_name)
        finally:
            # The capture must end even when the step is being torn down.
            if tracing:
                raw, stop_error = await self._stop_tracing(step_name)
                trace_error = stop_error or trace_error

        trace_ref: str | None = None
        capture: RawTraceCapture | None = None
        if raw is not None:
            trace_ref = self.store.put_trace(prefix, raw).path
            decoded = decode_trace(
                raw,
                step=step_name,
                started_at=trace_started_at,
                stopped_at=_iso_now(),
                categories=tuple(self.config.categories),
            )
            capture = decoded.capture
            if decoded.error is not None:
                trace_error = decoded.error

        metrics = extract_metrics(capture, live, self._carry)
        self._carry = metrics.carry

        screenshot_ref = self._store_final_frame(prefix, capture)
        url = await self._current_url()

        result = self._build_result(
            step_name,
            prefix,
            metrics,
            runtime=runtime,
            error=error,
            trace_error=trace_error,
            trace_ref=trace_ref,
            screenshot_ref=screenshot_ref,
            url=url,
            reset_to_blank=reset_to_blank_first,
            timings=StepTimings(
                started_at=started_at,
                action_millis=round(action_ms, 1),
                total_millis=round((self._clock() - t_start) * 1000.0, 1),
            ),
        )
        self.store.put_metrics(prefix, result.to_dict())

        v = result.vitals
        logger.info(
            "step_done step=%s ok=%s lcp=%s cls=%s ttfb=%s tbt=%s resources=%d",
            step_name,
            result.ok,
            _fmt(v.lcp_millis),
            _fmt(v.cls_score, 4),
            _fmt(v.ttfb_millis),
            _fmt(v.total_blocking_time_millis),
            len(result.resources),
        )
        return result

    async def _reset_to_blank(self, step_name: str) -> None:
        try:
            await self.page.navigate("about:blank", wait_load=True, timeout=self.config.nav_timeout)
        except HttpClientError as exc:
            logger.warning("reset_failed step=%s error=%s", step_name, exc)

    async def _stop_tracing(self, step_name: str) -> tuple[bytes | None, ErrorInfo | None]:
        try:
            return await self.page.stop_tracing(timeout=self.config.trace_stop_timeout), None
        except HttpClientError as exc:
            logger.warning("trace_stop_failed step=%s error=%s", step_name, exc)
            return None, ErrorInfo(kind="TraceUnavailable", step=step_name, detail=f"stop failed: {exc}")

    async def _runtime_counters(self, step_name: str) -> RuntimeCounters:
        try:
            return RuntimeCounters.from_cdp(await self.page.performance_metrics())
        except HttpClientError as exc:
            logger.warning("runtime_counters_failed step=%s error=%s", step_name, exc)
            return RuntimeCounters()

    async def _run_action(self, step_name: str, action_fn: ActionFn) -> ErrorInfo | None:
        secrets = (self.config.password,)
        try:
            outcome = await action_fn()
        except InfrastructureFailure:
            raise
        except ActionFailed as exc:
            return ErrorInfo(
                kind="ActionFailed",
                step=step_name,
                detail=scrub(str(exc), secrets),
                last_error=scrub(exc.reason, secrets),
                cause=exc.kind if exc.kind != ActionFailed.kind else None,
            )
        except (HttpClientError, asyncio.TimeoutError) as exc:
            return ErrorInfo(kind="ActionFailed", step=step_name, detail=scrub(str(exc) or "timed out", secrets))
        except Exception as exc:
            logger.exception("action_crashed step=%s", step_name)
            return ErrorInfo(
                kind="ActionFailed",
                step=step_name,
                detail=scrub(f"{type(exc).__name__}: {exc}", secrets),
                last_error=scrub(str(exc), secrets) or None,
            )
        return outcome.error

    def _store_final_frame(self, prefix: str, capture: RawTraceCapture | None) -> str | None:
        png: bytes | None = None
        with suppress(Exception):
            png = final_frame_png(capture)
        if not png:
            return None
        return self.store.put_png(prefix, png).path

    async def _current_url(self) -> str | None:
        with suppress(HttpClientError):
            url = await self.page.get_url()
            return redact_url(url) if url else None
        return None

    def _build_result(self, step_name: str, prefix: str, metrics: StepMetrics, **kwargs: Any) -> StepResult:
        return StepResult(
            step_name=step_name,
            vitals=metrics.vitals,
            resources=metrics.resources,
            resource_summary=metrics.resource_summary,
            long_tasks=metrics.long_tasks,
            paint=metrics.paint,
            navigation=metrics.navigation,
            metrics_ref=str(self.store.path_for(f"{prefix}.metrics.json")),
            **kwargs,
        )


__all__ = ["ActionFn", "TraceTransaction"]
