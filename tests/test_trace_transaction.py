from __future__ import annotations

import asyncio
import base64
import json
from io import BytesIO

import pytest
from PIL import Image

from perf_tools.journey.artifacts import ArtifactStore
from perf_tools.journey.http_client import HttpClientError, InfrastructureFailure
from perf_tools.journey.tools import ActionFailed, ActionOutcome
from perf_tools.journey.trace_transaction import TraceTransaction


def _transaction(page, config, order: list[str] | None = None) -> TraceTransaction:
    async def fake_sleep(seconds: float) -> None:
        if order is not None:
            order.append("settle")

    return TraceTransaction(page, config, ArtifactStore(config.out_dir), sleep=fake_sleep)


def _navigating_action(page, url: str = "https://shop.test/catalog"):
    async def action() -> ActionOutcome:
        page.calls.append("action")
        await page.navigate(url)
        return ActionOutcome(ok=True)

    return action


def _jpeg_b64() -> str:
    buf = BytesIO()
    Image.new("RGB", (32, 16), (200, 30, 30)).save(buf, format="JPEG")
    return base64.b64encode(buf.getvalue()).decode()


def test_settle_happens_before_sampling_and_trace_stop(make_page, journey_config) -> None:
    page = make_page()
    transaction = _transaction(page, journey_config, order=page.calls)

    asyncio.run(transaction.run_traced("home", _navigating_action(page)))

    order = [c for c in page.calls if c in ("arm", "start_tracing", "action", "settle", "sample", "stop_tracing")]
    assert order == ["arm", "start_tracing", "action", "settle", "sample", "stop_tracing"]


def test_navigating_step_reports_live_vitals(make_page, journey_config) -> None:
    page = make_page()
    result = asyncio.run(_transaction(page, journey_config).run_traced("home", _navigating_action(page)))

    assert result.ok
    assert result.error is None and result.trace_error is None
    assert result.vitals.lcp_millis == 900.0
    assert result.vitals.ttfb_millis == 200.0
    assert result.vitals.cls_score == 0.02
    assert result.vitals.total_blocking_time_millis == 70.0
    assert result.paint.first_contentful_paint_millis == 180.0
    assert [r.url for r in result.resources] == ["https://shop.test/app.js"]
    assert result.url == "https://shop.test/catalog"
    assert result.timings is not None and result.timings.started_at


def test_artifacts_are_written_with_step_prefix(make_page, journey_config) -> None:
    page = make_page(trace=json.dumps({"traceEvents": [{"name": "Screenshot", "ph": "O", "ts": 5, "args": {"snapshot": _jpeg_b64()}}]}).encode())
    transaction = _transaction(page, journey_config)

    first = asyncio.run(transaction.run_traced("home", _navigating_action(page)))
    second = asyncio.run(transaction.run_traced("sign in", _navigating_action(page, "https://shop.test/signon")))

    store = transaction.store
    assert store.list() == [
        "01_home.final.png",
        "01_home.metrics.json",
        "01_home.trace.json",
        "02_sign_in.final.png",
        "02_sign_in.metrics.json",
        "02_sign_in.trace.json",
    ]
    assert first.trace_ref.endswith("01_home.trace.json")
    assert second.screenshot_ref.endswith("02_sign_in.final.png")
    saved = json.loads((store.base_dir / "01_home.metrics.json").read_text(encoding="utf-8"))
    assert saved["stepName"] == "home"
    assert saved["vitals"]["lcpMillis"] == 900.0
    assert saved["metricsRef"].endswith("01_home.metrics.json")


def test_failed_action_still_reports_partial_telemetry(make_page, journey_config) -> None:
    page = make_page()

    async def failing() -> ActionOutcome:
        raise ActionFailed(action="click('Login')", reason="No matching element")

    result = asyncio.run(_transaction(page, journey_config).run_traced("login", failing))

    assert not result.ok
    assert result.error.kind == "ActionFailed"
    assert "stop_tracing" in page.calls
    assert result.trace_ref is not None
    # Same document as when armed: no navigation metrics, but shifts still count.
    assert result.vitals.ttfb_millis is None
    assert result.vitals.cls_score == 0.02
    assert result.vitals.total_blocking_time_millis == 70.0


def test_outcome_error_is_carried_into_result(make_page, journey_config) -> None:
    from perf_tools.journey.models import ErrorInfo

    page = make_page()
    recovered = ErrorInfo(kind="ActionFailed", step="sign_in", detail="recovered", tried_fallbacks=1, recovered=True, cause="NavigationTimeout")

    async def action() -> ActionOutcome:
        await page.navigate("https://shop.test/signon")
        return ActionOutcome(ok=True, error=recovered, attempt_index=1)

    result = asyncio.run(_transaction(page, journey_config).run_traced("sign_in", action))
    assert result.ok
    assert result.error == recovered


def test_trace_start_failure_is_trace_unavailable(make_page, journey_config) -> None:
    page = make_page(start_error=HttpClientError("Tracing.start: Tracing is already started"))
    result = asyncio.run(_transaction(page, journey_config).run_traced("home", _navigating_action(page)))

    assert result.error is None
    assert result.trace_error is not None
    assert result.trace_error.kind == "TraceUnavailable"
    assert result.trace_ref is None
    assert "stop_tracing" not in page.calls
    assert result.vitals.lcp_millis == 900.0


def test_trace_stop_failure_is_trace_unavailable(make_page, journey_config) -> None:
    page = make_page(stop_error=HttpClientError("Tracing.end timed out"))
    result = asyncio.run(_transaction(page, journey_config).run_traced("home", _navigating_action(page)))

    assert result.trace_error.kind == "TraceUnavailable"
    assert result.trace_ref is None
    assert result.metrics_ref is not None


def test_truncated_trace_is_parse_error_but_kept_on_disk(make_page, journey_config) -> None:
    page = make_page(trace=b'{"traceEvents": [{"name": "RunTa')
    transaction = _transaction(page, journey_config)
    result = asyncio.run(transaction.run_traced("home", _navigating_action(page)))

    assert result.trace_error.kind == "ParseError"
    assert (transaction.store.base_dir / "01_home.trace.json").read_bytes() == page.trace
    assert result.vitals.ttfb_millis == 200.0


def test_reset_to_blank_navigates_before_arming(make_page, journey_config) -> None:
    page = make_page()
    asyncio.run(_transaction(page, journey_config).run_traced("home", _navigating_action(page), reset_to_blank_first=True))
    assert page.calls.index("navigate:about:blank") < page.calls.index("arm")


def test_lcp_carries_into_same_document_step(make_page, journey_config) -> None:
    page = make_page()
    transaction = _transaction(page, journey_config)

    async def stay() -> ActionOutcome:
        return ActionOutcome(ok=True)

    asyncio.run(transaction.run_traced("product_view", _navigating_action(page)))
    result = asyncio.run(transaction.run_traced("add_to_cart", stay))
    assert result.vitals.lcp_millis == 900.0
    assert result.vitals.ttfb_millis is None


def test_infrastructure_failure_escapes(make_page, journey_config) -> None:
    page = make_page()

    async def dead() -> ActionOutcome:
        raise InfrastructureFailure(action="cdp_send", reason="socket closed")

    with pytest.raises(InfrastructureFailure):
        asyncio.run(_transaction(page, journey_config).run_traced("home", dead))


def test_crashing_action_is_captured_and_trace_still_stopped(make_page, journey_config) -> None:
    page = make_page()
    transaction = _transaction(page, journey_config)

    async def boom() -> ActionOutcome:
        raise ValueError("Invalid IPv6 URL")

    result = asyncio.run(transaction.run_traced("category_browse", boom))

    assert not result.ok
    assert result.error.kind == "ActionFailed"
    assert "ValueError" in result.error.detail
    assert "stop_tracing" in page.calls
    assert page.tracing is False
    assert "01_category_browse.metrics.json" in transaction.store.list()

    # The next capture starts cleanly.
    after = asyncio.run(transaction.run_traced("product_view", _navigating_action(page)))
    assert after.trace_error is None
    assert after.trace_ref is not None


def test_infrastructure_failure_still_ends_the_capture(make_page, journey_config) -> None:
    page = make_page()

    async def dead() -> ActionOutcome:
        raise InfrastructureFailure(action="cdp_send", reason="socket closed")

    with pytest.raises(InfrastructureFailure):
        asyncio.run(_transaction(page, journey_config).run_traced("home", dead))
    assert "stop_tracing" in page.calls
    assert page.tracing is False


def test_action_failed_subclass_keeps_kind_and_records_cause(make_page, journey_config) -> None:
    from perf_tools.journey.tools import NavigationTimeout

    page = make_page()

    async def slow() -> ActionOutcome:
        raise NavigationTimeout(action="navigate('https://shop.test/')", reason="page did not finish loading")

    result = asyncio.run(_transaction(page, journey_config).run_traced("home", slow))
    assert result.error.kind == "ActionFailed"
    assert result.error.cause == "NavigationTimeout"


def test_navigation_phases_and_runtime_counters_are_reported(make_page, journey_config) -> None:
    page = make_page()
    transaction = _transaction(page, journey_config)
    result = asyncio.run(transaction.run_traced("home", _navigating_action(page)))

    nav = result.navigation
    assert nav.navigation_type == "navigate"
    assert nav.dns_millis == 15.0
    assert nav.tcp_millis == 35.0
    assert nav.request_millis == 200.0
    assert nav.response_millis == 40.0
    assert nav.dom_processing_millis == 360.0
    assert nav.dom_content_loaded_millis == 520.0
    assert nav.load_millis == 710.0
    assert nav.total_millis == 720.0
    assert nav.redirect_millis is None
    assert result.runtime.js_heap_used_bytes == 2_500_000
    assert result.runtime.dom_nodes == 420
    assert result.runtime.script_duration_millis == 85.0
    assert result.runtime.frames is None

    saved = json.loads((transaction.store.base_dir / "01_home.metrics.json").read_text(encoding="utf-8"))
    assert saved["navigation"]["domContentLoadedMillis"] == 520.0
    assert saved["navigation"]["redirectMillis"] is None
    assert saved["runtime"]["domNodes"] == 420


def test_runtime_counter_failure_leaves_nulls(make_page, journey_config) -> None:
    class NoCounters(make_page):
        async def performance_metrics(self) -> dict[str, float]:
            raise HttpClientError("Performance.getMetrics: not supported")

    page = NoCounters()
    result = asyncio.run(_transaction(page, journey_config).run_traced("home", _navigating_action(page)))
    assert result.runtime.js_heap_used_bytes is None
    assert result.vitals.lcp_millis == 900.0
