from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Any

import pytest

from perf_tools.journey.browser_session import TracingBusy
from perf_tools.journey.config import JourneyConfig

_TOKEN_RE = re.compile(r"reset\('([0-9a-f]+)'\)")
_TEXT_RE = re.compile(r"const searchText = (.*);")
_CSS_RE = re.compile(r"const css = (.*);")


class FakePage:
    """In-memory stand-in for BrowserSession.

    `present` maps a click target (lower-cased link text, or a css selector)
    to whether clicking it loads a new document.
    """

    def __init__(
        self,
        present: dict[str, bool] | None = None,
        *,
        url: str = "https://shop.test/",
        failing_urls: tuple[str, ...] = (),
        trace: bytes = b'{"traceEvents": []}',
        start_error: Exception | None = None,
        stop_error: Exception | None = None,
        form: bool = True,
    ) -> None:
        self.present = dict(present or {})
        self.url = url
        self.failing_urls = failing_urls
        self.trace = trace
        self.start_error = start_error
        self.stop_error = stop_error
        self.form = form
        self.calls: list[str] = []
        self.typed: list[str] = []
        self.token: str | None = None
        self.time_origin = 1000.0
        self._loaded = False
        self._click_navigates = False
        self.tracing = False

    def _new_document(self, url: str | None = None) -> None:
        self.token = None
        self.time_origin += 1000.0
        self._loaded = True
        if url:
            self.url = url

    async def navigate(self, url: str, wait_load: bool = True, timeout: float = 10.0) -> bool:
        self.calls.append(f"navigate:{url}")
        if url in self.failing_urls:
            return False
        self._new_document(url)
        return True

    def forget_load_events(self) -> None:
        self._loaded = False

    async def wait_load(self, timeout: float = 10.0) -> bool:
        self.calls.append("wait_load")
        return self._loaded

    async def add_script_on_new_document(self, source: str, *, key: str = "") -> str:
        return "1"

    async def eval_js(self, expression: str, *, timeout: float | None = None) -> Any:
        if "__perfJourney.reset(" in expression:
            match = _TOKEN_RE.search(expression)
            self.token = match.group(1) if match else None
            self.calls.append("arm")
            return {"token": self.token, "timeOrigin": self.time_origin, "href": self.url}
        if "__perfJourney.sample()" in expression:
            self.calls.append("sample")
            return {
                "token": self.token,
                "timeOrigin": self.time_origin,
                "href": self.url,
                "observers": ["largest-contentful-paint", "layout-shift", "longtask"],
                "navigation": {
                    "type": "navigate",
                    "domainLookupStart": 10.0,
                    "domainLookupEnd": 25.0,
                    "connectStart": 25.0,
                    "connectEnd": 60.0,
                    "requestStart": 100.0,
                    "responseStart": 300.0,
                    "responseEnd": 340.0,
                    "domComplete": 700.0,
                    "domContentLoadedEventStart": 520.0,
                    "loadEventStart": 710.0,
                    "loadEventEnd": 720.0,
                    "transferSize": 5300,
                    "nextHopProtocol": "h2",
                },
                "paint": {"first-paint": 150.0, "first-contentful-paint": 180.0},
                "lcp": [{"startTime": 900.0, "size": 5000}],
                "shifts": [{"startTime": 400.0, "value": 0.02, "hadRecentInput": False}],
                "longtasks": [{"startTime": 200.0, "duration": 120.0}],
                "interactions": [],
                "inputs": [],
                "resources": [
                    {
                        "name": "https://shop.test/app.js",
                        "initiatorType": "script",
                        "transferSize": 1200,
                        "decodedBodySize": 4000,
                        "duration": 30.0,
                        "responseEnd": 330.0,
                        "nextHopProtocol": "h2",
                    }
                ],
            }
        if "const searchText" in expression:
            text = json.loads(_TEXT_RE.search(expression).group(1))
            css = json.loads(_CSS_RE.search(expression).group(1))
            key = css or text
            if key not in self.present:
                return {"found": False}
            self._click_navigates = self.present[key]
            return {"found": True, "tag": "A", "bounds": {"x": 10, "y": 20, "width": 100, "height": 20}}
        if "el.focus()" in expression:
            return {"found": True, "selector": "input", "focused": True}
        if "requestSubmit" in expression:
            if self.form:
                self._new_document()
            return {"found": self.form}
        return {"ok": True}

    async def click(self, x: float, y: float) -> None:
        self.calls.append(f"click:{x:g},{y:g}")
        if self._click_navigates:
            self._click_navigates = False
            self._new_document()

    async def type_text(self, text: str) -> None:
        self.typed.append(text)

    async def start_tracing(self, categories: Any = None) -> None:
        self.calls.append("start_tracing")
        if self.start_error is not None:
            raise self.start_error
        if self.tracing:
            raise TracingBusy("A trace capture is already running on this page")
        self.tracing = True

    async def stop_tracing(self, timeout: float = 30.0) -> bytes:
        self.calls.append("stop_tracing")
        self.tracing = False
        if self.stop_error is not None:
            raise self.stop_error
        return self.trace

    async def performance_metrics(self) -> dict[str, float]:
        return {"JSHeapUsedSize": 2_500_000.0, "Nodes": 420.0, "LayoutCount": 12.0, "ScriptDuration": 0.085}

    async def get_url(self) -> str:
        return self.url


@pytest.fixture
def journey_config(tmp_path: Path) -> JourneyConfig:
    return JourneyConfig(
        binary_path="chromium",
        out_dir=str(tmp_path / "out"),
        click_timeout=0.01,
        nav_timeout=0.05,
        settle_ms=0,
        action_settle_ms=0,
    )


@pytest.fixture
def make_page():
    return FakePage

