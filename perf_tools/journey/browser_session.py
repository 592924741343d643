from __future__ import annotations

import base64
import logging
from contextlib import suppress
from typing import Any

from .http_client import HttpClientError, InfrastructureFailure
from .session_cdp import CdpConnection

logger = logging.getLogger("perf.journey.session")


class TracingBusy(HttpClientError):
    """A trace capture is already running on this page."""


class BrowserSession:
    """
    High-level browser session for the single page a journey drives.

    Wraps CdpConnection with the navigation, input, JS and tracing operations
    the journey needs. One session owns one page; it is never shared.
    """

    def __init__(self, connection: CdpConnection, target_id: str = "", page_url: str = ""):
        self.conn = connection
        self.target_id = target_id
        self.page_url = page_url
        self._page_enabled = False
        self._runtime_enabled = False
        self._network_enabled = False
        self._performance_enabled = False
        self._tracing = False
        self._init_scripts: dict[str, str | None] = {}

    async def close(self) -> None:
        """Close the session connection."""
        await self.conn.close()

    @property
    def tracing(self) -> bool:
        return self._tracing

    async def enable_domains(
        self,
        *,
        page: bool = False,
        runtime: bool = False,
        network: bool = False,
        performance: bool = False,
        strict: bool = True,
    ) -> None:
        """Enable CDP domains once; repeated calls are no-ops."""
        cmds: list[dict[str, Any]] = []
        flags: list[str] = []

        if page and not self._page_enabled:
            cmds.append({"method": "Page.enable", "params": {}})
            flags.append("page")
        if runtime and not self._runtime_enabled:
            cmds.append({"method": "Runtime.enable", "params": {}})
            flags.append("runtime")
        if network and not self._network_enabled:
            cmds.append({"method": "Network.enable", "params": {}})
            flags.append("network")
        if performance and not self._performance_enabled:
            cmds.append({"method": "Performance.enable", "params": {}})
            flags.append("performance")

        if not cmds:
            return

        failures: list[tuple[str, str]] = []
        for cmd, flag in zip(cmds, flags, strict=False):
            try:
                await self.conn.send(cmd["method"], cmd.get("params"))
            except HttpClientError as exc:
                failures.append((cmd["method"], str(exc)))
                continue
            setattr(self, f"_{flag}_enabled", True)

        if strict and failures:
            failed_names = ", ".join(m for m, _ in failures)
            details = "; ".join(f"{m}: {err}" for m, err in failures)
            raise HttpClientError(f"Failed to enable CDP domain(s): {failed_names}. Details: {details}")

    # ─────────────────────────────────────────────────────────────────────────
    # Navigation
    # ─────────────────────────────────────────────────────────────────────────

    def forget_load_events(self) -> None:
        """Drop load events from earlier pages so the next wait sees only fresh ones."""
        self.conn.discard_events("Page.loadEventFired")

    async def navigate(self, url: str, wait_load: bool = True, timeout: float = 10.0) -> bool:
        """Navigate to URL; returns False when the load event did not arrive in time."""
        await self.enable_domains(page=True)
        self.forget_load_events()
        result = await self.conn.send("Page.navigate", {"url": url}, timeout=timeout)
        if result.get("errorText"):
            raise HttpClientError(f"Navigation to {url} failed: {result['errorText']}")
        self.page_url = url
        if not wait_load:
            return True
        return await self.wait_load(timeout)

    async def wait_load(self, timeout: float = 10.0) -> bool:
        """Wait for page load event."""
        result = await self.conn.wait_for_event("Page.loadEventFired", timeout)
        return result is not None

    async def add_script_on_new_document(self, source: str, *, key: str = "") -> str | None:
        """Register a script for every future document (once per key)."""
        if key and key in self._init_scripts:
            return self._init_scripts[key]
        await self.enable_domains(page=True)
        result = await self.conn.send("Page.addScriptToEvaluateOnNewDocument", {"source": source})
        ident = result.get("identifier")
        ident = ident if isinstance(ident, str) else None
        if key:
            self._init_scripts[key] = ident
        return ident

    # ─────────────────────────────────────────────────────────────────────────
    # JavaScript
    # ─────────────────────────────────────────────────────────────────────────

    async def eval_js(self, expression: str, *, timeout: float | None = None) -> Any:
        """Evaluate JavaScript and return its JSON value (undefined/null -> None)."""
        await self.enable_domains(runtime=True)
        result = await self.conn.send(
            "Runtime.evaluate",
            {
                "expression": expression,
                "returnByValue": True,
                "awaitPromise": True,
            },
            timeout=timeout,
        )
        if result.get("exceptionDetails"):
            details = result["exceptionDetails"]
            text = details.get("text") if isinstance(details, dict) else None
            exc = details.get("exception") if isinstance(details, dict) else None
            if isinstance(exc, dict) and exc.get("description"):
                text = str(exc["description"]).splitlines()[0]
            raise HttpClientError(f"JS evaluation failed: {text or 'exception'}")
        if "result" not in result:
            return None
        value = result["result"]
        # CDP returns undefined as {"type":"undefined"} with no "value" field.
        if isinstance(value, dict) and value.get("type") == "undefined":
            return None
        if isinstance(value, dict) and value.get("type") == "object" and value.get("subtype") == "null":
            return None
        return value.get("value", value) if isinstance(value, dict) else value

    async def get_url(self) -> str:
        """Get current page URL."""
        return await self.eval_js("window.location.href") or ""

    # ─────────────────────────────────────────────────────────────────────────
    # Input
    # ─────────────────────────────────────────────────────────────────────────

    async def click(self, x: float, y: float, button: str = "left", click_count: int = 1) -> None:
        """Click at coordinates."""
        await self.conn.send_many(
            [
                {
                    "method": "Input.dispatchMouseEvent",
                    "params": {"type": "mouseMoved", "x": x, "y": y, "button": "none", "clickCount": 0},
                },
                {
                    "method": "Input.dispatchMouseEvent",
                    "params": {
                        "type": "mousePressed",
                        "x": x,
                        "y": y,
                        "button": button,
                        "clickCount": click_count,
                    },
                },
                {
                    "method": "Input.dispatchMouseEvent",
                    "params": {
                        "type": "mouseReleased",
                        "x": x,
                        "y": y,
                        "button": button,
                        "clickCount": click_count,
                    },
                },
            ]
        )

    async def type_text(self, text: str) -> None:
        """Insert text into the focused element."""
        if not text:
            return
        await self.conn.send("Input.insertText", {"text": str(text)})

    # ─────────────────────────────────────────────────────────────────────────
    # Tracing
    # ─────────────────────────────────────────────────────────────────────────

    async def start_tracing(self, categories: tuple[str, ...] | list[str]) -> None:
        """Start a trace capture streamed back through the IO domain.

        Categories follow the command-line convention: entries starting with
        "-" are exclusions, the rest inclusions.
        """
        if self._tracing:
            raise TracingBusy("A trace capture is already running on this page")
        included = [c for c in categories if c and not c.startswith("-")]
        excluded = [c[1:] for c in categories if c.startswith("-") and len(c) > 1]
        await self.conn.send(
            "Tracing.start",
            {
                "transferMode": "ReturnAsStream",
                "streamFormat": "json",
                "traceConfig": {
                    "recordMode": "recordAsMuchAsPossible",
                    "includedCategories": included,
                    "excludedCategories": excluded,
                },
            },
        )
        self._tracing = True

    async def stop_tracing(self, timeout: float = 30.0) -> bytes:
        """Stop the running capture and return the raw trace buffer."""
        if not self._tracing:
            raise HttpClientError("No trace capture is running")
        try:
            self.conn.discard_events("Tracing.tracingComplete")
            await self.conn.send("Tracing.end")
            complete = await self.conn.wait_for_event("Tracing.tracingComplete", timeout=timeout)
        finally:
            self._tracing = False
        if complete is None:
            raise HttpClientError("Tracing did not complete in time")
        handle = complete.get("stream")
        if not isinstance(handle, str) or not handle:
            return b""
        return await self._read_stream(handle)

    async def _read_stream(self, handle: str) -> bytes:
        chunks: list[bytes] = []
        try:
            while True:
                result = await self.conn.send("IO.read", {"handle": handle, "size": 1 << 20})
                data = result.get("data") or ""
                if result.get("base64Encoded"):
                    chunks.append(base64.b64decode(data))
                else:
                    chunks.append(str(data).encode("utf-8"))
                if result.get("eof"):
                    break
        finally:
            with suppress(HttpClientError, InfrastructureFailure):
                await self.conn.send("IO.close", {"handle": handle})
        data = b"".join(chunks)
        logger.debug("trace_stream_read bytes=%d chunks=%d", len(data), len(chunks))
        return data

    # ─────────────────────────────────────────────────────────────────────────
    # Runtime counters
    # ─────────────────────────────────────────────────────────────────────────

    async def performance_metrics(self) -> dict[str, float]:
        """Chrome runtime counters (JS heap, DOM nodes, layouts, ...) by name."""
        await self.enable_domains(performance=True)
        result = await self.conn.send("Performance.getMetrics")
        out: dict[str, float] = {}
        for item in result.get("metrics") or []:
            if not isinstance(item, dict):
                continue
            name, value = item.get("name"), item.get("value")
            if isinstance(name, str) and isinstance(value, (int, float)) and not isinstance(value, bool):
                out[name] = float(value)
        return out


__all__ = ["BrowserSession", "TracingBusy"]
