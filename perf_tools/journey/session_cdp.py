"""Low-level CDP WebSocket connection (asyncio).

One reader task owns the socket. Command responses resolve pending futures;
events are dispatched to subscribers, handed to waiters, or queued (bounded)
so a later `wait_for_event` does not miss them.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import deque
from collections.abc import Callable
from contextlib import suppress
from typing import Any

import websockets
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from .http_client import HttpClientError, InfrastructureFailure

logger = logging.getLogger("perf.journey.cdp")

EventHandler = Callable[[dict[str, Any]], None]


class CdpConnection:
    """Low-level CDP WebSocket connection."""

    def __init__(self, ws: Any, ws_url: str, timeout: float = 10.0) -> None:
        self.ws = ws
        self.ws_url = ws_url
        self.timeout = timeout
        self._next_id = 1
        self._pending: dict[int, asyncio.Future] = {}
        # CDP is event-heavy; keep unconsumed events but never grow without bound.
        self._event_queue: deque[dict[str, Any]] = deque()
        self._max_event_queue = 2000
        self._waiters: dict[str, list[asyncio.Future]] = {}
        self._handlers: dict[str, list[EventHandler]] = {}
        self._closed_reason: str | None = None
        self._reader: asyncio.Task | None = None

    @classmethod
    async def connect(cls, ws_url: str, timeout: float = 10.0) -> CdpConnection:
        try:
            ws = await asyncio.wait_for(
                websockets.connect(ws_url, max_size=None, ping_interval=None),
                timeout=timeout,
            )
        except (OSError, asyncio.TimeoutError, InvalidHandshake) as exc:
            raise InfrastructureFailure(action="cdp_connect", reason=f"{ws_url}: {exc}") from exc
        conn = cls(ws, ws_url, timeout=timeout)
        conn.start()
        return conn

    def start(self) -> None:
        if self._reader is None:
            self._reader = asyncio.get_running_loop().create_task(self._read_loop())

    @property
    def closed(self) -> bool:
        return self._closed_reason is not None

    # ─────────────────────────────────────────────────────────────────────────
    # Events
    # ─────────────────────────────────────────────────────────────────────────

    def on(self, event_name: str, handler: EventHandler) -> None:
        """Subscribe to a CDP event; handlers receive the event params."""
        self._handlers.setdefault(event_name, []).append(handler)

    def _push_event(self, event: dict[str, Any]) -> None:
        method = event.get("method")
        if not isinstance(method, str):
            return
        params = event.get("params") if isinstance(event.get("params"), dict) else {}

        for handler in list(self._handlers.get(method, ())):
            try:
                handler(params)
            except Exception:  # noqa: BLE001
                # Subscribers must never break the reader.
                logger.debug("cdp_handler_failed event=%s", method, exc_info=True)

        waiters = self._waiters.get(method)
        while waiters:
            fut = waiters.pop(0)
            if not fut.done():
                fut.set_result(params)
                return

        self._event_queue.append({"method": method, "params": params})
        if len(self._event_queue) > self._max_event_queue:
            # Drop oldest events to avoid unbounded growth in long sessions.
            self._event_queue.popleft()

    def pop_event(self, event_name: str) -> dict[str, Any] | None:
        """Pop the oldest queued event params for the given event name."""
        for ev in self._event_queue:
            if ev.get("method") == event_name:
                self._event_queue.remove(ev)
                return ev.get("params") or {}
        return None

    def discard_events(self, event_name: str) -> int:
        """Drop queued events of one kind (stale load events from a previous page)."""
        keep = [ev for ev in self._event_queue if ev.get("method") != event_name]
        dropped = len(self._event_queue) - len(keep)
        self._event_queue = deque(keep)
        return dropped

    async def wait_for_event(self, event_name: str, timeout: float = 10.0) -> dict[str, Any] | None:
        """Wait for a CDP event; None on timeout."""
        queued = self.pop_event(event_name)
        if queued is not None:
            return queued
        if self.closed:
            raise InfrastructureFailure(action="cdp_wait", reason=self._closed_reason or "connection closed")

        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(event_name, []).append(fut)
        try:
            return await asyncio.wait_for(fut, timeout=max(0.0, float(timeout)))
        except asyncio.TimeoutError:
            return None
        finally:
            waiters = self._waiters.get(event_name)
            if waiters and fut in waiters:
                waiters.remove(fut)

    # ─────────────────────────────────────────────────────────────────────────
    # Commands
    # ─────────────────────────────────────────────────────────────────────────

    async def send(self, method: str, params: dict[str, Any] | None = None, *, timeout: float | None = None) -> dict[str, Any]:
        """Send CDP command and wait for response."""
        if self.closed:
            raise InfrastructureFailure(action=method, reason=self._closed_reason or "connection closed")

        msg_id = self._next_id
        self._next_id += 1
        msg: dict[str, Any] = {"id": msg_id, "method": method}
        if params:
            msg["params"] = params

        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[msg_id] = fut
        try:
            try:
                await self.ws.send(json.dumps(msg))
            except ConnectionClosed as exc:
                raise InfrastructureFailure(action=method, reason=f"connection closed: {exc}") from exc
            try:
                return await asyncio.wait_for(fut, timeout=float(timeout if timeout is not None else self.timeout))
            except asyncio.TimeoutError as exc:
                raise HttpClientError(f"CDP response timed out: {method}") from exc
        finally:
            self._pending.pop(msg_id, None)

    async def send_many(self, commands: list[dict[str, Any]], *, stop_on_error: bool = True) -> list[dict[str, Any]]:
        """Send multiple CDP commands sequentially."""
        out: list[dict[str, Any]] = []
        for cmd in commands:
            method = cmd.get("method")
            if not isinstance(method, str) or not method.strip():
                if stop_on_error:
                    raise HttpClientError("send_many: each command must include a non-empty 'method'")
                continue
            try:
                out.append(await self.send(method, cmd.get("params")))
            except HttpClientError as exc:
                if stop_on_error:
                    raise
                out.append({"ok": False, "error": str(exc), "method": method})
        return out

    # ─────────────────────────────────────────────────────────────────────────
    # Reader
    # ─────────────────────────────────────────────────────────────────────────

    def _dispatch(self, data: Any) -> None:
        if not isinstance(data, dict):
            return
        if "id" in data:
            fut = self._pending.get(data.get("id"))
            if fut is None or fut.done():
                return
            if "error" in data:
                fut.set_exception(HttpClientError(str(data["error"])))
            else:
                fut.set_result(data.get("result") or {})
            return
        if isinstance(data.get("method"), str):
            self._push_event(data)

    async def _read_loop(self) -> None:
        reason = "connection closed"
        try:
            async for raw in self.ws:
                try:
                    data = json.loads(raw)
                except (TypeError, json.JSONDecodeError):
                    continue
                self._dispatch(data)
        except ConnectionClosed as exc:
            reason = f"connection closed: {exc}"
        except asyncio.CancelledError:
            reason = "connection closed by client"
            raise
        finally:
            self._fail_all(reason)

    def _fail_all(self, reason: str) -> None:
        self._closed_reason = reason
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(InfrastructureFailure(action="cdp_send", reason=reason))
        self._pending.clear()
        for waiters in self._waiters.values():
            for fut in waiters:
                if not fut.done():
                    fut.set_exception(InfrastructureFailure(action="cdp_wait", reason=reason))
        self._waiters.clear()

    async def close(self) -> None:
        """Close the WebSocket connection."""
        with suppress(Exception):
            await asyncio.wait_for(self.ws.close(), timeout=2.0)
        reader = self._reader
        if reader is not None and not reader.done():
            reader.cancel()
            with suppress(asyncio.CancelledError, Exception):
                await reader
        if self._closed_reason is None:
            self._fail_all("connection closed by client")


__all__ = ["CdpConnection", "EventHandler"]
