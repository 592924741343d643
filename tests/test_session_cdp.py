from __future__ import annotations

import asyncio
import json
from typing import Any

import pytest

from perf_tools.journey.http_client import HttpClientError, InfrastructureFailure
from perf_tools.journey.session_cdp import CdpConnection


class FakeWebSocket:
    """Answers every command through `reply`; `push` injects raw frames."""

    def __init__(self, reply=None) -> None:
        self.sent: list[dict[str, Any]] = []
        self._inbox: asyncio.Queue = asyncio.Queue()
        self._reply = reply or (lambda msg: {"id": msg["id"], "result": {"echo": msg["method"]}})
        self.closed = False

    async def send(self, raw: str) -> None:
        msg = json.loads(raw)
        self.sent.append(msg)
        response = self._reply(msg)
        if response is not None:
            await self._inbox.put(json.dumps(response))

    def push(self, frame: Any) -> None:
        self._inbox.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    async def close(self) -> None:
        self.closed = True
        await self._inbox.put(None)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        item = await self._inbox.get()
        if item is None:
            raise StopAsyncIteration
        return item


def test_send_resolves_by_message_id() -> None:
    async def _main() -> None:
        ws = FakeWebSocket()
        conn = CdpConnection(ws, "ws://127.0.0.1:9222/devtools/page/1")
        conn.start()
        first, second = await asyncio.gather(conn.send("Page.enable"), conn.send("Runtime.enable"))
        assert first == {"echo": "Page.enable"}
        assert second == {"echo": "Runtime.enable"}
        assert [m["id"] for m in ws.sent] == [1, 2]
        await conn.close()

    asyncio.run(_main())


def test_cdp_error_response_raises_client_error() -> None:
    async def _main() -> None:
        ws = FakeWebSocket(lambda msg: {"id": msg["id"], "error": {"code": -32000, "message": "Tracing is already started"}})
        conn = CdpConnection(ws, "ws://x")
        conn.start()
        with pytest.raises(HttpClientError, match="already started"):
            await conn.send("Tracing.start")
        await conn.close()

    asyncio.run(_main())


def test_unanswered_command_times_out() -> None:
    async def _main() -> None:
        conn = CdpConnection(FakeWebSocket(lambda msg: None), "ws://x")
        conn.start()
        with pytest.raises(HttpClientError, match="timed out"):
            await conn.send("Page.navigate", {"url": "https://shop.test/"}, timeout=0.01)
        await conn.close()

    asyncio.run(_main())


def test_events_are_queued_until_waited_for() -> None:
    async def _main() -> None:
        ws = FakeWebSocket()
        conn = CdpConnection(ws, "ws://x")
        conn.start()
        ws.push({"method": "Page.loadEventFired", "params": {"timestamp": 1.5}})
        ws.push("not json")
        await conn.send("Page.enable")  # the reader has drained the frames by now
        assert await conn.wait_for_event("Page.loadEventFired", timeout=0.1) == {"timestamp": 1.5}
        assert await conn.wait_for_event("Page.loadEventFired", timeout=0.01) is None
        await conn.close()

    asyncio.run(_main())


def test_waiter_receives_event_and_handlers_see_it() -> None:
    async def _main() -> None:
        ws = FakeWebSocket()
        conn = CdpConnection(ws, "ws://x")
        conn.start()
        seen: list[dict[str, Any]] = []
        conn.on("Tracing.tracingComplete", seen.append)
        waiter = asyncio.ensure_future(conn.wait_for_event("Tracing.tracingComplete", timeout=1.0))
        await asyncio.sleep(0)
        ws.push({"method": "Tracing.tracingComplete", "params": {"stream": "s-1"}})
        assert await waiter == {"stream": "s-1"}
        assert seen == [{"stream": "s-1"}]
        assert conn.pop_event("Tracing.tracingComplete") is None
        await conn.close()

    asyncio.run(_main())


def test_discard_events_drops_stale_loads() -> None:
    async def _main() -> None:
        ws = FakeWebSocket()
        conn = CdpConnection(ws, "ws://x")
        conn.start()
        ws.push({"method": "Page.loadEventFired", "params": {}})
        ws.push({"method": "Page.frameNavigated", "params": {}})
        await conn.send("Page.enable")
        assert conn.discard_events("Page.loadEventFired") == 1
        assert conn.pop_event("Page.frameNavigated") == {}
        await conn.close()

    asyncio.run(_main())


def test_socket_close_fails_pending_and_later_commands() -> None:
    async def _main() -> None:
        ws = FakeWebSocket(lambda msg: None)
        conn = CdpConnection(ws, "ws://x")
        conn.start()
        pending = asyncio.ensure_future(conn.send("Tracing.end", timeout=5.0))
        await asyncio.sleep(0)
        await ws.close()
        with pytest.raises(InfrastructureFailure):
            await pending
        assert conn.closed
        with pytest.raises(InfrastructureFailure):
            await conn.send("Page.enable")
        with pytest.raises(InfrastructureFailure):
            await conn.wait_for_event("Page.loadEventFired", timeout=0.1)

    asyncio.run(_main())


def test_connect_failure_is_infrastructure_failure() -> None:
    async def _main() -> None:
        await CdpConnection.connect("ws://127.0.0.1:1/devtools/page/none", timeout=1.0)

    with pytest.raises(InfrastructureFailure):
        asyncio.run(_main())
