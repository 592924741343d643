"""Browser capability: launch Chromium, open the journey page, shut it all down."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from .browser_session import BrowserSession
from .config import JourneyConfig
from .http_client import HttpClientError, InfrastructureFailure, http_json
from .launcher import BrowserLauncher
from .session_cdp import CdpConnection

logger = logging.getLogger("perf.journey.browser")


def _get_targets(endpoint: str) -> list[dict[str, Any]]:
    """Get list of browser targets."""
    try:
        targets = http_json(f"{endpoint}/json/list")
    except HttpClientError:
        return []
    return [t for t in targets if isinstance(t, dict)] if isinstance(targets, list) else []


def _get_browser_ws(endpoint: str) -> str:
    """Get browser-level WebSocket URL."""
    version = http_json(f"{endpoint}/json/version")
    ws_url = version.get("webSocketDebuggerUrl") if isinstance(version, dict) else None
    if not ws_url:
        raise HttpClientError("CDP browser WebSocket URL not found")
    return ws_url


def _get_tab_ws_url(endpoint: str, target_id: str) -> str | None:
    for target in _get_targets(endpoint):
        if target.get("id") == target_id:
            return target.get("webSocketDebuggerUrl")
    return None


async def _create_tab(endpoint: str, timeout: float) -> str:
    """Create a new blank tab through the browser target, return its id."""
    browser_ws = await asyncio.to_thread(_get_browser_ws, endpoint)
    conn = await CdpConnection.connect(browser_ws, timeout=timeout)
    try:
        result = await conn.send("Target.createTarget", {"url": "about:blank"})
    finally:
        await conn.close()
    target_id = result.get("targetId")
    if not target_id:
        raise HttpClientError("Failed to create browser tab")
    return str(target_id)


@dataclass
class BrowserHandle:
    """The launched browser plus the one page the journey owns."""

    launcher: BrowserLauncher | None
    page: BrowserSession
    endpoint: str = ""
    closed: bool = field(default=False, init=False)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.page.close()
        finally:
            if self.launcher is not None:
                await asyncio.to_thread(self.launcher.stop)
        logger.info("browser_closed endpoint=%s", self.endpoint)


async def open_browser_page(config: JourneyConfig) -> BrowserHandle:
    """Launch (or attach to) Chromium and open an isolated page.

    Any failure here means no journey can run, so it surfaces as
    InfrastructureFailure.
    """
    launcher = BrowserLauncher(config)
    result = await asyncio.to_thread(launcher.ensure_running)
    if not result.started and not launcher.cdp_ready():
        await asyncio.to_thread(launcher.stop)
        reason = result.message
        if result.log_tail:
            reason = f"{reason}; log tail: {result.log_tail[-400:]}"
        raise InfrastructureFailure(action="launch_browser", reason=reason)

    endpoint = launcher.endpoint
    logger.info("browser_ready endpoint=%s launched=%s headless=%s", endpoint, result.started, config.headless)
    try:
        target_id = await _create_tab(endpoint, config.cdp_timeout)
        ws_url = await asyncio.to_thread(_get_tab_ws_url, endpoint, target_id)
        if not ws_url:
            raise HttpClientError(f"No WebSocket URL for target {target_id}")
        conn = await CdpConnection.connect(ws_url, timeout=config.cdp_timeout)
        page = BrowserSession(conn, target_id=target_id, page_url="about:blank")
        await page.enable_domains(page=True, runtime=True, network=True)
    except (HttpClientError, InfrastructureFailure) as exc:
        await asyncio.to_thread(launcher.stop)
        if isinstance(exc, InfrastructureFailure):
            raise
        raise InfrastructureFailure(action="open_page", reason=str(exc)) from exc
    return BrowserHandle(launcher=launcher, page=page, endpoint=endpoint)


__all__ = ["BrowserHandle", "open_browser_page"]
