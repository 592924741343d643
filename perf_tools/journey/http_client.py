from __future__ import annotations

import json
import urllib.parse
from dataclasses import dataclass
from typing import Any
from urllib.error import URLError
from urllib.request import Request, urlopen


class HttpClientError(Exception):
    pass


def _devtools_request(url: str, method: str) -> Request:
    parsed = urllib.parse.urlparse(url)
    if parsed.scheme not in ("http", "https"):
        raise HttpClientError("Only http/https are supported")
    if (parsed.hostname or "") not in {"127.0.0.1", "localhost", "::1"}:
        raise HttpClientError(f"DevTools endpoint must be local, got {parsed.hostname}")
    return Request(url, method=method, headers={"User-Agent": "journey-perf/1.0"})


def http_json(url: str, *, method: str = "GET", timeout: float = 2.0) -> Any:
    """Call a DevTools HTTP endpoint (/json/version, /json/new, ...) and decode JSON."""
    req = _devtools_request(url, method)
    try:
        with urlopen(req, timeout=timeout) as resp:
            body = resp.read()
    except (TimeoutError, URLError) as exc:
        raise HttpClientError(str(exc)) from exc
    if not body:
        return None
    try:
        return json.loads(body.decode(errors="replace"))
    except json.JSONDecodeError:
        # /json/close answers with plain text.
        return body.decode(errors="replace")


@dataclass
class InfrastructureFailure(Exception):
    """The browser or its debugging session is gone; the run cannot continue."""

    action: str
    reason: str
    suggestion: str = "Check that Chromium is installed and can start (PERF_BROWSER_BINARY)"

    def __str__(self) -> str:
        return f"{self.action} failed: {self.reason}. Suggestion: {self.suggestion}"

    def to_dict(self) -> dict[str, Any]:
        return {"kind": "InfrastructureFailure", "action": self.action, "reason": self.reason, "suggestion": self.suggestion}
