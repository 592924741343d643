"""
Base utilities for journey actions.

Provides:
- ActionFailed / NavigationTimeout: structured step-local errors
- ensure_navigable: URL check for scenario navigation targets
"""

from __future__ import annotations

import urllib.parse
from dataclasses import dataclass, field
from typing import Any, ClassVar


# Error Handling
@dataclass
class ActionFailed(Exception):
    """A UI action could not be completed on the page."""

    kind: ClassVar[str] = "ActionFailed"

    action: str
    reason: str
    suggestion: str = ""
    details: dict[str, Any] = field(default_factory=dict)

    def __str__(self) -> str:
        msg = f"{self.action} failed: {self.reason}"
        return f"{msg}. Suggestion: {self.suggestion}" if self.suggestion else msg

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": True,
            "kind": self.kind,
            "action": self.action,
            "reason": self.reason,
            "suggestion": self.suggestion,
            "details": self.details,
        }


@dataclass
class NavigationTimeout(ActionFailed):
    """An action that should have loaded a new page did not finish loading in time."""

    kind: ClassVar[str] = "NavigationTimeout"


# URL Validation
def ensure_navigable(url: str) -> str:
    """Allow http(s) and about: targets only; returns the url."""
    try:
        parsed = urllib.parse.urlparse(url)
    except ValueError as exc:
        raise ActionFailed(action="navigate", reason=f"Malformed navigation target {url!r}: {exc}") from exc
    if parsed.scheme == "about":
        return url
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ActionFailed(
            action="navigate",
            reason=f"Unsupported navigation target: {url!r}",
            suggestion="Use an absolute http(s) URL",
        )
    return url


def resolve_url(base_url: str, path: str) -> str:
    """Resolve a site-relative path against the journey's base URL."""
    return urllib.parse.urljoin(base_url, path)


__all__ = ["ActionFailed", "NavigationTimeout", "ensure_navigable", "resolve_url"]
