"""Keep credentials out of logs and artifacts.

Resource URLs land in metrics files and typed form values land in log lines;
both pass through here first.
"""

from __future__ import annotations

from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

_SENSITIVE_SUBSTRINGS = (
    "token",
    "secret",
    "password",
    "passwd",
    "pwd",
    "authorization",
    "cookie",
    "session",
    "jwt",
    "bearer",
    "api-key",
    "api_key",
    "apikey",
)

# Exact matches only, so "author" or "passport" stay readable.
_SENSITIVE_EXACT = {"auth", "pass", "key", "sig", "signature"}

REDACTED = "<redacted>"


def is_sensitive_key(key: str) -> bool:
    k = (key or "").strip().lower()
    if not k:
        return False
    if k in _SENSITIVE_EXACT:
        return True
    return any(s in k for s in _SENSITIVE_SUBSTRINGS)


def _redact_pairs(raw: str) -> tuple[str, bool]:
    pairs = parse_qsl(raw, keep_blank_values=True)
    redacted_any = False
    out: list[tuple[str, str]] = []
    for k, v in pairs:
        if v and is_sensitive_key(k):
            out.append((k, REDACTED))
            redacted_any = True
        else:
            out.append((k, v))
    return (urlencode(out, doseq=True), True) if redacted_any else (raw, False)


def redact_url(url: str) -> str:
    """Redact credential-looking URL parts without destroying normal queries.

    - Drops userinfo (`user:pass@host`).
    - Redacts values of sensitive query keys (token, jsessionid, api_key...).
    - Treats a query-like fragment the same way (OAuth implicit flow).

    Returns the input unchanged when there is nothing to redact.
    """
    if not isinstance(url, str) or not url or url.startswith("data:"):
        return url
    try:
        parts = urlsplit(url)
    except ValueError:
        return url

    changed = False
    netloc = parts.netloc
    path = parts.path
    query = parts.query
    fragment = parts.fragment

    if "@" in netloc:
        netloc = netloc.split("@", 1)[1]
        changed = True

    # Servlet containers put the session id in a path parameter.
    if ";jsessionid=" in path.lower():
        idx = path.lower().index(";jsessionid=")
        path = path[:idx] + ";jsessionid=" + REDACTED
        changed = True

    if query:
        query, hit = _redact_pairs(query)
        changed = changed or hit

    if fragment and "=" in fragment:
        fragment, hit = _redact_pairs(fragment)
        changed = changed or hit

    if not changed:
        return url
    return urlunsplit((parts.scheme, netloc, path, query, fragment))


def redact_url_brief(url: str) -> str:
    """Low-noise URL form for log lines (drops query and fragment; removes userinfo)."""
    if not isinstance(url, str) or not url:
        return url
    if url.startswith("data:"):
        return "data:..."
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    netloc = parts.netloc.split("@", 1)[1] if "@" in parts.netloc else parts.netloc
    path = parts.path.split(";", 1)[0]
    return urlunsplit((parts.scheme, netloc, path, "", ""))


def redacted_summary(value: object) -> str:
    if value is None:
        return REDACTED
    if isinstance(value, str):
        return f"<redacted str len={len(value)}>"
    return REDACTED


def scrub(text: str, secrets: tuple[str, ...] | list[str]) -> str:
    """Replace every occurrence of the given secret values in free text."""
    if not isinstance(text, str) or not text:
        return text
    for secret in secrets:
        if secret and len(secret) >= 3:
            text = text.replace(secret, REDACTED)
    return text


__all__ = ["REDACTED", "is_sensitive_key", "redact_url", "redact_url_brief", "redacted_summary", "scrub"]
