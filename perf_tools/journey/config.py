from __future__ import annotations

import os
import time
from dataclasses import dataclass, field
from pathlib import Path

DEFAULT_BINARY_CANDIDATES: list[str] = [
    # Prefer Chromium for predictable tracing categories.
    # IMPORTANT: Avoid snap versions - they ignore --user-data-dir!
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/local/bin/chromium",
    "/opt/chromium/chromium",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    "C:\\Program Files\\Chromium\\Application\\chrome.exe",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/opt/google/chrome/chrome",
    "C:\\Program Files\\Google\\Chrome\\Application\\chrome.exe",
    "C:\\Program Files (x86)\\Google\\Chrome\\Application\\chrome.exe",
    "/snap/bin/chromium",
]

# "-*" first, then the selective inclusions.
TRACE_CATEGORIES: tuple[str, ...] = (
    "-*",
    "blink.console",
    "blink.user_timing",
    "devtools.timeline",
    "disabled-by-default-devtools.screenshot",
    "disabled-by-default-devtools.timeline",
    "disabled-by-default-devtools.timeline.invalidationTracking",
    "disabled-by-default-devtools.timeline.frame",
    "disabled-by-default-devtools.timeline.stack",
    "disabled-by-default-v8.cpu_profiler",
    "disabled-by-default-v8.cpu_profiler.hires",
    "latencyInfo",
    "loading",
    "disabled-by-default-lighthouse",
    "v8.execute",
    "v8",
)


def expand_path(raw: str) -> str:
    return str(Path(raw).expanduser())


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() not in {"0", "false", "no", "off"}


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.environ.get(name) or default)
    except ValueError:
        return default


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.environ.get(name) or default)
    except ValueError:
        return default


def default_out_dir() -> str:
    return str(Path("perf-results") / time.strftime("%Y%m%d_%H%M%S"))


@dataclass(frozen=True)
class Thresholds:
    """Web Vitals "good" boundaries used to flag regressions."""

    lcp_ms: float = 2500.0
    cls: float = 0.1
    ttfb_ms: float = 600.0
    tbt_ms: float = 200.0
    large_resource_bytes: int = 200_000


@dataclass
class JourneyConfig:
    binary_path: str
    profile_path: str = ""
    cdp_port: int = 9222
    headless: bool = True
    extra_flags: list[str] = field(default_factory=list)
    out_dir: str = ""
    cdp_timeout: float = 10.0
    launch_timeout: float = 15.0
    click_timeout: float = 6.0
    nav_timeout: float = 10.0
    settle_ms: int = 2500
    action_settle_ms: int = 1000
    reset_every_step: bool = False
    trace_stop_timeout: float = 30.0
    username: str = "j2ee"
    password: str = "j2ee"
    category: str = "FISH"
    log_level: str = "INFO"
    categories: tuple[str, ...] = TRACE_CATEGORIES
    thresholds: Thresholds = field(default_factory=Thresholds)

    @classmethod
    def detect_binary(cls) -> str:
        env_path = os.environ.get("PERF_BROWSER_BINARY")
        if env_path:
            return expand_path(env_path)
        for candidate in DEFAULT_BINARY_CANDIDATES:
            path = Path(candidate)
            if path.exists() and os.access(str(path), os.X_OK):
                return str(path)
        # Last resort: rely on PATH lookup
        return "google-chrome"

    @classmethod
    def from_env(cls) -> JourneyConfig:
        flags_raw = os.environ.get("PERF_BROWSER_FLAGS", "")
        extra_flags = [flag.strip() for flag in flags_raw.split(",") if flag.strip()]
        profile = os.environ.get("PERF_BROWSER_PROFILE", "")
        return cls(
            binary_path=cls.detect_binary(),
            profile_path=expand_path(profile) if profile else "",
            cdp_port=_env_int("PERF_BROWSER_PORT", 9222),
            headless=_env_bool("PERF_HEADLESS", True),
            extra_flags=extra_flags,
            out_dir=os.environ.get("PERF_OUT_DIR") or default_out_dir(),
            cdp_timeout=_env_float("PERF_CDP_TIMEOUT", 10.0),
            click_timeout=_env_float("PERF_CLICK_TIMEOUT", 6.0),
            nav_timeout=_env_float("PERF_NAV_TIMEOUT", 10.0),
            settle_ms=max(0, _env_int("PERF_SETTLE_MS", 2500)),
            action_settle_ms=max(0, _env_int("PERF_ACTION_SETTLE_MS", 1000)),
            reset_every_step=_env_bool("PERF_RESET_EVERY_STEP", False),
            username=os.environ.get("PERF_USERNAME", "j2ee"),
            password=os.environ.get("PERF_PASSWORD", "j2ee"),
            category=(os.environ.get("PERF_CATEGORY") or "FISH").strip().upper(),
            log_level=(os.environ.get("PERF_LOG_LEVEL") or "INFO").strip().upper(),
        )

    @property
    def settle_seconds(self) -> float:
        return self.settle_ms / 1000.0

    @property
    def action_settle_seconds(self) -> float:
        return self.action_settle_ms / 1000.0
