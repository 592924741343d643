from __future__ import annotations

import contextlib
import shutil
import socket
import subprocess
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from urllib.error import URLError
from urllib.request import urlopen

from .config import JourneyConfig, expand_path


@dataclass
class LaunchResult:
    command: list[str]
    started: bool
    message: str
    log_path: str | None = None
    log_tail: str | None = None


def _tail_text(path: str | None, max_chars: int = 4000) -> str | None:
    if not path:
        return None
    try:
        p = Path(path)
        if not p.exists():
            return None
        raw = p.read_text(encoding="utf-8", errors="replace")
        return raw if len(raw) <= max_chars else raw[-max_chars:]
    except OSError:
        return None


class BrowserLauncher:
    """Owns one Chromium process with a remote-debugging port."""

    def __init__(self, config: JourneyConfig) -> None:
        self.config = config
        self.process: subprocess.Popen | None = None
        self._temp_profile: str | None = None

    @property
    def endpoint(self) -> str:
        return f"http://127.0.0.1:{self.config.cdp_port}"

    def cdp_ready(self, timeout: float = 0.4) -> bool:
        """Return True if the CDP HTTP endpoint responds."""
        try:
            with urlopen(f"{self.endpoint}/json/version", timeout=timeout) as resp:
                return resp.status == 200
        except (OSError, TimeoutError, URLError):
            return False

    def _port_available(self, timeout: float = 0.2) -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(timeout)
            try:
                return sock.connect_ex(("127.0.0.1", self.config.cdp_port)) != 0
            except OSError:
                return False

    @staticmethod
    def find_free_port() -> int:
        with contextlib.closing(socket.socket(socket.AF_INET, socket.SOCK_STREAM)) as s:
            s.bind(("127.0.0.1", 0))
            return s.getsockname()[1]

    def _profile_dir(self) -> str:
        if self.config.profile_path:
            return expand_path(self.config.profile_path)
        if self._temp_profile is None:
            # Isolated throwaway profile: no cache or cookies carried between runs.
            self._temp_profile = tempfile.mkdtemp(prefix="journey-perf-profile-")
        return self._temp_profile

    def _build_common_flags(self) -> list[str]:
        flags = [
            f"--remote-debugging-port={self.config.cdp_port}",
            f"--user-data-dir={self._profile_dir()}",
            "--remote-allow-origins=*",
            "--no-first-run",
            "--no-default-browser-check",
            "--disable-extensions",
            "--enable-precise-memory-info",
            "--window-size=1280,800",
        ]
        if self.config.headless:
            flags.append("--headless=new")
        return flags

    def build_launch_command(self) -> list[str]:
        return [self.config.binary_path, *self._build_common_flags(), *self.config.extra_flags, "about:blank"]

    def ensure_running(self) -> LaunchResult:
        if self.cdp_ready():
            return LaunchResult([], False, "Chrome already listening on CDP port")

        if not self._port_available():
            # Port busy but not answering CDP: take a fresh port instead of fighting over it.
            self.config.cdp_port = self.find_free_port()

        cmd = self.build_launch_command()
        log_path: str | None = None
        try:
            if self.config.headless:
                self.process = subprocess.Popen(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
            else:
                log_path = str(Path(tempfile.gettempdir()) / f"journey_chrome_{int(time.time() * 1000)}.log")
                with open(log_path, "ab", buffering=0) as log_fh:
                    self.process = subprocess.Popen(
                        cmd,
                        stdout=log_fh,
                        stderr=log_fh,
                        stdin=subprocess.DEVNULL,
                        start_new_session=True,
                    )
        except OSError as exc:
            return LaunchResult(cmd, False, str(exc), log_path=log_path, log_tail=_tail_text(log_path))

        deadline = time.time() + self.config.launch_timeout
        while time.time() < deadline:
            if self.cdp_ready():
                return LaunchResult(cmd, True, "Chrome launched", log_path=log_path)
            if self.process is not None and self.process.poll() is not None:
                return LaunchResult(
                    cmd,
                    False,
                    f"Chrome exited early with code {self.process.returncode}",
                    log_path=log_path,
                    log_tail=_tail_text(log_path),
                )
            time.sleep(0.1)
        return LaunchResult(cmd, False, "Chrome launch timed out", log_path=log_path, log_tail=_tail_text(log_path))

    def stop(self, *, timeout: float = 2.0) -> bool:
        """Best-effort stop of the launcher-owned Chrome process."""
        proc = self.process
        stopped = False
        if proc is not None and proc.poll() is None:
            with contextlib.suppress(Exception):
                proc.terminate()
            deadline = time.time() + max(0.1, float(timeout))
            while time.time() < deadline and proc.poll() is None:
                time.sleep(0.05)
            if proc.poll() is None:
                # Escalate to kill.
                with contextlib.suppress(Exception):
                    proc.kill()
            stopped = True
        self.process = None
        if self._temp_profile is not None:
            shutil.rmtree(self._temp_profile, ignore_errors=True)
            self._temp_profile = None
        return stopped
