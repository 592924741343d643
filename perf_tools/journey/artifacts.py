"""Artifact store for one journey run.

Every file lives directly under the run's output directory:
- `<NN>_<step>.trace.json`   raw trace buffer as the browser produced it
- `<NN>_<step>.metrics.json` serialized step result
- `<NN>_<step>.final.png`    last frame the trace recorded
- `report.json`, `summary.json`

Files are written once; a second write to the same name is refused.
"""

from __future__ import annotations

import json
import re
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .http_client import InfrastructureFailure

_NAME_RE = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]{0,127}$")


def _now_iso() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


def step_prefix(index: int, step_name: str) -> str:
    safe = re.sub(r"[^a-zA-Z0-9_-]+", "_", step_name or "step").strip("_") or "step"
    return f"{index:02d}_{safe}"[:100]


@dataclass(frozen=True)
class ArtifactRef:
    name: str
    kind: str
    mime_type: str
    bytes: int
    created_at: str
    path: str


class ArtifactStore:
    def __init__(self, base_dir: Path | str) -> None:
        self.base_dir = Path(base_dir)
        try:
            self.base_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise InfrastructureFailure(
                action="create_output_dir",
                reason=f"{self.base_dir}: {exc}",
                suggestion="Pass a writable --out directory (or PERF_OUT_DIR)",
            ) from exc

    def _validate_name(self, name: str) -> str:
        if not isinstance(name, str) or not _NAME_RE.match(name):
            raise ValueError(f"invalid artifact name: {name!r}")
        return name

    def path_for(self, name: str) -> Path:
        return self.base_dir / self._validate_name(name)

    def _write(self, name: str, data: bytes, *, kind: str, mime_type: str) -> ArtifactRef:
        path = self.path_for(name)
        try:
            # "xb": write-once, never clobber an earlier artifact.
            with open(path, "xb") as fh:
                fh.write(data)
        except FileExistsError:
            # A duplicate name is a caller bug, not an I/O problem.
            raise
        except OSError as exc:
            raise InfrastructureFailure(
                action="write_artifact",
                reason=f"{path}: {exc}",
                suggestion="Check free disk space and permissions of the output directory",
            ) from exc
        return ArtifactRef(
            name=name,
            kind=kind,
            mime_type=mime_type,
            bytes=len(data),
            created_at=_now_iso(),
            path=str(path),
        )

    def put_bytes(self, name: str, data: bytes, *, kind: str, mime_type: str = "application/octet-stream") -> ArtifactRef:
        return self._write(name, bytes(data), kind=kind, mime_type=mime_type)

    def put_json(self, name: str, obj: Any, *, kind: str) -> ArtifactRef:
        text = json.dumps(obj, ensure_ascii=False, indent=2)
        return self._write(name, text.encode("utf-8"), kind=kind, mime_type="application/json")

    def put_trace(self, prefix: str, data: bytes) -> ArtifactRef:
        return self.put_bytes(f"{prefix}.trace.json", data, kind="trace", mime_type="application/json")

    def put_metrics(self, prefix: str, obj: Any) -> ArtifactRef:
        return self.put_json(f"{prefix}.metrics.json", obj, kind="metrics")

    def put_png(self, prefix: str, data: bytes) -> ArtifactRef:
        return self.put_bytes(f"{prefix}.final.png", data, kind="screenshot", mime_type="image/png")

    def list(self) -> list[str]:
        return sorted(p.name for p in self.base_dir.iterdir() if p.is_file())


__all__ = ["ArtifactRef", "ArtifactStore", "step_prefix"]
