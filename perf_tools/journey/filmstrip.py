"""Final-frame extraction from the trace's screenshot stream."""

from __future__ import annotations

import base64
import logging
from io import BytesIO

from PIL import Image

from .trace_model import RawTraceCapture

logger = logging.getLogger("perf.journey.filmstrip")

MAX_WIDTH = 640


def last_frame_b64(capture: RawTraceCapture) -> str | None:
    """Base64 JPEG of the last `Screenshot` event, if the capture has one."""
    for ev in reversed(capture.events):
        if ev.name != "Screenshot":
            continue
        snapshot = ev.args.get("snapshot")
        if isinstance(snapshot, str) and snapshot:
            return snapshot
    return None


def frame_to_png(data_b64: str, max_width: int = MAX_WIDTH) -> bytes | None:
    """Decode a JPEG frame and re-encode it as a (downscaled) PNG."""
    try:
        raw = base64.b64decode(data_b64, validate=False)
        with Image.open(BytesIO(raw)) as img:
            img = img.convert("RGB")
            if img.width > max_width:
                height = max(1, round(img.height * max_width / img.width))
                img = img.resize((max_width, height), Image.Resampling.LANCZOS)
            out = BytesIO()
            img.save(out, format="PNG", optimize=True)
            return out.getvalue()
    except (OSError, ValueError) as exc:
        logger.debug("frame_decode_failed error=%s", exc)
        return None


def final_frame_png(capture: RawTraceCapture | None) -> bytes | None:
    if capture is None:
        return None
    frame = last_frame_b64(capture)
    return frame_to_png(frame) if frame else None


__all__ = ["MAX_WIDTH", "final_frame_png", "frame_to_png", "last_frame_b64"]
