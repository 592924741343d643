"""Turn the raw bytes of a trace capture into typed events.

Accepts both Chrome trace-event containers: the object form
``{"traceEvents": [...], "metadata": {...}}`` and the bare array form, which
may legally stop without its closing bracket. Decoding never raises for bytes
input; malformed buffers come back as an empty capture plus a ParseError.
"""

from __future__ import annotations

import json
import logging
import math
from typing import Any

from .models import ErrorInfo
from .trace_model import DecodeResult, RawTraceCapture, TraceEvent

logger = logging.getLogger("perf.journey.trace")


def _number(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    try:
        number = float(value)
    except OverflowError:
        return None
    return number if math.isfinite(number) else None


def _int_or_none(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return None


def _load(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        if not text.startswith("["):
            raise
    # Array form: the trailing "]" is optional, and a trailing comma may precede it.
    repaired = text.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1]
    return json.loads(repaired + "]")


def _to_event(raw: Any) -> TraceEvent | None:
    if not isinstance(raw, dict):
        return None
    name = raw.get("name")
    phase = raw.get("ph")
    ts = _number(raw.get("ts"))
    if not isinstance(name, str) or not isinstance(phase, str) or ts is None:
        return None
    args = raw.get("args")
    return TraceEvent(
        name=name,
        category=str(raw.get("cat") or ""),
        phase=phase,
        timestamp_micros=ts,
        duration_micros=_number(raw.get("dur")),
        args=args if isinstance(args, dict) else {},
        pid=_int_or_none(raw.get("pid")),
        tid=_int_or_none(raw.get("tid")),
    )


def decode_trace(
    data: bytes,
    *,
    step: str = "",
    started_at: str | None = None,
    stopped_at: str | None = None,
    categories: tuple[str, ...] = (),
) -> DecodeResult:
    """Decode a trace buffer into a time-ordered RawTraceCapture."""
    empty = RawTraceCapture(started_at=started_at, stopped_at=stopped_at, categories_enabled=tuple(categories))

    def failed(detail: str) -> DecodeResult:
        logger.warning("trace_decode_failed step=%s detail=%s", step or "-", detail)
        return DecodeResult(capture=empty, error=ErrorInfo(kind="ParseError", step=step, detail=detail))

    if not isinstance(data, (bytes, bytearray, memoryview)):
        return failed(f"expected bytes, got {type(data).__name__}")

    text = bytes(data).decode("utf-8", errors="replace").strip()
    if text.startswith("\ufeff"):
        text = text[1:].lstrip()
    if not text:
        return DecodeResult(capture=empty)

    try:
        doc = _load(text)
    except (json.JSONDecodeError, ValueError, RecursionError) as exc:
        return failed(f"malformed trace buffer: {exc}")

    metadata: dict[str, Any] = {}
    if isinstance(doc, dict):
        raw_events = doc.get("traceEvents")
        if raw_events is None:
            return failed("object form without a traceEvents array")
        if not isinstance(raw_events, list):
            return failed("traceEvents is not an array")
        if isinstance(doc.get("metadata"), dict):
            metadata = doc["metadata"]
    elif isinstance(doc, list):
        raw_events = doc
    else:
        return failed(f"unexpected top-level JSON {type(doc).__name__}")

    events: list[TraceEvent] = []
    skipped = 0
    for raw in raw_events:
        event = _to_event(raw)
        if event is None:
            skipped += 1
            continue
        events.append(event)
    # sorted() is stable, so equal timestamps keep their buffer order.
    events = sorted(events, key=lambda e: e.timestamp_micros)

    logger.debug("trace_decoded step=%s events=%d skipped=%d", step or "-", len(events), skipped)
    return DecodeResult(
        capture=RawTraceCapture(
            events=tuple(events),
            started_at=started_at,
            stopped_at=stopped_at,
            categories_enabled=tuple(categories),
            metadata=metadata,
        )
    )


__all__ = ["decode_trace"]
