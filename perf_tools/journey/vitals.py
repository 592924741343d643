from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any

from .http_client import HttpClientError

logger = logging.getLogger("perf.journey.vitals")

VITALS_SCRIPT_VERSION = "1"


# NOTE: This script is self-contained and idempotent.
# It installs PerformanceObservers once per document and accumulates:
# - largest-contentful-paint candidates
# - layout shifts (value, startTime, hadRecentInput)
# - long tasks
# - event-timing entries that belong to an interaction (INP)
# - timestamps of discrete user input (pointerdown/keydown)
#
# It exposes `globalThis.__perfJourney` with:
# - reset(token): clear accumulators and remember where resource timing stood
# - sample(): everything observed since the last reset (or since the document
#   started, when the document is newer than the reset)
VITALS_SCRIPT_SOURCE = r"""
(() => {
  const VERSION = "1";
  const g = globalThis;
  if (g.__perfJourney && g.__perfJourney.__version === VERSION) {
    return { ok: true, already: true, version: VERSION };
  }

  const MAX = 500;
  const state = {
    token: null,
    resourceMark: 0,
    lcp: [],
    shifts: [],
    longtasks: [],
    interactions: [],
    inputs: [],
    observers: [],
  };

  function push(arr, entry) {
    arr.push(entry);
    if (arr.length > MAX) arr.splice(0, arr.length - MAX);
  }

  function observe(type, onEntry, extra) {
    try {
      const po = new PerformanceObserver((list) => {
        for (const e of list.getEntries()) {
          if (e) onEntry(e);
        }
      });
      po.observe(Object.assign({ type, buffered: true }, extra || {}));
      state.observers.push(type);
    } catch (_e) {
      // entry type not supported
    }
  }

  try {
    if (performance.setResourceTimingBufferSize) performance.setResourceTimingBufferSize(2000);
  } catch (_e) {
    // ignore
  }

  observe("largest-contentful-paint", (e) =>
    push(state.lcp, {
      startTime: e.startTime,
      renderTime: e.renderTime || 0,
      loadTime: e.loadTime || 0,
      size: e.size || 0,
      url: e.url || "",
    }),
  );
  observe("layout-shift", (e) =>
    push(state.shifts, { value: e.value || 0, startTime: e.startTime, hadRecentInput: !!e.hadRecentInput }),
  );
  observe("longtask", (e) => push(state.longtasks, { startTime: e.startTime, duration: e.duration }));
  observe(
    "event",
    (e) => {
      if (!e.interactionId) return;
      push(state.interactions, {
        name: e.name,
        startTime: e.startTime,
        duration: e.duration,
        interactionId: e.interactionId,
      });
    },
    { durationThreshold: 16 },
  );

  for (const type of ["pointerdown", "keydown"]) {
    try {
      g.addEventListener(type, () => push(state.inputs, performance.now()), { capture: true, passive: true });
    } catch (_e) {
      // ignore
    }
  }

  function navigation() {
    try {
      const nav = performance.getEntriesByType("navigation")[0];
      if (!nav) return null;
      return {
        type: nav.type,
        name: nav.name,
        startTime: nav.startTime,
        redirectStart: nav.redirectStart,
        redirectEnd: nav.redirectEnd,
        domainLookupStart: nav.domainLookupStart,
        domainLookupEnd: nav.domainLookupEnd,
        connectStart: nav.connectStart,
        connectEnd: nav.connectEnd,
        requestStart: nav.requestStart,
        responseStart: nav.responseStart,
        responseEnd: nav.responseEnd,
        domInteractive: nav.domInteractive,
        domComplete: nav.domComplete,
        domContentLoadedEventStart: nav.domContentLoadedEventStart,
        domContentLoadedEventEnd: nav.domContentLoadedEventEnd,
        loadEventStart: nav.loadEventStart,
        loadEventEnd: nav.loadEventEnd,
        transferSize: nav.transferSize,
        decodedBodySize: nav.decodedBodySize,
        nextHopProtocol: nav.nextHopProtocol || "",
      };
    } catch (_e) {
      return null;
    }
  }

  function paint() {
    const out = {};
    try {
      for (const p of performance.getEntriesByType("paint") || []) {
        if (p && p.name) out[p.name] = p.startTime;
      }
    } catch (_e) {
      // ignore
    }
    return out;
  }

  function resources() {
    let entries = [];
    try {
      entries = performance.getEntriesByType("resource") || [];
    } catch (_e) {
      entries = [];
    }
    return entries.slice(state.resourceMark).map((r) => ({
      name: r.name,
      initiatorType: r.initiatorType || "other",
      transferSize: r.transferSize || 0,
      decodedBodySize: r.decodedBodySize || 0,
      duration: r.duration || 0,
      startTime: r.startTime,
      responseEnd: r.responseEnd,
      nextHopProtocol: r.nextHopProtocol || "",
      responseStatus: r.responseStatus || 0,
    }));
  }

  g.__perfJourney = {
    __version: VERSION,
    reset(token) {
      state.token = token || null;
      state.lcp.length = 0;
      state.shifts.length = 0;
      state.longtasks.length = 0;
      state.interactions.length = 0;
      state.inputs.length = 0;
      try {
        state.resourceMark = performance.getEntriesByType("resource").length;
      } catch (_e) {
        state.resourceMark = 0;
      }
      return { token: state.token, timeOrigin: performance.timeOrigin, href: String(location.href) };
    },
    sample() {
      return {
        version: VERSION,
        token: state.token,
        timeOrigin: performance.timeOrigin,
        now: performance.now(),
        href: String(location.href),
        observers: state.observers.slice(),
        navigation: navigation(),
        paint: paint(),
        lcp: state.lcp.slice(),
        shifts: state.shifts.slice(),
        longtasks: state.longtasks.slice(),
        interactions: state.interactions.slice(),
        inputs: state.inputs.slice(),
        resources: resources(),
      };
    },
  };
  return { ok: true, already: false, version: VERSION };
})()
"""


def _float(value: Any) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _dicts(value: Any) -> tuple[dict[str, Any], ...]:
    if not isinstance(value, list):
        return ()
    return tuple(v for v in value if isinstance(v, dict))


@dataclass(frozen=True)
class LiveSnapshot:
    """What the in-page observers saw for one step.

    All times are milliseconds relative to the document's time origin.
    `same_document` is True when the page the step ended on is the one that
    was armed, i.e. the step did not navigate.
    """

    same_document: bool
    time_origin: float | None = None
    href: str = ""
    observers: tuple[str, ...] = ()
    navigation: dict[str, Any] | None = None
    paint: dict[str, float] = field(default_factory=dict)
    lcp: tuple[dict[str, Any], ...] = ()
    shifts: tuple[dict[str, Any], ...] = ()
    long_tasks: tuple[dict[str, Any], ...] = ()
    interactions: tuple[dict[str, Any], ...] = ()
    inputs: tuple[float, ...] = ()
    resources: tuple[dict[str, Any], ...] = ()

    @classmethod
    def from_payload(cls, payload: dict[str, Any], *, armed_token: str | None) -> LiveSnapshot:
        token = payload.get("token")
        nav = payload.get("navigation")
        paint = payload.get("paint") if isinstance(payload.get("paint"), dict) else {}
        inputs = payload.get("inputs") if isinstance(payload.get("inputs"), list) else []
        observers = payload.get("observers") if isinstance(payload.get("observers"), list) else []
        return cls(
            same_document=armed_token is not None and token == armed_token,
            time_origin=_float(payload.get("timeOrigin")),
            href=str(payload.get("href") or ""),
            observers=tuple(str(o) for o in observers),
            navigation=nav if isinstance(nav, dict) else None,
            paint={str(k): float(v) for k, v in paint.items() if _float(v) is not None},
            lcp=_dicts(payload.get("lcp")),
            shifts=_dicts(payload.get("shifts")),
            long_tasks=_dicts(payload.get("longtasks")),
            interactions=_dicts(payload.get("interactions")),
            inputs=tuple(float(t) for t in inputs if _float(t) is not None),
            resources=_dicts(payload.get("resources")),
        )

    def observes(self, entry_type: str) -> bool:
        return entry_type in self.observers


class VitalsCollector:
    """Per-transaction handle on the in-page observers.

    `arm()` resets the accumulators under a fresh token; `sample()` reads
    them back. Neither raises for page-level failures; a lost browser
    connection still propagates as InfrastructureFailure.
    """

    def __init__(self, page: Any) -> None:
        self.page = page
        self.token: str | None = None
        self.armed_time_origin: float | None = None

    async def install(self) -> bool:
        try:
            await self.page.add_script_on_new_document(VITALS_SCRIPT_SOURCE, key="vitals")
            await self.page.eval_js(VITALS_SCRIPT_SOURCE)
            return True
        except HttpClientError as exc:
            logger.warning("vitals_install_failed error=%s", exc)
            return False

    async def arm(self) -> bool:
        if not await self.install():
            return False
        token = uuid.uuid4().hex
        try:
            info = await self.page.eval_js(f"globalThis.__perfJourney && globalThis.__perfJourney.reset({token!r})")
        except HttpClientError as exc:
            logger.warning("vitals_arm_failed error=%s", exc)
            return False
        if not isinstance(info, dict):
            return False
        self.token = token
        self.armed_time_origin = _float(info.get("timeOrigin"))
        return True

    async def sample(self) -> LiveSnapshot | None:
        try:
            payload = await self.page.eval_js("globalThis.__perfJourney ? globalThis.__perfJourney.sample() : null")
        except HttpClientError as exc:
            logger.warning("vitals_sample_failed error=%s", exc)
            return None
        if not isinstance(payload, dict):
            return None
        return LiveSnapshot.from_payload(payload, armed_token=self.token)


__all__ = ["LiveSnapshot", "VITALS_SCRIPT_SOURCE", "VITALS_SCRIPT_VERSION", "VitalsCollector"]
