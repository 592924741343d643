from __future__ import annotations

import asyncio
from typing import Any

from perf_tools.journey.http_client import HttpClientError
from perf_tools.journey.vitals import VITALS_SCRIPT_SOURCE, VitalsCollector


def test_script_exposes_reset_and_sample() -> None:
    assert "__perfJourney" in VITALS_SCRIPT_SOURCE
    assert "reset" in VITALS_SCRIPT_SOURCE
    assert "sample" in VITALS_SCRIPT_SOURCE
    for entry_type in ("largest-contentful-paint", "layout-shift", "longtask"):
        assert entry_type in VITALS_SCRIPT_SOURCE


def test_arm_installs_script_and_remembers_token(make_page) -> None:
    registered: list[str] = []

    class Page(make_page):
        async def add_script_on_new_document(self, source: str, *, key: str = "") -> str:
            registered.append(key)
            return "1"

    page = Page()
    collector = VitalsCollector(page)

    assert asyncio.run(collector.arm()) is True
    assert registered == ["vitals"]
    assert collector.token == page.token
    assert collector.armed_time_origin == page.time_origin


def test_sample_after_navigation_is_a_new_document(make_page) -> None:
    page = make_page()
    collector = VitalsCollector(page)

    async def _main():
        await collector.arm()
        same = await collector.sample()
        await page.navigate("https://shop.test/next")
        moved = await collector.sample()
        return same, moved

    same, moved = asyncio.run(_main())
    assert same.same_document is True
    assert moved.same_document is False
    assert moved.time_origin != same.time_origin
    assert moved.observes("layout-shift")


def test_page_errors_do_not_raise() -> None:
    class BrokenPage:
        async def add_script_on_new_document(self, source: str, *, key: str = "") -> str:
            return "1"

        async def eval_js(self, expression: str, **_: Any) -> Any:
            raise HttpClientError("JS evaluation failed: Execution context was destroyed")

    collector = VitalsCollector(BrokenPage())
    assert asyncio.run(collector.arm()) is False
    assert asyncio.run(collector.sample()) is None
    assert collector.token is None


def test_missing_observer_object_samples_none(make_page) -> None:
    class Blank(make_page):
        async def eval_js(self, expression: str, *, timeout: float | None = None) -> Any:
            return None

    assert asyncio.run(VitalsCollector(Blank()).sample()) is None
