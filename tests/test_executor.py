from __future__ import annotations

import asyncio
from dataclasses import replace

import pytest

from perf_tools.journey.http_client import HttpClientError, InfrastructureFailure
from perf_tools.journey.tools import ActionExecutor, Attempt, Click, Navigate, StepSpec, Submit, Type


def test_primary_attempt_succeeds_without_error(make_page, journey_config) -> None:
    page = make_page({"sign in": True})
    spec = StepSpec("sign_in", (Attempt((Click("Sign In"),)), Attempt((Navigate("https://shop.test/signon"),))))

    outcome = asyncio.run(ActionExecutor(page, journey_config).execute(spec))
    assert outcome.ok is True
    assert outcome.error is None
    assert outcome.attempt_index == 0
    assert not any(c.startswith("navigate:") for c in page.calls)


def test_fallback_success_is_recovered(make_page, journey_config) -> None:
    # The link exists but its click never loads a page.
    page = make_page({"sign in": False})
    spec = StepSpec(
        "sign_in",
        (
            Attempt((Click("Sign In"),)),
            Attempt((Navigate("https://shop.test/signon"),), label="signon url"),
        ),
    )

    outcome = asyncio.run(ActionExecutor(page, journey_config).execute(spec))
    assert outcome.ok is True
    assert outcome.attempt_index == 1
    assert outcome.error is not None
    assert outcome.error.recovered is True
    assert outcome.error.kind == "ActionFailed"
    assert outcome.error.cause == "NavigationTimeout"
    assert outcome.error.tried_fallbacks == 1
    assert "signon url" in outcome.error.detail
    assert page.calls[-1] == "navigate:https://shop.test/signon"


def test_exhausted_attempts_report_action_failed(make_page, journey_config) -> None:
    page = make_page({})
    spec = StepSpec("checkout", (Attempt((Click("Proceed to Checkout"),)), Attempt((Click("Proceed"),))))

    outcome = asyncio.run(ActionExecutor(page, journey_config).execute(spec))
    assert outcome.ok is False
    assert outcome.error is not None
    assert outcome.error.kind == "ActionFailed"
    assert outcome.error.recovered is False
    assert outcome.error.tried_fallbacks == 1
    assert outcome.error.cause is None
    assert "proceed" in (outcome.error.last_error or "").lower()


def test_exhausted_navigation_timeouts_are_action_failed_with_cause(make_page, journey_config) -> None:
    page = make_page({}, failing_urls=("https://shop.test/a", "https://shop.test/b"))
    spec = StepSpec("home", (Attempt((Navigate("https://shop.test/a"),)), Attempt((Navigate("https://shop.test/b"),))))

    outcome = asyncio.run(ActionExecutor(page, journey_config).execute(spec))
    assert outcome.ok is False
    assert outcome.error.kind == "ActionFailed"
    assert outcome.error.cause == "NavigationTimeout"
    assert outcome.error.to_dict()["cause"] == "NavigationTimeout"


def test_login_types_credentials_and_keeps_password_out_of_errors(make_page, journey_config) -> None:
    page = make_page({})
    credentials = (Type(("input[name=username]",), "j2ee"), Type(("input[name=password]",), "s3cret-pass", sensitive=True))
    spec = StepSpec("login", (Attempt((*credentials, Click("Login"))), Attempt((*credentials, Submit()))))
    config = replace(journey_config, password="s3cret-pass")

    outcome = asyncio.run(ActionExecutor(page, config).execute(spec))
    assert outcome.ok is True
    assert outcome.error.recovered is True
    assert page.typed == ["j2ee", "s3cret-pass", "j2ee", "s3cret-pass"]
    assert "s3cret-pass" not in outcome.error.detail
    assert "s3cret-pass" not in (outcome.error.last_error or "")


def test_cdp_errors_become_action_failures(make_page, journey_config) -> None:
    class BrokenPage(make_page):
        async def click(self, x: float, y: float) -> None:
            raise HttpClientError("Input.dispatchMouseEvent: target closed")

    page = BrokenPage({"view cart": True})
    spec = StepSpec("view_cart", (Attempt((Click("View Cart"),)),))

    outcome = asyncio.run(ActionExecutor(page, journey_config).execute(spec))
    assert outcome.ok is False
    assert "target closed" in (outcome.error.last_error or "")


def test_infrastructure_failure_propagates(make_page, journey_config) -> None:
    class DeadPage(make_page):
        async def navigate(self, url: str, wait_load: bool = True, timeout: float = 10.0) -> bool:
            raise InfrastructureFailure(action="cdp_send", reason="socket closed")

    spec = StepSpec("home", (Attempt((Navigate("https://shop.test/"),)), Attempt((Navigate("https://shop.test/x"),))))
    with pytest.raises(InfrastructureFailure):
        asyncio.run(ActionExecutor(DeadPage(), journey_config).execute(spec))


def test_attempt_timeout_bounds_slow_actions(make_page, journey_config) -> None:
    class SlowPage(make_page):
        async def navigate(self, url: str, wait_load: bool = True, timeout: float = 10.0) -> bool:
            await asyncio.sleep(5)
            return True

    spec = StepSpec(
        "home",
        (
            Attempt((Navigate("https://shop.test/"),), timeout=0.01),
        ),
    )
    outcome = asyncio.run(ActionExecutor(SlowPage(), journey_config).execute(spec))
    assert outcome.ok is False
    assert "timed out" in (outcome.error.last_error or "")


def test_settle_pause_follows_success_only(make_page, journey_config) -> None:
    pauses: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        pauses.append(seconds)

    config = replace(journey_config, action_settle_ms=1000)
    executor = ActionExecutor(make_page({"home": True}), config, sleep=fake_sleep)

    asyncio.run(executor.execute(StepSpec("a", (Attempt((Click("Home"),)),))))
    assert pauses == [1.0]
    asyncio.run(executor.execute(StepSpec("b", (Attempt((Click("Missing"),)),))))
    assert pauses == [1.0]


def test_non_http_navigation_target_is_rejected(make_page, journey_config) -> None:
    page = make_page({})
    outcome = asyncio.run(ActionExecutor(page, journey_config).execute(StepSpec("x", (Attempt((Navigate("file:///etc/passwd"),)),))))
    assert outcome.ok is False
    assert outcome.error.kind == "ActionFailed"
    assert page.calls == []


def test_step_spec_requires_an_attempt() -> None:
    with pytest.raises(ValueError):
        StepSpec("empty", ())


def test_malformed_url_falls_back_instead_of_raising(make_page, journey_config) -> None:
    page = make_page({})
    spec = StepSpec(
        "category_browse",
        (
            Attempt((Navigate("http://[shop.test/"),)),
            Attempt((Navigate("https://shop.test/ok"),), label="category url"),
        ),
    )

    outcome = asyncio.run(ActionExecutor(page, journey_config).execute(spec))
    assert outcome.ok is True
    assert outcome.attempt_index == 1
    assert outcome.error.kind == "ActionFailed"
    assert outcome.error.recovered is True
    assert page.calls == ["navigate:https://shop.test/ok"]


def test_unexpected_page_errors_become_action_failures(make_page, journey_config) -> None:
    class QuirkyPage(make_page):
        async def click(self, x: float, y: float) -> None:
            raise KeyError("bounds")

    page = QuirkyPage({"view cart": True})
    spec = StepSpec("view_cart", (Attempt((Click("View Cart"),)), Attempt((Navigate("https://shop.test/cart"),))))

    outcome = asyncio.run(ActionExecutor(page, journey_config).execute(spec))
    assert outcome.ok is True
    assert "KeyError" in outcome.error.detail


def test_every_attempt_crashing_is_reported_not_raised(make_page, journey_config) -> None:
    spec = StepSpec("home", (Attempt((Navigate("http://[a/"),)), Attempt((Navigate("http://[b/"),))))

    outcome = asyncio.run(ActionExecutor(make_page({}), journey_config).execute(spec))
    assert outcome.ok is False
    assert outcome.error.kind == "ActionFailed"
    assert outcome.error.tried_fallbacks == 1
    assert "http://[b/" in (outcome.error.last_error or "")
