"""The storefront journey and the runner that walks it.

Steps run strictly in order; each one is a single traced transaction and the
next starts only when it has finished. Outcomes never change the path: a
failed login still gets a category_browse step.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from typing import Any

from .artifacts import ArtifactStore
from .config import JourneyConfig
from .http_client import InfrastructureFailure
from .models import ErrorInfo, ScenarioReport, StepResult
from .redaction import redact_url, scrub
from .report import build_document
from .tools.actions import SUBMIT_SELECTORS, Attempt, Click, Navigate, StepSpec, Submit, Type
from .tools.base import resolve_url
from .tools.executor import ActionExecutor
from .trace_transaction import TraceTransaction

logger = logging.getLogger("perf.journey.scenario")

STEP_NAMES: tuple[str, ...] = (
    "home",
    "sign_in",
    "login",
    "category_browse",
    "product_view",
    "add_to_cart",
    "view_cart",
    "checkout",
    "logout",
)

USERNAME_FIELDS = ('input[name="username"]', 'input[id="username"]', 'input[name="userid"]')
PASSWORD_FIELDS = ('input[name="password"]', 'input[id="password"]')


def build_default_scenario(base_url: str, config: JourneyConfig) -> tuple[StepSpec, ...]:
    """Sign in, browse a category, buy one item, check out, sign out."""
    category = config.category.upper()
    credentials: tuple[Type, ...] = (
        Type(USERNAME_FIELDS, config.username),
        Type(PASSWORD_FIELDS, config.password, sensitive=True),
    )

    def url(path: str) -> str:
        return resolve_url(base_url, path)

    return (
        StepSpec("home", (Attempt((Navigate(base_url),)),), reset_to_blank_first=True),
        StepSpec(
            "sign_in",
            (
                Attempt((Click("Sign In"),)),
                Attempt((Navigate(url("/actions/Account.action?signonForm=")),), label="signon form url"),
            ),
        ),
        StepSpec(
            "login",
            (
                Attempt((*credentials, Click("Login", selectors=SUBMIT_SELECTORS))),
                Attempt((*credentials, Click("Sign In", selectors=SUBMIT_SELECTORS))),
                Attempt((*credentials, Click("Submit", selectors=("button",)))),
                Attempt((*credentials, Submit()), label="form submit"),
            ),
        ),
        StepSpec(
            "category_browse",
            (
                Attempt((Click(css=f'a[href*="categoryId={category}"]'),)),
                Attempt((Click(category.title()),)),
                Attempt((Navigate(url(f"/actions/Catalog.action?categoryId={category}")),), label="category url"),
            ),
        ),
        StepSpec(
            "product_view",
            (
                Attempt((Click(css='a[href*="productId="]'),)),
                Attempt((Click(css='a[href*="Product.action"]'),)),
                Attempt((Click(css='a[href*="ViewItem"]'),)),
            ),
        ),
        StepSpec(
            "add_to_cart",
            (
                Attempt((Click("Add to Cart", selectors=("a", "button", "input")),)),
                Attempt((Click(css='input[type="submit"][value*="Add"]'),)),
                Attempt((Click(css='a[href*="addItemToCart"]'),)),
            ),
        ),
        StepSpec(
            "view_cart",
            (
                Attempt((Click(css='a[href*="viewCart"]'),)),
                Attempt((Click("View Cart"),)),
                Attempt((Navigate(url("/actions/Cart.action?viewCart=")),), label="cart url"),
            ),
        ),
        # Stops at the order form; nothing is confirmed.
        StepSpec(
            "checkout",
            (
                Attempt((Click("Proceed to Checkout"),)),
                Attempt((Click("Proceed"),)),
                Attempt((Click(css='a[href*="newOrderForm"]'),)),
            ),
        ),
        StepSpec(
            "logout",
            (
                Attempt((Click("Sign Out"),)),
                Attempt((Click("Logout"),)),
                Attempt((Navigate(url("/actions/Account.action?signoff=")),), label="signoff url"),
            ),
        ),
    )


def _iso_now() -> str:
    return time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime())


class ScenarioRunner:
    """Walk a fixed list of steps against one page and persist the report."""

    def __init__(
        self,
        page: Any,
        config: JourneyConfig,
        store: ArtifactStore,
        *,
        steps: tuple[StepSpec, ...] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.page = page
        self.config = config
        self.store = store
        self.steps = steps
        self.executor = ActionExecutor(page, config, sleep=sleep)
        self.transaction = TraceTransaction(page, config, store, sleep=sleep)

    async def run(self, base_url: str) -> ScenarioReport:
        steps = self.steps if self.steps is not None else build_default_scenario(base_url, self.config)
        results: list[StepResult] = []
        try:
            for position, spec in enumerate(steps, start=1):
                logger.info("step_start step=%s position=%d/%d", spec.name, position, len(steps))
                results.append(await self._run_step(spec))
        except InfrastructureFailure as exc:
            logger.error("scenario_aborted step_count=%d action=%s reason=%s", len(results), exc.action, exc.reason)
            # Whatever was recorded before the browser went away is still reported.
            with suppress(InfrastructureFailure):
                self._write_report(base_url, results, aborted_reason=f"{exc.action}: {exc.reason}")
            raise

        report = self._write_report(base_url, results)
        logger.info(
            "scenario_done steps=%d failed=%d out=%s",
            len(results),
            sum(1 for r in results if not r.ok),
            self.store.base_dir,
        )
        return report

    async def _run_step(self, spec: StepSpec) -> StepResult:
        reset = spec.reset_to_blank_first or self.config.reset_every_step
        try:
            return await self.transaction.run_traced(spec.name, functools.partial(self.executor.execute, spec), reset)
        except InfrastructureFailure:
            raise
        except Exception as exc:
            logger.exception("step_crashed step=%s", spec.name)
            return StepResult(
                step_name=spec.name,
                reset_to_blank=reset,
                error=ErrorInfo(
                    kind="ActionFailed",
                    step=spec.name,
                    detail=scrub(f"{type(exc).__name__}: {exc}", (self.config.password,)),
                ),
            )

    def _write_report(self, base_url: str, results: list[StepResult], aborted_reason: str | None = None) -> ScenarioReport:
        report = ScenarioReport(
            target_url=redact_url(base_url),
            generated_at=_iso_now(),
            steps=tuple(results),
            aborted_reason=aborted_reason,
        )
        self.store.put_json("report.json", report.to_dict(), kind="report")
        document = build_document(report, self.config.thresholds, reset_every_step=self.config.reset_every_step)
        self.store.put_json("summary.json", document, kind="summary")
        return report


__all__ = ["STEP_NAMES", "ScenarioRunner", "build_default_scenario"]
