"""
Interpret a StepSpec against the page: primary attempt first, then each
fallback in order, each bounded by a timeout.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..config import JourneyConfig
from ..http_client import HttpClientError, InfrastructureFailure
from ..models import ErrorInfo
from ..redaction import redact_url_brief, redacted_summary, scrub
from .actions import Action, Attempt, Click, Navigate, StepSpec, Submit, Type
from .base import ActionFailed, NavigationTimeout, ensure_navigable
from .dom import click_element, submit_form, type_into

logger = logging.getLogger("perf.journey.actions")


def _cause(failures: list[ActionFailed]) -> str | None:
    """NavigationTimeout when every failure was one, else None."""
    if failures and all(isinstance(f, NavigationTimeout) for f in failures):
        return NavigationTimeout.kind
    return None


@dataclass(frozen=True)
class ActionOutcome:
    ok: bool
    error: ErrorInfo | None = None
    attempt_index: int | None = None


class ActionExecutor:
    """Run a step's attempts until one succeeds.

    Action failures never escape: they come back as an ActionOutcome with an
    ErrorInfo. Only InfrastructureFailure (the browser is gone) is raised.
    """

    def __init__(
        self,
        page: Any,
        config: JourneyConfig,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.page = page
        self.config = config
        self._sleep = sleep
        self._secrets = tuple(s for s in (config.password,) if s)

    def _clean(self, text: str) -> str:
        return scrub(text, self._secrets)

    async def execute(self, spec: StepSpec) -> ActionOutcome:
        failures: list[ActionFailed] = []
        for index, attempt in enumerate(spec.attempts):
            try:
                await self._run_attempt(attempt)
            except InfrastructureFailure:
                raise
            except ActionFailed as exc:
                failures.append(exc)
                logger.info(
                    "attempt_failed step=%s attempt=%d/%d kind=%s reason=%s",
                    spec.name,
                    index + 1,
                    len(spec.attempts),
                    exc.kind,
                    self._clean(exc.reason),
                )
                continue

            if index > 0:
                logger.info("step_recovered step=%s attempt=%d via=%s", spec.name, index + 1, attempt.describe())
            await self._sleep(self.config.action_settle_seconds)
            error = None
            if failures:
                first = failures[0]
                error = ErrorInfo(
                    kind="ActionFailed",
                    step=spec.name,
                    detail=self._clean(f"primary failed ({first}); recovered via {attempt.describe()}"),
                    tried_fallbacks=index,
                    last_error=self._clean(str(failures[-1])),
                    recovered=True,
                    cause=_cause(failures[:1]),
                )
            return ActionOutcome(ok=True, error=error, attempt_index=index)

        last = failures[-1]
        cause = _cause(failures)
        logger.warning("step_failed step=%s cause=%s attempts=%d", spec.name, cause or "-", len(failures))
        return ActionOutcome(
            ok=False,
            error=ErrorInfo(
                kind="ActionFailed",
                step=spec.name,
                detail=self._clean(f"all {len(failures)} attempt(s) failed"),
                tried_fallbacks=len(failures) - 1,
                last_error=self._clean(str(last)),
                recovered=False,
                cause=cause,
            ),
        )

    async def _run_attempt(self, attempt: Attempt) -> None:
        try:
            if attempt.timeout is not None:
                await asyncio.wait_for(self._run_actions(attempt.actions), timeout=attempt.timeout)
            else:
                await self._run_actions(attempt.actions)
        except (ActionFailed, InfrastructureFailure):
            raise
        except asyncio.TimeoutError as exc:
            raise ActionFailed(
                action=attempt.describe(),
                reason=f"attempt timed out after {attempt.timeout:g}s",
            ) from exc
        except HttpClientError as exc:
            raise ActionFailed(action=attempt.describe(), reason=str(exc)) from exc
        except Exception as exc:
            raise ActionFailed(
                action=attempt.describe(),
                reason=f"{type(exc).__name__}: {exc}",
            ) from exc

    async def _run_actions(self, actions: tuple[Action, ...]) -> None:
        for action in actions:
            await self._perform(action)

    async def _perform(self, action: Action) -> None:
        if isinstance(action, Navigate):
            await self._navigate(action)
        elif isinstance(action, Click):
            await self._with_navigation(
                action,
                action.expect_navigation,
                lambda: click_element(self.page, action, self._timeout(action, self.config.click_timeout)),
            )
        elif isinstance(action, Type):
            shown = redacted_summary(action.value) if action.sensitive else repr(action.value)
            logger.debug("type selectors=%s value=%s", ",".join(action.selectors), shown)
            await type_into(self.page, action, self._timeout(action, self.config.click_timeout))
        elif isinstance(action, Submit):
            await self._with_navigation(
                action,
                action.expect_navigation,
                lambda: submit_form(self.page, action, self._timeout(action, self.config.click_timeout)),
            )
        else:
            raise ActionFailed(action=str(action), reason=f"unknown action type {type(action).__name__}")

    @staticmethod
    def _timeout(action: Action, default: float) -> float:
        return float(action.timeout) if action.timeout is not None else float(default)

    async def _navigate(self, action: Navigate) -> None:
        url = ensure_navigable(action.url)
        timeout = self._timeout(action, self.config.nav_timeout)
        logger.debug("navigate url=%s", redact_url_brief(url))
        if not await self.page.navigate(url, wait_load=True, timeout=timeout):
            raise NavigationTimeout(
                action=action.describe(),
                reason=f"page did not finish loading within {timeout:g}s",
            )

    async def _with_navigation(
        self,
        action: Action,
        expect_navigation: bool,
        perform: Callable[[], Awaitable[Any]],
    ) -> None:
        if expect_navigation:
            self.page.forget_load_events()
        await perform()
        if not expect_navigation:
            return
        timeout = self.config.nav_timeout
        if not await self.page.wait_load(timeout):
            raise NavigationTimeout(
                action=action.describe(),
                reason=f"expected page load did not complete within {timeout:g}s",
            )


__all__ = ["ActionExecutor", "ActionOutcome"]
