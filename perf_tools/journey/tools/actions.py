"""Declarative step strategies.

A step is a list of attempts (primary first, then fallbacks); an attempt is
an ordered list of primitive actions. The executor interprets them; nothing
here touches the page.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

LINK_SELECTORS: tuple[str, ...] = ("a", "button")
SUBMIT_SELECTORS: tuple[str, ...] = ('input[type="submit"]', "button")


@dataclass(frozen=True)
class Click:
    """Click the first element whose text (or value) contains `text`.

    With `css` set, the first element matching that selector is clicked and
    `text` (if any) only narrows the match.
    """

    text: str = ""
    selectors: tuple[str, ...] = LINK_SELECTORS
    css: str = ""
    expect_navigation: bool = True
    timeout: float | None = None

    kind = "click"

    def describe(self) -> str:
        target = self.css or ",".join(self.selectors)
        return f"click({self.text!r} in {target})" if self.text else f"click({target})"


@dataclass(frozen=True)
class Navigate:
    url: str
    timeout: float | None = None

    kind = "navigate"

    def describe(self) -> str:
        return f"navigate({self.url})"


@dataclass(frozen=True)
class Type:
    """Focus the first matching field, clear it, insert `value`."""

    selectors: tuple[str, ...]
    value: str
    sensitive: bool = False
    timeout: float | None = None

    kind = "type"

    def describe(self) -> str:
        return f"type({','.join(self.selectors)})"


@dataclass(frozen=True)
class Submit:
    """Submit a form directly (requestSubmit when available)."""

    form_selector: str = "form"
    expect_navigation: bool = True
    timeout: float | None = None

    kind = "submit"

    def describe(self) -> str:
        return f"submit({self.form_selector})"


Action = Union[Click, Navigate, Type, Submit]


@dataclass(frozen=True)
class Attempt:
    actions: tuple[Action, ...]
    label: str = ""
    timeout: float | None = None

    def describe(self) -> str:
        return self.label or " -> ".join(a.describe() for a in self.actions)


@dataclass(frozen=True)
class StepSpec:
    name: str
    attempts: tuple[Attempt, ...]
    reset_to_blank_first: bool = False

    def __post_init__(self) -> None:
        if not self.attempts:
            raise ValueError(f"step {self.name!r} needs at least one attempt")


__all__ = [
    "LINK_SELECTORS",
    "SUBMIT_SELECTORS",
    "Action",
    "Attempt",
    "Click",
    "Navigate",
    "StepSpec",
    "Submit",
    "Type",
]
