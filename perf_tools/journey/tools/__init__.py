"""
Journey actions organized by concern.

- base: structured action errors, URL helpers
- actions: declarative step strategies (Click, Navigate, Type, Submit)
- dom: in-page lookup and the primitives built on it
- executor: fallback-chain interpreter
"""

from .actions import Action, Attempt, Click, Navigate, StepSpec, Submit, Type
from .base import ActionFailed, NavigationTimeout, ensure_navigable, resolve_url
from .executor import ActionExecutor, ActionOutcome

__all__ = [
    "Action",
    "ActionExecutor",
    "ActionFailed",
    "ActionOutcome",
    "Attempt",
    "Click",
    "Navigate",
    "NavigationTimeout",
    "StepSpec",
    "Submit",
    "Type",
    "ensure_navigable",
    "resolve_url",
]
