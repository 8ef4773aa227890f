"""Sandboxed rendering for transactional email bodies."""

from __future__ import annotations

from typing import Any, Mapping

from jinja2 import StrictUndefined
from jinja2.sandbox import ImmutableSandboxedEnvironment

_EMAIL_FILTERS = ("e", "escape", "lower", "trim", "urlencode")
_EMAIL_TESTS = ("defined", "none")


class _EmailSandbox(ImmutableSandboxedEnvironment):
    # Email templates only interpolate strings: no attribute access, no calls.
    def is_safe_attribute(self, obj, attr, value) -> bool:
        return False

    def is_safe_callable(self, obj) -> bool:
        return False


def _build_env() -> _EmailSandbox:
    env = _EmailSandbox(autoescape=True, undefined=StrictUndefined)
    env.globals.clear()
    env.filters = {name: env.filters[name] for name in _EMAIL_FILTERS}
    env.tests = {name: env.tests[name] for name in _EMAIL_TESTS}
    return env


_ENV = _build_env()


def _as_text(value: Any) -> str:
    return "" if value is None else str(value)


def render_email(template: str, context: Mapping[str, Any]) -> str:
    """Render an HTML body. Every context value is escaped text; a missing name raises."""
    values = {str(key): _as_text(value) for key, value in context.items()}
    return _ENV.from_string(template).render(values)
