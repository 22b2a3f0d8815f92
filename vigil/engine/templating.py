"""Template rendering and ``if`` evaluation interfaces.

The engine only needs two things from a templating layer: render a string
against a variable mapping, and turn an ``if`` expression into a boolean.
``SimpleTemplates`` implements both for plain ``{{ name }}`` substitution;
richer implementations (function calls, filters) plug in through the same
interfaces.
"""

from __future__ import annotations

import abc
import re
from collections.abc import Mapping
from typing import Any

from vigil.core.exceptions import EvaluationError

_PLACEHOLDER_RE = re.compile(r"\{\{(.*?)\}\}", re.DOTALL)
_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_SINGLE_PLACEHOLDER_RE = re.compile(r"^\{\{([^{}]*)\}\}$")
_COMPARISON_RE = re.compile(r"^(.*?)(==|!=)(.*)$", re.DOTALL)
_QUOTED_RE = re.compile(r"""^(['"])(.*)\1$""", re.DOTALL)
_WORD_RE = re.compile(r"""^[^\s{}'"=!<>]+$""")

_FALSY = frozenset({"", "0", "false", "no", "off", "none", "null"})
_LITERALS = _FALSY | {"true"}


class TemplateRenderer(abc.ABC):
    @abc.abstractmethod
    def render(self, template: str, variables: Mapping[str, Any]) -> str:
        """Substitute variables into *template*.

        Raises:
            EvaluationError: A referenced variable is missing or the
                template cannot be evaluated.
        """


class ExpressionEvaluator(abc.ABC):
    @abc.abstractmethod
    def evaluate(self, expr: str, variables: Mapping[str, Any]) -> bool:
        """Evaluate an ``if`` expression.

        Raises:
            EvaluationError: The expression cannot be evaluated.
        """


class SimpleTemplates(TemplateRenderer, ExpressionEvaluator):
    """``{{ name }}`` substitution and a small ``if`` grammar.

    ``if`` accepts a single operand (``{{ name }}``, a bare variable name,
    or ``true``/``false``), which is true unless its text is falsy, or one
    ``==``/``!=`` comparison between a ``{{ name }}`` placeholder and a
    literal (bare word or quoted). Anything else raises ``EvaluationError``
    so the condition fails.
    """

    def render(self, template: str, variables: Mapping[str, Any]) -> str:
        def _substitute(match: re.Match[str]) -> str:
            return _to_text(_resolve(match.group(1).strip(), variables))

        return _PLACEHOLDER_RE.sub(_substitute, template)

    def evaluate(self, expr: str, variables: Mapping[str, Any]) -> bool:
        text = expr.strip()
        comparison = _COMPARISON_RE.match(text)
        if comparison is None:
            return _to_text(_single_operand(text, expr, variables)).strip().lower() not in _FALSY

        left, op, right = comparison.groups()
        left_value, left_is_var = _comparison_operand(left, expr, variables)
        right_value, right_is_var = _comparison_operand(right, expr, variables)
        if not (left_is_var or right_is_var):
            raise EvaluationError(f"Unsupported if expression: {expr}")
        equal = left_value == right_value
        return equal if op == "==" else not equal


def _resolve(name: str, variables: Mapping[str, Any]) -> Any:
    if not _NAME_RE.match(name):
        raise EvaluationError(f"Unsupported template expression: {{{{{name}}}}}")
    if name not in variables:
        raise EvaluationError(f"Undefined variable: {name}")
    return variables[name]


def _single_operand(text: str, expr: str, variables: Mapping[str, Any]) -> Any:
    placeholder = _SINGLE_PLACEHOLDER_RE.match(text)
    if placeholder is not None:
        return _resolve(placeholder.group(1).strip(), variables)
    if text.lower() in _LITERALS:
        return text
    # A bare ``if = "name"`` tests the variable itself.
    if _NAME_RE.match(text):
        return _resolve(text, variables)
    raise EvaluationError(f"Unsupported if expression: {expr}")


def _comparison_operand(
    text: str, expr: str, variables: Mapping[str, Any]
) -> tuple[str, bool]:
    """Return the operand's text and whether it came from a variable."""
    text = text.strip()
    placeholder = _SINGLE_PLACEHOLDER_RE.match(text)
    if placeholder is not None:
        return _to_text(_resolve(placeholder.group(1).strip(), variables)), True
    quoted = _QUOTED_RE.match(text)
    if quoted is not None:
        return quoted.group(2), False
    if _WORD_RE.match(text):
        return text, False
    raise EvaluationError(f"Unsupported if expression: {expr}")


def _to_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return " ".join(_to_text(v) for v in value)
    return str(value)
