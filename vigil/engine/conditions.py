"""Condition checks and the priority-ordered pipeline that runs them."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

import structlog

from vigil.core.exceptions import EvaluationError
from vigil.engine.templating import ExpressionEvaluator, SimpleTemplates
from vigil.engine.types import (
    Condition,
    Cooldown,
    If,
    IgnoreLog,
    MatchLog,
    Monitor,
    Occurrence,
    Threshold,
    Unique,
)
from vigil.engine.variables import VariableStore
from vigil.state.cooldown import CooldownTracker
from vigil.state.unique_cache import UniqueCache
from vigil.state.window_counter import WindowCounter

logger = structlog.stdlib.get_logger()


@dataclass
class Verdict:
    """Outcome of a single condition."""

    passed: bool
    detail: str = ""
    captures: dict[str, Any] = field(default_factory=dict)


@dataclass
class PipelineResult:
    """Outcome of a whole pipeline run."""

    passed: bool
    variables: VariableStore
    failed_condition: str | None = None
    detail: str = ""


def threshold_key(monitor: str) -> str:
    return f"threshold:{monitor}"


# ── Individual checks ────────────────────────────────────────────


def check_cooldown(
    cooldowns: CooldownTracker, monitor: str, condition: Cooldown, now: float
) -> Verdict:
    """Pass if the monitor has not fired within the cooldown."""
    if cooldowns.check(monitor, condition.duration, now):
        return Verdict(passed=True)
    last = cooldowns.last_fired(monitor) or 0.0
    return Verdict(
        passed=False,
        detail=f"Fired {now - last:.1f}s ago, cooldown is {condition.duration:g}s",
    )


def check_match_log(condition: MatchLog, occurrence: Occurrence) -> Verdict:
    """Match the occurrence's line; named groups become variables.

    Occurrences without a log line pass untouched.
    """
    if not occurrence.has_line:
        return Verdict(passed=True)
    line = occurrence.line or ""

    captures: dict[str, Any] = {}
    matched = 0
    for pattern in condition.patterns:
        m = pattern.search(line)
        if m is None:
            if condition.match_all:
                return Verdict(passed=False, detail=f"Line does not match {pattern.pattern!r}")
            continue
        matched += 1
        captures.update({k: v for k, v in m.groupdict().items() if v is not None})

    if matched == 0:
        return Verdict(passed=False, detail="Line matches none of the patterns")
    return Verdict(passed=True, captures=captures)


def check_ignore_log(condition: IgnoreLog, occurrence: Occurrence) -> Verdict:
    """Fail if the occurrence's line matches the ignore pattern."""
    if not occurrence.has_line:
        return Verdict(passed=True)
    if condition.pattern.search(occurrence.line or "") is not None:
        return Verdict(passed=False, detail=f"Line matches ignored {condition.pattern.pattern!r}")
    return Verdict(passed=True)


def check_unique(
    cache: UniqueCache, monitor: str, condition: Unique, variables: VariableStore
) -> Verdict:
    """Pass only the first time a value of the variable is seen.

    Raises:
        EvaluationError: The variable is not defined for this occurrence.
    """
    if condition.varname not in variables:
        raise EvaluationError(f"Undefined variable: {condition.varname}")
    value = variables[condition.varname]
    if cache.seen_and_record(monitor, condition.varname, value):
        return Verdict(passed=True)
    return Verdict(passed=False, detail=f"{condition.varname}={value!r} already seen")


def check_if(
    evaluator: ExpressionEvaluator, condition: If, variables: VariableStore
) -> Verdict:
    """Delegate to the expression evaluator.

    Raises:
        EvaluationError: Propagated from the evaluator.
    """
    if evaluator.evaluate(condition.expr, variables):
        return Verdict(passed=True)
    return Verdict(passed=False, detail=f"Expression is false: {condition.expr}")


def check_threshold(
    windows: WindowCounter, monitor: str, condition: Threshold, now: float
) -> Verdict:
    """Count this joint pass of the earlier conditions; pass once *count* is reached."""
    key = threshold_key(monitor)
    windows.record(key, now)
    seen = windows.count_in_window(key, condition.window, now)
    if seen >= condition.count:
        return Verdict(passed=True)
    return Verdict(
        passed=False,
        detail=f"{seen}/{condition.count} within {condition.window:g}s",
    )


# ── Pipeline ─────────────────────────────────────────────────────


class ConditionPipeline:
    """Runs a monitor's conditions in priority order, stopping at the first failure.

    Usage::

        pipeline = ConditionPipeline(unique_cache, windows, cooldowns)
        result = pipeline.evaluate(monitor, occurrence, variables)
        if result.passed:
            ...  # result.variables now holds any match_log captures
    """

    def __init__(
        self,
        unique_cache: UniqueCache,
        windows: WindowCounter,
        cooldowns: CooldownTracker,
        evaluator: ExpressionEvaluator | None = None,
    ) -> None:
        self._unique = unique_cache
        self._windows = windows
        self._cooldowns = cooldowns
        self._evaluator = evaluator or SimpleTemplates()

    def evaluate(
        self,
        monitor: Monitor,
        occurrence: Occurrence,
        variables: VariableStore | None = None,
    ) -> PipelineResult:
        if variables is None:
            variables = VariableStore(monitor=monitor.variables, local=occurrence.variables)

        for condition in monitor.conditions:
            try:
                verdict = self._check(condition, monitor, occurrence, variables)
            except EvaluationError as exc:
                logger.warning(
                    "condition_evaluation_error",
                    monitor=monitor.name,
                    condition=condition.key,
                    error=str(exc),
                )
                return PipelineResult(
                    passed=False,
                    variables=variables,
                    failed_condition=condition.key,
                    detail=str(exc),
                )

            if not verdict.passed:
                return PipelineResult(
                    passed=False,
                    variables=variables,
                    failed_condition=condition.key,
                    detail=verdict.detail,
                )
            if verdict.captures:
                variables.update_local(verdict.captures)

        return PipelineResult(passed=True, variables=variables)

    def _check(
        self,
        condition: Condition,
        monitor: Monitor,
        occurrence: Occurrence,
        variables: VariableStore,
    ) -> Verdict:
        now = occurrence.timestamp
        if isinstance(condition, Cooldown):
            return check_cooldown(self._cooldowns, monitor.name, condition, now)
        if isinstance(condition, MatchLog):
            return check_match_log(condition, occurrence)
        if isinstance(condition, IgnoreLog):
            return check_ignore_log(condition, occurrence)
        if isinstance(condition, Unique):
            return check_unique(self._unique, monitor.name, condition, variables)
        if isinstance(condition, If):
            return check_if(self._evaluator, condition, variables)
        if isinstance(condition, Threshold):
            return check_threshold(self._windows, monitor.name, condition, now)
        raise TypeError(f"Unhandled condition type: {type(condition).__name__}")
