"""Tests for condition checks and the priority-ordered pipeline."""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from vigil.core.exceptions import EvaluationError
from vigil.engine.conditions import ConditionPipeline, threshold_key
from vigil.engine.templating import ExpressionEvaluator
from vigil.engine.types import (
    Cooldown,
    EventKind,
    If,
    IgnoreLog,
    MatchLog,
    Monitor,
    Occurrence,
    Threshold,
    Unique,
)
from vigil.engine.variables import VariableStore
from vigil.state import CooldownTracker, UniqueCache, WindowCounter


# ── Helpers ─────────────────────────────────────────────────────


class RecordingEvaluator(ExpressionEvaluator):
    """Evaluator that logs each call and returns a fixed answer."""

    def __init__(self, result: bool = True, error: bool = False) -> None:
        self.calls: list[str] = []
        self._result = result
        self._error = error

    def evaluate(self, expr: str, variables: Mapping[str, Any]) -> bool:
        self.calls.append(expr)
        if self._error:
            raise EvaluationError("boom")
        return self._result


def _pipeline(evaluator: ExpressionEvaluator | None = None) -> tuple[ConditionPipeline, UniqueCache, WindowCounter, CooldownTracker]:
    unique, windows, cooldowns = UniqueCache(), WindowCounter(), CooldownTracker()
    return ConditionPipeline(unique, windows, cooldowns, evaluator=evaluator), unique, windows, cooldowns


def _line(text: str, ts: float = 1000.0, monitor: str = "m") -> Occurrence:
    return Occurrence(monitor=monitor, event=EventKind.LOG, timestamp=ts, line=text)


def _tick(ts: float = 1000.0, monitor: str = "m", **variables: Any) -> Occurrence:
    return Occurrence(monitor=monitor, event=EventKind.EVERY, timestamp=ts, variables=variables)


# ── Ordering ────────────────────────────────────────────────────


class TestPriorityOrder:
    def test_conditions_sorted_regardless_of_declaration(self) -> None:
        monitor = Monitor(
            name="m",
            conditions=(
                Threshold(count=3, window=60),
                If(expr="x"),
                Unique(varname="ip"),
                IgnoreLog(pattern=re.compile("debug")),
                MatchLog(patterns=(re.compile("x"),)),
                Cooldown(duration=10),
            ),
        )
        assert [c.key for c in monitor.conditions] == [
            "cooldown", "match_log", "ignore_log", "unique", "if", "threshold",
        ]

    def test_ignore_log_ties_keep_declaration_order(self) -> None:
        a, b = IgnoreLog(pattern=re.compile("a")), IgnoreLog(pattern=re.compile("b"))
        monitor = Monitor(name="m", conditions=(b, Cooldown(duration=1), a))
        assert monitor.conditions == (Cooldown(duration=1), b, a)

    def test_stops_at_first_failure(self) -> None:
        evaluator = RecordingEvaluator()
        pipeline, _, windows, cooldowns = _pipeline(evaluator)
        cooldowns.record_fired("m", 999.0)
        monitor = Monitor(
            name="m",
            conditions=(If(expr="x"), Cooldown(duration=60), Threshold(count=1, window=60)),
        )
        result = pipeline.evaluate(monitor, _tick())
        assert not result.passed
        assert result.failed_condition == "cooldown"
        assert evaluator.calls == []
        assert windows.count_in_window(threshold_key("m"), 60, 1000.0) == 0

    def test_no_conditions_passes(self) -> None:
        pipeline, *_ = _pipeline()
        assert pipeline.evaluate(Monitor(name="m"), _tick()).passed


# ── Cooldown ────────────────────────────────────────────────────


class TestCooldown:
    def test_blocks_within_duration(self) -> None:
        pipeline, _, _, cooldowns = _pipeline()
        monitor = Monitor(name="m", conditions=(Cooldown(duration=60),))
        assert pipeline.evaluate(monitor, _tick(ts=1000.0)).passed
        cooldowns.record_fired("m", 1000.0)
        assert not pipeline.evaluate(monitor, _tick(ts=1030.0)).passed
        assert pipeline.evaluate(monitor, _tick(ts=1060.0)).passed

    def test_evaluation_does_not_record(self) -> None:
        pipeline, _, _, cooldowns = _pipeline()
        monitor = Monitor(name="m", conditions=(Cooldown(duration=60),))
        pipeline.evaluate(monitor, _tick())
        assert cooldowns.last_fired("m") is None


# ── match_log / ignore_log ──────────────────────────────────────


class TestMatchLog:
    def test_named_groups_become_variables(self) -> None:
        pipeline, *_ = _pipeline()
        monitor = Monitor(
            name="m",
            conditions=(MatchLog(patterns=(re.compile(r"from (?P<ip>\S+) port (?P<port>\d+)"),)),),
        )
        result = pipeline.evaluate(monitor, _line("Accepted key from 10.0.0.1 port 22"))
        assert result.passed
        assert result.variables["ip"] == "10.0.0.1"
        assert result.variables["port"] == "22"

    def test_non_matching_line_fails(self) -> None:
        pipeline, *_ = _pipeline()
        monitor = Monitor(name="m", conditions=(MatchLog(patterns=(re.compile("error"),)),))
        result = pipeline.evaluate(monitor, _line("all good"))
        assert not result.passed
        assert result.failed_condition == "match_log"

    def test_match_all_requires_every_pattern(self) -> None:
        pipeline, *_ = _pipeline()
        cond = MatchLog(patterns=(re.compile("a"), re.compile("b")), match_all=True)
        monitor = Monitor(name="m", conditions=(cond,))
        assert pipeline.evaluate(monitor, _line("a b")).passed
        assert not pipeline.evaluate(monitor, _line("a only")).passed

    def test_match_any(self) -> None:
        pipeline, *_ = _pipeline()
        cond = MatchLog(
            patterns=(re.compile("(?P<x>a)"), re.compile("(?P<y>b)")), match_all=False
        )
        monitor = Monitor(name="m", conditions=(cond,))
        result = pipeline.evaluate(monitor, _line("b"))
        assert result.passed
        assert result.variables["y"] == "b"
        assert "x" not in result.variables
        assert not pipeline.evaluate(monitor, _line("c")).passed

    def test_auto_passes_without_line(self) -> None:
        pipeline, *_ = _pipeline()
        monitor = Monitor(name="m", conditions=(MatchLog(patterns=(re.compile("never"),)),))
        assert pipeline.evaluate(monitor, _tick()).passed

    def test_ignore_log(self) -> None:
        pipeline, *_ = _pipeline()
        monitor = Monitor(
            name="m",
            conditions=(
                MatchLog(patterns=(re.compile("login"),)),
                IgnoreLog(pattern=re.compile("from 127\\.0\\.0\\.1")),
            ),
        )
        assert pipeline.evaluate(monitor, _line("login from 10.0.0.1")).passed
        result = pipeline.evaluate(monitor, _line("login from 127.0.0.1"))
        assert not result.passed
        assert result.failed_condition == "ignore_log"

    def test_ignore_log_auto_passes_without_line(self) -> None:
        pipeline, *_ = _pipeline()
        monitor = Monitor(name="m", conditions=(IgnoreLog(pattern=re.compile(".*")),))
        assert pipeline.evaluate(monitor, _tick()).passed


# ── unique ──────────────────────────────────────────────────────


class TestUnique:
    def test_first_value_passes_once(self) -> None:
        pipeline, *_ = _pipeline()
        monitor = Monitor(
            name="m",
            conditions=(
                MatchLog(patterns=(re.compile(r"from (?P<ip>\S+)"),)),
                Unique(varname="ip"),
            ),
        )
        assert pipeline.evaluate(monitor, _line("from 1.1.1.1")).passed
        assert not pipeline.evaluate(monitor, _line("from 1.1.1.1")).passed
        assert pipeline.evaluate(monitor, _line("from 2.2.2.2")).passed

    def test_not_recorded_when_earlier_condition_fails(self) -> None:
        pipeline, unique, *_ = _pipeline()
        monitor = Monitor(
            name="m",
            conditions=(IgnoreLog(pattern=re.compile("skip")), Unique(varname="line")),
        )
        pipeline.evaluate(monitor, _line("skip me"), VariableStore(local={"line": "skip me"}))
        assert not unique.contains("m", "line", "skip me")

    def test_undefined_variable_fails_with_error(self) -> None:
        pipeline, *_ = _pipeline()
        monitor = Monitor(name="m", conditions=(Unique(varname="ip"),))
        result = pipeline.evaluate(monitor, _tick())
        assert not result.passed
        assert result.failed_condition == "unique"
        assert "Undefined variable" in result.detail

    def test_reads_monitor_variables(self) -> None:
        pipeline, *_ = _pipeline()
        monitor = Monitor(name="m", conditions=(Unique(varname="v"),), variables={"v": "x"})
        assert pipeline.evaluate(monitor, _tick()).passed
        assert not pipeline.evaluate(monitor, _tick()).passed


# ── if ──────────────────────────────────────────────────────────


class TestIf:
    def test_uses_evaluator(self) -> None:
        pipeline, *_ = _pipeline(RecordingEvaluator(result=False))
        monitor = Monitor(name="m", conditions=(If(expr="{{ up }}"),))
        result = pipeline.evaluate(monitor, _tick())
        assert not result.passed
        assert result.failed_condition == "if"

    def test_evaluation_error_fails_condition(self) -> None:
        pipeline, *_ = _pipeline(RecordingEvaluator(error=True))
        monitor = Monitor(name="m", conditions=(If(expr="x"),))
        result = pipeline.evaluate(monitor, _tick())
        assert not result.passed
        assert result.detail == "boom"

    def test_default_evaluator_sees_occurrence_variables(self) -> None:
        pipeline, *_ = _pipeline()
        monitor = Monitor(name="m", conditions=(If(expr="{{ healthy }}"),))
        assert pipeline.evaluate(monitor, _tick(healthy="yes")).passed
        assert not pipeline.evaluate(monitor, _tick(healthy="no")).passed


# ── threshold ───────────────────────────────────────────────────


class TestThreshold:
    def test_passes_on_nth_occurrence_in_window(self) -> None:
        pipeline, *_ = _pipeline()
        monitor = Monitor(name="m", conditions=(Threshold(count=3, window=60),))
        results = [pipeline.evaluate(monitor, _tick(ts=t)).passed for t in (0.0, 10.0, 20.0, 30.0)]
        assert results == [False, False, True, True]

    def test_sliding_window_resets(self) -> None:
        pipeline, *_ = _pipeline()
        monitor = Monitor(name="m", conditions=(Threshold(count=3, window=60),))
        assert not pipeline.evaluate(monitor, _tick(ts=0.0)).passed
        assert not pipeline.evaluate(monitor, _tick(ts=10.0)).passed
        # Both earlier occurrences have left the window.
        assert not pipeline.evaluate(monitor, _tick(ts=100.0)).passed
        assert not pipeline.evaluate(monitor, _tick(ts=110.0)).passed
        assert pipeline.evaluate(monitor, _tick(ts=120.0)).passed

    def test_counts_only_joint_passes_of_earlier_conditions(self) -> None:
        pipeline, _, windows, _ = _pipeline()
        monitor = Monitor(
            name="m",
            conditions=(
                MatchLog(patterns=(re.compile("fail"),)),
                Threshold(count=2, window=60),
            ),
        )
        assert not pipeline.evaluate(monitor, _line("fail", ts=0.0)).passed
        assert not pipeline.evaluate(monitor, _line("ok", ts=1.0)).passed
        assert windows.count_in_window(threshold_key("m"), 60, 1.0) == 1
        assert pipeline.evaluate(monitor, _line("fail", ts=2.0)).passed
