"""Compile validated monitor configuration into immutable ``Monitor`` objects.

Everything that can be wrong with a monitor (regexes, durations, rates, cron
expressions, references to notify configs) is detected here, at load time.
"""

from __future__ import annotations

import re
from collections.abc import Collection
from typing import Any

from vigil.core.config import MonitorConfig, NotifyActionConfig, Settings
from vigil.core.durations import parse_duration, parse_rate, validate_cron
from vigil.core.exceptions import ConfigurationError
from vigil.engine.types import (
    Action,
    At,
    Condition,
    Cooldown,
    EventSpec,
    Every,
    ExecArgv,
    ExecShell,
    If,
    IgnoreLog,
    LogFile,
    MatchLog,
    Monitor,
    Notify,
    On,
    PushVars,
    Service,
    SetVars,
    Threshold,
    Unique,
    Watch,
)

# Config keys (YAML alias and pydantic field name) that produce actions.
_ACTION_KEYS: dict[str, str] = {
    "exec": "exec",
    "exec_": "exec",
    "notify": "notify",
    "set": "set",
    "set_": "set",
    "push": "push",
}


def build_monitors(settings: Settings) -> dict[str, Monitor]:
    """Compile every monitor in *settings*.

    Raises:
        ConfigurationError: Any monitor is invalid; the message names it.
    """
    if not settings.monitors:
        raise ConfigurationError("No monitors found")
    notify_names = set(settings.notify) | {"default"}
    return {
        name: build_monitor(name, config, notify_names)
        for name, config in settings.monitors.items()
    }


def build_monitor(
    name: str,
    config: MonitorConfig,
    notify_names: Collection[str] | None = None,
) -> Monitor:
    """Compile a single monitor definition.

    Args:
        name: Unique monitor name.
        config: The validated raw definition.
        notify_names: Known notify config names; ``None`` skips the check.
    """
    try:
        return Monitor(
            name=name,
            events=_build_events(config),
            conditions=_build_conditions(config),
            actions=_build_actions(name, config, notify_names),
            variables=dict(config.vars),
        )
    except ConfigurationError as exc:
        raise ConfigurationError(f"Monitor `{name}`: {exc}") from exc


# ── Events ───────────────────────────────────────────────────────


def _build_events(config: MonitorConfig) -> tuple[EventSpec, ...]:
    events: list[EventSpec] = []
    if config.service is not None:
        events.append(Service(name=config.service))
    if config.log is not None:
        events.append(LogFile(path=config.log))
    if config.watch is not None:
        globs = _as_list(config.watch)
        if not globs:
            raise ConfigurationError("Key `watch` must not be empty")
        events.append(Watch(globs=tuple(globs)))
    if config.every is not None:
        interval = parse_duration(config.every)
        if interval <= 0:
            raise ConfigurationError("Key `every` must be a positive duration")
        events.append(Every(interval=interval))
    if config.at is not None:
        events.append(At(cron=validate_cron(config.at)))
    if config.on is not None:
        signals = _as_list(config.on)
        if not signals:
            raise ConfigurationError("Key `on` must not be empty")
        events.append(On(signals=frozenset(signals)))

    if not events:
        raise ConfigurationError(
            "No event specified (expected one of service, log, watch, every, at, on)"
        )
    return tuple(events)


# ── Conditions ───────────────────────────────────────────────────


def _build_conditions(config: MonitorConfig) -> tuple[Condition, ...]:
    conditions: list[Condition] = []

    if config.cooldown is not None:
        conditions.append(Cooldown(duration=parse_duration(config.cooldown)))

    if config.match_log is not None:
        patterns = _as_list(config.match_log)
        if not patterns:
            raise ConfigurationError("Key `match_log` must not be empty")
        conditions.append(
            MatchLog(
                patterns=tuple(_compile(p, "match_log") for p in patterns),
                match_all=config.match_log_mode == "all",
            )
        )

    if config.ignore_log is not None:
        for pattern in _as_list(config.ignore_log):
            conditions.append(IgnoreLog(pattern=_compile(pattern, "ignore_log")))

    if config.unique is not None:
        if not config.unique.strip():
            raise ConfigurationError("Key `unique` must name a variable")
        conditions.append(Unique(varname=config.unique.strip()))

    if config.if_ is not None:
        if not config.if_.strip():
            raise ConfigurationError("Key `if` must not be empty")
        conditions.append(If(expr=config.if_))

    if config.threshold is not None:
        rate = parse_rate(config.threshold)
        conditions.append(Threshold(count=rate.count, window=rate.period))

    return tuple(conditions)


def _compile(pattern: str, key: str) -> re.Pattern[str]:
    try:
        # Multi-line so a chunk of several lines can still anchor per line.
        return re.compile(pattern, re.MULTILINE)
    except re.error as exc:
        raise ConfigurationError(f"Failed to parse {key} {pattern!r}: {exc}") from exc


# ── Actions ──────────────────────────────────────────────────────


def _build_actions(
    name: str,
    config: MonitorConfig,
    notify_names: Collection[str] | None,
) -> tuple[Action, ...]:
    builders = {
        "exec": lambda: _build_exec(config.exec_),
        "notify": lambda: _build_notify(name, config.notify, notify_names),
        "set": lambda: SetVars(values=dict(config.set_)) if config.set_ else None,
        "push": lambda: PushVars(values=dict(config.push)) if config.push else None,
    }

    ordered: list[str] = []
    for key in config.declared_keys:
        action_key = _ACTION_KEYS.get(key)
        if action_key is not None and action_key not in ordered:
            ordered.append(action_key)
    for action_key in builders:
        if action_key not in ordered:
            ordered.append(action_key)

    actions: list[Action] = []
    for action_key in ordered:
        action = builders[action_key]()
        if action is not None:
            actions.append(action)
    return tuple(actions)


def _build_exec(value: str | list[Any] | None) -> Action | None:
    if value is None:
        return None
    if isinstance(value, str):
        if not value.strip():
            raise ConfigurationError("Key `exec` must not be empty")
        return ExecShell(command=value)
    if not value:
        raise ConfigurationError("Key `exec` must not be empty")
    return ExecArgv(argv=tuple(str(arg) for arg in value))


def _build_notify(
    name: str,
    value: NotifyActionConfig | str | None,
    notify_names: Collection[str] | None,
) -> Action | None:
    if value is None:
        return None
    if isinstance(value, str):
        value = NotifyActionConfig(title=value)
    if notify_names is not None and value.type not in notify_names:
        raise ConfigurationError(f"Could not find notification config {value.type!r}")
    return Notify(
        title=value.title if value.title is not None else name,
        body=value.body,
        id=value.id,
        config=value.type,
    )


def _as_list(value: str | list[str]) -> list[str]:
    return [value] if isinstance(value, str) else list(value)
