"""ActionDispatcher — runs a monitor's actions once its conditions pass."""

from __future__ import annotations

import abc
import asyncio
import os
import time
from collections.abc import Mapping, Sequence
from typing import Any

import structlog

from vigil.core.exceptions import ActionError, EvaluationError
from vigil.engine.templating import SimpleTemplates, TemplateRenderer
from vigil.engine.types import (
    Action,
    ExecArgv,
    ExecShell,
    Monitor,
    Notify,
    PushVars,
    SetVars,
)
from vigil.engine.variables import GlobalVariables, VariableStore
from vigil.notify.aggregator import NotificationAggregator
from vigil.notify.types import Notification
from vigil.state.cooldown import CooldownTracker

logger = structlog.stdlib.get_logger()


# ── Process spawning ─────────────────────────────────────────────


class Spawner(abc.ABC):
    """Launches child processes without waiting for them."""

    @abc.abstractmethod
    async def spawn(self, command: str | Sequence[str], env: Mapping[str, str]) -> None:
        """Start *command* (shell line or argv) with *env* added to the environment.

        Raises:
            ActionError: The process could not be started.
        """

    async def close(self) -> None:
        """Stop tracking children."""


class AsyncioSpawner(Spawner):
    """Spawns via asyncio subprocesses and reaps children in the background."""

    def __init__(self) -> None:
        self._reapers: set[asyncio.Task[None]] = set()

    @property
    def running_children(self) -> int:
        return len(self._reapers)

    async def spawn(self, command: str | Sequence[str], env: Mapping[str, str]) -> None:
        full_env = {**os.environ, **env}
        try:
            if isinstance(command, str):
                proc = await asyncio.create_subprocess_shell(
                    command, env=full_env, stdin=asyncio.subprocess.DEVNULL
                )
            else:
                proc = await asyncio.create_subprocess_exec(
                    *command, env=full_env, stdin=asyncio.subprocess.DEVNULL
                )
        except OSError as exc:
            raise ActionError(f"Failed to spawn {command!r}: {exc}") from exc

        logger.info("process_spawned", pid=proc.pid, command=_describe(command))
        task = asyncio.create_task(self._reap(proc, command))
        self._reapers.add(task)
        task.add_done_callback(self._reapers.discard)

    async def _reap(self, proc: asyncio.subprocess.Process, command: str | Sequence[str]) -> None:
        returncode = await proc.wait()
        if returncode != 0:
            logger.warning(
                "process_exit_nonzero",
                pid=proc.pid,
                returncode=returncode,
                command=_describe(command),
            )

    async def close(self) -> None:
        for task in list(self._reapers):
            task.cancel()
        if self._reapers:
            await asyncio.gather(*self._reapers, return_exceptions=True)


def _describe(command: str | Sequence[str]) -> str:
    return command if isinstance(command, str) else " ".join(command)


# ── Dispatcher ───────────────────────────────────────────────────


class ActionDispatcher:
    """Executes actions for occurrences that passed their conditions.

    - ``commit`` records the firing for cooldowns; the engine calls it while
      still holding the monitor's lock, before any action runs.
    - ``run`` executes the actions in order. A failing action is logged and
      the rest still run; nothing raises out of ``run``.
    """

    def __init__(
        self,
        aggregator: NotificationAggregator,
        spawner: Spawner,
        cooldowns: CooldownTracker,
        globals_: GlobalVariables | None = None,
        renderer: TemplateRenderer | None = None,
    ) -> None:
        self._aggregator = aggregator
        self._spawner = spawner
        self._cooldowns = cooldowns
        self._globals = globals_ or GlobalVariables()
        self._renderer = renderer or SimpleTemplates()

    def commit(self, monitor: Monitor, now: float) -> None:
        self._cooldowns.record_fired(monitor.name, now)

    async def run(
        self,
        monitor: Monitor,
        variables: VariableStore,
        actions: Sequence[Action] | None = None,
        timestamp: float | None = None,
    ) -> int:
        """Run *actions* (default: the monitor's). Returns the number that failed."""
        now = timestamp if timestamp is not None else time.time()
        failures = 0
        for action in monitor.actions if actions is None else actions:
            try:
                await self._run_action(monitor, variables, action, now)
            except (ActionError, EvaluationError) as exc:
                failures += 1
                logger.warning(
                    "action_failed",
                    monitor=monitor.name,
                    action=type(action).__name__,
                    error=str(exc),
                )
            except Exception:
                failures += 1
                logger.exception(
                    "action_error",
                    monitor=monitor.name,
                    action=type(action).__name__,
                )
        return failures

    async def _run_action(
        self,
        monitor: Monitor,
        variables: VariableStore,
        action: Action,
        now: float,
    ) -> None:
        if isinstance(action, ExecShell):
            await self._spawner.spawn(action.command, variables.as_env())
        elif isinstance(action, ExecArgv):
            argv = [self._renderer.render(arg, variables) for arg in action.argv]
            await self._spawner.spawn(argv, variables.as_env())
        elif isinstance(action, Notify):
            await self._aggregator.submit(self._build_notification(monitor, variables, action, now))
        elif isinstance(action, SetVars):
            for name, value in action.values.items():
                self._globals.set(name, self._render_value(value, variables))
        elif isinstance(action, PushVars):
            for name, value in action.values.items():
                self._globals.push(name, self._render_value(value, variables))
        else:
            raise TypeError(f"Unhandled action type: {type(action).__name__}")

    def _build_notification(
        self,
        monitor: Monitor,
        variables: VariableStore,
        action: Notify,
        now: float,
    ) -> Notification:
        render = self._renderer.render
        return Notification(
            id=render(action.id, variables) if action.id else monitor.name,
            title=render(action.title, variables),
            body=render(action.body, variables),
            config=action.config,
            monitor=monitor.name,
            timestamp=now,
        )

    def _render_value(self, value: Any, variables: VariableStore) -> Any:
        if isinstance(value, str):
            return self._renderer.render(value, variables)
        return value
