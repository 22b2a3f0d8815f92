"""Tests for ActionDispatcher and AsyncioSpawner."""

from __future__ import annotations

import asyncio
import sys
from collections.abc import Mapping, Sequence
from pathlib import Path

import pytest

from vigil.core.clock import ManualScheduler
from vigil.core.exceptions import ActionError
from vigil.engine.actions import ActionDispatcher, AsyncioSpawner, Spawner
from vigil.engine.types import ExecArgv, ExecShell, Monitor, Notify, PushVars, SetVars
from vigil.engine.variables import GlobalVariables, VariableStore
from vigil.notify.aggregator import NotificationAggregator
from vigil.notify.delivery import Deliverer
from vigil.notify.types import Delivery, NotifyConfig
from vigil.state.cooldown import CooldownTracker


# ── Helpers ─────────────────────────────────────────────────────


class FakeSpawner(Spawner):
    """Records spawn requests instead of starting processes."""

    def __init__(self, fail: bool = False) -> None:
        self.spawned: list[tuple[str | list[str], dict[str, str]]] = []
        self._fail = fail

    async def spawn(self, command: str | Sequence[str], env: Mapping[str, str]) -> None:
        if self._fail:
            raise ActionError("cannot spawn")
        self.spawned.append((command if isinstance(command, str) else list(command), dict(env)))


class ListDeliverer(Deliverer):
    def __init__(self) -> None:
        self.delivered: list[Delivery] = []

    async def deliver(self, config: NotifyConfig, delivery: Delivery) -> None:
        self.delivered.append(delivery)


def _dispatcher(
    spawner: FakeSpawner | None = None,
) -> tuple[ActionDispatcher, FakeSpawner, ListDeliverer, GlobalVariables, CooldownTracker]:
    spawner = spawner or FakeSpawner()
    deliverer = ListDeliverer()
    aggregator = NotificationAggregator([], deliverer, ManualScheduler())
    globals_ = GlobalVariables()
    cooldowns = CooldownTracker()
    dispatcher = ActionDispatcher(aggregator, spawner, cooldowns, globals_=globals_)
    return dispatcher, spawner, deliverer, globals_, cooldowns


# ── Exec ────────────────────────────────────────────────────────


class TestExec:
    async def test_shell_command_gets_variables_in_env(self) -> None:
        dispatcher, spawner, *_ = _dispatcher()
        monitor = Monitor(name="m", actions=(ExecShell(command="echo $ip {{ip}}"),))
        await dispatcher.run(monitor, VariableStore(local={"ip": "1.2.3.4"}))
        command, env = spawner.spawned[0]
        # The shell line is passed verbatim; the shell expands $ip.
        assert command == "echo $ip {{ip}}"
        assert env == {"ip": "1.2.3.4"}

    async def test_argv_elements_are_templated(self) -> None:
        dispatcher, spawner, *_ = _dispatcher()
        monitor = Monitor(name="m", actions=(ExecArgv(argv=("/usr/bin/logger", "seen {{ip}}")),))
        await dispatcher.run(monitor, VariableStore(local={"ip": "1.2.3.4"}))
        assert spawner.spawned[0][0] == ["/usr/bin/logger", "seen 1.2.3.4"]

    async def test_spawn_failure_counted_and_others_still_run(self) -> None:
        dispatcher, _, deliverer, *_ = _dispatcher(FakeSpawner(fail=True))
        monitor = Monitor(
            name="m",
            actions=(ExecShell(command="false"), Notify(title="after")),
        )
        failures = await dispatcher.run(monitor, VariableStore())
        assert failures == 1
        assert [d.title for d in deliverer.delivered] == ["after"]

    async def test_undefined_template_variable_counts_as_failure(self) -> None:
        dispatcher, spawner, *_ = _dispatcher()
        monitor = Monitor(name="m", actions=(ExecArgv(argv=("echo", "{{missing}}")),))
        assert await dispatcher.run(monitor, VariableStore()) == 1
        assert spawner.spawned == []


# ── Notify ──────────────────────────────────────────────────────


class TestNotify:
    async def test_title_and_body_rendered(self) -> None:
        dispatcher, _, deliverer, *_ = _dispatcher()
        monitor = Monitor(
            name="ssh",
            actions=(Notify(title="Login from {{ip}}", body="user {{user}}"),),
        )
        await dispatcher.run(monitor, VariableStore(local={"ip": "1.2.3.4", "user": "root"}))
        assert deliverer.delivered[0].title == "Login from 1.2.3.4"
        assert deliverer.delivered[0].body == "user root"

    async def test_id_defaults_to_monitor_name(self) -> None:
        dispatcher, _, deliverer, *_ = _dispatcher()
        await dispatcher.run(Monitor(name="ssh", actions=(Notify(title="t"),)), VariableStore())
        assert deliverer.delivered[0].notification_ids == ["ssh"]

    async def test_id_is_templated(self) -> None:
        dispatcher, _, deliverer, *_ = _dispatcher()
        monitor = Monitor(name="m", actions=(Notify(title="t", id="disk-{{mount}}"),))
        await dispatcher.run(monitor, VariableStore(local={"mount": "var"}))
        assert deliverer.delivered[0].notification_ids == ["disk-var"]


# ── set / push ──────────────────────────────────────────────────


class TestGlobals:
    async def test_set_and_push(self) -> None:
        dispatcher, _, _, globals_, _ = _dispatcher()
        monitor = Monitor(
            name="m",
            actions=(
                SetVars(values={"last_ip": "{{ip}}", "count": 3}),
                PushVars(values={"ips": "{{ip}}"}),
            ),
        )
        await dispatcher.run(monitor, VariableStore(local={"ip": "1.1.1.1"}))
        await dispatcher.run(monitor, VariableStore(local={"ip": "2.2.2.2"}))
        assert globals_.get("last_ip") == "2.2.2.2"
        assert globals_.get("count") == 3
        assert globals_.get("ips") == ["1.1.1.1", "2.2.2.2"]

    async def test_actions_run_in_declared_order(self) -> None:
        dispatcher, spawner, _, globals_, _ = _dispatcher()
        monitor = Monitor(
            name="m",
            actions=(SetVars(values={"state": "down"}), ExecShell(command="notify-send")),
        )
        await dispatcher.run(monitor, VariableStore.for_occurrence(globals_, {}, {}))
        assert globals_.get("state") == "down"
        # The store was snapshotted before the set ran.
        assert "state" not in spawner.spawned[0][1]


class TestCommit:
    def test_commit_records_cooldown(self) -> None:
        dispatcher, _, _, _, cooldowns = _dispatcher()
        dispatcher.commit(Monitor(name="m"), 123.0)
        assert cooldowns.last_fired("m") == 123.0


# ── AsyncioSpawner ──────────────────────────────────────────────


@pytest.mark.skipif(sys.platform == "win32", reason="POSIX shell required")
class TestAsyncioSpawner:
    async def test_shell_spawn_with_env(self, tmp_path: Path) -> None:
        out = tmp_path / "out.txt"
        spawner = AsyncioSpawner()
        await spawner.spawn(f'printf "%s" "$ip" > {out}', {"ip": "10.0.0.1"})
        for _ in range(200):
            if spawner.running_children == 0:
                break
            await asyncio.sleep(0.01)
        await spawner.close()
        assert out.read_text() == "10.0.0.1"

    async def test_argv_spawn(self, tmp_path: Path) -> None:
        target = tmp_path / "touched"
        spawner = AsyncioSpawner()
        await spawner.spawn(["touch", str(target)], {})
        for _ in range(200):
            if spawner.running_children == 0:
                break
            await asyncio.sleep(0.01)
        await spawner.close()
        assert target.exists()

    async def test_missing_binary_raises(self) -> None:
        spawner = AsyncioSpawner()
        with pytest.raises(ActionError):
            await spawner.spawn(["/nonexistent/binary-xyz"], {})
