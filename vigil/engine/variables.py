"""Variable namespaces visible to conditions and actions."""

from __future__ import annotations

import threading
from collections.abc import Iterator, Mapping
from typing import Any


class GlobalVariables:
    """Process-wide variables, mutated by ``set`` / ``push`` actions.

    All access goes through a lock; readers get copies.
    """

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, name: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(name, default)

    def set(self, name: str, value: Any) -> None:
        with self._lock:
            self._values[name] = value

    def push(self, name: str, value: Any) -> None:
        """Append to a list variable, creating or wrapping it as needed."""
        with self._lock:
            current = self._values.get(name)
            if current is None:
                self._values[name] = [value]
            elif isinstance(current, list):
                self._values[name] = [*current, value]
            else:
                self._values[name] = [current, value]

    def snapshot(self) -> dict[str, Any]:
        with self._lock:
            return dict(self._values)


class VariableStore(Mapping[str, Any]):
    """Layered lookup for one occurrence: locals, then monitor vars, then globals.

    Globals are snapshotted when the store is created so a pipeline run sees
    a consistent view even while other monitors run ``set`` actions.
    """

    def __init__(
        self,
        globals_: Mapping[str, Any] | None = None,
        monitor: Mapping[str, Any] | None = None,
        local: Mapping[str, Any] | None = None,
    ) -> None:
        self._globals: dict[str, Any] = dict(globals_ or {})
        self._monitor: dict[str, Any] = dict(monitor or {})
        self._local: dict[str, Any] = dict(local or {})

    @classmethod
    def for_occurrence(
        cls,
        globals_: GlobalVariables,
        monitor_vars: Mapping[str, Any],
        local: Mapping[str, Any],
    ) -> VariableStore:
        return cls(globals_.snapshot(), monitor_vars, local)

    def __getitem__(self, name: str) -> Any:
        for scope in (self._local, self._monitor, self._globals):
            if name in scope:
                return scope[name]
        raise KeyError(name)

    def __iter__(self) -> Iterator[str]:
        return iter(self.as_dict())

    def __len__(self) -> int:
        return len(self.as_dict())

    def set_local(self, name: str, value: Any) -> None:
        self._local[name] = value

    def update_local(self, values: Mapping[str, Any]) -> None:
        self._local.update(values)

    @property
    def local(self) -> dict[str, Any]:
        return dict(self._local)

    def as_dict(self) -> dict[str, Any]:
        """Flattened view with inner scopes shadowing outer ones."""
        return {**self._globals, **self._monitor, **self._local}

    def as_env(self) -> dict[str, str]:
        """String-valued view for child-process environments."""
        env: dict[str, str] = {}
        for name, value in self.as_dict().items():
            if value is None:
                continue
            if isinstance(value, (list, tuple)):
                env[name] = " ".join(str(v) for v in value)
            else:
                env[name] = str(value)
        return env

    def copy(self) -> VariableStore:
        return VariableStore(self._globals, self._monitor, self._local)
