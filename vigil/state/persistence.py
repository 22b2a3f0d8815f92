"""Crash-consistent file helpers for durable monitor state.

Two shapes are used:

- ``JsonStateFile``: a whole-document snapshot replaced by atomic rename,
  so readers see either the old or the new document, never a torn one.
- ``AppendLog``: newline-delimited JSON records appended one at a time; a
  torn final line from a crash is skipped on load.
"""

from __future__ import annotations

import hashlib
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any

import structlog

from vigil.core.exceptions import PersistenceError

logger = structlog.stdlib.get_logger()

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


def safe_filename(name: str) -> str:
    """Map a monitor name to a file name that cannot escape its directory.

    Names made only of safe characters are kept as they are. Any other name
    is cleaned and suffixed with ``+`` and a digest of the raw name; ``+`` is
    never kept from a raw name, so two monitors never share a file.
    """
    cleaned = _UNSAFE_CHARS.sub("_", name)
    if cleaned == name and name not in ("", ".", ".."):
        return name
    digest = hashlib.sha1(name.encode("utf-8")).hexdigest()[:10]
    return f"{cleaned or '_'}+{digest}"


class JsonStateFile:
    """A JSON document persisted with write-to-temp + ``os.replace``."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> dict[str, Any]:
        """Return the stored document, or ``{}`` if none exists.

        Raises:
            PersistenceError: The file exists but cannot be read or decoded.
        """
        if not self._path.exists():
            return {}
        try:
            with open(self._path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, ValueError) as exc:
            raise PersistenceError(f"Failed to read {self._path}: {exc}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"{self._path} does not contain a JSON object")
        return data

    def save(self, data: dict[str, Any]) -> None:
        """Atomically replace the stored document.

        Raises:
            PersistenceError: The document could not be written.
        """
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(data, f, separators=(",", ":"))
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"Failed to write {self._path}: {exc}") from exc


class AppendLog:
    """Newline-delimited JSON records, appended and fsynced one at a time."""

    def __init__(self, path: Path) -> None:
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def read(self) -> list[dict[str, Any]]:
        """Return every intact record in file order.

        Raises:
            PersistenceError: The file exists but cannot be read.
        """
        if not self._path.exists():
            return []
        try:
            with open(self._path, encoding="utf-8") as f:
                lines = f.read().split("\n")
        except (OSError, UnicodeDecodeError) as exc:
            raise PersistenceError(f"Failed to read {self._path}: {exc}") from exc

        records: list[dict[str, Any]] = []
        for lineno, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except ValueError:
                logger.warning(
                    "state_record_skipped",
                    path=str(self._path),
                    line=lineno,
                )
                continue
            if isinstance(record, dict):
                records.append(record)
        return records

    def append(self, record: dict[str, Any]) -> None:
        """Append one record durably.

        Raises:
            PersistenceError: The record could not be written.
        """
        line = json.dumps(record, separators=(",", ":")) + "\n"
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with open(self._path, "a", encoding="utf-8") as f:
                # A previous crash may have left a line without its newline.
                if f.tell() > 0 and not self._ends_with_newline():
                    f.write("\n")
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as exc:
            raise PersistenceError(f"Failed to append to {self._path}: {exc}") from exc

    def rewrite(self, records: list[dict[str, Any]]) -> None:
        """Replace the whole log atomically (used when clearing entries)."""
        body = "".join(json.dumps(r, separators=(",", ":")) + "\n" for r in records)
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(body)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise PersistenceError(f"Failed to rewrite {self._path}: {exc}") from exc

    def _ends_with_newline(self) -> bool:
        with open(self._path, "rb") as f:
            f.seek(-1, os.SEEK_END)
            return f.read(1) == b"\n"
