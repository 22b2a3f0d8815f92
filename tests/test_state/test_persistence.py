"""Tests for the state file helpers — atomic snapshots, torn-line recovery."""

from __future__ import annotations

from pathlib import Path

import pytest

from vigil.core.exceptions import PersistenceError
from vigil.state.persistence import AppendLog, JsonStateFile, safe_filename


class TestSafeFilename:
    def test_plain_name_unchanged(self) -> None:
        assert safe_filename("ssh-login_1.x") == "ssh-login_1.x"

    def test_path_separators_replaced(self) -> None:
        out = safe_filename("../etc/passwd")
        assert out.startswith(".._etc_passwd+")
        assert "/" not in out

    @pytest.mark.parametrize("name", ["", ".", ".."])
    def test_reserved_names_suffixed(self, name: str) -> None:
        out = safe_filename(name)
        assert out not in ("", ".", "..")
        assert "+" in out

    def test_cleaned_names_do_not_collide(self) -> None:
        names = ["ssh login", "ssh_login", "ssh/login", "ssh:login"]
        assert len({safe_filename(n) for n in names}) == len(names)
        assert safe_filename("ssh_login") == "ssh_login"

    def test_stable_across_calls(self) -> None:
        assert safe_filename("web/api") == safe_filename("web/api")


class TestJsonStateFile:
    def test_missing_file_loads_empty(self, tmp_path: Path) -> None:
        assert JsonStateFile(tmp_path / "none.json").load() == {}

    def test_save_then_load(self, tmp_path: Path) -> None:
        state = JsonStateFile(tmp_path / "sub" / "state.json")
        state.save({"a": [1.0, 2.0]})
        assert state.load() == {"a": [1.0, 2.0]}

    def test_save_leaves_no_temp_files(self, tmp_path: Path) -> None:
        state = JsonStateFile(tmp_path / "state.json")
        state.save({"a": 1})
        state.save({"a": 2})
        assert [p.name for p in tmp_path.iterdir()] == ["state.json"]

    def test_corrupt_file_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("{not json")
        with pytest.raises(PersistenceError):
            JsonStateFile(path).load()

    def test_non_object_raises(self, tmp_path: Path) -> None:
        path = tmp_path / "state.json"
        path.write_text("[1, 2]")
        with pytest.raises(PersistenceError):
            JsonStateFile(path).load()


class TestAppendLog:
    def test_append_and_read(self, tmp_path: Path) -> None:
        log = AppendLog(tmp_path / "log.jsonl")
        log.append({"n": 1})
        log.append({"n": 2})
        assert log.read() == [{"n": 1}, {"n": 2}]

    def test_missing_file_reads_empty(self, tmp_path: Path) -> None:
        assert AppendLog(tmp_path / "log.jsonl").read() == []

    def test_torn_final_line_skipped(self, tmp_path: Path) -> None:
        path = tmp_path / "log.jsonl"
        path.write_text('{"n":1}\n{"n":2}\n{"n":')
        assert AppendLog(path).read() == [{"n": 1}, {"n": 2}]

    def test_append_after_torn_line_starts_fresh_line(self, tmp_path: Path) -> None:
        path = tmp_path / "log.jsonl"
        path.write_text('{"n":1}\n{"n":')
        log = AppendLog(path)
        log.append({"n": 3})
        assert log.read() == [{"n": 1}, {"n": 3}]

    def test_non_object_records_ignored(self, tmp_path: Path) -> None:
        path = tmp_path / "log.jsonl"
        path.write_text('{"n":1}\n[1,2]\n"x"\n')
        assert AppendLog(path).read() == [{"n": 1}]

    def test_rewrite_replaces_contents(self, tmp_path: Path) -> None:
        log = AppendLog(tmp_path / "log.jsonl")
        log.append({"n": 1})
        log.rewrite([{"n": 9}])
        assert log.read() == [{"n": 9}]
