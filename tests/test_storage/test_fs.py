"""Tests for atomic writes, directory layout and root discovery."""

from __future__ import annotations

import os
from pathlib import Path
from unittest.mock import patch

import pytest

from cork.storage.fs import (
    CORK_DIR,
    CorkRootError,
    _fsync_directory,
    atomic_write,
    ensure_cork_dirs,
    find_root,
)


class TestAtomicWrite:
    def test_writes_text_and_bytes(self, tmp_path: Path) -> None:
        atomic_write(tmp_path / "a.json", '{"wines": []}\n')
        atomic_write(tmp_path / "b.bin", b"\x00\x01")
        assert (tmp_path / "a.json").read_text() == '{"wines": []}\n'
        assert (tmp_path / "b.bin").read_bytes() == b"\x00\x01"

    def test_replaces_without_leftovers(self, tmp_path: Path) -> None:
        target = tmp_path / "local.json"
        target.write_text("old\n")
        atomic_write(target, "new\n")
        assert target.read_text() == "new\n"
        assert list(tmp_path.iterdir()) == [target]

    def test_parent_directory_must_exist(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError, match="Parent directory does not exist"):
            atomic_write(tmp_path / "missing" / "local.json", "x\n")

    def test_failed_replace_removes_temp_file(self, tmp_path: Path) -> None:
        target = tmp_path / "local.json"
        with patch("cork.storage.fs.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError, match="disk full"):
                atomic_write(target, "x\n")
        assert list(tmp_path.iterdir()) == []

    def test_handles_short_writes(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        target = tmp_path / "blob.bin"
        payload = b"0123456789"
        real_write = os.write
        calls = []

        def short_write(fd: int, data: bytes | memoryview) -> int:
            calls.append(len(data))
            return real_write(fd, bytes(data[: max(1, len(data) // 2)]))

        monkeypatch.setattr(os, "write", short_write)
        atomic_write(target, payload)

        assert target.read_bytes() == payload
        assert len(calls) >= 2

    def test_fsync_directory_ignores_oserror(self, tmp_path: Path) -> None:
        with patch("cork.storage.fs.os.open", side_effect=OSError("not supported")):
            _fsync_directory(tmp_path)


class TestLayout:
    def test_ensure_cork_dirs(self, tmp_path: Path) -> None:
        ensure_cork_dirs(tmp_path)
        ensure_cork_dirs(tmp_path)  # idempotent
        for sub in ("cache", "locks", "remote"):
            assert (tmp_path / CORK_DIR / sub).is_dir()


class TestFindRoot:
    def test_walks_up_from_nested_dir(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.delenv("CORK_ROOT", raising=False)
        ensure_cork_dirs(tmp_path)
        nested = tmp_path / "a" / "b"
        nested.mkdir(parents=True)
        assert find_root(nested) == tmp_path.resolve()

    def test_none_when_absent(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.delenv("CORK_ROOT", raising=False)
        assert find_root(tmp_path) is None

    def test_env_root_wins(self, tmp_path: Path, monkeypatch) -> None:
        ensure_cork_dirs(tmp_path)
        monkeypatch.setenv("CORK_ROOT", str(tmp_path))
        assert find_root(Path("/")) == tmp_path

    def test_env_root_without_cork_dir(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.setenv("CORK_ROOT", str(tmp_path))
        with pytest.raises(CorkRootError, match="no .cork/"):
            find_root()

    def test_empty_env_root(self, monkeypatch) -> None:
        monkeypatch.setenv("CORK_ROOT", "")
        with pytest.raises(CorkRootError, match="empty"):
            find_root()
