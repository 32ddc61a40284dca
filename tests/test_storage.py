"""
Tests for taohua.storage — atomic writes and startup cleanup.

Covers:
- atomic_write_bytes content, permissions and parent creation
- failure during rename leaves the old file intact and no temp behind
- read_json / read_bytes error mapping
- remove_orphaned_temps
"""

from __future__ import annotations

import os
import stat
import sys
from pathlib import Path

import pytest

from taohua.errors import CorruptRecordError, StorageIOError
from taohua.storage import (
    TMP_PREFIX,
    TMP_SUFFIX,
    atomic_write_bytes,
    atomic_write_json,
    read_bytes,
    read_json,
    remove_orphaned_temps,
    unlink_if_exists,
)


def _temps(directory: Path) -> list[Path]:
    return list(directory.rglob(f"{TMP_PREFIX}*{TMP_SUFFIX}"))


# ---------------------------------------------------------------------------
# atomic_write_bytes
# ---------------------------------------------------------------------------

class TestAtomicWrite:
    def test_writes_content(self, tmp_path: Path) -> None:
        target = tmp_path / "record.json"
        atomic_write_bytes(target, b"hello")
        assert target.read_bytes() == b"hello"

    def test_overwrites(self, tmp_path: Path) -> None:
        target = tmp_path / "record.json"
        atomic_write_bytes(target, b"old")
        atomic_write_bytes(target, b"new")
        assert target.read_bytes() == b"new"
        assert _temps(tmp_path) == []

    def test_creates_parents(self, tmp_path: Path) -> None:
        target = tmp_path / "a" / "b" / "c.bin"
        atomic_write_bytes(target, b"x")
        assert target.read_bytes() == b"x"

    @pytest.mark.skipif(sys.platform == "win32", reason="POSIX permissions")
    def test_owner_only_permissions(self, tmp_path: Path) -> None:
        target = tmp_path / "secret.bin"
        atomic_write_bytes(target, b"x")
        assert stat.S_IMODE(target.stat().st_mode) == 0o600

    def test_rename_failure_keeps_old_file(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        target = tmp_path / "record.json"
        atomic_write_bytes(target, b"old")

        def boom(src, dst):
            raise OSError("disk full")

        monkeypatch.setattr(os, "replace", boom)
        with pytest.raises(StorageIOError) as exc_info:
            atomic_write_bytes(target, b"new")

        assert exc_info.value.context["path"] == str(target)
        assert target.read_bytes() == b"old"
        assert _temps(tmp_path) == []

    def test_non_os_errors_propagate_unchanged(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        class Interrupted(BaseException):
            pass

        def interrupted(src, dst):
            raise Interrupted()

        monkeypatch.setattr(os, "replace", interrupted)
        with pytest.raises(Interrupted):
            atomic_write_bytes(tmp_path / "x", b"data")
        assert _temps(tmp_path) == []

    def test_json_helper(self, tmp_path: Path) -> None:
        target = tmp_path / "data.json"
        atomic_write_json(target, {"桃": "花"})
        assert read_json(target) == {"桃": "花"}


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------

class TestRead:
    def test_missing_file_raises_file_not_found(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            read_bytes(tmp_path / "nope")

    def test_unparsable_json_is_corrupt(self, tmp_path: Path) -> None:
        target = tmp_path / "bad.json"
        target.write_text("{not json")
        with pytest.raises(CorruptRecordError):
            read_json(target)

    def test_invalid_utf8_is_corrupt(self, tmp_path: Path) -> None:
        target = tmp_path / "bad.json"
        target.write_bytes(b"\xff\xfe\x00")
        with pytest.raises(CorruptRecordError):
            read_json(target)


# ---------------------------------------------------------------------------
# Cleanup
# ---------------------------------------------------------------------------

class TestCleanup:
    def test_removes_orphaned_temps_recursively(self, tmp_path: Path) -> None:
        (tmp_path / "entries").mkdir()
        orphan_a = tmp_path / f"{TMP_PREFIX}abc{TMP_SUFFIX}"
        orphan_b = tmp_path / "entries" / f"{TMP_PREFIX}def{TMP_SUFFIX}"
        keep = tmp_path / "entries" / "real.json"
        for path in (orphan_a, orphan_b, keep):
            path.write_bytes(b"x")

        assert remove_orphaned_temps(tmp_path) == 2
        assert not orphan_a.exists()
        assert not orphan_b.exists()
        assert keep.exists()

    def test_missing_root(self, tmp_path: Path) -> None:
        assert remove_orphaned_temps(tmp_path / "absent") == 0

    def test_unlink_if_exists(self, tmp_path: Path) -> None:
        target = tmp_path / "f"
        target.write_bytes(b"x")
        assert unlink_if_exists(target) is True
        assert unlink_if_exists(target) is False
