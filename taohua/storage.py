"""
Durable file primitives shared by the vault and the journal.

Every write goes to a temporary file in the destination directory, is flushed
and fsynced, then atomically renamed over the target. A crash at any point
leaves either the old file or the new one, plus at worst an orphaned
``*.tmp`` that ``remove_orphaned_temps`` clears on the next start.
"""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import structlog

from taohua.errors import CorruptRecordError, StorageIOError

logger = structlog.get_logger(__name__)

TMP_SUFFIX = ".tmp"
TMP_PREFIX = ".taohua_"


def atomic_write_bytes(path: Path, data: bytes, mode: int = 0o600) -> None:
    """Atomic write with tempfile + fsync + rename.

    Creates parent directories if needed. Raises StorageIOError on failure;
    the target is never left half-written.
    """
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=TMP_SUFFIX, prefix=TMP_PREFIX)
    except OSError as e:
        raise StorageIOError("cannot create temporary file", {"path": str(path), "error": str(e)}) from e

    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        best_effort_chmod(Path(tmp_path), mode)
        os.replace(tmp_path, path)
    except BaseException as e:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        if isinstance(e, OSError):
            raise StorageIOError("write failed", {"path": str(path), "error": str(e)}) from e
        raise
    fsync_dir(path.parent)


def atomic_write_json(path: Path, payload: Any) -> None:
    data = json.dumps(payload, ensure_ascii=False, indent=2).encode("utf-8")
    atomic_write_bytes(path, data)


def read_bytes(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except FileNotFoundError:
        raise
    except OSError as e:
        raise StorageIOError("read failed", {"path": str(path), "error": str(e)}) from e


def read_json(path: Path) -> Any:
    """Load a JSON file. Unparsable content raises CorruptRecordError."""
    raw = read_bytes(path)
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise CorruptRecordError("unparsable record", {"path": str(path), "error": str(e)}) from e


def unlink_if_exists(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
    except OSError as e:
        raise StorageIOError("delete failed", {"path": str(path), "error": str(e)}) from e


def fsync_dir(directory: Path) -> None:
    """Persist a rename by syncing its directory. No-op where unsupported."""
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        logger.debug("storage.dir_fsync_skipped", path=str(directory))
    finally:
        os.close(fd)


def remove_orphaned_temps(root: Path) -> int:
    """Delete temp files left behind by an interrupted write."""
    removed = 0
    if not root.exists():
        return 0
    for tmp in root.rglob(f"{TMP_PREFIX}*{TMP_SUFFIX}"):
        try:
            tmp.unlink()
            removed += 1
        except OSError as e:
            logger.warning("storage.orphan_cleanup_failed", path=str(tmp), error=str(e))
    if removed:
        logger.info("storage.orphans_removed", count=removed)
    return removed


def best_effort_chmod(path: Path, mode: int) -> None:
    """Attempt chmod without failing on unsupported filesystems."""
    if not path.exists():
        return
    try:
        path.chmod(mode)
    except OSError:
        logger.debug("storage.chmod_skipped", path=str(path), mode=oct(mode))
