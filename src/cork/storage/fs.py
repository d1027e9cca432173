"""Atomic file writes, directory management, and root discovery."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path

CORK_DIR = ".cork"
CORK_ROOT_ENV = "CORK_ROOT"


def _fsync_directory(path: Path) -> None:
    """Fsync a directory to ensure metadata (e.g. renames) is durable.

    Some platforms (notably macOS HFS+) may not support fsync on directory
    file descriptors, so ``OSError`` is silently ignored.
    """
    try:
        fd = os.open(str(path), os.O_RDONLY)
        try:
            os.fsync(fd)
        finally:
            os.close(fd)
    except OSError:
        pass


def atomic_write(path: Path, content: str | bytes) -> None:
    """Write content to path atomically via temp file + fsync + rename.

    The temp file is created in the same directory as the target to ensure
    os.replace() is an atomic operation (same filesystem).

    Raises:
        FileNotFoundError: If the parent directory does not exist.
    """
    parent = path.parent
    if not parent.is_dir():
        raise FileNotFoundError(f"Parent directory does not exist: {parent}")

    data = content.encode("utf-8") if isinstance(content, str) else content

    fd, tmp_path = tempfile.mkstemp(dir=parent, prefix=".tmp.")
    closed = False
    try:
        # os.write() can short-write; loop until all bytes are flushed.
        mv = memoryview(data)
        while mv:
            written = os.write(fd, mv)
            mv = mv[written:]
        os.fsync(fd)
        os.close(fd)
        closed = True
        os.replace(tmp_path, path)
        _fsync_directory(parent)
    except BaseException:
        if not closed:
            os.close(fd)
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def ensure_cork_dirs(root: Path) -> None:
    """Create the full .cork/ directory structure under root.

    root is the directory that will contain .cork/.
    """
    cork = root / CORK_DIR
    for subdir in ("cache", "locks", "remote"):
        (cork / subdir).mkdir(parents=True, exist_ok=True)


def find_root(start: Path | None = None) -> Path | None:
    """Find the directory containing .cork/.

    Checks CORK_ROOT env var first. If set, validates it and returns
    the path or raises an error (no fallback to walk-up).

    Otherwise, walks up from start (defaults to cwd) looking for .cork/.

    Returns:
        Path to the directory containing .cork/, or None if not found.

    Raises:
        CorkRootError: If CORK_ROOT is set but invalid.
    """
    env_root = os.environ.get(CORK_ROOT_ENV)
    if env_root is not None:
        if not env_root:
            raise CorkRootError("CORK_ROOT is set but empty")
        env_path = Path(env_root)
        if not env_path.is_dir():
            raise CorkRootError(f"CORK_ROOT points to a path that does not exist: {env_root}")
        if not (env_path / CORK_DIR).is_dir():
            raise CorkRootError(
                f"CORK_ROOT points to a directory with no {CORK_DIR}/ inside: {env_root}"
            )
        return env_path

    current = (start or Path.cwd()).resolve()
    while True:
        if (current / CORK_DIR).is_dir():
            return current
        parent = current.parent
        if parent == current:
            # Reached filesystem root
            return None
        current = parent


class CorkRootError(Exception):
    """Raised when CORK_ROOT env var is set but invalid."""
