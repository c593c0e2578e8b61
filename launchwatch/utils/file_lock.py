"""File locking utilities for safe concurrent state updates."""
from __future__ import annotations

import fcntl
import json
import logging
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Generator

log = logging.getLogger("launchwatch.file_lock")


class LockHeldError(RuntimeError):
    """Another process holds the lock."""


def _lock_path(path: Path) -> Path:
    lock_path = path if path.suffix == ".lock" else path.with_suffix(path.suffix + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    return lock_path


@contextmanager
def exclusive_file_lock(path: Path) -> Generator[None, None, None]:
    """Context manager for exclusive file locking.

    Usage:
        with exclusive_file_lock(Path("state/safeguards.json")):
            # Read, modify, write
            pass
    """
    with open(_lock_path(path), "w") as lock_file:
        try:
            # Blocks if another process holds it
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


@contextmanager
def nonblocking_file_lock(path: Path) -> Generator[None, None, None]:
    """Exclusive lock that fails fast instead of waiting.

    Raises:
        LockHeldError: the lock is already held.
    """
    with open(_lock_path(path), "w") as lock_file:
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            raise LockHeldError(f"Lock held: {path}") from e
        try:
            yield
        finally:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)


def read_json(path: Path) -> dict[str, Any]:
    """Read JSON (caller holds the lock), restoring from .bak on corruption."""
    if not path.exists():
        return {}
    try:
        with open(path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError:
        backup_path = path.with_suffix(path.suffix + ".bak")
        if not backup_path.exists():
            raise
        log.warning("Corrupted state detected: %s, restoring from %s", path, backup_path)
        shutil.copy(backup_path, path)
        with open(path, "r") as f:
            return json.load(f)


def write_json(path: Path, data: dict[str, Any], indent: int = 2) -> None:
    """Atomic tmp+rename write (caller holds the lock), keeping a .bak of the previous file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.exists():
        shutil.copy(path, path.with_suffix(path.suffix + ".bak"))
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    with open(tmp_path, "w") as f:
        json.dump(data, f, indent=indent)
    tmp_path.rename(path)
