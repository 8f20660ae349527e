"""Per-document file locking and atomic writes."""

from __future__ import annotations

import os
from contextlib import contextmanager
from pathlib import Path
from typing import Generator

import portalocker

from .models import JournalError


class LockTimeoutError(JournalError):
    """Raised when a journal document lock cannot be acquired in time."""
    pass


@contextmanager
def file_lock(path: Path, timeout: float = 10.0) -> Generator[None, None, None]:
    """Hold an exclusive lock on a journal file.

    The lock lives in a .lock file next to the target so the target itself
    can be replaced atomically while the lock is held.

    Args:
        path: File to lock
        timeout: Seconds to wait for lock

    Raises:
        LockTimeoutError: If lock cannot be acquired
    """
    lock_path = path.with_suffix(path.suffix + ".lock")
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    lock_path.touch(exist_ok=True)

    lock = portalocker.Lock(lock_path, timeout=timeout)
    try:
        lock.acquire()
    except portalocker.LockException as e:
        raise LockTimeoutError(
            f"Timed out after {timeout}s waiting for lock on {path.name}"
        ) from e

    try:
        yield
    finally:
        lock.release()


@contextmanager
def atomic_write(path: Path, encoding: str = "utf-8") -> Generator:
    """Write a text file atomically.

    Writes to a temporary file then replaces the target, so readers never
    see a half-written journal.

    Yields:
        File handle for writing
    """
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    path.parent.mkdir(parents=True, exist_ok=True)

    try:
        with open(tmp_path, "w", encoding=encoding) as f:
            yield f
        os.replace(tmp_path, path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink()
        raise

