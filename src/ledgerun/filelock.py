"""Timeout-bounded advisory file locks keyed by path.

The lock file is ``<path>.lock``. On POSIX it is held with ``fcntl.flock``,
on Windows with ``msvcrt.locking``; both are taken per open file handle, so the
lock serializes threads of one process as well as separate processes.
"""

from __future__ import annotations

import sys
import time
from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, contextmanager
from pathlib import Path
from typing import IO, TypeVar

from ledgerun.errors import LockTimeout

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

T = TypeVar("T")

DEFAULT_LOCK_TIMEOUT = 5.0
_POLL_INTERVAL = 0.01


def lock_path_for(path: Path | str) -> Path:
    p = Path(path)
    return p.with_name(p.name + ".lock")


def _try_lock(fh: IO[str], shared: bool) -> bool:
    try:
        if sys.platform == "win32":
            # msvcrt has no shared mode; readers serialize like writers.
            fh.seek(0)
            msvcrt.locking(fh.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            mode = fcntl.LOCK_SH if shared else fcntl.LOCK_EX
            fcntl.flock(fh.fileno(), mode | fcntl.LOCK_NB)
        return True
    except OSError:
        return False


def _unlock(fh: IO[str]) -> None:
    if sys.platform == "win32":
        fh.seek(0)
        msvcrt.locking(fh.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(fh.fileno(), fcntl.LOCK_UN)


@contextmanager
def _acquire(path: Path | str, timeout: float, *, shared: bool) -> Iterator[None]:
    lock_path = lock_path_for(path)
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    fh = open(lock_path, "a+", encoding="utf-8")
    try:
        deadline = time.monotonic() + max(timeout, 0.0)
        while not _try_lock(fh, shared):
            if time.monotonic() >= deadline:
                raise LockTimeout(str(lock_path), timeout)
            time.sleep(_POLL_INTERVAL)
        try:
            yield
        finally:
            _unlock(fh)
    finally:
        fh.close()


def locked(path: Path | str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> AbstractContextManager[None]:
    """Exclusive lock on *path* as a context manager.

    Raises :class:`LockTimeout` if the lock is not acquired within *timeout*
    seconds; the body is never entered in that case.
    """
    return _acquire(path, timeout, shared=False)


def read_locked(path: Path | str, timeout: float = DEFAULT_LOCK_TIMEOUT) -> AbstractContextManager[None]:
    """Shared lock on *path*; concurrent readers proceed, writers are excluded."""
    return _acquire(path, timeout, shared=True)


def with_lock(path: Path | str, timeout: float, fn: Callable[[], T]) -> T:
    """Run *fn* while holding the exclusive lock for *path*."""
    with locked(path, timeout):
        return fn()


def with_read_lock(path: Path | str, timeout: float, fn: Callable[[], T]) -> T:
    """Run *fn* while holding a shared lock for *path*."""
    with read_locked(path, timeout):
        return fn()


def is_locked(path: Path | str) -> bool:
    """Return ``True`` if another handle currently holds the lock for *path*."""
    lock_path = lock_path_for(path)
    if not lock_path.exists():
        return False
    with open(lock_path, "a+", encoding="utf-8") as fh:
        if not _try_lock(fh, shared=False):
            return True
        _unlock(fh)
        return False

