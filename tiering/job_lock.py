"""
Non-blocking advisory locks.

Two domains keep jobs from colliding: "storage" (mover, gap reconciler,
watchdog) and "media" (prune, vacuum, retention). A held lock means another
job is working on the same trees; callers exit quietly instead of waiting.
"""

import fcntl
import logging
import os
from pathlib import Path

from runtime_paths import resolve_writable_path

log = logging.getLogger("tiering.lock")

STORAGE = "storage"
MEDIA = "media"


class LockBusy(RuntimeError):
    """Raised when the lock is already held by another process or handle."""
    pass


class JobLock:
    """flock()-based lock, released on close or when the process exits."""

    def __init__(self, path, runtime_dir):
        self.requested = Path(path)
        self.runtime_dir = Path(runtime_dir)
        self.path = None
        self._fd = None

    def acquire(self):
        self.path = resolve_writable_path(self.requested, self.runtime_dir)
        if self.path != self.requested:
            log.warning(f"Lock file {self.requested} is not writable, using {self.path}")
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise LockBusy(f"Lock {self.path} is held by another process")
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        log.debug(f"Acquired lock {self.path}")
        return self

    def release(self):
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def __enter__(self):
        return self.acquire()

    def __exit__(self, exc_type, exc, tb):
        self.release()
        return False


def is_held(path) -> bool:
    """Check whether some process holds the lock at path."""
    try:
        fd = os.open(path, os.O_RDONLY)
    except OSError:
        return False
    try:
        fcntl.flock(fd, fcntl.LOCK_SH | fcntl.LOCK_NB)
    except BlockingIOError:
        return True
    else:
        fcntl.flock(fd, fcntl.LOCK_UN)
        return False
    finally:
        os.close(fd)
