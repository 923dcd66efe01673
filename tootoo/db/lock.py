"""
Date-scoped EOD run lock.

At most one process may run the EOD job for a given as-of date at a time.
Runs for different dates never contend. The lock is an exclusive
``fcntl.flock`` on ``<lock_dir>/eod-YYYY-MM-DD.lock``:

  - Non-blocking by default: a second run for the same date gets
    ``LockNotAcquired`` immediately and exits as a no-op.
  - ``blocking=True`` waits, optionally bounded by ``timeout`` seconds.
  - The kernel drops the lock when the holding descriptor is closed, which
    includes process death, so a crashed run never wedges a date.

``flock`` locks belong to the open file description, so two threads of one
process that each open the lock file also exclude each other.

Usage::

    with AsOfDateLock(lock_dir, as_of_date):
        ...  # check-then-act on the snapshot store
"""

from __future__ import annotations

import fcntl
import logging
import os
import time
from datetime import date
from pathlib import Path
from typing import Optional

from tootoo.errors import LockNotAcquired

logger = logging.getLogger(__name__)

_POLL_INTERVAL_SECONDS = 0.1


def lock_path_for(lock_dir: str | Path, as_of_date: date) -> Path:
    """Return the lock file path for ``as_of_date``."""
    return Path(lock_dir) / f"eod-{as_of_date.isoformat()}.lock"


class AsOfDateLock:
    """Exclusive, process-crash-safe lock on one as-of date.

    Args:
        lock_dir: Directory holding lock files (created if missing).
        as_of_date: The date being locked.
        blocking: Wait for the lock instead of failing fast.
        timeout: Upper bound on the wait when ``blocking`` (``None`` = forever).
    """

    def __init__(
        self,
        lock_dir: str | Path,
        as_of_date: date,
        blocking: bool = False,
        timeout: Optional[float] = None,
    ) -> None:
        self.as_of_date = as_of_date
        self.path = lock_path_for(lock_dir, as_of_date)
        self.blocking = blocking
        self.timeout = timeout
        self._fd: Optional[int] = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """Take the lock.

        Raises:
            LockNotAcquired: If another holder exists (non-blocking) or the
                timeout elapsed (blocking).
        """
        if self._fd is not None:
            raise RuntimeError(f"Lock {self.path} is already held by this instance.")

        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            if self.blocking and self.timeout is None:
                fcntl.flock(fd, fcntl.LOCK_EX)
            else:
                self._try_lock(fd)
        except BaseException:
            os.close(fd)
            raise

        self._fd = fd
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        logger.debug("Acquired EOD lock %s", self.path)

    def _try_lock(self, fd: int) -> None:
        deadline = None
        if self.blocking and self.timeout is not None:
            deadline = time.monotonic() + self.timeout
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                return
            except BlockingIOError:
                if deadline is None or time.monotonic() >= deadline:
                    raise LockNotAcquired(self.as_of_date, str(self.path)) from None
                time.sleep(_POLL_INTERVAL_SECONDS)

    def release(self) -> None:
        """Release the lock. Safe to call when not held."""
        if self._fd is None:
            return
        fd, self._fd = self._fd, None
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
        finally:
            os.close(fd)
        logger.debug("Released EOD lock %s", self.path)

    def __enter__(self) -> "AsOfDateLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
