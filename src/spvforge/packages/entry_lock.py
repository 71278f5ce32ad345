"""Per-entry exclusive lock.

Backend builds for the same fingerprint must not run concurrently, whether in
another thread or another process. The lock is an OS advisory lock on the
entry's `lock` file, so the OS releases it when the holding process dies and
a crashed builder never leaves a stale lock behind.

Usage:
    with EntryLock(entry_dir / "lock", timeout=1800):
        ...  # exclusive access to entry_dir
"""

import logging
import os
import sys
import time
from pathlib import Path
from typing import IO, Optional

import psutil

from ..errors import LockTimeout

if sys.platform == "win32":
    import msvcrt
else:
    import fcntl

DEFAULT_LOCK_TIMEOUT = 1800.0


def _try_lock(f: IO[str]) -> bool:
    try:
        if sys.platform == "win32":
            f.seek(0)
            msvcrt.locking(f.fileno(), msvcrt.LK_NBLCK, 1)
        else:
            fcntl.flock(f.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        return True
    except OSError:
        return False


def _unlock(f: IO[str]) -> None:
    if sys.platform == "win32":
        f.seek(0)
        msvcrt.locking(f.fileno(), msvcrt.LK_UNLCK, 1)
    else:
        fcntl.flock(f.fileno(), fcntl.LOCK_UN)


class EntryLock:
    """Exclusive lock on one backend cache entry."""

    def __init__(
        self,
        lock_path: Path,
        timeout: float = DEFAULT_LOCK_TIMEOUT,
        poll_interval: float = 0.25,
    ):
        """Initialize entry lock.

        Args:
            lock_path: Lock file path (created if missing)
            timeout: Seconds to wait before raising LockTimeout
            poll_interval: Seconds between acquisition attempts
        """
        self.lock_path = Path(lock_path)
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._file: Optional[IO[str]] = None

    @property
    def is_held(self) -> bool:
        return self._file is not None

    def acquire(self) -> None:
        """Block until the lock is held or the timeout expires.

        Raises:
            LockTimeout: If the lock is still held elsewhere after timeout seconds
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        f = open(self.lock_path, "a+", encoding="utf-8")
        deadline = time.monotonic() + self.timeout
        logged = False

        try:
            while not _try_lock(f):
                if time.monotonic() >= deadline:
                    raise LockTimeout(
                        f"Timed out after {self.timeout:.0f}s waiting for {self.lock_path}"
                        + f" ({self._describe_holder()})"
                    )
                if not logged:
                    logging.info(f"Waiting for lock {self.lock_path} ({self._describe_holder()})")
                    logged = True
                time.sleep(self.poll_interval)
        except BaseException:
            f.close()
            raise

        f.seek(0)
        f.truncate()
        f.write(str(os.getpid()))
        f.flush()
        self._file = f
        logging.debug(f"Acquired lock {self.lock_path}")

    def release(self) -> None:
        """Release the lock if held."""
        f = self._file
        if f is None:
            return
        self._file = None
        try:
            _unlock(f)
        finally:
            f.close()
        logging.debug(f"Released lock {self.lock_path}")

    def _describe_holder(self) -> str:
        try:
            pid_text = self.lock_path.read_text(encoding="utf-8").strip()
            pid = int(pid_text)
        except (OSError, ValueError):
            return "holder unknown"
        if psutil.pid_exists(pid):
            return f"held by running process {pid}"
        return f"last held by process {pid}"

    def __enter__(self) -> "EntryLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.release()
