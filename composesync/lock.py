"""
Run lock - prevents concurrent reconciliation runs on one host.

The snapshot directories are shared process-wide state with no finer
grained locking, so a whole run holds an exclusive lock on a file under the
state root.
"""

import fcntl
import json
import logging
import os
import time
from pathlib import Path
from typing import Optional, TextIO

from composesync.errors import LockError

logger = logging.getLogger(__name__)


class RunLock:
    """
    Exclusive, non-blocking advisory lock held for the duration of a run.

    The lock file records the pid and start time of the holder; the lock
    itself is released by the kernel if the process dies.
    """

    def __init__(self, lock_path: Path):
        self.lock_path = Path(lock_path)
        self._handle: Optional[TextIO] = None

    def acquire(self) -> None:
        """
        Take the lock.

        Raises:
            LockError: If another process holds it
        """
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.lock_path, "a+")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError as e:
            holder = self._read_holder(handle)
            handle.close()
            raise LockError(f"Another run holds {self.lock_path}{holder}") from e

        handle.seek(0)
        handle.truncate()
        json.dump({"pid": os.getpid(), "started_at": time.time()}, handle)
        handle.flush()
        self._handle = handle
        logger.debug(f"Acquired run lock {self.lock_path}")

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            self._handle.seek(0)
            self._handle.truncate()
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
        logger.debug(f"Released run lock {self.lock_path}")

    @property
    def held(self) -> bool:
        return self._handle is not None

    @staticmethod
    def _read_holder(handle: TextIO) -> str:
        handle.seek(0)
        try:
            metadata = json.loads(handle.read() or "{}")
        except json.JSONDecodeError:
            return ""
        pid = metadata.get("pid")
        return f" (pid {pid})" if pid else ""

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
