"""
L4 Execution — Per-version install lock.

Two installs of the same version must never build into the same
directory.  The lock is an ``flock`` on ``archives/.<version>.lock``:
the kernel drops it when the holder exits, so a crashed install never
leaves a lock behind that blocks the next attempt.

The lock file itself is left in place; removing it would let a
waiting process lock an unlinked inode.
"""

from __future__ import annotations

import fcntl
import logging
import os
from pathlib import Path

from maphp.core.errors import AlreadyInstallingError

logger = logging.getLogger(__name__)


def lock_path_for(archives_dir: Path, version: str) -> Path:
    return archives_dir / f".{version}.lock"


class InstallLock:
    """Exclusive, non-blocking lock for one version.

    Usage::

        with InstallLock(work_dir.archives, "8.3.0"):
            ...  # build
    """

    def __init__(self, archives_dir: Path, version: str):
        self.version = version
        self.path = lock_path_for(archives_dir, version)
        self._fd: int | None = None

    @property
    def held(self) -> bool:
        return self._fd is not None

    def acquire(self) -> None:
        """Take the lock or fail fast.

        Raises:
            AlreadyInstallingError: Another process holds it.
        """
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd = os.open(self.path, os.O_RDWR | os.O_CREAT, 0o644)
        try:
            fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            os.close(fd)
            raise AlreadyInstallingError(self.version, str(self.path)) from None

        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        self._fd = fd
        logger.debug("Acquired install lock %s", self.path)

    def release(self) -> None:
        if self._fd is None:
            return
        try:
            fcntl.flock(self._fd, fcntl.LOCK_UN)
        finally:
            os.close(self._fd)
            self._fd = None
        logger.debug("Released install lock %s", self.path)

    def __enter__(self) -> InstallLock:
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
