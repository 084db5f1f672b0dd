# Copyright (C) 2012 Anaconda, Inc
# SPDX-License-Identifier: BSD-3-Clause
"""
Inter-process locks. A lock is taken on a single byte of an open file; the
package cache uses a ``<entry>.lock`` file next to each cache entry, and the
repodata cache locks its ``.info.json`` state file.

fcntl locks are owned by the process, so threads of one process must still
serialize among themselves.
"""

from __future__ import annotations

import os
import time
from contextlib import contextmanager
from logging import getLogger

from ...exceptions import LockError

log = getLogger(__name__)

# same byte as mamba, so both tools exclude each other
LOCK_BYTE = 21
LOCK_ATTEMPTS = 10
LOCK_SLEEP = 1

if os.name == "nt":  # pragma: no cover
    import msvcrt

    def _try_acquire(fd) -> bool:
        position = fd.tell()
        fd.seek(LOCK_BYTE)
        try:
            msvcrt.locking(fd.fileno(), msvcrt.LK_NBLCK, 1)
        except OSError:
            return False
        finally:
            fd.seek(position)
        return True

    def _release(fd) -> None:
        position = fd.tell()
        fd.seek(LOCK_BYTE)
        try:
            msvcrt.locking(fd.fileno(), msvcrt.LK_UNLCK, 1)
        finally:
            fd.seek(position)

else:
    import fcntl

    def _try_acquire(fd) -> bool:
        try:
            fcntl.lockf(fd, fcntl.LOCK_EX | fcntl.LOCK_NB, 1, LOCK_BYTE)
        except OSError:
            return False
        return True

    def _release(fd) -> None:
        fcntl.lockf(fd, fcntl.LOCK_UN, 1, LOCK_BYTE)


class FileLock:
    """Exclusive lock on an open file, polled ``attempts`` times before giving up."""

    def __init__(self, fd, attempts: int = LOCK_ATTEMPTS, sleep: float = LOCK_SLEEP):
        self.fd = fd
        self.attempts = attempts
        self.sleep = sleep

    @property
    def name(self) -> str:
        return getattr(self.fd, "name", repr(self.fd))

    def __enter__(self) -> FileLock:
        for attempt in range(1, self.attempts + 1):
            if _try_acquire(self.fd):
                return self
            log.debug("%s is locked (attempt %d of %d)", self.name, attempt, self.attempts)
            if attempt < self.attempts:
                time.sleep(self.sleep)
        raise LockError("Failed to acquire lock on %(path)s.", path=self.name)

    def __exit__(self, *exc) -> None:
        try:
            _release(self.fd)
        except OSError as e:
            raise LockError(
                "Failed to release lock on %(path)s.", caused_by=e, path=self.name
            ) from e


def lock(fd, *, lock_attempts: int = LOCK_ATTEMPTS) -> FileLock:
    return FileLock(fd, lock_attempts)


@contextmanager
def lock_path(path: str | os.PathLike, *, lock_attempts: int = LOCK_ATTEMPTS):
    """Hold an exclusive lock on ``path`` (created if missing) for the block."""
    with open(path, "a+b") as fd, lock(fd, lock_attempts=lock_attempts):
        log.debug("acquired lock %s", path)
        yield


def locking_supported() -> bool:
    return os.name == "nt" or hasattr(fcntl, "lockf")
