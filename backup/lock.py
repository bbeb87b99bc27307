"""Single-instance run lock based on ``fcntl.flock``."""
from __future__ import annotations

import fcntl
import logging
import os
from datetime import datetime
from pathlib import Path
from typing import IO, Optional

from .errors import InitializationError, LockUnavailable

LOGGER = logging.getLogger("zfsbackup.lock")


class RunLock:
    """Exclusive, non-blocking lock on a well-known file.

    The lock file itself is left in place on release; only the ``flock`` on
    the open descriptor matters.
    """

    def __init__(self, path: Path) -> None:
        self._path = Path(path)
        self._handle: Optional[IO[str]] = None

    @property
    def path(self) -> Path:
        return self._path

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> None:
        """Take the lock or raise :class:`LockUnavailable` if another run holds it."""

        if self._handle is not None:
            return
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            # a+ so a running holder's pid is not truncated before we own the lock
            handle = open(self._path, "a+", encoding="utf-8")
        except OSError as exc:
            raise InitializationError(f"cannot open lock file {self._path}: {exc}") from exc
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            raise LockUnavailable(f"another instance holds {self._path}") from None
        except OSError as exc:
            handle.close()
            raise InitializationError(f"cannot lock {self._path}: {exc}") from exc
        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()} {datetime.now().isoformat(timespec='seconds')}\n")
        handle.flush()
        self._handle = handle
        LOGGER.debug("Acquired run lock %s", self._path)

    def release(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        except OSError as exc:
            LOGGER.error("Error releasing run lock %s: %s", self._path, exc)
        finally:
            handle.close()
        LOGGER.debug("Released run lock %s", self._path)

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, *_exc: object) -> None:
        self.release()


__all__ = ["RunLock"]
