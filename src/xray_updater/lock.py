"""Advisory lock guarding the live binary and backup slot."""

from __future__ import annotations

import errno
import fcntl
import os
import stat
from pathlib import Path
from types import TracebackType
from typing import IO

from xray_updater.errors import LockFileRejectedError, UpdateAlreadyInProgressError
from xray_updater.logging import get_logger

log = get_logger("xray_updater.lock")

_OPEN_FLAGS = os.O_RDWR | os.O_CREAT | os.O_NOFOLLOW


class UpdateLock:
    """Non-blocking ``flock`` on a lock file.

    Acquisition never waits: if another process holds the lock,
    ``UpdateAlreadyInProgressError`` is raised immediately. The lock file is
    never opened through a symbolic link and must be a regular file.
    """

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._handle: IO[str] | None = None

    @property
    def locked(self) -> bool:
        return self._handle is not None

    def _open(self) -> IO[str]:
        try:
            fd = os.open(self.path, _OPEN_FLAGS, 0o600)
        except OSError as exc:
            if exc.errno == errno.ELOOP:
                log.error("update_lock_symlink_refused", path=str(self.path))
                raise LockFileRejectedError(str(self.path), "is a symbolic link") from exc
            if exc.errno == errno.EISDIR:
                raise LockFileRejectedError(str(self.path), "is a directory") from exc
            raise
        if not stat.S_ISREG(os.fstat(fd).st_mode):
            os.close(fd)
            log.error("update_lock_not_regular_file", path=str(self.path))
            raise LockFileRejectedError(str(self.path), "is not a regular file")
        return os.fdopen(fd, "r+", encoding="utf-8")

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = self._open()
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            handle.close()
            log.warning("update_lock_busy", path=str(self.path))
            raise UpdateAlreadyInProgressError(str(self.path)) from None
        except OSError:
            handle.close()
            raise

        handle.seek(0)
        handle.truncate()
        handle.write(str(os.getpid()))
        handle.flush()
        self._handle = handle
        log.debug("update_lock_acquired", path=str(self.path))

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None
            log.debug("update_lock_released", path=str(self.path))

    def __enter__(self) -> UpdateLock:
        self.acquire()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.release()
