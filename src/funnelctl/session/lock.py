"""Host-local advisory lock so only one funnelctl mutates the serve config."""

import fcntl
import logging
import os
import threading
from pathlib import Path
from typing import IO

from ..common import dirs
from ..common.exceptions import FunnelError, LockHeldError

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "funnelctl.lock"
TAKEOVER_SUFFIX = ".takeover"


def pid_is_alive(pid: int) -> bool:
    """Signal-0 probe; a permission error still means the process exists."""
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _inode(path: Path) -> int | None:
    try:
        return os.stat(path).st_ino
    except FileNotFoundError:
        return None


def read_pid(path: Path) -> int | None:
    try:
        return int(path.read_text(encoding="utf-8").strip())
    except (OSError, ValueError):
        return None


class LockHandle:
    """An acquired lock. Releasing twice is harmless."""

    def __init__(self, path: Path, file: IO[str], key: str):
        self.path = path
        self.key = key
        self._file: IO[str] | None = file
        self._lock = threading.Lock()

    @property
    def is_held(self) -> bool:
        return self._file is not None

    def release(self) -> None:
        with self._lock:
            file, self._file = self._file, None
        if file is None:
            return
        try:
            fcntl.flock(file, fcntl.LOCK_UN)
        finally:
            file.close()
        logger.debug(f"Released lock {self.path} for {self.key}")

    def __enter__(self) -> "LockHandle":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.release()


class LockManager:
    """Acquires the per-host lock file under the runtime directory."""

    def __init__(self, path: Path | None = None):
        self._path = path

    @property
    def path(self) -> Path:
        if self._path is None:
            self._path = dirs.runtime_dir() / LOCK_FILE_NAME
        return self._path

    @staticmethod
    def _try_lock(path: Path) -> IO[str] | None:
        file = open(path, "a+", encoding="utf-8")
        try:
            fcntl.flock(file, fcntl.LOCK_EX | fcntl.LOCK_NB)
        except BlockingIOError:
            file.close()
            return None
        except OSError:
            file.close()
            raise
        if os.fstat(file.fileno()).st_ino != _inode(path):
            # Locked an inode that a stale-lock takeover has since unlinked.
            file.close()
            return None
        file.seek(0)
        file.truncate()
        file.write(str(os.getpid()))
        file.flush()
        return file

    def acquire(self, key: str) -> LockHandle:
        """Take the lock or fail immediately.

        Args:
            key: What the lock protects (logged only; one lock per host)

        Returns:
            LockHandle for the acquired lock

        Raises:
            LockHeldError: If a live process holds the lock
        """
        path = self.path
        path.parent.mkdir(parents=True, exist_ok=True)

        try:
            file = self._try_lock(path)
        except OSError as e:
            raise FunnelError(f"failed to open lock file {path}: {e}") from e

        if file is not None:
            logger.debug(f"Acquired lock {path} for {key}")
            return LockHandle(path, file, key)

        stale_inode = _inode(path)
        pid = read_pid(path)
        if pid is None:
            raise LockHeldError(None)
        if pid_is_alive(pid):
            raise LockHeldError(pid)

        # The holder is gone but its lock survives (e.g. inherited by a child).
        # Replace the file so the new inode can be locked. Takeovers are
        # serialized on a guard file, and the file is only unlinked if it is
        # still the inode seen as stale.
        logger.warning(f"Taking over stale lock {path} from dead PID {pid}")
        guard_path = path.with_name(path.name + TAKEOVER_SUFFIX)
        try:
            with open(guard_path, "a", encoding="utf-8") as guard:
                fcntl.flock(guard, fcntl.LOCK_EX)
                if stale_inode is not None and _inode(path) == stale_inode:
                    path.unlink()
                else:
                    logger.debug(f"Lock {path} already replaced by another process")
                file = self._try_lock(path)
        except OSError as e:
            raise FunnelError(f"failed to replace stale lock file {path}: {e}") from e
        if file is None:
            raise LockHeldError(read_pid(path))
        logger.debug(f"Acquired lock {path} for {key}")
        return LockHandle(path, file, key)
