"""Process-wide advisory lock for a repository."""

import errno
import logging
import os
from pathlib import Path
from types import TracebackType
from typing import Optional, Type

from ..errors import RepositoryBusyError

logger = logging.getLogger(__name__)

LOCK_FILE_NAME = "lock"

def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        # Exists, owned by someone else
        return True
    return True

class RepositoryLock:
    """Lock file created with O_EXCL, holding the owner's pid.

    Acquisition never waits: if another live process holds the lock,
    RepositoryBusyError is raised. A lock left behind by a dead process is
    reclaimed.
    """

    def __init__(self, directory: Path):
        self.path = directory / LOCK_FILE_NAME
        self._held = False

    def _owner(self) -> Optional[int]:
        try:
            return int(self.path.read_text().strip())
        except (OSError, ValueError):
            return None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except OSError as e:
                if e.errno != errno.EEXIST:
                    raise
                owner = self._owner()
                if owner is not None and not _pid_alive(owner):
                    logger.warning(f"Removing stale lock {self.path} left by pid {owner}")
                    try:
                        self.path.unlink()
                    except FileNotFoundError:
                        pass
                    continue
                raise RepositoryBusyError(str(self.path), owner)
            with os.fdopen(fd, "w") as f:
                f.write(str(os.getpid()))
            self._held = True
            logger.debug(f"Acquired {self.path}")
            return
        raise RepositoryBusyError(str(self.path), self._owner())

    def release(self) -> None:
        if not self._held:
            return
        try:
            self.path.unlink()
        except FileNotFoundError:
            logger.warning(f"Lock {self.path} disappeared before release")
        self._held = False
        logger.debug(f"Released {self.path}")

    def __enter__(self) -> "RepositoryLock":
        self.acquire()
        return self

    def __exit__(self, exc_type: Optional[Type[BaseException]], exc: Optional[BaseException],
                 tb: Optional[TracebackType]) -> None:
        self.release()
