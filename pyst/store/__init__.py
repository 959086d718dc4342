"""Durable storage for the branch forest."""

import contextlib
import logging
from pathlib import Path
from typing import Iterator, Optional

from pydantic import ValidationError

from ..graph import Forest
from ..errors import PystError
from ..util import atomic_write
from .lock import RepositoryLock

__all__ = ["GraphStore", "RepositoryLock", "StoreCorruptError", "state_dir"]

logger = logging.getLogger(__name__)

STACK_FILE_NAME = "stack.json"

class StoreCorruptError(PystError):
    def __init__(self, path: Path, reason: str):
        super().__init__(f"Could not read {path}: {reason}")
        self.path = path

def state_dir(git_dir: Path, name: str = "pyst") -> Path:
    """Directory inside the git dir holding pyst's repository-scoped state."""
    return git_dir / name

class GraphStore:
    """Owns the current Forest and persists it atomically.

    The live forest is never handed out. `forest` returns a copy, and
    `transaction` yields a copy that replaces the live one only when the
    block finishes without an exception and the result validates.
    Without a path the store keeps the forest in memory only.
    """

    def __init__(self, path: Optional[Path] = None, forest: Optional[Forest] = None):
        self.path = path
        self._forest = forest.copy_forest() if forest is not None else None

    @classmethod
    def for_state_dir(cls, directory: Path) -> "GraphStore":
        return cls(directory / STACK_FILE_NAME)

    def exists(self) -> bool:
        if self._forest is not None:
            return True
        return self.path is not None and self.path.exists()

    def load(self) -> Forest:
        if self.path is None or not self.path.exists():
            return Forest()
        try:
            forest = Forest.model_validate_json(self.path.read_text(encoding="utf-8"))
        except ValidationError as e:
            raise StoreCorruptError(self.path, str(e))
        forest.validate()
        logger.debug(f"Loaded {len(forest.branches)} tracked branches from {self.path}")
        return forest

    def _live(self) -> Forest:
        if self._forest is None:
            self._forest = self.load()
        return self._forest

    @property
    def forest(self) -> Forest:
        return self._live().copy_forest()

    def replace(self, forest: Forest) -> None:
        """Swap in a whole new forest."""
        candidate = forest.copy_forest()
        candidate.validate()
        self._write(candidate)
        self._forest = candidate

    @contextlib.contextmanager
    def transaction(self) -> Iterator[Forest]:
        """Yield a working copy of the forest, committed on success."""
        working = self._live().copy_forest()
        yield working
        working.validate()
        self._write(working)
        self._forest = working

    def _write(self, forest: Forest) -> None:
        if self.path is None:
            return
        atomic_write(self.path, forest.model_dump_json(indent=2))
