import contextlib
import os
import tempfile
from pathlib import Path
from typing import Union


def atomic_write(path: Union[str, Path], data: str) -> None:
    """Write `data` to `path` so readers see either the old or the new file.

    The data goes to a temp file in the same directory, is fsynced, and then
    replaces the target with os.replace.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(temp_name, target)
    except BaseException:
        with contextlib.suppress(OSError):
            os.unlink(temp_name)
        raise
