"""POSIX file locking helpers shared by the project state files."""

import fcntl
import json
import os
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator

from ramp.logging_config import get_logger

logger = get_logger(__name__)


@contextmanager
def exclusive_lock(lock_path: Path) -> Iterator[None]:
    """Hold an exclusive ``flock`` on ``lock_path`` for the duration of the block.

    The lock file is created if needed and left in place afterwards.
    """
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    with open(lock_path, "a+") as handle:
        fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
        logger.debug(f"Acquired lock {lock_path}")
        try:
            yield
        finally:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
                logger.debug(f"Released lock {lock_path}")
            except OSError as e:
                logger.debug(f"Error releasing lock {lock_path}: {e}")


def write_json_atomic(path: Path, data: Any) -> None:
    """Write ``data`` as JSON to a temp file, then rename it over ``path``."""
    temp_file = path.with_suffix(path.suffix + ".tmp")
    try:
        with open(temp_file, "w") as f:
            json.dump(data, f, indent=2, sort_keys=True)
            f.write("\n")
            f.flush()
            os.fsync(f.fileno())

        # Atomic rename (POSIX systems guarantee atomicity)
        temp_file.replace(path)
    finally:
        if temp_file.exists():
            try:
                temp_file.unlink()
            except OSError as e:
                logger.debug(f"Could not remove temp file {temp_file}: {e}")
