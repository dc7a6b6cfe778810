"""Threading utilities for sizing the refresh worker pool."""

import os
import sys
from typing import Optional


def is_free_threading_enabled() -> bool:
    """Detect if Python is running with free-threading enabled.

    Returns:
        True if running on Python 3.13+ with GIL disabled (free-threading mode)
    """
    try:
        return hasattr(sys, "_is_gil_enabled") and not sys._is_gil_enabled()
    except Exception:
        return False


def get_optimal_worker_count(task_count: int, user_specified: Optional[int] = None) -> int:
    """Calculate the worker count for a fan-out over ``task_count`` repositories.

    Args:
        task_count: Number of tasks that will be submitted
        user_specified: User-specified worker count, if provided

    Returns:
        Number of workers, never more than the number of tasks
    """
    if user_specified is not None and user_specified > 0:
        return max(1, min(user_specified, task_count))

    cpu_count = os.cpu_count() or 1

    if is_free_threading_enabled():
        ceiling = min(64, cpu_count * 2)
    else:
        # I/O-bound git subprocesses: CPU_count + 4, capped
        ceiling = min(32, cpu_count + 4)

    return max(1, min(ceiling, task_count))
