"""Utility functions for ramp.

This package provides utility modules:
- locking: project-scoped file locks and atomic JSON writes
- threading: worker pool sizing for repository fan-out
"""

from .locking import exclusive_lock, write_json_atomic
from .threading import is_free_threading_enabled, get_optimal_worker_count

__all__ = [
    "exclusive_lock",
    "write_json_atomic",
    "is_free_threading_enabled",
    "get_optimal_worker_count",
]
