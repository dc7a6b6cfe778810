"""Data models for ramp."""

from .feature import (
    DownOptions,
    DownResult,
    FeatureCategory,
    FeatureStatus,
    FeatureWorktreeStatus,
    InstallResult,
    PruneResult,
    RebaseResult,
    RebaseState,
    RefreshResult,
    RefreshStatus,
    RenameResult,
    UpOptions,
    UpResult,
    UpState,
)
from .worktree import WorktreeInfo

__all__ = [
    "DownOptions",
    "DownResult",
    "FeatureCategory",
    "FeatureStatus",
    "FeatureWorktreeStatus",
    "InstallResult",
    "PruneResult",
    "RebaseResult",
    "RebaseState",
    "RefreshResult",
    "RefreshStatus",
    "RenameResult",
    "UpOptions",
    "UpResult",
    "UpState",
    "WorktreeInfo",
]
