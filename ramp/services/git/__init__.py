"""Git services for ramp.

This package provides the git process wrapper:
- GitOperations: branch, status and sync queries on one checkout
- WorktreeService: worktree listing, creation, removal and moves
- BranchResolver: per-repository resolution of a ``--target`` ref
"""

from .operations import GitOperations
from .worktrees import WorktreeService, format_git_error
from .branch_resolver import BranchResolver

__all__ = ["GitOperations", "WorktreeService", "BranchResolver", "format_git_error"]
