"""Worktree operations service for ramp."""

import os
from typing import Any, Dict, Optional

import git

from ramp.exceptions import GitOperationError
from ramp.models.worktree import WorktreeInfo
from ramp.logging_config import get_logger

logger = get_logger(__name__)


def format_git_error(command: str, error: git.exc.GitCommandError) -> str:
    """Render a GitCommandError as ``git <command> failed (exit N): stderr``."""
    stderr = (error.stderr if hasattr(error, "stderr") and error.stderr else str(error)).strip()
    status = error.status if hasattr(error, "status") else "unknown"
    if stderr:
        return f"git {command} failed (exit {status}): {stderr}"
    return f"git {command} failed with exit code {status}"


def _same_path(a: str, b: str) -> bool:
    return os.path.realpath(a) == os.path.realpath(b)


class WorktreeService:
    """Service for managing git worktrees of one source repository."""

    def __init__(self, repo_path: str, repo_name: Optional[str] = None):
        """Initialize the worktree service.

        Args:
            repo_path: Path to the source repository
            repo_name: Name used in error messages
        """
        self.repo_path = repo_path
        self.repo_name = repo_name or os.path.basename(repo_path.rstrip(os.sep))

    def _get_repo(self):
        """Get a thread-safe git.Repo instance.

        Returns:
            git.Repo: A fresh repository instance
        """
        return git.Repo(self.repo_path)

    def get_worktree_info(self) -> list[WorktreeInfo]:
        """Get detailed information about all registered worktrees.

        Always read fresh from git; worktree state changes under every operation.

        Returns:
            List of WorktreeInfo objects for all worktrees
        """
        worktree_list = []
        try:
            repo = self._get_repo()
            # Format:
            # worktree /path/to/worktree
            # HEAD commit_sha
            # branch refs/heads/branch-name
            # (blank line between worktrees)
            output = repo.git.worktree("list", "--porcelain")
        except (git.exc.GitCommandError, git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            logger.debug(f"Could not list worktrees in {self.repo_name}: {e}")
            return worktree_list

        current: Dict[str, Any] = {}

        def flush():
            path = current.get("path")
            if path:
                worktree_list.append(
                    WorktreeInfo(
                        path=path,
                        branch_name=current.get("branch", ""),
                        commit_sha=current.get("HEAD", ""),
                        is_main=not worktree_list,  # first entry is the main working tree
                        is_orphaned=not os.path.exists(path),
                    )
                )

        for line in output.split("\n"):
            line = line.strip()
            if not line:
                flush()
                current = {}
                continue

            if line.startswith("worktree "):
                current["path"] = line.split(" ", 1)[1]
            elif line.startswith("HEAD "):
                current["HEAD"] = line.split(" ", 1)[1]
            elif line.startswith("branch "):
                branch_ref = line.split(" ", 1)[1]
                if branch_ref.startswith("refs/heads/"):
                    current["branch"] = branch_ref[len("refs/heads/"):]
                else:
                    current["branch"] = ""
            elif line.startswith("detached"):
                current["branch"] = ""

        # Handle last entry if no trailing blank line
        flush()

        logger.debug(f"Found {len(worktree_list)} worktrees in {self.repo_name}")
        return worktree_list

    def find_worktree(self, path: str) -> Optional[WorktreeInfo]:
        """Return the registered worktree at ``path``, if any."""
        for wt in self.get_worktree_info():
            if _same_path(wt.path, path):
                return wt
        return None

    def is_registered(self, path: str) -> bool:
        return self.find_worktree(path) is not None

    def add_worktree(
        self,
        path: str,
        branch_name: str,
        new_branch: bool = False,
        start_point: Optional[str] = None,
        track: bool = False,
    ) -> None:
        """Run ``git worktree add``.

        Raises:
            GitOperationError: naming the repository when git refuses
        """
        args = ["add"]
        if track:
            args.append("--track")
        if new_branch:
            args += ["-b", branch_name, path]
            if start_point:
                args.append(start_point)
        else:
            args += [path, branch_name]

        try:
            self._get_repo().git.worktree(*args)
        except git.exc.GitCommandError as e:
            raise GitOperationError(
                "worktree add", self.repo_name, format_git_error("worktree add", e)
            ) from e
        logger.info(f"Created worktree {path} on {branch_name} in {self.repo_name}")

    def remove_worktree(self, path: str, force: bool = False) -> tuple[bool, Optional[str]]:
        """Remove a worktree at the specified path.

        A worktree whose directory is already gone is cleaned up with
        ``git worktree prune`` instead.

        Args:
            path: Path to the worktree directory
            force: Force removal even if working tree is dirty or locked

        Returns:
            Tuple of (success, error_message). error_message is None on success.
        """
        if not os.path.exists(path):
            logger.debug(f"Worktree directory {path} is missing, pruning registration")
            return self.prune_worktrees()

        try:
            args = ["remove", path]
            if force:
                args.append("--force")
            self._get_repo().git.worktree(*args)
            logger.info(f"Removed worktree at {path}")
            return True, None
        except git.exc.GitCommandError as e:
            error_msg = format_git_error("worktree remove", e)
            logger.error(f"Failed to remove worktree at {path}: {error_msg}")
            if not os.path.exists(path):
                return self.prune_worktrees()
            return False, error_msg

    def prune_worktrees(self) -> tuple[bool, Optional[str]]:
        """Prune stale worktree metadata.

        Returns:
            Tuple of (success, error_message). error_message is None on success.
        """
        try:
            self._get_repo().git.worktree("prune")
            logger.debug(f"Pruned stale worktree metadata in {self.repo_name}")
            return True, None
        except git.exc.GitCommandError as e:
            error_msg = format_git_error("worktree prune", e)
            logger.error(f"Failed to prune worktrees in {self.repo_name}: {error_msg}")
            return False, error_msg

    def move_worktree(self, old_path: str, new_path: str) -> None:
        """Run ``git worktree move``.

        Raises:
            GitOperationError: naming the repository when git refuses
        """
        try:
            self._get_repo().git.worktree("move", old_path, new_path)
        except git.exc.GitCommandError as e:
            raise GitOperationError(
                "worktree move", self.repo_name, format_git_error("worktree move", e)
            ) from e
        logger.info(f"Moved worktree {old_path} -> {new_path} in {self.repo_name}")
