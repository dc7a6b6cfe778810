"""Git operations service"""

import os
import re
from pathlib import Path
from typing import Optional, Union

import git

from ramp.constants import REMOTE_NAME
from ramp.exceptions import GitOperationError
from ramp.logging_config import get_logger
from ramp.services.git.worktrees import WorktreeService, format_git_error

logger = get_logger(__name__)

_SHORTSTAT_RE = {
    "files_changed": re.compile(r"(\d+) files? changed"),
    "insertions": re.compile(r"(\d+) insertions?\(\+\)"),
    "deletions": re.compile(r"(\d+) deletions?\(-\)"),
}


class GitOperations:
    """Service for Git operations on one repository or worktree directory."""

    def __init__(self, repo_path: Union[str, Path], repo_name: Optional[str] = None):
        """Initialize the service.

        Args:
            repo_path: Path to the repository checkout or one of its worktrees
            repo_name: Name used in error messages (defaults to the directory name)
        """
        self.repo_path = str(repo_path)
        self.repo_name = repo_name or os.path.basename(self.repo_path.rstrip(os.sep))
        self.remote_name = REMOTE_NAME
        self.worktree_service = WorktreeService(self.repo_path, self.repo_name)

    def _get_repo(self):
        """Get a thread-safe git.Repo instance.

        Creates a new repo instance for each call to ensure thread safety.
        GitPython repos are lightweight - they don't clone, just open the existing repo.

        Returns:
            git.Repo: A fresh repository instance
        """
        return git.Repo(self.repo_path)

    def _run(self, command: str, *args) -> str:
        """Run ``git <command> <args>`` and translate failures to GitOperationError."""
        try:
            repo = self._get_repo()
            return getattr(repo.git, command.replace("-", "_"))(*args)
        except git.exc.GitCommandError as e:
            raise GitOperationError(
                f"{command} {' '.join(str(a) for a in args)}".strip(),
                self.repo_name,
                format_git_error(command, e),
            ) from e
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            raise GitOperationError(command, self.repo_name, f"not a git repository: {e}") from e

    def _succeeds(self, command: str, *args) -> bool:
        """Run a query command whose exit status is the answer."""
        try:
            self._get_repo().git.execute(["git", command, *args])
            return True
        except git.exc.GitCommandError:
            return False

    @staticmethod
    def clone(url: str, dest: Union[str, Path], repo_name: Optional[str] = None) -> None:
        """Clone ``url`` into ``dest``, creating parent directories."""
        dest = Path(dest)
        dest.parent.mkdir(parents=True, exist_ok=True)
        try:
            git.Repo.clone_from(url, str(dest)).close()
        except git.exc.GitCommandError as e:
            raise GitOperationError("clone", repo_name or dest.name, format_git_error("clone", e)) from e
        logger.info(f"Cloned {url} into {dest}")

    @staticmethod
    def is_git_repo(path: Union[str, Path]) -> bool:
        """Check whether ``path`` is a git checkout."""
        try:
            git.Repo(str(path))
            return True
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
            return False

    def local_branch_exists(self, branch_name: str) -> bool:
        return self._succeeds("show-ref", "--verify", "--quiet", f"refs/heads/{branch_name}")

    def remote_branch_exists(self, branch_name: str) -> bool:
        """Check for a remote-tracking ref ``origin/<branch_name>``."""
        return self._succeeds(
            "show-ref", "--verify", "--quiet", f"refs/remotes/{self.remote_name}/{branch_name}"
        )

    def branch_exists(self, branch_name: str) -> bool:
        return self.local_branch_exists(branch_name) or self.remote_branch_exists(branch_name)

    def get_current_branch(self) -> Optional[str]:
        """Branch checked out in this directory, or None when detached or unreadable."""
        try:
            return self._get_repo().git.symbolic_ref("--short", "HEAD").strip() or None
        except (git.exc.GitCommandError, git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError) as e:
            logger.debug(f"Could not read current branch in {self.repo_path}: {e}")
            return None

    def get_default_branch(self) -> str:
        """Detect the repository's default branch.

        Order: ``origin/HEAD``, then a local ``main`` or ``master``, then the
        currently checked-out branch.
        """
        try:
            ref = self._get_repo().git.symbolic_ref("--short", f"refs/remotes/{self.remote_name}/HEAD")
            prefix = f"{self.remote_name}/"
            if ref.startswith(prefix):
                return ref[len(prefix):]
        except git.exc.GitCommandError:
            logger.debug(f"No {self.remote_name}/HEAD in {self.repo_name}")

        for candidate in ("main", "master"):
            if self.local_branch_exists(candidate):
                return candidate

        return self.get_current_branch() or "main"

    def has_uncommitted_changes(self) -> bool:
        return bool(self._run("status", "--porcelain").strip())

    def get_status_stats(self) -> dict:
        """Count untracked, staged and modified paths from ``git status --porcelain``."""
        stats = {"untracked_files": 0, "staged_files": 0, "modified_files": 0}
        for line in self._run("status", "--porcelain").split("\n"):
            if len(line) < 2:
                continue
            if line.startswith("??"):
                stats["untracked_files"] += 1
                continue
            # XY: X = index, Y = working tree
            if line[0] != " ":
                stats["staged_files"] += 1
            if line[1] != " ":
                stats["modified_files"] += 1
        return stats

    def get_diff_stats(self) -> dict:
        """Parse ``git diff --shortstat HEAD`` for tracked-file changes."""
        output = self._run("diff", "--shortstat", "HEAD")
        stats = {}
        for key, pattern in _SHORTSTAT_RE.items():
            match = pattern.search(output)
            stats[key] = int(match.group(1)) if match else 0
        return stats

    def get_ahead_behind(self, base_branch: str) -> tuple[int, int]:
        """Commits HEAD has that ``base_branch`` lacks, and the reverse."""
        output = self._run("rev-list", "--left-right", "--count", f"HEAD...{base_branch}")
        parts = output.split()
        if len(parts) != 2:
            raise GitOperationError("rev-list", self.repo_name, f"unexpected output '{output}'")
        return int(parts[0]), int(parts[1])

    def is_merged_into(self, base_branch: str) -> bool:
        """True when HEAD is an ancestor of ``base_branch``."""
        try:
            self._get_repo().git.merge_base("--is-ancestor", "HEAD", base_branch)
            return True
        except git.exc.GitCommandError as e:
            if e.status == 1:
                return False
            raise GitOperationError(
                "merge-base --is-ancestor", self.repo_name, format_git_error("merge-base", e)
            ) from e

    def create_worktree(
        self,
        worktree_dir: Union[str, Path],
        branch_name: str,
        source_branch: Optional[str] = None,
    ) -> str:
        """Create a worktree checked out on ``branch_name``.

        With ``source_branch`` the branch is created from it. Otherwise an existing
        local branch is attached, then an existing remote-tracking branch is
        tracked, else a new branch is created from the default branch.

        Returns:
            The ref the worktree was based on
        """
        path = str(worktree_dir)
        wt = self.worktree_service

        if source_branch:
            wt.add_worktree(path, branch_name, new_branch=True, start_point=source_branch)
            return source_branch

        if self.local_branch_exists(branch_name):
            wt.add_worktree(path, branch_name)
            return branch_name

        if self.remote_branch_exists(branch_name):
            remote_ref = f"{self.remote_name}/{branch_name}"
            wt.add_worktree(path, branch_name, new_branch=True, start_point=remote_ref, track=True)
            return remote_ref

        default_branch = self.get_default_branch()
        wt.add_worktree(path, branch_name, new_branch=True, start_point=default_branch)
        return default_branch

    def delete_branch(self, branch_name: str) -> tuple[bool, Optional[str]]:
        """Force-delete a local branch.

        Returns:
            Tuple of (deleted, error_message). A missing branch is (False, None).
        """
        if not self.local_branch_exists(branch_name):
            logger.debug(f"Branch {branch_name} does not exist in {self.repo_name}")
            return False, None
        try:
            self._run("branch", "-D", branch_name)
            logger.info(f"Deleted branch {branch_name} in {self.repo_name}")
            return True, None
        except GitOperationError as e:
            logger.error(str(e))
            return False, str(e)

    def rename_branch(self, old_name: str, new_name: str) -> None:
        self._run("branch", "-m", old_name, new_name)

    def has_remote(self) -> bool:
        try:
            return any(remote.name == self.remote_name for remote in self._get_repo().remotes)
        except (git.exc.InvalidGitRepositoryError, git.exc.NoSuchPathError):
            return False

    def fetch_all(self) -> None:
        self._run("fetch", "--all")

    def fetch_prune(self) -> None:
        self._run("fetch", "--prune")

    def pull(self) -> None:
        self._run("pull")

    def has_upstream(self) -> bool:
        """True when the current branch tracks a remote branch."""
        return self._succeeds("rev-parse", "--abbrev-ref", "--symbolic-full-name", "@{u}")

    def checkout(self, branch_name: str) -> None:
        self._run("checkout", branch_name)

    def checkout_remote_branch(self, branch_name: str) -> None:
        """Create a local branch tracking ``origin/<branch_name>`` and switch to it."""
        self._run("checkout", "-b", branch_name, "--track", f"{self.remote_name}/{branch_name}")

    def stash(self) -> bool:
        """Stash uncommitted changes, returning whether anything was stashed."""
        if not self.has_uncommitted_changes():
            return False
        self._run("stash", "push", "--include-untracked", "-m", "ramp: auto-stash")
        logger.info(f"Stashed changes in {self.repo_name}")
        return True

    def stash_pop(self) -> None:
        self._run("stash", "pop")
