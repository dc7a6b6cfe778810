"""Resolve a ``--target`` into the ref each repository should branch from."""

from pathlib import Path
from typing import Dict, Optional, Union

from ramp.constants import REMOTE_NAME
from ramp.logging_config import get_logger
from ramp.services.git.operations import GitOperations

logger = get_logger(__name__)


class BranchResolver:
    """Decide, per repository, which ref a new feature branch starts from.

    A target may name a remote branch (``origin/x``), a local branch, or an
    existing feature (translated to ``prefix + target``). Resolution order is
    exact remote match, exact local match, then feature translation. Not finding
    the target in a repository is an expected outcome and yields None.
    """

    def __init__(self, remote_name: str = REMOTE_NAME):
        self.remote_name = remote_name

    def resolve(self, repo_dir: Union[str, Path], target: str, prefix: str = "") -> Optional[str]:
        """Return the source ref for ``target`` in ``repo_dir``, or None if absent."""
        if not target:
            return None

        git_ops = GitOperations(repo_dir)
        remote_prefix = f"{self.remote_name}/"

        # Exact remote match: an explicit origin/<branch>
        if target.startswith(remote_prefix):
            if git_ops.remote_branch_exists(target[len(remote_prefix):]):
                return target

        # Exact local match, then the same name on the remote
        if git_ops.local_branch_exists(target):
            return target
        if git_ops.remote_branch_exists(target):
            return f"{remote_prefix}{target}"

        # Feature-name translation
        if prefix and not target.startswith(prefix):
            feature_branch = f"{prefix}{target}"
            if git_ops.local_branch_exists(feature_branch):
                return feature_branch
            if git_ops.remote_branch_exists(feature_branch):
                return f"{remote_prefix}{feature_branch}"

        logger.debug(f"Target '{target}' not found in {git_ops.repo_name}")
        return None

    def resolve_all(
        self, repo_dirs: Dict[str, Union[str, Path]], target: str, prefix: str = ""
    ) -> Dict[str, Optional[str]]:
        """Resolve ``target`` independently in every repository."""
        return {name: self.resolve(path, target, prefix) for name, path in repo_dirs.items()}
