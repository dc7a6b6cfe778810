"""Feature status service: per-worktree facts and feature classification."""

import os
from typing import Dict, Iterable, List, Optional

from ramp.config import Project
from ramp.constants import WORKTREE_NOT_FOUND
from ramp.exceptions import GitOperationError
from ramp.logging_config import get_logger
from ramp.models.feature import FeatureCategory, FeatureStatus, FeatureWorktreeStatus
from ramp.services.git.operations import GitOperations
from ramp.services.metadata_service import MetadataStore

logger = get_logger(__name__)


def needs_attention(statuses: Iterable[FeatureWorktreeStatus]) -> bool:
    """Any repository has uncommitted changes or unmerged commits ahead."""
    return any(
        s.has_uncommitted or (s.ahead_count > 0 and not s.is_merged)
        for s in statuses
    )


def is_merged(statuses: List[FeatureWorktreeStatus]) -> bool:
    """Every repository is merged, clean, not ahead and behind its default branch.

    Requiring ``behind_count > 0`` separates a merged feature from one that
    never had a commit and still sits at the tip of the default branch.
    """
    if not statuses:
        return False
    return all(
        not s.is_unknown
        and not s.has_uncommitted
        and s.ahead_count == 0
        and s.behind_count > 0
        and s.is_merged
        for s in statuses
    )


def classify_feature(statuses: List[FeatureWorktreeStatus]) -> FeatureCategory:
    """Reduce per-repository statuses to exactly one feature category."""
    if needs_attention(statuses):
        return FeatureCategory.IN_FLIGHT
    if is_merged(statuses):
        return FeatureCategory.MERGED
    return FeatureCategory.CLEAN


class FeatureStatusService:
    """Computes feature statuses fresh from git on every call."""

    def __init__(self, project: Project):
        self.project = project
        self.metadata = MetadataStore(project.root)

    def _default_branch(self, repo_name: str) -> str:
        source = self.project.repo_paths()[repo_name]
        return GitOperations(source, repo_name).get_default_branch()

    def get_worktree_status(self, feature_name: str, repo_name: str) -> FeatureWorktreeStatus:
        """Collect uncommitted/ahead/behind/merged facts for one worktree.

        A missing worktree is reported through ``error`` rather than as zeroed facts.
        """
        status = FeatureWorktreeStatus(repo_name=repo_name)
        worktree_path = self.project.worktree_path(feature_name, repo_name)

        if not worktree_path.is_dir():
            status.error = WORKTREE_NOT_FOUND
            return status

        try:
            status.default_branch = self._default_branch(repo_name)
            git_ops = GitOperations(worktree_path, repo_name)
            status.branch_name = git_ops.get_current_branch() or ""

            file_stats = git_ops.get_status_stats()
            status.untracked_files = file_stats["untracked_files"]
            status.staged_files = file_stats["staged_files"]
            status.modified_files = file_stats["modified_files"]
            status.has_uncommitted = any(file_stats.values())

            if status.has_uncommitted:
                diff_stats = git_ops.get_diff_stats()
                status.files_changed = diff_stats["files_changed"]
                status.insertions = diff_stats["insertions"]
                status.deletions = diff_stats["deletions"]

            status.ahead_count, status.behind_count = git_ops.get_ahead_behind(status.default_branch)
            status.is_merged = git_ops.is_merged_into(status.default_branch)
        except GitOperationError as e:
            logger.warning(str(e))
            status.error = str(e)

        return status

    def get_feature_statuses(self, feature_name: str) -> List[FeatureWorktreeStatus]:
        return [
            self.get_worktree_status(feature_name, repo_name)
            for repo_name in self.project.config.get_repos()
        ]

    def list_features(self) -> List[str]:
        """Feature directories under ``trees/``, oldest first."""
        trees_dir = self.project.trees_dir
        if not trees_dir.is_dir():
            return []
        entries = [entry for entry in os.scandir(trees_dir) if entry.is_dir()]
        entries.sort(key=lambda entry: (entry.stat().st_mtime, entry.name))
        return [entry.name for entry in entries]

    def get_feature_status(self, feature_name: str, display_name: Optional[str] = None) -> FeatureStatus:
        statuses = self.get_feature_statuses(feature_name)
        created_at = 0.0
        try:
            created_at = self.project.feature_dir(feature_name).stat().st_mtime
        except OSError:
            pass
        if display_name is None:
            display_name = self.metadata.get_display_name(feature_name)
        return FeatureStatus(
            name=feature_name,
            statuses=statuses,
            category=classify_feature(statuses),
            display_name=display_name,
            created_at=created_at,
        )

    def scan_features(self) -> List[FeatureStatus]:
        """Classify every feature in the project."""
        metadata = self.metadata.all()
        return [
            self.get_feature_status(name, metadata.get(name, {}).get("displayName", ""))
            for name in self.list_features()
        ]

    def summarize(self, features: Optional[List[FeatureStatus]] = None) -> Dict[FeatureCategory, List[FeatureStatus]]:
        """Group features by category, each group keeping scan order."""
        if features is None:
            features = self.scan_features()
        groups: Dict[FeatureCategory, List[FeatureStatus]] = {category: [] for category in FeatureCategory}
        for feature in features:
            groups[feature.category].append(feature)
        return groups
