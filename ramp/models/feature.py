"""Feature models, per-call operation state and result records"""
from enum import Enum
from dataclasses import dataclass, field
from typing import Dict, List, Optional


class FeatureCategory(Enum):
    """Feature-level classification across all repositories."""
    IN_FLIGHT = "in-flight"  # needs attention
    MERGED = "merged"
    CLEAN = "clean"


class RefreshStatus(Enum):
    """Outcome of refreshing one source repository."""
    UPDATED = "updated"
    FETCHED = "fetched"  # fetched only, no upstream to pull
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class FeatureWorktreeStatus:
    """Facts about one repository worktree of a feature."""
    repo_name: str
    branch_name: str = ""
    default_branch: str = ""
    has_uncommitted: bool = False
    ahead_count: int = 0
    behind_count: int = 0
    is_merged: bool = False
    files_changed: int = 0
    insertions: int = 0
    deletions: int = 0
    untracked_files: int = 0
    staged_files: int = 0
    modified_files: int = 0
    error: Optional[str] = None

    @property
    def is_unknown(self) -> bool:
        return self.error is not None


@dataclass
class FeatureStatus:
    """A feature together with its per-repository statuses."""
    name: str
    statuses: List[FeatureWorktreeStatus]
    category: FeatureCategory
    display_name: str = ""
    created_at: float = 0.0


@dataclass
class UpState:
    """Side effects applied for one repository during a single Up call."""
    repo_name: str
    worktree_dir: str
    branch_name: str
    branch_existed: bool = False


@dataclass
class RebaseState:
    """Side effects applied for one repository during a single Rebase call."""
    repo_name: str
    original_branch: str
    stashed: bool = False
    branch_exists: bool = False


@dataclass
class UpOptions:
    """Inputs to the Up operation."""
    feature_name: str
    prefix: Optional[str] = None  # None = project default
    no_prefix: bool = False
    target: Optional[str] = None
    force_refresh: bool = False
    skip_refresh: bool = False
    display_name: str = ""

    @classmethod
    def from_remote_branch(cls, remote_branch: str, feature_name: Optional[str] = None, **kwargs) -> "UpOptions":
        """Options for starting a feature from ``origin/<remote_branch>``.

        The part up to the last slash becomes the prefix and the rest the
        feature name, so ``feature/login`` yields branch ``feature/login``.
        """
        remote_branch = remote_branch.strip().strip("/")
        prefix, _, name = remote_branch.rpartition("/")
        if prefix:
            kwargs["prefix"] = prefix + "/"
        else:
            kwargs["no_prefix"] = True
        return cls(
            feature_name=(feature_name or name).rstrip("/"),
            target=f"origin/{remote_branch}",
            **kwargs,
        )


@dataclass
class DownOptions:
    """Inputs to the Down operation."""
    feature_name: str
    prefix: Optional[str] = None
    force: bool = False


@dataclass
class UpResult:
    feature_name: str
    trees_dir: str
    branches: Dict[str, str] = field(default_factory=dict)  # repo -> branch
    source_branches: Dict[str, Optional[str]] = field(default_factory=dict)
    ports: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class DownResult:
    feature_name: str
    removed_worktrees: List[str] = field(default_factory=list)
    deleted_branches: List[str] = field(default_factory=list)
    released_ports: List[int] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class RenameResult:
    old_name: str
    new_name: str
    branches: Dict[str, str] = field(default_factory=dict)  # repo -> new branch
    warnings: List[str] = field(default_factory=list)


@dataclass
class RebaseResult:
    branch: str
    switched: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class InstallResult:
    cloned: List[str] = field(default_factory=list)
    present: List[str] = field(default_factory=list)


@dataclass
class PruneResult:
    """Tally of a pruning batch."""
    candidates: List[str] = field(default_factory=list)
    succeeded: List[str] = field(default_factory=list)
    failed: Dict[str, str] = field(default_factory=dict)
    cancelled: bool = False


@dataclass
class RefreshResult:
    repo_name: str
    status: RefreshStatus
    message: str = ""
