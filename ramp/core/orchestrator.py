"""Feature lifecycle orchestration across all project repositories"""

import os
import shutil
from functools import partial
from pathlib import Path
from typing import Dict, List, Optional

from ramp.config import Project
from ramp.constants import PROJECT_LOCK_FILE
from ramp.core.rollback import RollbackLog
from ramp.exceptions import (
    FeatureExistsError,
    FeatureNotFoundError,
    GitOperationError,
    OperationAbortedError,
    RampError,
    ValidationError,
)
from ramp.logging_config import get_logger
from ramp.models.feature import (
    DownOptions,
    DownResult,
    InstallResult,
    RebaseResult,
    RebaseState,
    RefreshStatus,
    RenameResult,
    UpOptions,
    UpResult,
    UpState,
)
from ramp.services.display_service import Reporter
from ramp.services.envfile_service import EnvFileService
from ramp.services.git.branch_resolver import BranchResolver
from ramp.services.git.operations import GitOperations
from ramp.services.metadata_service import MetadataStore
from ramp.services.port_service import PortAllocator
from ramp.services.refresh_service import RefreshService
from ramp.services.script_service import ScriptService, build_script_env
from ramp.utils.locking import exclusive_lock

logger = get_logger(__name__)


def validate_feature_name(name: str) -> str:
    """Reject empty names and names containing a path separator."""
    if not name or not name.strip():
        raise ValidationError("Feature name cannot be empty")
    name = name.strip()
    if "/" in name or os.sep in name:
        raise ValidationError(f"Feature name '{name}' cannot contain slashes")
    if name in (".", ".."):
        raise ValidationError(f"Feature name '{name}' is not allowed")
    return name


class FeatureOrchestrator:
    """Drives Up, Down, Rename and Rebase over every configured repository.

    Repositories are processed sequentially so the rollback log always knows
    exactly which steps were applied. Mutating operations hold an exclusive
    project lock for their whole duration.
    """

    def __init__(
        self,
        project: Project,
        reporter: Optional[Reporter] = None,
        script_service: Optional[ScriptService] = None,
        refresh_service: Optional[RefreshService] = None,
        resolver: Optional[BranchResolver] = None,
    ):
        self.project = project
        self.config = project.config
        self.reporter = reporter or Reporter(quiet=True)
        self.script_service = script_service or ScriptService(project)
        self.refresh_service = refresh_service or RefreshService(project)
        self.resolver = resolver or BranchResolver()
        self.metadata = MetadataStore(project.root)
        self.env_files = EnvFileService(project)
        self.port_allocator: Optional[PortAllocator] = None
        if self.config.has_port_config():
            self.port_allocator = PortAllocator(project.root, self.config.base_port, self.config.max_ports)
        self.lock_path = project.ramp_dir / PROJECT_LOCK_FILE

    def effective_prefix(self, prefix: Optional[str] = None, no_prefix: bool = False) -> str:
        if no_prefix:
            return ""
        if prefix is not None:
            return prefix
        return self.config.default_branch_prefix

    def _source_ops(self) -> Dict[str, GitOperations]:
        return {
            name: GitOperations(path, name)
            for name, path in self.project.repo_paths().items()
        }

    def _feature_ports(self, feature_name: str) -> List[int]:
        if self.port_allocator is None:
            return []
        ports, _ = self.port_allocator.get_ports(feature_name)
        return ports

    # ------------------------------------------------------------------ up

    def up(self, options: UpOptions) -> UpResult:
        """Create a feature: one worktree and branch per repository, ports, setup.

        Any failure after validation rolls back every side effect of this call
        before the original error is re-raised.
        """
        feature_name = validate_feature_name(options.feature_name)
        prefix = self.effective_prefix(options.prefix, options.no_prefix)

        with exclusive_lock(self.lock_path):
            warnings = self._refresh_before_up(options)
            result = self._up_locked(feature_name, prefix, options)
            result.warnings = warnings + result.warnings
            return result

    def _refresh_before_up(self, options: UpOptions) -> List[str]:
        if options.skip_refresh:
            return []
        results = self.refresh_service.refresh_for_up(force=options.force_refresh)
        warnings = []
        for r in results:
            if r.status == RefreshStatus.FAILED:
                message = f"{r.repo_name}: refresh failed: {r.message}"
                self.reporter.warning(message)
                warnings.append(message)
        return warnings

    def _validate_up(
        self, feature_name: str, prefix: str, target: Optional[str], ops: Dict[str, GitOperations]
    ) -> tuple[Dict[str, UpState], Dict[str, Optional[str]], List[str]]:
        """Check every precondition of Up without mutating anything but stale git metadata."""
        branch_name = prefix + feature_name
        warnings: List[str] = []

        for name, git_ops in ops.items():
            if not GitOperations.is_git_repo(git_ops.repo_path):
                raise ValidationError(f"Source repo '{name}' not found at {git_ops.repo_path}")

            # Drop registrations whose worktree directory was deleted by hand
            git_ops.worktree_service.prune_worktrees()

            worktree_dir = self.project.worktree_path(feature_name, name)
            if worktree_dir.exists():
                raise FeatureExistsError(feature_name, str(worktree_dir))

        source_branches: Dict[str, Optional[str]] = {name: None for name in ops}
        if target:
            repo_dirs = {name: git_ops.repo_path for name, git_ops in ops.items()}
            source_branches = self.resolver.resolve_all(repo_dirs, target, prefix)
            if all(source is None for source in source_branches.values()):
                raise ValidationError(f"Target '{target}' not found in any repository")

            for name, source in source_branches.items():
                if source is None:
                    message = f"{name}: target '{target}' not found, using default branch"
                    self.reporter.warning(message)
                    warnings.append(message)
                    continue
                if ops[name].local_branch_exists(branch_name):
                    raise ValidationError(
                        f"Branch {branch_name} already exists locally in repository {name}"
                    )
                self.reporter.info(f"{name}: resolved target '{target}' to {source}")

        states = {
            name: UpState(
                repo_name=name,
                worktree_dir=str(self.project.worktree_path(feature_name, name)),
                branch_name=branch_name,
                branch_existed=git_ops.local_branch_exists(branch_name),
            )
            for name, git_ops in ops.items()
        }
        return states, source_branches, warnings

    def _up_locked(self, feature_name: str, prefix: str, options: UpOptions) -> UpResult:
        ops = self._source_ops()
        states, source_branches, warnings = self._validate_up(feature_name, prefix, options.target, ops)

        feature_dir = self.project.feature_dir(feature_name)
        result = UpResult(feature_name=feature_name, trees_dir=str(feature_dir), warnings=warnings)
        log = RollbackLog(f"up {feature_name}")

        try:
            if not feature_dir.exists():
                feature_dir.mkdir(parents=True)
                log.record(f"create {feature_dir}", partial(shutil.rmtree, feature_dir))

            for name, git_ops in ops.items():
                self._create_worktree(git_ops, states[name], source_branches.get(name), log)
                result.branches[name] = states[name].branch_name
                result.source_branches[name] = source_branches.get(name)

            if self.port_allocator is not None:
                result.ports = self.port_allocator.allocate(feature_name, self.config.ports_per_feature)
                log.record(
                    f"allocate ports {result.ports}",
                    partial(self.port_allocator.release, feature_name),
                )
                self.reporter.success(f"Allocated port(s) {', '.join(map(str, result.ports))}")

            self._write_env_files(feature_name, options, result, log)

            if options.display_name:
                self.metadata.set_display_name(feature_name, options.display_name)
                log.record("set display name", partial(self.metadata.remove, feature_name))

            if self.config.setup:
                self.reporter.info(f"Running setup script: {self.config.setup}")
                self.script_service.run_setup(feature_name, result.ports, options.display_name)
                self.reporter.success("Setup script completed")
        except (Exception, KeyboardInterrupt) as e:
            self.reporter.error(f"Failed to create feature '{feature_name}': {e}")
            if len(log):
                self.reporter.warning("Rolling back changes")
            errors = log.rollback(self.reporter)
            if errors:
                logger.error(f"Rollback of '{feature_name}' left {len(errors)} step(s) undone")
            raise

        log.clear()
        self.reporter.success(f"Feature '{feature_name}' created at {feature_dir}")
        for message in self.script_service.run_hooks("up", feature_name, result.ports, options.display_name):
            self.reporter.warning(message)
            result.warnings.append(message)
        return result

    def _write_env_files(self, feature_name: str, options: UpOptions, result: UpResult, log: RollbackLog) -> None:
        """Copy each repository's env files into its new worktree."""
        repos = self.config.get_repos()
        if not any(repo.env_files for repo in repos.values()):
            return

        env = build_script_env(self.project, feature_name, result.ports, options.display_name)
        for name, repo in repos.items():
            if not repo.env_files:
                continue
            if options.force_refresh:
                refresh = True
            elif options.skip_refresh:
                refresh = False
            else:
                refresh = repo.auto_refresh

            written = []
            log.record(f"write env files in {name}", partial(self.env_files.restore, written))
            warnings = self.env_files.process(
                name,
                repo.env_files,
                repo.source_path(self.project.root),
                self.project.worktree_path(feature_name, name),
                env,
                refresh=refresh,
                written=written,
            )
            for message in warnings:
                self.reporter.warning(message)
            result.warnings.extend(warnings)
        self.reporter.success("Environment files processed")

    def _create_worktree(
        self,
        git_ops: GitOperations,
        state: UpState,
        source_branch: Optional[str],
        log: RollbackLog,
    ) -> None:
        """Create one worktree and record its inverse (and its branch's, when new)."""
        name = state.repo_name
        try:
            base = git_ops.create_worktree(state.worktree_dir, state.branch_name, source_branch)
        except GitOperationError:
            # `worktree add -b` can leave the new branch behind when checkout fails
            if not state.branch_existed and git_ops.local_branch_exists(state.branch_name):
                git_ops.delete_branch(state.branch_name)
            raise

        if not state.branch_existed:
            log.record(
                f"create branch {state.branch_name} in {name}",
                partial(self._undo_branch, git_ops, state.branch_name),
            )
        log.record(
            f"create worktree {state.worktree_dir}",
            partial(self._undo_worktree, git_ops, state.worktree_dir),
        )
        self.reporter.success(f"{name}: worktree on {state.branch_name} (from {base})")

    @staticmethod
    def _undo_worktree(git_ops: GitOperations, worktree_dir: str) -> None:
        ok, error = git_ops.worktree_service.remove_worktree(worktree_dir, force=True)
        if not ok:
            raise GitOperationError("worktree remove", git_ops.repo_name, error)

    @staticmethod
    def _undo_branch(git_ops: GitOperations, branch_name: str) -> None:
        _, error = git_ops.delete_branch(branch_name)
        if error:
            raise GitOperationError("branch -D", git_ops.repo_name, error)

    # ------------------------------------------------------------- install

    def install(self) -> InstallResult:
        """Clone every configured repository that is not checked out yet."""
        result = InstallResult()
        with exclusive_lock(self.lock_path):
            for name, repo in self.config.get_repos().items():
                dest = repo.source_path(self.project.root)
                if GitOperations.is_git_repo(dest):
                    result.present.append(name)
                    self.reporter.info(f"{name}: already present at {dest}")
                    continue
                if dest.exists() and any(dest.iterdir()):
                    raise ValidationError(f"{dest} exists and is not a git repository")
                self.reporter.info(f"{name}: cloning {repo.git}")
                GitOperations.clone(repo.git, dest, name)
                result.cloned.append(name)
                self.reporter.success(f"{name}: cloned into {dest}")
        return result

    # ---------------------------------------------------------------- down

    def down(self, options: DownOptions) -> DownResult:
        """Tear a feature down, tolerating worktrees and directories already gone.

        Per-repository failures become warnings; the remaining steps still run.
        """
        feature_name = validate_feature_name(options.feature_name)
        prefix = self.effective_prefix(options.prefix)
        branch_fallback = prefix + feature_name

        with exclusive_lock(self.lock_path):
            ops = {
                name: git_ops
                for name, git_ops in self._source_ops().items()
                if GitOperations.is_git_repo(git_ops.repo_path)
            }
            feature_dir = self.project.feature_dir(feature_name)
            trees_exists = feature_dir.is_dir()

            if not trees_exists and not self._has_git_traces(feature_name, branch_fallback, ops):
                raise FeatureNotFoundError(feature_name)

            result = DownResult(feature_name=feature_name)
            if not trees_exists:
                message = f"Trees directory {feature_dir} is missing, cleaning up git state"
                self.reporter.warning(message)
                result.warnings.append(message)
            elif not options.force:
                self._confirm_uncommitted(feature_name, ops)

            ports = self._feature_ports(feature_name)
            display_name = self.metadata.get_display_name(feature_name)

            if trees_exists:
                for message in self.script_service.run_hooks("down", feature_name, ports, display_name):
                    self.reporter.warning(message)
                    result.warnings.append(message)

            if trees_exists and self.config.cleanup:
                self.reporter.info(f"Running cleanup script: {self.config.cleanup}")
                warning = self.script_service.run_cleanup(feature_name, ports, display_name)
                if warning:
                    self.reporter.warning(warning)
                    result.warnings.append(warning)

            for name, git_ops in ops.items():
                self._down_repo(feature_name, branch_fallback, git_ops, result)

            if self.port_allocator is not None:
                result.released_ports = self.port_allocator.release(feature_name)

            self.metadata.remove(feature_name)

            if feature_dir.exists():
                try:
                    shutil.rmtree(feature_dir)
                except OSError as e:
                    message = f"Failed to remove {feature_dir}: {e}"
                    self.reporter.warning(message)
                    result.warnings.append(message)

        self.reporter.success(f"Feature '{feature_name}' removed")
        return result

    def _has_git_traces(self, feature_name: str, branch_name: str, ops: Dict[str, GitOperations]) -> bool:
        """A registered worktree or an existing branch proves the feature exists."""
        for name, git_ops in ops.items():
            if git_ops.worktree_service.is_registered(str(self.project.worktree_path(feature_name, name))):
                return True
            if git_ops.local_branch_exists(branch_name):
                return True
        return False

    def _confirm_uncommitted(self, feature_name: str, ops: Dict[str, GitOperations]) -> None:
        """Safety gate: ask once before discarding uncommitted work."""
        dirty = []
        for name in ops:
            worktree_dir = self.project.worktree_path(feature_name, name)
            if not worktree_dir.is_dir():
                continue
            try:
                if GitOperations(worktree_dir, name).has_uncommitted_changes():
                    dirty.append(name)
            except GitOperationError as e:
                # Status unknown counts as dirty
                logger.warning(str(e))
                dirty.append(name)

        if not dirty:
            return

        self.reporter.warning(f"Uncommitted changes in: {', '.join(dirty)}")
        if not self.reporter.confirm(f"Remove feature '{feature_name}' and discard these changes?"):
            raise OperationAbortedError("down", f"uncommitted changes in {', '.join(dirty)}")

    def _down_repo(
        self, feature_name: str, branch_fallback: str, git_ops: GitOperations, result: DownResult
    ) -> None:
        name = git_ops.repo_name
        worktree_dir = self.project.worktree_path(feature_name, name)
        registered = git_ops.worktree_service.find_worktree(str(worktree_dir))

        branch_name = None
        if worktree_dir.is_dir():
            branch_name = GitOperations(worktree_dir, name).get_current_branch()
        if not branch_name and registered and registered.branch_name:
            branch_name = registered.branch_name
        if not branch_name:
            branch_name = branch_fallback

        if worktree_dir.exists() or registered:
            ok, error = git_ops.worktree_service.remove_worktree(str(worktree_dir), force=True)
            if ok:
                result.removed_worktrees.append(str(worktree_dir))
                self.reporter.success(f"{name}: removed worktree")
            else:
                message = f"{name}: failed to remove worktree: {error}"
                self.reporter.warning(message)
                result.warnings.append(message)

        deleted, error = git_ops.delete_branch(branch_name)
        if deleted:
            result.deleted_branches.append(f"{name}:{branch_name}")
            self.reporter.success(f"{name}: deleted branch {branch_name}")
        elif error:
            message = f"{name}: failed to delete branch {branch_name}: {error}"
            self.reporter.warning(message)
            result.warnings.append(message)

        if git_ops.has_remote():
            try:
                git_ops.fetch_prune()
            except GitOperationError as e:
                message = f"{name}: failed to prune remote-tracking branches: {e}"
                self.reporter.warning(message)
                result.warnings.append(message)

    # -------------------------------------------------------------- rename

    def rename(
        self,
        old_name: str,
        new_name: str,
        prefix: Optional[str] = None,
        display_name: Optional[str] = None,
    ) -> RenameResult:
        """Rename a feature's branches, move its worktrees and re-key its ports."""
        old_name = validate_feature_name(old_name)
        new_name = validate_feature_name(new_name)
        prefix = self.effective_prefix(prefix)

        with exclusive_lock(self.lock_path):
            old_dir = self.project.feature_dir(old_name)
            new_dir = self.project.feature_dir(new_name)
            if not old_dir.is_dir():
                raise FeatureNotFoundError(old_name)
            if new_dir.exists():
                raise FeatureExistsError(new_name, str(new_dir))

            result = RenameResult(old_name=old_name, new_name=new_name)
            plan = self._plan_rename(old_name, new_name, prefix, result)
            log = RollbackLog(f"rename {old_name}")

            try:
                new_dir.mkdir(parents=True)
                log.record(f"create {new_dir}", partial(shutil.rmtree, new_dir))

                for git_ops, old_branch, new_branch in plan:
                    name = git_ops.repo_name
                    if old_branch != new_branch:
                        git_ops.rename_branch(old_branch, new_branch)
                        log.record(
                            f"rename {old_branch} -> {new_branch} in {name}",
                            partial(git_ops.rename_branch, new_branch, old_branch),
                        )
                    old_wt = str(self.project.worktree_path(old_name, name))
                    new_wt = str(self.project.worktree_path(new_name, name))
                    git_ops.worktree_service.move_worktree(old_wt, new_wt)
                    log.record(
                        f"move {old_wt} -> {new_wt}",
                        partial(git_ops.worktree_service.move_worktree, new_wt, old_wt),
                    )
                    result.branches[name] = new_branch
                    self.reporter.success(f"{name}: {old_branch} -> {new_branch}")

                if self.port_allocator is not None:
                    self.port_allocator.rename(old_name, new_name)
                    log.record("re-key ports", partial(self.port_allocator.rename, new_name, old_name))

                self.metadata.rename(old_name, new_name)
                log.record("re-key metadata", partial(self.metadata.rename, new_name, old_name))
            except (Exception, KeyboardInterrupt) as e:
                self.reporter.error(f"Failed to rename '{old_name}' to '{new_name}': {e}")
                log.rollback(self.reporter)
                raise

            log.clear()

            if display_name is not None:
                self.metadata.set_display_name(new_name, display_name)

            self._remove_leftover_dir(old_dir, result)

            if self.config.setup:
                try:
                    self.script_service.run_setup(
                        new_name, self._feature_ports(new_name), self.metadata.get_display_name(new_name)
                    )
                except RampError as e:
                    message = f"Setup script failed after rename: {e}"
                    self.reporter.warning(message)
                    result.warnings.append(message)

        self.reporter.success(f"Renamed feature '{old_name}' to '{new_name}'")
        return result

    def _plan_rename(
        self, old_name: str, new_name: str, prefix: str, result: RenameResult
    ) -> List[tuple[GitOperations, str, str]]:
        """Work out and validate every branch rename before touching anything."""
        plan = []
        for name, git_ops in self._source_ops().items():
            old_wt = self.project.worktree_path(old_name, name)
            if not old_wt.is_dir():
                message = f"{name}: no worktree found at {old_wt}"
                self.reporter.warning(message)
                result.warnings.append(message)
                continue

            old_branch = GitOperations(old_wt, name).get_current_branch()
            if old_branch is None:
                old_branch = prefix + old_name
                new_branch = prefix + new_name
            elif old_branch == prefix + old_name:
                new_branch = prefix + new_name
            else:
                new_branch = old_branch.replace(old_name, new_name, 1)

            if new_branch != old_branch and git_ops.local_branch_exists(new_branch):
                raise ValidationError(f"Branch {new_branch} already exists in repository {name}")
            plan.append((git_ops, old_branch, new_branch))
        return plan

    def _remove_leftover_dir(self, old_dir: Path, result: RenameResult) -> None:
        """Carry non-worktree files over to the new trees directory, then drop the old one."""
        new_dir = self.project.feature_dir(result.new_name)
        try:
            for entry in old_dir.iterdir():
                destination = new_dir / entry.name
                if destination.exists():
                    logger.warning(f"Leaving {entry} in place: {destination} already exists")
                    continue
                shutil.move(str(entry), str(destination))
            old_dir.rmdir()
        except OSError as e:
            message = f"Could not remove {old_dir}: {e}"
            self.reporter.warning(message)
            result.warnings.append(message)

    # -------------------------------------------------------------- rebase

    def rebase(self, branch_name: str, force: bool = False) -> RebaseResult:
        """Switch every source repository that has ``branch_name`` onto it.

        Repositories without the branch are skipped. Uncommitted changes are
        stashed after confirmation and restored once all switches succeeded.
        """
        if not branch_name or not branch_name.strip():
            raise ValidationError("Branch name cannot be empty")
        branch_name = branch_name.strip()

        with exclusive_lock(self.lock_path):
            ops = self._source_ops()
            states: Dict[str, RebaseState] = {}
            for name, git_ops in ops.items():
                if not GitOperations.is_git_repo(git_ops.repo_path):
                    raise ValidationError(f"Source repo '{name}' not found at {git_ops.repo_path}")
                current = git_ops.get_current_branch()
                if current is None:
                    raise ValidationError(f"Repository {name} is in detached HEAD state")
                states[name] = RebaseState(
                    repo_name=name,
                    original_branch=current,
                    branch_exists=git_ops.branch_exists(branch_name),
                )

            if not any(state.branch_exists for state in states.values()):
                raise ValidationError(f"Branch '{branch_name}' not found in any repository")

            result = RebaseResult(branch=branch_name)
            log = RollbackLog(f"rebase {branch_name}")

            try:
                dirty = [name for name, git_ops in ops.items() if git_ops.has_uncommitted_changes()]
                if dirty:
                    self.reporter.warning(f"Uncommitted changes in: {', '.join(dirty)}")
                    if not force and not self.reporter.confirm("Stash changes and continue?"):
                        raise OperationAbortedError("rebase", "uncommitted changes were not stashed")
                    for name in dirty:
                        states[name].stashed = ops[name].stash()
                        if states[name].stashed:
                            log.record(f"stash in {name}", ops[name].stash_pop)

                for name, git_ops in ops.items():
                    state = states[name]
                    if not state.branch_exists:
                        result.skipped.append(name)
                        self.reporter.info(f"{name}: skipped (branch doesn't exist)")
                        continue
                    if state.original_branch == branch_name:
                        result.skipped.append(name)
                        self.reporter.info(f"{name}: already on {branch_name}")
                        continue

                    if git_ops.local_branch_exists(branch_name):
                        git_ops.checkout(branch_name)
                    else:
                        git_ops.checkout_remote_branch(branch_name)
                        log.record(
                            f"create branch {branch_name} in {name}",
                            partial(self._undo_branch, git_ops, branch_name),
                        )
                    log.record(
                        f"checkout {branch_name} in {name}",
                        partial(git_ops.checkout, state.original_branch),
                    )
                    result.switched.append(name)
                    self.reporter.success(f"{name}: switched to {branch_name}")
            except (Exception, KeyboardInterrupt) as e:
                self.reporter.error(f"Failed to switch to '{branch_name}': {e}")
                log.rollback(self.reporter)
                raise

            log.clear()

            for name, state in states.items():
                if not state.stashed:
                    continue
                try:
                    ops[name].stash_pop()
                except GitOperationError as e:
                    message = f"{name}: failed to restore stashed changes ({e}); run 'git stash pop' manually"
                    self.reporter.warning(message)
                    result.warnings.append(message)

        return result
