"""Tests for renaming features and switching source repositories (Rebase)"""
from unittest.mock import patch

import git
import pytest

from ramp.core.orchestrator import FeatureOrchestrator
from ramp.exceptions import (
    FeatureExistsError,
    FeatureNotFoundError,
    GitOperationError,
    OperationAbortedError,
    PortAllocationError,
    ValidationError,
)
from ramp.models.feature import UpOptions
from ramp.services.display_service import Reporter
from ramp.services.git.operations import GitOperations
from ramp.services.metadata_service import MetadataStore
from ramp.services.port_service import PortAllocator


def _branches(source_path):
    return {head.name for head in git.Repo(str(source_path)).heads}


def _up(orchestrator, name, **kwargs):
    return orchestrator.up(UpOptions(feature_name=name, skip_refresh=True, **kwargs))


class TestRename:
    """Test renaming a feature."""

    def test_rename(self, orchestrator, project):
        _up(orchestrator, "alpha", display_name="Alpha")
        (project.feature_dir("alpha") / "notes.txt").write_text("keep me\n")

        result = orchestrator.rename("alpha", "beta")

        assert result.branches == {"app": "feature/beta", "api": "feature/beta"}
        assert not project.feature_dir("alpha").exists()
        assert (project.feature_dir("beta") / "notes.txt").read_text() == "keep me\n"
        for repo_name, source in project.repo_paths().items():
            assert "feature/beta" in _branches(source)
            assert "feature/alpha" not in _branches(source)
            worktree = project.worktree_path("beta", repo_name)
            assert GitOperations(worktree).get_current_branch() == "feature/beta"
        assert PortAllocator(project.root, 3000, 10).list_allocations() == {"beta": [3000]}
        assert MetadataStore(project.root).get_display_name("beta") == "Alpha"

    def test_rename_sets_display_name(self, orchestrator, project):
        _up(orchestrator, "alpha")
        orchestrator.rename("alpha", "beta", display_name="Beta feature")
        assert MetadataStore(project.root).get_display_name("beta") == "Beta feature"

    def test_rename_missing_feature(self, orchestrator):
        with pytest.raises(FeatureNotFoundError):
            orchestrator.rename("ghost", "beta")

    def test_rename_onto_existing_feature(self, orchestrator):
        _up(orchestrator, "alpha")
        _up(orchestrator, "beta")
        with pytest.raises(FeatureExistsError):
            orchestrator.rename("alpha", "beta")

    def test_rename_onto_existing_branch(self, orchestrator, project):
        _up(orchestrator, "alpha")
        git.Repo(str(project.repo_paths()["api"])).git.branch("feature/beta")

        with pytest.raises(ValidationError, match="feature/beta"):
            orchestrator.rename("alpha", "beta")

        assert project.feature_dir("alpha").is_dir()
        assert not project.feature_dir("beta").exists()
        assert "feature/alpha" in _branches(project.repo_paths()["app"])

    def test_rename_rolls_back(self, orchestrator, project):
        _up(orchestrator, "alpha")

        failure = PortAllocationError("rename", "simulated failure")
        with patch.object(orchestrator.port_allocator, "rename", side_effect=failure):
            with pytest.raises(PortAllocationError):
                orchestrator.rename("alpha", "beta")

        assert not project.feature_dir("beta").exists()
        for repo_name, source in project.repo_paths().items():
            assert "feature/alpha" in _branches(source)
            assert "feature/beta" not in _branches(source)
            worktree = project.worktree_path("alpha", repo_name)
            assert GitOperations(worktree).get_current_branch() == "feature/alpha"

    def test_setup_failure_after_rename_is_a_warning(self, write_config, write_script, reporter):
        project = write_config()
        orchestrator = FeatureOrchestrator(project, reporter=reporter)
        _up(orchestrator, "alpha")

        write_script("setup.sh", "exit 4")
        project = write_config(setup="setup.sh")
        result = FeatureOrchestrator(project, reporter=reporter).rename("alpha", "beta")

        assert any("exit code 4" in w for w in result.warnings)
        assert project.feature_dir("beta").is_dir()


class TestRebase:
    """Test switching every source repository to a branch."""

    def _current(self, project, repo_name):
        return GitOperations(project.repo_paths()[repo_name]).get_current_branch()

    def test_switches_local_and_remote_branches(self, orchestrator, project):
        git.Repo(str(project.repo_paths()["app"])).git.branch("release")
        api = git.Repo(str(project.repo_paths()["api"]))
        api.git.branch("release")
        api.git.push("origin", "release")
        api.git.branch("-D", "release")

        result = orchestrator.rebase("release")

        assert result.switched == ["app", "api"]
        assert result.skipped == []
        assert self._current(project, "app") == "release"
        assert self._current(project, "api") == "release"

    def test_skips_repositories_without_branch(self, orchestrator, project):
        git.Repo(str(project.repo_paths()["app"])).git.branch("release")

        result = orchestrator.rebase("release")

        assert result.switched == ["app"]
        assert result.skipped == ["api"]
        assert self._current(project, "api") == "main"

    def test_already_on_branch(self, orchestrator, project):
        result = orchestrator.rebase("main")
        assert result.switched == []
        assert result.skipped == ["app", "api"]

    def test_branch_missing_everywhere(self, orchestrator):
        with pytest.raises(ValidationError, match="not found in any repository"):
            orchestrator.rebase("nowhere")

    def test_detached_head_refused(self, orchestrator, project):
        git.Repo(str(project.repo_paths()["app"])).git.checkout("--detach")
        with pytest.raises(ValidationError, match="detached HEAD"):
            orchestrator.rebase("main")

    def test_stashes_and_restores_changes(self, orchestrator, project):
        app_path = project.repo_paths()["app"]
        git.Repo(str(app_path)).git.branch("release")
        with open(app_path / "README.md", "a") as f:
            f.write("local edit\n")

        orchestrator.rebase("release")

        assert self._current(project, "app") == "release"
        assert "local edit" in (app_path / "README.md").read_text()
        assert git.Repo(str(app_path)).git.stash("list") == ""

    def test_declined_stash_aborts(self, project):
        app_path = project.repo_paths()["app"]
        git.Repo(str(app_path)).git.branch("release")
        (app_path / "wip.txt").write_text("wip\n")
        orchestrator = FeatureOrchestrator(project, reporter=Reporter(quiet=True, confirm_fn=lambda m: False))

        with pytest.raises(OperationAbortedError):
            orchestrator.rebase("release")

        assert self._current(project, "app") == "main"
        assert (app_path / "wip.txt").exists()

    def test_failure_rolls_back_switches_and_stashes(self, orchestrator, project, temp_dir):
        app_path = project.repo_paths()["app"]
        api_path = project.repo_paths()["api"]
        git.Repo(str(app_path)).git.branch("release")
        api = git.Repo(str(api_path))
        api.git.branch("release")
        # A branch checked out in another worktree cannot be checked out again
        api.git.worktree("add", str(temp_dir / "elsewhere"), "release")
        with open(app_path / "README.md", "a") as f:
            f.write("local edit\n")

        with pytest.raises(GitOperationError, match="api"):
            orchestrator.rebase("release", force=True)

        assert self._current(project, "app") == "main"
        assert self._current(project, "api") == "main"
        assert "local edit" in (app_path / "README.md").read_text()
        assert git.Repo(str(app_path)).git.stash("list") == ""

    def test_failure_deletes_created_tracking_branch(self, orchestrator, project, temp_dir):
        app = git.Repo(str(project.repo_paths()["app"]))
        app.git.branch("release")
        app.git.push("origin", "release")
        app.git.branch("-D", "release")
        api = git.Repo(str(project.repo_paths()["api"]))
        api.git.branch("release")
        api.git.worktree("add", str(temp_dir / "elsewhere"), "release")

        with pytest.raises(GitOperationError, match="api"):
            orchestrator.rebase("release")

        assert self._current(project, "app") == "main"
        assert "release" not in _branches(project.repo_paths()["app"])
        assert "release" in _branches(project.repo_paths()["api"])
