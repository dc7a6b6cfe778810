"""Tests for GitOperations and WorktreeService"""
import pytest

from ramp.exceptions import GitOperationError
from ramp.services.git.operations import GitOperations


@pytest.fixture
def ops(git_repo):
    return GitOperations(git_repo.working_dir, "test-repo")


class TestBranchQueries:
    """Test branch existence and default branch detection."""

    def test_is_git_repo(self, git_repo, temp_dir):
        assert GitOperations.is_git_repo(git_repo.working_dir)
        assert not GitOperations.is_git_repo(temp_dir / "nowhere")

    def test_local_and_remote_branch_exists(self, git_repo, ops):
        assert ops.local_branch_exists("main")
        assert ops.remote_branch_exists("main")
        git_repo.git.branch("topic")
        assert ops.local_branch_exists("topic")
        assert not ops.remote_branch_exists("topic")
        assert ops.branch_exists("topic")
        assert not ops.branch_exists("missing")

    def test_default_branch_from_origin_head(self, ops):
        assert ops.get_default_branch() == "main"

    def test_default_branch_without_remote(self, git_repo, ops):
        git_repo.git.remote("remove", "origin")
        assert ops.get_default_branch() == "main"

    def test_current_branch_detached(self, git_repo, ops):
        assert ops.get_current_branch() == "main"
        git_repo.git.checkout("--detach")
        assert ops.get_current_branch() is None

    def test_run_wraps_errors(self, ops):
        with pytest.raises(GitOperationError) as exc_info:
            ops.checkout("does-not-exist")
        assert "test-repo" in str(exc_info.value)
        assert "checkout" in str(exc_info.value)


class TestWorkingTreeState:
    """Test uncommitted, ahead/behind and merge detection."""

    def test_clean_tree(self, ops):
        assert ops.has_uncommitted_changes() is False
        assert ops.get_status_stats() == {"untracked_files": 0, "staged_files": 0, "modified_files": 0}

    def test_status_counts(self, git_repo, ops):
        repo_path = git_repo.working_dir
        with open(f"{repo_path}/new.txt", "w") as f:
            f.write("new\n")
        with open(f"{repo_path}/README.md", "a") as f:
            f.write("more\n")
        with open(f"{repo_path}/staged.txt", "w") as f:
            f.write("staged\n")
        git_repo.git.add("staged.txt")

        assert ops.has_uncommitted_changes() is True
        assert ops.get_status_stats() == {"untracked_files": 1, "staged_files": 1, "modified_files": 1}
        diff = ops.get_diff_stats()
        assert diff["files_changed"] == 2
        assert diff["insertions"] == 2

    def test_ahead_behind_and_merged(self, git_repo, ops, commit):
        repo_path = git_repo.working_dir
        git_repo.git.checkout("-b", "topic")
        commit(repo_path, "topic.txt")
        assert ops.get_ahead_behind("main") == (1, 0)
        assert ops.is_merged_into("main") is False

        git_repo.git.checkout("main")
        git_repo.git.merge("topic", "--no-ff", "-m", "Merge topic")
        git_repo.git.checkout("topic")
        assert ops.get_ahead_behind("main") == (0, 1)
        assert ops.is_merged_into("main") is True

    def test_fresh_branch_is_ancestor(self, git_repo, ops):
        git_repo.git.checkout("-b", "fresh")
        assert ops.get_ahead_behind("main") == (0, 0)
        assert ops.is_merged_into("main") is True

    def test_is_merged_into_unknown_ref(self, ops):
        with pytest.raises(GitOperationError):
            ops.is_merged_into("no-such-branch")


class TestBranchMutations:
    """Test branch deletion, renaming and stashing."""

    def test_delete_branch(self, git_repo, ops):
        git_repo.git.branch("topic")
        assert ops.delete_branch("topic") == (True, None)
        assert not ops.local_branch_exists("topic")

    def test_delete_missing_branch(self, ops):
        assert ops.delete_branch("missing") == (False, None)

    def test_delete_checked_out_branch_reports_error(self, ops):
        deleted, error = ops.delete_branch("main")
        assert deleted is False
        assert error

    def test_rename_branch(self, git_repo, ops):
        git_repo.git.branch("old")
        ops.rename_branch("old", "new")
        assert ops.local_branch_exists("new")
        assert not ops.local_branch_exists("old")

    def test_stash_and_pop(self, git_repo, ops):
        assert ops.stash() is False
        with open(f"{git_repo.working_dir}/README.md", "a") as f:
            f.write("dirty\n")
        assert ops.stash() is True
        assert ops.has_uncommitted_changes() is False
        ops.stash_pop()
        assert ops.has_uncommitted_changes() is True

    def test_upstream_detection(self, git_repo, ops):
        assert ops.has_upstream() is True
        git_repo.git.checkout("-b", "local-only")
        assert ops.has_upstream() is False

    def test_checkout_remote_branch(self, git_repo, ops):
        git_repo.git.branch("shared")
        git_repo.git.push("origin", "shared")
        git_repo.git.branch("-D", "shared")
        ops.checkout_remote_branch("shared")
        assert ops.get_current_branch() == "shared"
        assert ops.has_upstream() is True


class TestWorktrees:
    """Test worktree creation, listing and removal."""

    def test_create_new_branch_from_default(self, ops, temp_dir):
        path = temp_dir / "wt-new"
        base = ops.create_worktree(path, "feature/new")
        assert base == "main"
        assert ops.local_branch_exists("feature/new")
        info = ops.worktree_service.find_worktree(str(path))
        assert info is not None
        assert info.branch_name == "feature/new"
        assert info.is_main is False

    def test_create_attaches_existing_local_branch(self, git_repo, ops, temp_dir):
        git_repo.git.branch("existing")
        assert ops.create_worktree(temp_dir / "wt-existing", "existing") == "existing"

    def test_create_tracks_remote_branch(self, git_repo, ops, temp_dir):
        git_repo.git.branch("remote-only")
        git_repo.git.push("origin", "remote-only")
        git_repo.git.branch("-D", "remote-only")
        assert ops.create_worktree(temp_dir / "wt-remote", "remote-only") == "origin/remote-only"
        assert GitOperations(temp_dir / "wt-remote").has_upstream() is True

    def test_create_from_source_branch(self, git_repo, ops, temp_dir, commit):
        git_repo.git.checkout("-b", "base")
        commit(git_repo.working_dir, "base.txt")
        git_repo.git.checkout("main")
        path = temp_dir / "wt-source"
        assert ops.create_worktree(path, "derived", source_branch="base") == "base"
        assert (path / "base.txt").exists()

    def test_create_existing_path_fails(self, ops, temp_dir):
        path = temp_dir / "occupied"
        path.mkdir()
        (path / "file.txt").write_text("x")
        with pytest.raises(GitOperationError, match="worktree add"):
            ops.create_worktree(path, "feature/occupied")

    def test_main_worktree_listed_first(self, ops, git_repo):
        worktrees = ops.worktree_service.get_worktree_info()
        assert worktrees[0].is_main is True
        assert worktrees[0].branch_name == "main"

    def test_remove_worktree(self, ops, temp_dir):
        path = temp_dir / "wt-remove"
        ops.create_worktree(path, "feature/remove")
        assert ops.worktree_service.remove_worktree(str(path), force=True) == (True, None)
        assert not path.exists()
        assert not ops.worktree_service.is_registered(str(path))

    def test_remove_missing_directory_prunes(self, ops, temp_dir):
        import shutil

        path = temp_dir / "wt-gone"
        ops.create_worktree(path, "feature/gone")
        shutil.rmtree(path)
        assert ops.worktree_service.find_worktree(str(path)).is_orphaned is True
        assert ops.worktree_service.remove_worktree(str(path)) == (True, None)
        assert not ops.worktree_service.is_registered(str(path))

    def test_move_worktree(self, ops, temp_dir):
        old_path = temp_dir / "wt-old"
        new_path = temp_dir / "wt-moved"
        ops.create_worktree(old_path, "feature/move")
        ops.worktree_service.move_worktree(str(old_path), str(new_path))
        assert new_path.is_dir()
        assert ops.worktree_service.is_registered(str(new_path))
