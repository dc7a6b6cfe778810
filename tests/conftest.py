"""Pytest fixtures for ramp tests"""
import tempfile
from pathlib import Path

import git
import pytest
import yaml

from ramp.config import load_project
from ramp.core.orchestrator import FeatureOrchestrator
from ramp.services.display_service import Reporter

REPO_NAMES = ("app", "api")


def _configure_user(repo):
    with repo.config_writer() as writer:
        writer.set_value("user", "name", "Test User")
        writer.set_value("user", "email", "test@example.com")
        writer.set_value("commit", "gpgsign", "false")


def commit_file(repo_dir, filename, content="content\n", message=None):
    """Write ``filename`` in ``repo_dir`` and commit it."""
    repo = git.Repo(str(repo_dir))
    path = Path(repo_dir) / filename
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    repo.git.add(filename)
    repo.git.commit("-m", message or f"Add {filename}")
    return repo.head.commit.hexsha


def make_remote(remotes_dir, name):
    """Create a bare remote whose ``main`` holds one commit."""
    bare_path = remotes_dir / f"{name}.git"
    bare = git.Repo.init(str(bare_path), bare=True)
    bare.git.symbolic_ref("HEAD", "refs/heads/main")

    seed_path = remotes_dir / f"{name}-seed"
    seed = git.Repo.init(str(seed_path))
    _configure_user(seed)
    seed.git.checkout("-b", "main")
    (seed_path / "README.md").write_text(f"# {name}\n")
    seed.git.add("README.md")
    seed.git.commit("-m", "Initial commit")
    seed.create_remote("origin", str(bare_path))
    seed.git.push("origin", "main")
    return bare_path, seed_path


@pytest.fixture
def temp_dir():
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir).resolve()


@pytest.fixture
def git_repo(temp_dir):
    """Create a cloned Git repository on ``main`` with an ``origin`` remote."""
    bare_path, _ = make_remote(temp_dir / "remotes", "test-repo")
    clone_path = temp_dir / "test-repo"
    repo = git.Repo.clone_from(str(bare_path), str(clone_path))
    _configure_user(repo)

    yield repo

    repo.close()


@pytest.fixture
def project_dir(temp_dir):
    """A project root with two source repositories cloned from bare remotes."""
    root = temp_dir / "project"
    remotes_dir = temp_dir / "remotes"
    remotes_dir.mkdir(parents=True)

    for name in REPO_NAMES:
        bare_path, _ = make_remote(remotes_dir, name)
        clone = git.Repo.clone_from(str(bare_path), str(root / "repos" / name))
        _configure_user(clone)
        clone.close()

    (root / ".ramp").mkdir(parents=True)
    return root


@pytest.fixture
def base_config(temp_dir):
    """The ``ramp.yaml`` mapping used by most tests."""
    return {
        "name": "demo",
        "default-branch-prefix": "feature/",
        "base_port": 3000,
        "max_ports": 10,
        "repos": [
            {"path": "repos", "git": str(temp_dir / "remotes" / f"{name}.git"), "auto_refresh": False}
            for name in REPO_NAMES
        ],
    }


@pytest.fixture
def add_repo(temp_dir, project_dir):
    """Create one more remote plus source clone and return its ``repos`` entry."""

    def _add(name):
        bare_path, _ = make_remote(temp_dir / "remotes", name)
        clone = git.Repo.clone_from(str(bare_path), str(project_dir / "repos" / name))
        _configure_user(clone)
        clone.close()
        return {"path": "repos", "git": str(bare_path), "auto_refresh": False}

    return _add


@pytest.fixture
def write_config(project_dir, base_config):
    """Write ``ramp.yaml`` (with overrides) and return the loaded project."""

    def _write(**overrides):
        data = dict(base_config)
        data.update(overrides)
        (project_dir / ".ramp" / "ramp.yaml").write_text(yaml.safe_dump(data))
        return load_project(project_dir)

    return _write


@pytest.fixture
def write_script(project_dir):
    """Write an executable bash script under ``.ramp/``."""

    def _write(name, body):
        path = project_dir / ".ramp" / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("#!/bin/bash\n" + body + "\n")
        path.chmod(0o755)
        return path

    return _write


@pytest.fixture
def commit():
    """Commit helper usable on source checkouts and worktrees."""
    return commit_file


@pytest.fixture
def project(write_config):
    return write_config()


@pytest.fixture
def reporter():
    """A silent reporter that answers yes to every confirmation."""
    return Reporter(quiet=True, confirm_fn=lambda message: True)


@pytest.fixture
def orchestrator(project, reporter):
    return FeatureOrchestrator(project, reporter=reporter)
