"""Tests for project configuration loading"""
import pytest

from ramp.config import (
    CommandConfig,
    EnvFileConfig,
    HookConfig,
    ProjectConfig,
    RepoConfig,
    extract_repo_name,
    find_project,
    load_project,
    parse_duration,
    repo_env_var_name,
)
from ramp.exceptions import ConfigError


class TestRepoNames:
    """Test repository name derivation."""

    @pytest.mark.parametrize("url,expected", [
        ("git@github.com:acme/frontend.git", "frontend"),
        ("https://github.com/acme/api-server.git", "api-server"),
        ("https://github.com/acme/api-server", "api-server"),
        ("/srv/git/tools.git", "tools"),
        ("ssh://git@host/acme/worker.git/", "worker"),
    ])
    def test_extract_repo_name(self, url, expected):
        assert extract_repo_name(url) == expected

    def test_env_var_name_normalizes(self):
        assert repo_env_var_name("api-server") == "RAMP_REPO_PATH_API_SERVER"
        assert repo_env_var_name("web.app") == "RAMP_REPO_PATH_WEB_APP"
        assert repo_env_var_name("app") == "RAMP_REPO_PATH_APP"


class TestProjectConfigValidation:
    """Test ProjectConfig validation."""

    def _repos(self):
        return [RepoConfig(path="repos", git="git@host:acme/app.git")]

    def test_defaults(self):
        config = ProjectConfig(name="demo", repos=self._repos())
        assert config.default_branch_prefix == ""
        assert config.has_port_config() is False
        assert config.ports_per_feature == 1

    def test_empty_name_rejected(self):
        with pytest.raises(ValueError, match="name"):
            ProjectConfig(name="  ", repos=self._repos())

    def test_no_repos_rejected(self):
        with pytest.raises(ValueError, match="at least one repository"):
            ProjectConfig(name="demo", repos=[])

    def test_duplicate_repo_names_rejected(self):
        repos = [
            RepoConfig(path="a", git="git@host:one/app.git"),
            RepoConfig(path="b", git="git@host:two/app.git"),
        ]
        with pytest.raises(ValueError, match="duplicate repository"):
            ProjectConfig(name="demo", repos=repos)

    def test_base_port_defaults_max_ports(self):
        config = ProjectConfig(name="demo", repos=self._repos(), base_port=3000)
        assert config.max_ports == 100
        assert config.has_port_config() is True

    def test_max_ports_without_base_rejected(self):
        with pytest.raises(ValueError, match="requires base_port"):
            ProjectConfig(name="demo", repos=self._repos(), max_ports=10)

    def test_port_range_overflow_rejected(self):
        with pytest.raises(ValueError, match="exceeds 65535"):
            ProjectConfig(name="demo", repos=self._repos(), base_port=65530, max_ports=10)

    def test_ports_per_feature_larger_than_range_rejected(self):
        with pytest.raises(ValueError, match="ports_per_feature"):
            ProjectConfig(name="demo", repos=self._repos(), base_port=3000, max_ports=2, ports_per_feature=3)

    def test_duplicate_commands_rejected(self):
        commands = [CommandConfig("dev", "dev.sh"), CommandConfig("dev", "other.sh")]
        with pytest.raises(ValueError, match="duplicate command"):
            ProjectConfig(name="demo", repos=self._repos(), commands=commands)

    def test_command_scope_validated(self):
        with pytest.raises(ValueError, match="scope"):
            CommandConfig("dev", "dev.sh", scope="everywhere")

    def test_command_scope_helpers(self):
        assert CommandConfig("a", "a.sh").allows_feature()
        assert CommandConfig("a", "a.sh").allows_source()
        assert not CommandConfig("a", "a.sh", scope="source").allows_feature()
        assert not CommandConfig("a", "a.sh", scope="feature").allows_source()

    def test_from_dict_maps_hyphenated_prefix(self):
        config = ProjectConfig.from_dict({
            "name": "demo",
            "default-branch-prefix": "feature/",
            "repos": [{"path": "repos", "git": "git@host:acme/app.git", "unknown": 1}],
            "commands": [{"name": "dev", "command": "dev.sh", "scope": "feature"}],
            "ignored_key": True,
        })
        assert config.default_branch_prefix == "feature/"
        assert config.get_command("dev").scope == "feature"
        assert config.get_command("missing") is None
        assert list(config.get_repos()) == ["app"]


class TestEnvFileAndHookConfig:
    """Test env file and hook entries."""

    def test_env_file_short_form(self):
        env_file = EnvFileConfig.from_value(".env")
        assert env_file.source == ".env"
        assert env_file.dest == ".env"
        assert env_file.cache_seconds is None

    def test_env_file_full_form(self):
        repo = RepoConfig.from_dict({
            "path": "repos",
            "git": "git@host:acme/app.git",
            "env_files": [{"source": "scripts/env.sh", "dest": ".env", "cache": "1h30m", "replace": {"PORT": 3000}}],
        })
        env_file = repo.env_files[0]
        assert env_file.dest == ".env"
        assert env_file.cache_seconds == 5400
        assert env_file.replace == {"PORT": "3000"}

    @pytest.mark.parametrize("dest", ["/etc/passwd", "../outside/.env"])
    def test_env_file_dest_must_stay_in_worktree(self, dest):
        with pytest.raises(ValueError, match="inside the worktree"):
            EnvFileConfig(source=".env", dest=dest)

    @pytest.mark.parametrize("value,seconds", [("30s", 30), ("15m", 900), ("2d", 172800)])
    def test_parse_duration(self, value, seconds):
        assert parse_duration(value) == seconds

    @pytest.mark.parametrize("value", ["", "10", "1x", "h1", "1h 30m"])
    def test_parse_duration_rejects(self, value):
        with pytest.raises(ValueError, match="invalid duration"):
            parse_duration(value)

    def test_hook_for_filter(self):
        hook = HookConfig.from_dict({"event": "run", "command": "notify.sh", "for": "test-*"})
        assert hook.matches_command("test-unit")
        assert not hook.matches_command("deploy")
        assert HookConfig(event="run", command="notify.sh").matches_command("anything")

    def test_hook_event_validated(self):
        with pytest.raises(ValueError, match="invalid hook event"):
            HookConfig(event="create", command="x.sh")


class TestProjectLoading:
    """Test locating and loading a project from disk."""

    def test_load_project(self, project, project_dir):
        assert project.root == project_dir
        assert project.config.name == "demo"
        assert list(project.config.get_repos()) == ["app", "api"]
        assert project.repo_paths()["app"] == project_dir / "repos" / "app"
        assert project.worktree_path("x", "api") == project_dir / "trees" / "x" / "api"

    def test_find_project_from_subdirectory(self, project, project_dir):
        nested = project_dir / "repos" / "app"
        assert find_project(nested) == project_dir

    def test_find_project_missing(self, temp_dir):
        with pytest.raises(ConfigError, match="no .ramp/ramp.yaml"):
            find_project(temp_dir)

    def test_invalid_yaml(self, project_dir):
        (project_dir / ".ramp" / "ramp.yaml").write_text("name: [unclosed\n")
        with pytest.raises(ConfigError, match="YAML parse error"):
            load_project(project_dir)

    def test_invalid_values_become_config_error(self, project_dir):
        (project_dir / ".ramp" / "ramp.yaml").write_text("name: demo\nrepos: []\n")
        with pytest.raises(ConfigError, match="at least one repository"):
            load_project(project_dir)

    def test_local_preferences(self, project, project_dir):
        (project_dir / ".ramp" / "local.yaml").write_text("preferences:\n  EDITOR_PORT: 9000\n")
        loaded = load_project(project_dir)
        assert loaded.preferences == {"EDITOR_PORT": "9000"}

    def test_hooks_from_project_and_local_config(self, write_config, project_dir):
        (project_dir / ".ramp" / "local.yaml").write_text("hooks:\n  - event: up\n    command: mine.sh\n")
        project = write_config(hooks=[{"event": "up", "command": "team.sh"}, {"event": "down", "command": "bye.sh"}])
        assert [h.command for h in project.hooks_for("up")] == ["team.sh", "mine.sh"]
        assert [h.command for h in project.hooks_for("down")] == ["bye.sh"]

    def test_invalid_local_hook(self, project, project_dir):
        (project_dir / ".ramp" / "local.yaml").write_text("hooks:\n  - event: later\n    command: x.sh\n")
        with pytest.raises(ConfigError, match="invalid hook event"):
            load_project(project_dir)

    def test_local_preferences_must_be_mapping(self, project, project_dir):
        (project_dir / ".ramp" / "local.yaml").write_text("preferences: [a, b]\n")
        with pytest.raises(ConfigError, match="must be a mapping"):
            load_project(project_dir)
