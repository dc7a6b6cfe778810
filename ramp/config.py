"""Configuration handling for ramp projects"""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Union

import yaml

from ramp.constants import (
    CONFIG_DIR,
    CONFIG_FILE,
    DEFAULT_MAX_PORTS,
    DEFAULT_PORTS_PER_FEATURE,
    LOCAL_CONFIG_FILE,
    TREES_DIR,
)
from ramp.exceptions import ConfigError


def extract_repo_name(git_url: str) -> str:
    """Derive a repository name from its remote URL.

    Handles ``git@host:owner/repo.git``, ``https://host/owner/repo.git`` and
    plain local paths.
    """
    path = git_url.strip().rstrip("/")
    if ":" in path and not path.startswith(("http://", "https://", "ssh://", "file://")):
        path = path.split(":", 1)[1]
    if path.endswith(".git"):
        path = path[: -len(".git")]
    return path.rsplit("/", 1)[-1]


def repo_env_var_name(repo_name: str) -> str:
    """Build the ``RAMP_REPO_PATH_<NAME>`` variable name for a repository."""
    cleaned = re.sub(r"[^A-Za-z0-9_]", "_", repo_name).upper()
    cleaned = re.sub(r"_{2,}", "_", cleaned).strip("_")
    return f"RAMP_REPO_PATH_{cleaned}"


DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
HOOK_EVENTS = ("up", "down", "run")


def parse_duration(value: str) -> float:
    """Parse a cache TTL such as ``30s``, ``15m`` or ``1h30m`` into seconds."""
    text = str(value).strip()
    parts = re.findall(r"(\d+)([smhd])", text)
    if not parts or "".join(n + u for n, u in parts) != text:
        raise ValueError(f"invalid duration '{value}' (use e.g. 30s, 15m, 1h30m)")
    return float(sum(int(n) * DURATION_UNITS[u] for n, u in parts))


@dataclass
class EnvFileConfig:
    """An env file copied from the source checkout into each new worktree.

    ``replace`` maps keys to values; when empty every ``${VAR}`` reference to
    a known variable is substituted instead.
    """

    source: str
    dest: Optional[str] = None
    cache: Optional[str] = None
    replace: Dict[str, str] = field(default_factory=dict)

    def __post_init__(self):
        if not self.source or not str(self.source).strip():
            raise ValueError("env file 'source' cannot be empty")
        self.source = str(self.source).strip()
        self.dest = str(self.dest).strip() if self.dest else self.source
        if os.path.isabs(self.dest) or ".." in Path(self.dest).parts:
            raise ValueError(f"env file dest '{self.dest}' must stay inside the worktree")
        if self.cache:
            parse_duration(self.cache)
        self.replace = {str(k): "" if v is None else str(v) for k, v in (self.replace or {}).items()}

    @property
    def cache_seconds(self) -> Optional[float]:
        return parse_duration(self.cache) if self.cache else None

    @classmethod
    def from_value(cls, value: Union[str, dict]) -> "EnvFileConfig":
        """Accept both ``- .env`` and ``- {source: ..., dest: ...}`` entries."""
        if isinstance(value, str):
            return cls(source=value)
        if not isinstance(value, dict):
            raise ValueError(f"env file entry must be a string or mapping, got {value!r}")
        known_fields = {"source", "dest", "cache", "replace"}
        return cls(**{k: v for k, v in value.items() if k in known_fields})


@dataclass
class HookConfig:
    """A script run on a lifecycle event: ``up``, ``down`` or ``run``.

    ``for_command`` narrows ``run`` hooks to one command name, or to a name
    prefix when it ends in ``*``.
    """

    event: str
    command: str
    for_command: Optional[str] = None

    def __post_init__(self):
        if self.event not in HOOK_EVENTS:
            raise ValueError(f"invalid hook event '{self.event}' (valid: {', '.join(HOOK_EVENTS)})")
        if not self.command or not str(self.command).strip():
            raise ValueError(f"{self.event} hook has no command")

    def matches_command(self, command_name: str) -> bool:
        if not self.for_command:
            return True
        if self.for_command.endswith("*"):
            return command_name.startswith(self.for_command[:-1])
        return command_name == self.for_command

    @classmethod
    def from_dict(cls, data: dict) -> "HookConfig":
        data = dict(data)
        if "for" in data:
            data["for_command"] = data.pop("for")
        known_fields = {"event", "command", "for_command"}
        return cls(**{k: v for k, v in data.items() if k in known_fields})


@dataclass
class RepoConfig:
    """A repository that takes part in every feature."""

    path: str
    git: str
    auto_refresh: bool = True
    env_files: List[EnvFileConfig] = field(default_factory=list)

    def __post_init__(self):
        """Validate repository settings."""
        if not self.git or not str(self.git).strip():
            raise ValueError("repository 'git' url cannot be empty")
        if self.path is None:
            raise ValueError(f"repository '{self.git}' is missing 'path'")
        self.path = str(self.path)
        self.git = str(self.git).strip()
        self.auto_refresh = bool(self.auto_refresh)
        self.env_files = [
            e if isinstance(e, EnvFileConfig) else EnvFileConfig.from_value(e)
            for e in (self.env_files or [])
        ]

    @property
    def name(self) -> str:
        return extract_repo_name(self.git)

    def source_path(self, project_dir: Union[str, Path]) -> Path:
        """Absolute path of the repository's source checkout."""
        return Path(project_dir) / self.path / self.name

    @classmethod
    def from_dict(cls, data: dict) -> "RepoConfig":
        known_fields = {"path", "git", "auto_refresh", "env_files"}
        filtered = {k: v for k, v in data.items() if k in known_fields}
        return cls(**filtered)


@dataclass
class CommandConfig:
    """A named custom command script under ``.ramp/``."""

    name: str
    command: str
    scope: Optional[str] = None  # None (both), "source" or "feature"

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("command name cannot be empty")
        if not self.command or not self.command.strip():
            raise ValueError(f"command '{self.name}' has no script")
        allowed = [None, "source", "feature"]
        if self.scope not in allowed:
            raise ValueError(f"command scope must be one of {allowed}, got '{self.scope}'")

    def allows_feature(self) -> bool:
        return self.scope in (None, "feature")

    def allows_source(self) -> bool:
        return self.scope in (None, "source")

    @classmethod
    def from_dict(cls, data: dict) -> "CommandConfig":
        known_fields = {"name", "command", "scope"}
        filtered = {k: v for k, v in data.items() if k in known_fields}
        return cls(**filtered)


@dataclass
class ProjectConfig:
    """Configuration for a ramp project with validation."""

    name: str
    repos: List[RepoConfig] = field(default_factory=list)
    default_branch_prefix: str = ""
    setup: Optional[str] = None
    cleanup: Optional[str] = None
    commands: List[CommandConfig] = field(default_factory=list)
    hooks: List[HookConfig] = field(default_factory=list)
    base_port: int = 0
    max_ports: int = 0
    ports_per_feature: int = DEFAULT_PORTS_PER_FEATURE

    def __post_init__(self):
        """Validate configuration after initialization."""
        self._validate_name()
        self._validate_repos()
        self._validate_ports()
        self._validate_commands()

    def _validate_name(self):
        """Validate name is not empty."""
        if not self.name or not str(self.name).strip():
            raise ValueError("project name cannot be empty")
        self.name = str(self.name).strip()

    def _validate_repos(self):
        """Validate repositories are present and have unique names."""
        if not self.repos:
            raise ValueError("at least one repository must be configured")
        seen = set()
        for repo in self.repos:
            if repo.name in seen:
                raise ValueError(f"duplicate repository name '{repo.name}'")
            seen.add(repo.name)

    def _validate_ports(self):
        """Validate the port range when one is configured."""
        if self.base_port < 0 or self.max_ports < 0:
            raise ValueError("base_port and max_ports cannot be negative")
        if self.base_port and not self.max_ports:
            self.max_ports = DEFAULT_MAX_PORTS
        if self.max_ports and not self.base_port:
            raise ValueError("max_ports requires base_port")
        if self.base_port and self.base_port + self.max_ports - 1 > 65535:
            raise ValueError(
                f"port range {self.base_port}+{self.max_ports} exceeds 65535"
            )
        if self.ports_per_feature <= 0:
            raise ValueError(f"ports_per_feature must be positive, got {self.ports_per_feature}")
        if self.max_ports and self.ports_per_feature > self.max_ports:
            raise ValueError(
                f"ports_per_feature ({self.ports_per_feature}) exceeds max_ports ({self.max_ports})"
            )

    def _validate_commands(self):
        """Validate command names are unique."""
        names = [cmd.name for cmd in self.commands]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"duplicate command name(s): {sorted(duplicates)}")

    def has_port_config(self) -> bool:
        return self.base_port > 0

    def get_repos(self) -> Dict[str, RepoConfig]:
        """Repositories keyed by derived name, in configuration order."""
        return {repo.name: repo for repo in self.repos}

    def get_command(self, name: str) -> Optional[CommandConfig]:
        return next((cmd for cmd in self.commands if cmd.name == name), None)

    def get(self, key: str, default=None):
        """Get config value by key."""
        return getattr(self, key, default)

    @classmethod
    def from_dict(cls, config_dict: dict) -> "ProjectConfig":
        """Create ProjectConfig from the parsed ``ramp.yaml`` mapping."""
        data = dict(config_dict)
        # YAML uses a hyphenated key for the prefix
        if "default-branch-prefix" in data:
            data["default_branch_prefix"] = data.pop("default-branch-prefix")

        known_fields = {
            "name",
            "repos",
            "default_branch_prefix",
            "setup",
            "cleanup",
            "commands",
            "hooks",
            "base_port",
            "max_ports",
            "ports_per_feature",
        }
        filtered = {k: v for k, v in data.items() if k in known_fields and v is not None}
        filtered["repos"] = [RepoConfig.from_dict(r) for r in filtered.get("repos", [])]
        filtered["commands"] = [CommandConfig.from_dict(c) for c in filtered.get("commands", [])]
        filtered["hooks"] = [HookConfig.from_dict(h) for h in filtered.get("hooks", [])]
        if "default_branch_prefix" in filtered:
            filtered["default_branch_prefix"] = str(filtered["default_branch_prefix"])
        return cls(**filtered)


@dataclass
class Project:
    """A loaded project: its root directory plus its configuration."""

    root: Path
    config: ProjectConfig
    preferences: Dict[str, str] = field(default_factory=dict)
    local_hooks: List[HookConfig] = field(default_factory=list)

    @property
    def ramp_dir(self) -> Path:
        return self.root / CONFIG_DIR

    @property
    def trees_dir(self) -> Path:
        return self.root / TREES_DIR

    def feature_dir(self, feature: str) -> Path:
        return self.trees_dir / feature

    def worktree_path(self, feature: str, repo_name: str) -> Path:
        return self.trees_dir / feature / repo_name

    def repo_paths(self) -> Dict[str, Path]:
        """Absolute source checkout path for every configured repository."""
        return {name: repo.source_path(self.root) for name, repo in self.config.get_repos().items()}

    def hooks_for(self, event: str) -> List[HookConfig]:
        """Hooks for ``event``: project hooks first, then local ones."""
        return [hook for hook in [*self.config.hooks, *self.local_hooks] if hook.event == event]


def find_project(start: Optional[Union[str, Path]] = None) -> Path:
    """Walk up from ``start`` to the directory holding ``.ramp/ramp.yaml``."""
    current = Path(start or os.getcwd()).resolve()
    for candidate in [current, *current.parents]:
        if (candidate / CONFIG_DIR / CONFIG_FILE).is_file():
            return candidate
    raise ConfigError(str(current), f"no {CONFIG_DIR}/{CONFIG_FILE} found in this directory or any parent")


def _read_yaml(path: Path) -> dict:
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(str(path), f"YAML parse error: {e}") from e
    except OSError as e:
        raise ConfigError(str(path), str(e)) from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(str(path), "top level must be a mapping")
    return data


def load_local_preferences(project_dir: Union[str, Path]) -> Dict[str, str]:
    """Read the ``preferences`` mapping from ``.ramp/local.yaml`` if present."""
    local_path = Path(project_dir) / CONFIG_DIR / LOCAL_CONFIG_FILE
    if not local_path.exists():
        return {}
    data = _read_yaml(local_path)
    preferences = data.get("preferences") or {}
    if not isinstance(preferences, dict):
        raise ConfigError(str(local_path), "'preferences' must be a mapping")
    return {str(k): str(v) for k, v in preferences.items()}


def load_local_hooks(project_dir: Union[str, Path]) -> List[HookConfig]:
    """Read the ``hooks`` list from ``.ramp/local.yaml`` if present."""
    local_path = Path(project_dir) / CONFIG_DIR / LOCAL_CONFIG_FILE
    if not local_path.exists():
        return []
    hooks = _read_yaml(local_path).get("hooks") or []
    if not isinstance(hooks, list):
        raise ConfigError(str(local_path), "'hooks' must be a list")
    try:
        return [HookConfig.from_dict(h) for h in hooks]
    except (TypeError, ValueError) as e:
        raise ConfigError(str(local_path), str(e)) from e


def load_config(project_dir: Union[str, Path]) -> ProjectConfig:
    """Load and validate ``.ramp/ramp.yaml``."""
    config_path = Path(project_dir) / CONFIG_DIR / CONFIG_FILE
    data = _read_yaml(config_path)
    try:
        return ProjectConfig.from_dict(data)
    except (TypeError, ValueError) as e:
        raise ConfigError(str(config_path), str(e)) from e


def load_project(start: Optional[Union[str, Path]] = None) -> Project:
    """Locate and load the project containing ``start``."""
    root = find_project(start)
    return Project(
        root=root,
        config=load_config(root),
        preferences=load_local_preferences(root),
        local_hooks=load_local_hooks(root),
    )
