"""Env file copying and ``${RAMP_*}`` substitution for new worktrees."""

import hashlib
import os
import re
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ramp.config import EnvFileConfig, Project
from ramp.constants import ENV_FILE_CACHE_DIR
from ramp.exceptions import EnvFileError
from ramp.logging_config import get_logger

logger = get_logger(__name__)

BASH = "/bin/bash"
VARIABLE_PATTERN = re.compile(r"\$\{([A-Za-z0-9_]+)\}")


def substitute_variables(content: str, env: Dict[str, str]) -> str:
    """Replace ``${NAME}`` with its value; unknown names are left untouched."""
    return VARIABLE_PATTERN.sub(lambda m: env.get(m.group(1), m.group(0)), content)


def replace_keys(content: str, replacements: Dict[str, str], env: Dict[str, str]) -> str:
    """Rewrite ``KEY=...`` lines for the given keys only.

    Replacement values may themselves reference ``${NAME}`` variables.
    Blank lines and comments are never touched.
    """
    lines = content.split("\n")
    for index, line in enumerate(lines):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        for key, value in replacements.items():
            if stripped.startswith(f"{key}="):
                lines[index] = f"{key}={substitute_variables(value, env)}"
                break
    return "\n".join(lines)


@dataclass
class WrittenFile:
    """A destination file and what it held before it was written."""
    path: Path
    previous: Optional[bytes] = None


class EnvFileService:
    """Produces each repository's configured env files inside a worktree.

    A source is read as a file, or run through bash when it is executable, in
    which case its stdout is the content (optionally cached for ``cache``).
    """

    def __init__(self, project: Project):
        self.project = project
        self.cache_dir = project.ramp_dir / ENV_FILE_CACHE_DIR

    def process(
        self,
        repo_name: str,
        env_files: Sequence[EnvFileConfig],
        source_dir: Path,
        worktree_dir: Path,
        env: Dict[str, str],
        refresh: bool = False,
        written: Optional[List[WrittenFile]] = None,
    ) -> List[str]:
        """Write every env file of one repository into its worktree.

        Each file written is appended to ``written`` as soon as it lands so a
        caller can restore them even when a later file fails.

        Returns:
            Warnings for sources that do not exist

        Raises:
            EnvFileError: a source script failed or a file could not be written
        """
        written = written if written is not None else []
        warnings = []
        for env_file in env_files:
            source = Path(source_dir) / env_file.source
            if not source.exists():
                message = f"{repo_name}: env file source not found: {source}"
                logger.warning(message)
                warnings.append(message)
                continue

            content = self._read_source(repo_name, env_file, source, env, refresh)
            if env_file.replace:
                content = replace_keys(content, env_file.replace, env)
            else:
                content = substitute_variables(content, env)

            dest = Path(worktree_dir) / env_file.dest
            previous = dest.read_bytes() if dest.is_file() else None
            try:
                dest.parent.mkdir(parents=True, exist_ok=True)
                dest.write_text(content)
            except OSError as e:
                raise EnvFileError(repo_name, env_file.dest, str(e)) from e
            written.append(WrittenFile(dest, previous))
            logger.info(f"{repo_name}: wrote {dest}")
        return warnings

    @staticmethod
    def restore(written: List[WrittenFile]) -> None:
        """Put back what each written file held before, newest first."""
        for item in reversed(written):
            if item.previous is None:
                if item.path.exists():
                    item.path.unlink()
            else:
                item.path.write_bytes(item.previous)
        written.clear()

    def _read_source(
        self, repo_name: str, env_file: EnvFileConfig, source: Path, env: Dict[str, str], refresh: bool
    ) -> str:
        if not os.access(source, os.X_OK) or source.is_dir():
            try:
                return source.read_text()
            except OSError as e:
                raise EnvFileError(repo_name, env_file.source, str(e)) from e

        ttl = env_file.cache_seconds
        cache_path = self._cache_path(source)
        if ttl and not refresh and cache_path.is_file():
            if time.time() - cache_path.stat().st_mtime <= ttl:
                logger.debug(f"Using cached output of {source}")
                return cache_path.read_text()

        completed = subprocess.run(
            [BASH, str(source)],
            cwd=str(source.parent),
            env={**os.environ, **env},
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
        if completed.returncode != 0:
            detail = (completed.stderr or "").strip()
            raise EnvFileError(
                repo_name,
                env_file.source,
                f"script exited with code {completed.returncode}" + (f": {detail}" if detail else ""),
            )

        if ttl:
            try:
                cache_path.parent.mkdir(parents=True, exist_ok=True)
                cache_path.write_text(completed.stdout)
            except OSError as e:
                logger.warning(f"Could not cache output of {source}: {e}")
        return completed.stdout

    def _cache_path(self, source: Path) -> Path:
        key = hashlib.sha256(str(source).encode()).hexdigest()[:16]
        return self.cache_dir / f"{key}.cache"
