"""Lifecycle script and custom command execution."""

import os
import signal
import subprocess
import threading
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from ramp.config import Project, repo_env_var_name
from ramp.constants import COMMAND_KILL_GRACE_SECONDS
from ramp.exceptions import CommandCancelledError, ScriptError, ValidationError
from ramp.logging_config import get_logger

logger = get_logger(__name__)

BASH = "/bin/bash"


def build_script_env(
    project: Project,
    feature_name: Optional[str] = None,
    ports: Sequence[int] = (),
    display_name: str = "",
    use_worktree_paths: bool = False,
) -> Dict[str, str]:
    """Build the ``RAMP_*`` variables handed to lifecycle scripts.

    Without ``feature_name`` (source mode) the feature variables are omitted.
    ``RAMP_REPO_PATH_*`` points at the source checkouts unless
    ``use_worktree_paths`` is set, in which case it points at the feature's
    worktrees.
    """
    env = {"RAMP_PROJECT_DIR": str(project.root)}

    if feature_name:
        trees_dir = project.feature_dir(feature_name)
        env["RAMP_TREES_DIR"] = str(trees_dir)
        env["RAMP_WORKTREE_NAME"] = feature_name
        env["RAMP_DISPLAY_NAME"] = display_name

        if project.config.has_port_config() and ports:
            env["RAMP_PORT"] = str(ports[0])
            for index, port in enumerate(ports, start=1):
                env[f"RAMP_PORT_{index}"] = str(port)

    for name, source_path in project.repo_paths().items():
        if feature_name and use_worktree_paths:
            env[repo_env_var_name(name)] = str(project.worktree_path(feature_name, name))
        else:
            env[repo_env_var_name(name)] = str(source_path)

    # Local preferences are user-controlled and applied last
    env.update(project.preferences)
    return env


class ScriptService:
    """Runs setup, cleanup and custom command scripts from ``.ramp/``."""

    def __init__(self, project: Project, stream_output: bool = False):
        """Initialize the service.

        Args:
            project: The loaded project
            stream_output: Show setup/cleanup output live instead of only on failure
        """
        self.project = project
        self.stream_output = stream_output

    def script_path(self, script: str) -> Path:
        return self.project.ramp_dir / script

    def _resolve(self, script: str) -> Path:
        path = self.script_path(script)
        if not path.is_file():
            raise ScriptError(script, message=f"script not found: {path}")
        return path

    def _run_captured(self, script: str, cwd: Path, env: Dict[str, str]) -> tuple[int, str]:
        """Run a lifecycle script, returning its exit code and combined output."""
        path = self._resolve(script)
        full_env = {**os.environ, **env}
        logger.info(f"Running {script} in {cwd}")

        if self.stream_output:
            completed = subprocess.run([BASH, str(path)], cwd=str(cwd), env=full_env)
            return completed.returncode, ""

        completed = subprocess.run(
            [BASH, str(path)],
            cwd=str(cwd),
            env=full_env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        return completed.returncode, completed.stdout or ""

    def run_setup(
        self, feature_name: str, ports: Sequence[int] = (), display_name: str = ""
    ) -> None:
        """Run the configured setup script for a feature.

        Raises:
            ScriptError: the script is missing or exits non-zero
        """
        script = self.project.config.setup
        if not script:
            return
        env = build_script_env(self.project, feature_name, ports, display_name)
        exit_code, output = self._run_captured(script, self.project.feature_dir(feature_name), env)
        if exit_code != 0:
            if output:
                logger.error(f"Output of {script}:\n{output.rstrip()}")
            raise ScriptError(script, exit_code)

    def run_cleanup(
        self, feature_name: str, ports: Sequence[int] = (), display_name: str = ""
    ) -> Optional[str]:
        """Run the configured cleanup script for a feature.

        Returns:
            A warning message when the script failed, else None
        """
        script = self.project.config.cleanup
        if not script:
            return None
        env = build_script_env(self.project, feature_name, ports, display_name)
        try:
            exit_code, output = self._run_captured(script, self.project.feature_dir(feature_name), env)
        except (ScriptError, OSError) as e:
            logger.warning(str(e))
            return str(e)
        if exit_code != 0:
            if output:
                logger.warning(f"Output of {script}:\n{output.rstrip()}")
            message = str(ScriptError(script, exit_code))
            logger.warning(message)
            return message
        return None

    def run_hooks(
        self,
        event: str,
        feature_name: Optional[str] = None,
        ports: Sequence[int] = (),
        display_name: str = "",
        command_name: Optional[str] = None,
    ) -> List[str]:
        """Run every hook registered for ``event``; failures become warnings.

        ``run`` hooks only fire for commands matching their ``for`` filter and
        receive ``RAMP_COMMAND_NAME``.

        Returns:
            One warning message per failed hook
        """
        hooks = self.project.hooks_for(event)
        if command_name is not None:
            hooks = [hook for hook in hooks if hook.matches_command(command_name)]
        if not hooks:
            return []

        if feature_name:
            cwd = self.project.feature_dir(feature_name)
            env = build_script_env(self.project, feature_name, ports, display_name)
        else:
            cwd = self.project.root
            env = build_script_env(self.project)
        if command_name is not None:
            env["RAMP_COMMAND_NAME"] = command_name

        warnings = []
        for hook in hooks:
            path = Path(hook.command)
            if not path.is_absolute():
                path = self.script_path(hook.command)
            if not path.is_file():
                warnings.append(f"Hook '{hook.command}' ({event}) failed: script not found: {path}")
                continue
            logger.info(f"Running {event} hook {hook.command}")
            completed = subprocess.run(
                [BASH, str(path)],
                cwd=str(cwd),
                env={**os.environ, **env},
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
            )
            if completed.returncode != 0:
                output = (completed.stdout or "").strip()
                message = f"Hook '{hook.command}' ({event}) failed with exit code {completed.returncode}"
                warnings.append(f"{message}: {output}" if output else message)
        for message in warnings:
            logger.warning(message)
        return warnings

    def run_command(
        self,
        name: str,
        feature_name: Optional[str] = None,
        args: Sequence[str] = (),
        ports: Sequence[int] = (),
        display_name: str = "",
        cancel_event: Optional[threading.Event] = None,
    ) -> int:
        """Run a custom command, streaming its output.

        In feature mode the command runs in the feature's trees directory with
        ``RAMP_REPO_PATH_*`` pointing at the worktrees; in source mode it runs
        in the project root.

        Returns:
            The command's exit code

        Raises:
            ValidationError: unknown command, wrong scope, or missing feature
            CommandCancelledError: ``cancel_event`` was set while it ran
        """
        command = self.project.config.get_command(name)
        if command is None:
            available = ", ".join(c.name for c in self.project.config.commands) or "none"
            raise ValidationError(f"Command '{name}' not found (available: {available})")

        if feature_name:
            if not command.allows_feature():
                raise ValidationError(f"Command '{name}' can only run against source repositories")
            cwd = self.project.feature_dir(feature_name)
            if not cwd.is_dir():
                raise ValidationError(f"Feature '{feature_name}' not found at {cwd}")
            env = build_script_env(
                self.project, feature_name, ports, display_name, use_worktree_paths=True
            )
        else:
            if not command.allows_source():
                raise ValidationError(f"Command '{name}' requires a feature")
            cwd = self.project.root
            env = build_script_env(self.project)

        if args:
            env["RAMP_ARGS"] = " ".join(args)

        path = self._resolve(command.command)
        return self._execute([BASH, str(path), *args], cwd, {**os.environ, **env}, name, cancel_event)

    def _execute(
        self,
        argv: List[str],
        cwd: Path,
        env: Dict[str, str],
        name: str,
        cancel_event: Optional[threading.Event],
    ) -> int:
        """Run ``argv`` in its own process group and wait, honouring cancellation."""
        logger.info(f"Running command '{name}' in {cwd}")
        process = subprocess.Popen(argv, cwd=str(cwd), env=env, start_new_session=True)

        if cancel_event is None:
            return process.wait()

        while process.poll() is None:
            if cancel_event.wait(0.1):
                self._terminate_group(process)
                raise CommandCancelledError(name)
        return process.returncode

    @staticmethod
    def _terminate_group(process: subprocess.Popen) -> None:
        """SIGTERM the whole process group, then SIGKILL after the grace period."""
        try:
            pgid = os.getpgid(process.pid)
        except ProcessLookupError:
            return

        logger.debug(f"Sending SIGTERM to process group {pgid}")
        try:
            os.killpg(pgid, signal.SIGTERM)
        except ProcessLookupError:
            return

        try:
            process.wait(timeout=COMMAND_KILL_GRACE_SECONDS)
        except subprocess.TimeoutExpired:
            logger.debug(f"Process group {pgid} ignored SIGTERM, sending SIGKILL")
            try:
                os.killpg(pgid, signal.SIGKILL)
            except ProcessLookupError:
                pass
            process.wait()

        # The direct child may exit before grandchildren that ignore SIGTERM
        try:
            os.killpg(pgid, signal.SIGKILL)
        except ProcessLookupError:
            pass
