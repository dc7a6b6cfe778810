"""Custom exceptions for ramp"""

from typing import Optional


class RampError(Exception):
    """Base exception for all ramp errors."""
    pass


class ConfigError(RampError):
    """Exception raised when the project configuration cannot be loaded."""

    def __init__(self, path: str, message: Optional[str] = None):
        self.path = path
        self.message = message

        error_msg = f"Invalid configuration at '{path}'"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class ValidationError(RampError):
    """Exception raised when an operation is rejected before any side effect."""
    pass


class FeatureExistsError(ValidationError):
    """Exception raised when a feature worktree directory is already present."""

    def __init__(self, feature: str, path: Optional[str] = None):
        self.feature = feature
        self.path = path
        error_msg = f"Feature '{feature}' already exists"
        if path:
            error_msg += f" at {path}"
        super().__init__(error_msg)


class FeatureNotFoundError(RampError):
    """Exception raised when no trace of a feature exists."""

    def __init__(self, feature: str):
        self.feature = feature
        super().__init__(f"Feature '{feature}' not found")


class GitOperationError(RampError):
    """Exception raised for errors in Git operations."""

    def __init__(self, operation: str, repo: Optional[str] = None, message: Optional[str] = None):
        self.operation = operation
        self.repo = repo
        self.message = message

        error_msg = f"Git operation '{operation}' failed"
        if repo:
            error_msg += f" in repository '{repo}'"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class PortAllocationError(RampError):
    """Exception raised when the port allocation table cannot be used."""

    def __init__(self, operation: str, message: Optional[str] = None):
        self.operation = operation
        self.message = message

        error_msg = f"Port operation '{operation}' failed"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class PortExhaustedError(PortAllocationError):
    """Exception raised when the configured port range has no room left."""

    def __init__(self, feature: str, base_port: int, max_ports: int, requested: int = 1):
        self.feature = feature
        super().__init__(
            "allocate",
            f"no {requested} free port(s) for feature '{feature}' "
            f"in range {base_port}-{base_port + max_ports - 1}",
        )


class ScriptError(RampError):
    """Exception raised when a lifecycle script cannot run or exits non-zero."""

    def __init__(self, script: str, exit_code: Optional[int] = None, message: Optional[str] = None):
        self.script = script
        self.exit_code = exit_code
        self.message = message

        error_msg = f"Script '{script}' failed"
        if exit_code is not None:
            error_msg += f" with exit code {exit_code}"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)


class CommandCancelledError(RampError):
    """Exception raised when a running custom command is cancelled."""

    def __init__(self, command: str):
        self.command = command
        super().__init__(f"Command '{command}' was cancelled")


class OperationAbortedError(RampError):
    """Exception raised when the user declines a confirmation."""

    def __init__(self, operation: str, reason: Optional[str] = None):
        self.operation = operation
        self.reason = reason
        error_msg = f"Operation '{operation}' aborted"
        if reason:
            error_msg += f": {reason}"
        super().__init__(error_msg)


class EnvFileError(RampError):
    """Exception raised when a repository's env file cannot be produced."""

    def __init__(self, repo: str, path: str, message: Optional[str] = None):
        self.repo = repo
        self.path = path
        self.message = message

        error_msg = f"Env file '{path}' failed in repository '{repo}'"
        if message:
            error_msg += f": {message}"

        super().__init__(error_msg)
