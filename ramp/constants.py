"""Constants used throughout ramp."""

# Project layout
CONFIG_DIR = ".ramp"
CONFIG_FILE = "ramp.yaml"
LOCAL_CONFIG_FILE = "local.yaml"
TREES_DIR = "trees"
PORT_ALLOCATIONS_FILE = "port_allocations.json"
FEATURE_METADATA_FILE = "feature_metadata.json"
PROJECT_LOCK_FILE = ".lock"
ENV_FILE_CACHE_DIR = "cache/env_files"

# Git
REMOTE_NAME = "origin"

# Ports
DEFAULT_MAX_PORTS = 100
DEFAULT_PORTS_PER_FEATURE = 1

# Custom command cancellation: seconds between SIGTERM and SIGKILL
COMMAND_KILL_GRACE_SECONDS = 5.0

# Exit status used by the CLI when a command is cancelled (128 + SIGINT)
EXIT_CANCELLED = 130

# Message reported for a worktree directory that cannot be found
WORKTREE_NOT_FOUND = "worktree not found"
