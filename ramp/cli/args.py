"""Command-line argument parsing for ramp."""

import argparse
import sys
from typing import List, Optional, Sequence

from ramp.__version__ import __version__


def _add_prefix_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--prefix", help="Branch prefix (overrides the project's default-branch-prefix)")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="ramp",
        description="Manage features that span several git repositories",
        epilog="Run inside a project containing .ramp/ramp.yaml (or any directory below it).",
    )
    parser.add_argument("--version", action="version", version=f"ramp {__version__}")
    parser.add_argument("-v", "--verbose", action="store_true", help="Show verbose output")
    parser.add_argument("--debug", action="store_true", help="Show debug information and write ~/.ramp/ramp.log")
    parser.add_argument("-C", "--project-dir", metavar="DIR", help="Run as if started in DIR")

    subparsers = parser.add_subparsers(dest="command", metavar="COMMAND")
    subparsers.required = True

    up = subparsers.add_parser("up", help="Create a feature across all repositories")
    up.add_argument("feature", nargs="?", help="Feature name (derived from --from when omitted)")
    _add_prefix_options(up)
    up.add_argument("--no-prefix", action="store_true", help="Use the feature name as the branch name")
    up.add_argument("--target", help="Branch, remote branch (origin/...) or feature to start from")
    up.add_argument(
        "--from",
        dest="from_branch",
        metavar="BRANCH",
        help="Start from origin/BRANCH, taking prefix and feature name from it",
    )
    up.add_argument("--display-name", default="", help="Human-readable feature name")
    refresh_group = up.add_mutually_exclusive_group()
    refresh_group.add_argument("--refresh", action="store_true", help="Refresh every repository first, ignoring auto_refresh")
    refresh_group.add_argument("--no-refresh", action="store_true", help="Do not refresh repositories first")

    down = subparsers.add_parser("down", help="Remove a feature's worktrees, branches and ports")
    down.add_argument("feature", help="Feature name")
    _add_prefix_options(down)
    down.add_argument("--force", action="store_true", help="Skip the uncommitted changes confirmation")

    rename = subparsers.add_parser("rename", help="Rename a feature")
    rename.add_argument("old", help="Current feature name")
    rename.add_argument("new", help="New feature name")
    _add_prefix_options(rename)
    rename.add_argument("--display-name", help="Set a new display name")

    rebase = subparsers.add_parser("rebase", help="Switch all source repositories to a branch")
    rebase.add_argument("branch", help="Branch to switch to")
    rebase.add_argument("--force", action="store_true", help="Stash uncommitted changes without asking")

    status = subparsers.add_parser("status", help="Show feature status grouped by state")
    status.add_argument("--refresh", action="store_true", help="Refresh repositories before computing status")

    prune = subparsers.add_parser("prune", help="Remove all merged features")
    prune.add_argument("--force", action="store_true", help="Skip the batch confirmation")

    refresh = subparsers.add_parser("refresh", help="Fetch and pull every source repository")
    refresh.add_argument("--workers", type=int, metavar="N", help="Number of parallel workers (default: auto-detect)")

    run = subparsers.add_parser(
        "run",
        help="Run a custom command from ramp.yaml",
        usage="ramp run NAME [FEATURE] [-- ARGS...]",
    )
    run.add_argument("name", help="Command name")
    run.add_argument("feature", nargs="?", help="Feature to run against (source mode when omitted)")

    subparsers.add_parser("ports", help="Show port allocations")
    subparsers.add_parser("install", help="Clone every configured repository")

    return parser


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments.

    For ``run``, everything after the first ``--`` is handed to the command
    untouched and never parsed as a feature name or option.
    """
    argv = list(sys.argv[1:] if argv is None else argv)
    script_args: List[str] = []
    if "run" in argv and "--" in argv[argv.index("run"):]:
        dash = argv.index("--", argv.index("run"))
        argv, script_args = argv[:dash], argv[dash + 1:]

    parser = build_parser()
    args = parser.parse_args(argv)
    if args.command == "up":
        if args.from_branch:
            if args.prefix is not None or args.no_prefix or args.target:
                parser.error("--from cannot be combined with --prefix, --no-prefix or --target")
        elif not args.feature:
            parser.error("up: a feature name is required unless --from is given")
        if args.feature:
            args.feature = args.feature.rstrip("/")
    elif args.command == "run":
        args.args = script_args
        if args.feature:
            args.feature = args.feature.rstrip("/")
    return args
