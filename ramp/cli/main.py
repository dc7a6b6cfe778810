"""Command-line entry point for ramp"""

import signal
import sys
import threading
from typing import Optional, Sequence

from rich.console import Console

from ramp.cli.args import parse_args
from ramp.config import Project, load_project
from ramp.constants import EXIT_CANCELLED
from ramp.core.orchestrator import FeatureOrchestrator
from ramp.core.pruner import FeaturePruner
from ramp.exceptions import CommandCancelledError, OperationAbortedError, RampError
from ramp.logging_config import get_logger, setup_logging
from ramp.models.feature import DownOptions, UpOptions
from ramp.services.display_service import DisplayService, Reporter
from ramp.services.metadata_service import MetadataStore
from ramp.services.port_service import PortAllocator
from ramp.services.refresh_service import RefreshService
from ramp.services.script_service import ScriptService
from ramp.services.status_service import FeatureStatusService

console = Console()
logger = get_logger(__name__)


def _cmd_up(args, project: Project, orchestrator: FeatureOrchestrator) -> int:
    common = dict(force_refresh=args.refresh, skip_refresh=args.no_refresh, display_name=args.display_name)
    if args.from_branch:
        options = UpOptions.from_remote_branch(args.from_branch, args.feature, **common)
    else:
        options = UpOptions(
            feature_name=args.feature,
            prefix=args.prefix,
            no_prefix=args.no_prefix,
            target=args.target,
            **common,
        )
    result = orchestrator.up(options)
    for repo_name, branch in result.branches.items():
        console.print(f"  {repo_name}: {branch}")
    if result.ports:
        console.print(f"  ports: {', '.join(str(p) for p in result.ports)}")
    return 0


def _cmd_down(args, project: Project, orchestrator: FeatureOrchestrator) -> int:
    result = orchestrator.down(DownOptions(feature_name=args.feature, prefix=args.prefix, force=args.force))
    if result.warnings:
        console.print(f"[yellow]Completed with {len(result.warnings)} warning(s)[/yellow]")
    return 0


def _cmd_rename(args, project: Project, orchestrator: FeatureOrchestrator) -> int:
    orchestrator.rename(args.old, args.new, prefix=args.prefix, display_name=args.display_name)
    return 0


def _cmd_rebase(args, project: Project, orchestrator: FeatureOrchestrator) -> int:
    result = orchestrator.rebase(args.branch, force=args.force)
    console.print(
        f"[green]Switched {len(result.switched)} repositories to '{result.branch}'"
        f" ({len(result.skipped)} skipped)[/green]"
    )
    return 0


def _cmd_status(args, project: Project, orchestrator: FeatureOrchestrator) -> int:
    if args.refresh:
        RefreshService(project).refresh()
    service = FeatureStatusService(project)
    DisplayService(console).display_status(service.summarize(), project.config.name)
    return 0


def _cmd_prune(args, project: Project, orchestrator: FeatureOrchestrator) -> int:
    result = FeaturePruner(orchestrator).prune(force=args.force)
    DisplayService(console).display_prune_result(result)
    return 1 if result.failed else 0


def _cmd_refresh(args, project: Project, orchestrator: FeatureOrchestrator) -> int:
    results = RefreshService(project, workers=args.workers).refresh()
    DisplayService(console).display_refresh(results)
    return 0


def _cmd_ports(args, project: Project, orchestrator: FeatureOrchestrator) -> int:
    config = project.config
    if not config.has_port_config():
        console.print("No port range configured (set base_port in ramp.yaml)")
        return 0
    allocator = PortAllocator(project.root, config.base_port, config.max_ports)
    DisplayService(console).display_ports(
        allocator.list_allocations(), config.base_port, config.max_ports, allocator.out_of_range()
    )
    return 0


def _cmd_install(args, project: Project, orchestrator: FeatureOrchestrator) -> int:
    result = orchestrator.install()
    console.print(
        f"[green]Cloned {len(result.cloned)} repositories ({len(result.present)} already present)[/green]"
    )
    return 0


def _cmd_run(args, project: Project, orchestrator: FeatureOrchestrator) -> int:
    ports = []
    display_name = ""
    if args.feature:
        if orchestrator.port_allocator is not None:
            ports, _ = orchestrator.port_allocator.get_ports(args.feature)
        display_name = MetadataStore(project.root).get_display_name(args.feature)

    cancel_event = threading.Event()

    def _cancel(signum, frame):
        cancel_event.set()

    script_service = ScriptService(project)
    previous = signal.signal(signal.SIGINT, _cancel)
    try:
        exit_code = script_service.run_command(
            args.name,
            feature_name=args.feature,
            args=args.args or (),
            ports=ports,
            display_name=display_name,
            cancel_event=cancel_event,
        )
    finally:
        signal.signal(signal.SIGINT, previous)

    if exit_code == 0:
        for message in script_service.run_hooks(
            "run", args.feature, ports, display_name, command_name=args.name
        ):
            console.print(f"[yellow]⚠ {message}[/yellow]")
    return exit_code


COMMANDS = {
    "up": _cmd_up,
    "down": _cmd_down,
    "rename": _cmd_rename,
    "rebase": _cmd_rebase,
    "status": _cmd_status,
    "prune": _cmd_prune,
    "refresh": _cmd_refresh,
    "ports": _cmd_ports,
    "run": _cmd_run,
    "install": _cmd_install,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Main entry point for the application."""
    parsed_args = parse_args(argv)
    setup_logging(verbose=parsed_args.verbose, debug=parsed_args.debug)

    try:
        project = load_project(parsed_args.project_dir)
        reporter = Reporter(console=console)
        orchestrator = FeatureOrchestrator(
            project,
            reporter=reporter,
            script_service=ScriptService(project, stream_output=parsed_args.verbose),
        )
        return COMMANDS[parsed_args.command](parsed_args, project, orchestrator)
    except CommandCancelledError as e:
        logger.debug(str(e))
        return EXIT_CANCELLED
    except OperationAbortedError as e:
        console.print(f"[yellow]{e}[/yellow]")
        return 1
    except KeyboardInterrupt:
        console.print("\n[yellow]Operation cancelled by user[/yellow]")
        return 1
    except RampError as e:
        console.print(f"[red]Error: {e}[/red]")
        if parsed_args.debug:
            console.print_exception()
        return 1


if __name__ == "__main__":
    sys.exit(main())
