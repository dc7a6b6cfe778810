"""Display and confirmation service for ramp output"""
from typing import Callable, Dict, List, Optional

from rich.console import Console
from rich.table import Table

from ramp.logging_config import get_logger
from ramp.models.feature import (
    FeatureCategory,
    FeatureStatus,
    FeatureWorktreeStatus,
    PruneResult,
    RefreshResult,
    RefreshStatus,
)

logger = get_logger(__name__)

CATEGORY_TITLES = {
    FeatureCategory.IN_FLIGHT: ("NEEDS ATTENTION", "yellow"),
    FeatureCategory.MERGED: ("MERGED", "green"),
    FeatureCategory.CLEAN: ("CLEAN", "cyan"),
}

REFRESH_STYLES = {
    RefreshStatus.UPDATED: "green",
    RefreshStatus.FETCHED: "cyan",
    RefreshStatus.SKIPPED: "dim",
    RefreshStatus.FAILED: "red",
}


class Reporter:
    """Progress messages and confirmations for the user.

    ``quiet`` suppresses console output; ``confirm_fn`` replaces the
    interactive ``[y/N]`` prompt (tests and non-interactive callers).
    """

    def __init__(
        self,
        console: Optional[Console] = None,
        quiet: bool = False,
        confirm_fn: Optional[Callable[[str], bool]] = None,
    ):
        self.console = console or Console()
        self.quiet = quiet
        self.confirm_fn = confirm_fn

    def _print(self, *args, **kwargs) -> None:
        if not self.quiet:
            self.console.print(*args, **kwargs)

    def info(self, message: str) -> None:
        logger.info(message)
        self._print(f"  {message}")

    def success(self, message: str) -> None:
        logger.info(message)
        self._print(f"[green]✓ {message}[/green]")

    def warning(self, message: str) -> None:
        logger.debug(f"warning: {message}")
        self._print(f"[yellow]⚠ {message}[/yellow]")

    def error(self, message: str) -> None:
        logger.debug(f"error: {message}")
        self._print(f"[red]✗ {message}[/red]")

    def confirm(self, message: str) -> bool:
        """Ask a yes/no question, defaulting to no."""
        if self.confirm_fn is not None:
            return self.confirm_fn(message)
        try:
            response = self.console.input(f"\n{message} [y/N] ")
        except EOFError:
            # No terminal to answer from
            self._print()
            return False
        return response.strip().lower() in ("y", "yes")


def format_worktree_status(status: FeatureWorktreeStatus) -> str:
    """Short one-line summary of a repository worktree."""
    if status.error:
        return f"[red]{status.error}[/red]"

    parts = []
    if status.has_uncommitted:
        if status.files_changed or status.insertions or status.deletions:
            parts.append(f"{status.files_changed} files +{status.insertions} -{status.deletions}")
        counts = []
        if status.staged_files:
            counts.append(f"{status.staged_files} staged")
        if status.modified_files:
            counts.append(f"{status.modified_files} modified")
        if status.untracked_files:
            counts.append(f"{status.untracked_files} untracked")
        if counts:
            parts.append(", ".join(counts))
    if status.ahead_count and not status.is_merged:
        parts.append(f"{status.ahead_count} ahead")
    if status.behind_count:
        parts.append(f"{status.behind_count} behind")
    if status.is_merged and status.behind_count:
        parts.append("merged")
    return "; ".join(parts) or "clean"


class DisplayService:
    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def display_status(
        self, groups: Dict[FeatureCategory, List[FeatureStatus]], project_name: str = ""
    ) -> None:
        """Render features grouped into needs-attention, merged and clean."""
        total = sum(len(features) for features in groups.values())
        if total == 0:
            self.console.print("No features found")
            return

        summary = ", ".join(
            f"{len(groups[category])} {CATEGORY_TITLES[category][0].lower()}"
            for category in FeatureCategory
            if groups[category]
        )
        header = f"{project_name}: " if project_name else ""
        self.console.print(f"{header}{total} feature(s) ({summary})")

        for category in FeatureCategory:
            features = groups[category]
            if not features:
                continue
            title, color = CATEGORY_TITLES[category]
            table = Table(title=f"[{color}]{title} ({len(features)})[/{color}]", title_justify="left")
            table.add_column("Feature")
            table.add_column("Repository")
            table.add_column("Branch")
            table.add_column("Status")
            for feature in features:
                label = feature.name
                if feature.display_name:
                    label = f"{feature.display_name} ({feature.name})"
                for index, status in enumerate(feature.statuses):
                    table.add_row(
                        label if index == 0 else "",
                        status.repo_name,
                        status.branch_name or "-",
                        format_worktree_status(status),
                    )
            self.console.print(table)

        if groups[FeatureCategory.MERGED]:
            self.console.print("\n[dim]Run 'ramp prune' to remove merged features[/dim]")

    def display_ports(
        self,
        allocations: Dict[str, List[int]],
        base_port: int,
        max_ports: int,
        out_of_range: Optional[Dict[str, List[int]]] = None,
    ) -> None:
        table = Table(title=f"Ports {base_port}-{base_port + max_ports - 1}")
        table.add_column("Feature")
        table.add_column("Ports")
        for feature, ports in sorted(allocations.items(), key=lambda item: min(item[1] or [0])):
            table.add_row(feature, ", ".join(str(p) for p in ports))
        self.console.print(table)
        used = sum(len(ports) for ports in allocations.values())
        self.console.print(f"{used} of {max_ports} ports in use")
        for feature, ports in sorted((out_of_range or {}).items()):
            self.console.print(
                f"[yellow]⚠ {feature} holds port(s) {', '.join(map(str, ports))} outside the configured range[/yellow]"
            )

    def display_refresh(self, results: List[RefreshResult]) -> None:
        for result in results:
            style = REFRESH_STYLES[result.status]
            self.console.print(f"[{style}]{result.repo_name}: {result.status.value}[/{style}] {result.message}")
        failed = [r for r in results if r.status == RefreshStatus.FAILED]
        self.console.print(
            f"\nRefreshed {len(results) - len(failed)} of {len(results)} repositories"
        )

    def display_prune_result(self, result: PruneResult) -> None:
        """Final tally of a pruning batch."""
        if result.cancelled:
            self.console.print("[yellow]Prune cancelled[/yellow]")
            return
        if not result.candidates:
            self.console.print("[green]No merged features to prune![/green]")
            return
        self.console.print(
            f"\n[green]Successfully removed {len(result.succeeded)} of {len(result.candidates)} merged features[/green]"
        )
        if result.failed:
            self.console.print(f"\n[red]Failed to remove {len(result.failed)} features:[/red]")
            for name, error in result.failed.items():
                self.console.print(f"[red]  • {name}: {error}[/red]")
