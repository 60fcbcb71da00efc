"""Terminal output handling using Rich library.

This module provides the OutputHandler class for all CLI terminal output:
colored messages, spinners, sync summaries and history tables. Supports
verbosity levels and the --no-color flag.
"""

from contextlib import contextmanager
from typing import Iterator, List

from rich.console import Console
from rich.live import Live
from rich.spinner import Spinner
from rich.table import Table

from src.content_tree.models import Page
from src.sync.models import GitSyncConfig, SyncHistory, SyncStatus

STATUS_STYLES = {
    SyncStatus.IDLE: "dim",
    SyncStatus.SYNCING: "blue",
    SyncStatus.SUCCESS: "green",
    SyncStatus.CONFLICT: "red",
    SyncStatus.ERROR: "red",
}


class OutputHandler:
    """Handles all terminal output using Rich library.

    Attributes:
        verbosity: Verbosity level (0=summary, 1=info, 2=debug)
        console: Rich Console instance for output

    Example:
        >>> handler = OutputHandler(verbosity=1, no_color=False)
        >>> handler.success("Operation completed")
        >>> with handler.spinner("Pulling..."):
        ...     pass
    """

    def __init__(self, verbosity: int = 0, no_color: bool = False):
        self.verbosity = verbosity
        self.console = Console(
            no_color=no_color,
            highlight=False,
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}", style="red")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")

    def info(self, message: str) -> None:
        """Display info message (only if verbosity >= 1)."""
        if self.verbosity >= 1:
            self.console.print(message)

    def debug(self, message: str) -> None:
        """Display debug message (only if verbosity >= 2)."""
        if self.verbosity >= 2:
            self.console.print(f"[dim]{message}[/dim]")

    def print(self, message: str) -> None:
        self.console.print(message)

    @contextmanager
    def spinner(self, message: str) -> Iterator[None]:
        """Display spinner for single operations."""
        spinner = Spinner("dots", text=message)
        with Live(spinner, console=self.console, refresh_per_second=10):
            yield

    def print_sync_summary(self, history: SyncHistory) -> None:
        """Display the outcome of one sync run with color coding."""
        direction = history.direction.value
        self.console.print(f"\n[bold]{direction.capitalize()} Summary:[/bold]")

        if history.pages_created > 0:
            self.console.print(f"  [green]+[/green] Created: {history.pages_created} page(s)")
        if history.pages_updated > 0:
            self.console.print(f"  [blue]↻[/blue] Updated: {history.pages_updated} page(s)")
        if history.pages_deleted > 0:
            self.console.print(f"  [red]-[/red] Deleted: {history.pages_deleted} page(s)")
        if history.conflicts:
            self.console.print(f"  [red]⚡[/red] Conflicts: {len(history.conflicts)} page(s)")
            for conflict in history.conflicts:
                self.console.print(f"      {conflict.get('path')} ({conflict.get('file_path')})")
        for error in history.errors:
            self.console.print(f"  [red]✗[/red] {error}")

        if history.status == SyncStatus.ERROR:
            self.console.print(f"\n[red]{direction.capitalize()} failed[/red]")
        elif history.status == SyncStatus.CONFLICT:
            self.console.print(f"\n[red]{direction.capitalize()} completed with conflicts[/red]")
        elif history.files_processed == 0:
            self.console.print("\n[green]Already in sync. No changes detected.[/green]")
        else:
            self.console.print(
                f"\n[green]{direction.capitalize()} completed successfully "
                f"({history.files_processed} file(s))[/green]"
            )

    def print_status(self, config: GitSyncConfig, conflicts: List[Page]) -> None:
        style = STATUS_STYLES.get(config.sync_status, "white")
        self.console.print(f"[bold]Space:[/bold] {config.space_id}")
        self.console.print(
            f"[bold]Repository:[/bold] {config.repository_url} "
            f"({config.default_branch}:{config.root_path})"
        )
        self.console.print(f"[bold]Status:[/bold] [{style}]{config.sync_status.value}[/{style}]")
        self.console.print(f"[bold]Last synced commit:[/bold] {config.last_sync_commit or '-'}")
        if config.last_sync_at:
            self.console.print(f"[bold]Last sync:[/bold] {config.last_sync_at.isoformat()}")
        if config.last_error:
            self.console.print(f"[bold]Last error:[/bold] [red]{config.last_error}[/red]")

        if conflicts:
            self.console.print(f"\n[red]Unresolved conflicts ({len(conflicts)} page(s)):[/red]")
            for page in conflicts:
                self.console.print(f"  • {page.path} ({page.conflict.file_path})")

    def print_history_table(self, histories: List[SyncHistory]) -> None:
        if not histories:
            self.console.print("[yellow]No sync history yet[/yellow]")
            return

        table = Table(title="Sync History")
        table.add_column("Started")
        table.add_column("Operation")
        table.add_column("Direction")
        table.add_column("Status")
        table.add_column("Files", justify="right")
        table.add_column("+/~/-", justify="right")
        table.add_column("Commit")

        for history in histories:
            style = STATUS_STYLES.get(history.status, "white")
            table.add_row(
                history.started_at.strftime("%Y-%m-%d %H:%M:%S"),
                history.operation.value,
                history.direction.value,
                f"[{style}]{history.status.value}[/{style}]",
                str(history.files_processed),
                f"{history.pages_created}/{history.pages_updated}/{history.pages_deleted}",
                (history.end_commit or '')[:8],
            )
        self.console.print(table)
