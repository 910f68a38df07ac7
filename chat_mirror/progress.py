"""Console output for the chat-mirror command line"""

from datetime import datetime
from typing import List, Optional

import humanize
from rich.console import Console
from rich.table import Table

from chat_mirror.config import SyncConfig
from chat_mirror.history import HistoryEntry, SyncOutcome
from chat_mirror.orchestrator import CycleResult, SyncStatus
from chat_mirror.providers.base import local_now

OUTCOME_STYLES = {
    SyncOutcome.SUCCESS: "green",
    SyncOutcome.SKIPPED: "dim",
    SyncOutcome.FAILURE: "red",
}


def time_ago(moment: Optional[datetime], now: Optional[datetime] = None) -> str:
    if moment is None:
        return "never"
    return humanize.naturaltime((now or local_now()) - moment)


class ProgressReporter:
    """Prints cycle results, status and history"""

    def __init__(self, console: Optional[Console] = None):
        self.console = console or Console()

    def print_cycle_start(self, config: SyncConfig) -> None:
        self.console.print(f"[blue]Mirroring sessions into {config.destination_path}")

    def print_cycle_result(self, result: Optional[CycleResult]) -> None:
        if result is None:
            self.console.print("[yellow]A sync is already running, nothing to do")
        elif result.outcome is SyncOutcome.FAILURE:
            self.console.print(f"[red]✗ Sync failed: {result.error}")
        elif result.outcome is SyncOutcome.SUCCESS:
            providers = ", ".join(sorted(p.display_name for p in result.providers))
            files = "file" if result.files_synced == 1 else "files"
            self.console.print(f"[green]✓ Synced {result.files_synced} {files} ({providers})")
        else:
            self.console.print("[dim]No new messages")

    def print_status(self, status: SyncStatus, config: SyncConfig) -> None:
        self.console.print(f"State: [b]{status.state.value}[/]")
        self.console.print(f"Last successful sync: [b]{time_ago(status.last_success_at)}[/]")
        files = "file" if status.tracked_files == 1 else "files"
        self.console.print(f"Watching [b]{status.tracked_files}[/] {files}")
        self.console.print(f"Destination: {config.destination_path} ({config.layout.value})")
        if status.last_error:
            self.console.print(f"[red]Last error: {status.last_error}")

    def print_history(self, entries: List[HistoryEntry]) -> None:
        if not entries:
            self.console.print("[yellow]No sync history yet")
            return

        table = Table(title="Sync history")
        table.add_column("When", style="dim")
        table.add_column("Outcome")
        table.add_column("Files", justify="right")
        table.add_column("Providers")
        table.add_column("Error", style="red")

        now = local_now()
        for entry in reversed(entries):
            style = OUTCOME_STYLES[entry.outcome]
            table.add_row(
                time_ago(entry.timestamp, now),
                f"[{style}]{entry.outcome.value}[/]",
                str(entry.files_processed),
                ", ".join(p.value for p in entry.providers),
                entry.error or "",
            )
        self.console.print(table)

    def print_config_error(self, error: Exception) -> None:
        self.console.print(f"[red]Invalid configuration: {error}")
