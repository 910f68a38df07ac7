"""
Widgets showing the published sync status.

They only read `SyncStatus` snapshots; nothing here touches the engine's
state directly.
"""

from __future__ import annotations

from typing import Sequence

from rich.text import Text
from textual.app import ComposeResult
from textual.containers import Vertical
from textual.reactive import reactive
from textual.widget import Widget
from textual.widgets import Label, Static

from chat_mirror.history import HistoryEntry, SyncOutcome
from chat_mirror.orchestrator import SyncState, SyncStatus
from chat_mirror.progress import time_ago
from chat_mirror.providers.base import ProviderType

STATE_STYLES = {
    SyncState.IDLE: "green",
    SyncState.RUNNING: "yellow",
    SyncState.FAILED: "red",
}


def history_strip(entries: Sequence[HistoryEntry], provider: ProviderType) -> Text:
    """One glyph per cycle, oldest first; a cycle is green only if this provider wrote output."""
    text = Text()
    for entry in entries:
        if entry.outcome is SyncOutcome.FAILURE:
            text.append("█", style="red")
        elif entry.outcome is SyncOutcome.SUCCESS and provider in entry.providers:
            text.append("█", style="green")
        else:
            text.append("▁", style="dim")
    return text


class HistoryStrip(Static):
    """Recent cycle outcomes for one provider."""

    def __init__(self, provider: ProviderType, **kwargs) -> None:
        super().__init__(**kwargs)
        self.provider = provider

    def show(self, entries: Sequence[HistoryEntry]) -> None:
        self.update(history_strip(entries, self.provider))


class SyncStatusPanel(Widget):
    """Summary line, per-provider history strips and the last error."""

    DEFAULT_CSS = """
    SyncStatusPanel {
        height: auto;
        padding: 1 2;
        border: round $primary;
    }

    SyncStatusPanel .provider-name {
        color: $text-muted;
    }

    #last-error {
        color: $error;
    }
    """

    status: reactive[SyncStatus] = reactive(SyncStatus, always_update=True)

    def __init__(self, providers: Sequence[ProviderType], **kwargs) -> None:
        super().__init__(**kwargs)
        self.providers = list(providers)

    def compose(self) -> ComposeResult:
        yield Label("", id="status-summary")
        for provider in self.providers:
            with Vertical(classes="provider-history"):
                yield Label(provider.display_name, classes="provider-name")
                yield HistoryStrip(provider, id=f"history-{provider.value}")
        yield Static("", id="last-error")

    def watch_status(self, status: SyncStatus) -> None:
        if not self.is_mounted:
            return
        style = STATE_STYLES[status.state]
        files = "file" if status.tracked_files == 1 else "files"
        summary = Text.assemble(
            (status.state.value.title(), style),
            f" | last sync {time_ago(status.last_success_at)}",
            f" | watching {status.tracked_files} {files}",
        )
        self.query_one("#status-summary", Label).update(summary)
        for strip in self.query(HistoryStrip):
            strip.show(status.recent_history)
        self.query_one("#last-error", Static).update(status.last_error or "")
