"""Tests for the console and terminal status rendering helpers."""

from datetime import timedelta

from rich.console import Console

from chat_mirror.history import HistoryEntry, SyncOutcome
from chat_mirror.orchestrator import CycleResult
from chat_mirror.progress import ProgressReporter, time_ago
from chat_mirror.providers.base import ProviderType
from chat_mirror.widgets.status_panel import history_strip

from conftest import FIXED_NOW


def test_time_ago():
    assert time_ago(None) == "never"
    assert time_ago(FIXED_NOW - timedelta(minutes=5), now=FIXED_NOW) == "5 minutes ago"


def test_history_strip_is_per_provider():
    entries = [
        HistoryEntry(SyncOutcome.SUCCESS, files_processed=1, providers=(ProviderType.CLAUDE,)),
        HistoryEntry(SyncOutcome.SUCCESS, files_processed=1, providers=(ProviderType.CODEX,)),
        HistoryEntry(SyncOutcome.SKIPPED),
        HistoryEntry(SyncOutcome.FAILURE, error="boom"),
    ]

    strip = history_strip(entries, ProviderType.CLAUDE)

    assert strip.plain == "█▁▁█"
    assert [span.style for span in strip.spans] == ["green", "dim", "dim", "red"]


def test_cycle_result_messages():
    console = Console(record=True, width=120)
    reporter = ProgressReporter(console)

    reporter.print_cycle_result(None)
    reporter.print_cycle_result(CycleResult(SyncOutcome.FAILURE, error="Destination path must be absolute"))
    reporter.print_cycle_result(
        CycleResult(SyncOutcome.SUCCESS, files_synced=2, providers=frozenset({ProviderType.GEMINI, ProviderType.CLAUDE}))
    )
    reporter.print_cycle_result(CycleResult(SyncOutcome.SKIPPED))

    output = console.export_text()
    assert "already running" in output
    assert "Sync failed: Destination path must be absolute" in output
    assert "Synced 2 files (Claude Code, Gemini CLI)" in output
    assert "No new messages" in output


def test_history_table_lists_newest_first():
    console = Console(record=True, width=120)
    entries = [
        HistoryEntry(SyncOutcome.SUCCESS, files_processed=3, providers=(ProviderType.CLAUDE,)),
        HistoryEntry(SyncOutcome.FAILURE, error="unwritable vault"),
    ]

    ProgressReporter(console).print_history(entries)

    output = console.export_text()
    assert output.index("failure") < output.index("success")
    assert "unwritable vault" in output
