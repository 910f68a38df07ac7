"""
End-to-end tests for the sync orchestrator.

Each test lays out real session trees under temporary provider roots and
runs full cycles against a fixed clock, then inspects the mirrored
markdown, the cursor store and the published status.
"""

import json
import threading
from datetime import timedelta

from chat_mirror.config import OutputLayout, SyncConfig
from chat_mirror.history import SyncOutcome
from chat_mirror.markdown_writer import OutputAppender
from chat_mirror.orchestrator import SyncState
from chat_mirror.providers.base import ProviderType
from chat_mirror.providers.claude import ClaudeProvider
from chat_mirror.providers.codex import CodexProvider
from chat_mirror.providers.gemini import GeminiProvider
from chat_mirror.providers.registry import ProviderRegistry

from conftest import (
    FIXED_NOW,
    claude_assistant,
    claude_user,
    codex_message,
    codex_meta,
    gemini_message,
    gemini_session,
    minutes_ago,
    set_mtime,
    write_json,
    write_jsonl,
)

SESSION_ID = "0f3c2a9e-1111-2222-3333-444455556666"
TODAY = FIXED_NOW.date().isoformat()
CLAUDE_OUTPUT = f"{TODAY}-claude-widget-0f3c2a9e.md"


def write_claude_session(root, records, modified=None, name=SESSION_ID, append=False):
    folder = root / "-home-dev-widget"
    path = write_jsonl(folder / f"{name}.jsonl", records, append=append)
    set_mtime(path, modified or minutes_ago(5), up_to=folder)
    return path


def vault_files(vault):
    if not vault.exists():
        return []
    return sorted(p.relative_to(vault).as_posix() for p in vault.rglob("*.md"))


class FailingDiscovery(GeminiProvider):
    def discover(self, root, max_age, now=None):
        raise RuntimeError("gemini tree unreadable")


class CountingClaudeProvider(ClaudeProvider):
    def __init__(self):
        super().__init__()
        self.cache_clears = 0

    def clear_cache(self):
        self.cache_clears += 1
        super().clear_cache()


class FlakyAppender(OutputAppender):
    def __init__(self, failures=1):
        super().__init__()
        self.failures = failures

    def append(self, batch, destination_root, layout, created):
        if self.failures:
            self.failures -= 1
            raise OSError("No space left on device")
        return super().append(batch, destination_root, layout, created)


class TestSyncCycle:
    """A single cycle from discovery to markdown."""

    def test_hello_world(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("hello"), claude_assistant("world")])
        orchestrator = make_orchestrator(config)

        result = orchestrator.sync_now(config)

        assert result.outcome is SyncOutcome.SUCCESS
        assert result.files_synced == 1
        assert result.providers == frozenset({ProviderType.CLAUDE})
        assert vault_files(roots["vault"]) == [CLAUDE_OUTPUT]
        text = (roots["vault"] / CLAUDE_OUTPUT).read_text(encoding="utf-8")
        assert text.startswith(f'---\ndate: "[[{TODAY}]]"\nprovider: claude\nproject: widget\nsession: 0f3c2a9e\n---\n\n')
        assert text.endswith("**User**:\nhello\n\n**Claude Code**:\nworld\n\n")

    def test_all_providers_in_one_cycle(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("from claude")])

        day = roots["codex"] / "2025" / "01" / "15"
        codex = write_jsonl(day / "rollout-2025-01-15T10-00-00-5973b6c0-94b8-487b-a530-2aeb6098ae0e.jsonl", [
            codex_meta("/home/dev/code/widget"),
            codex_message("user", "from codex"),
        ])
        set_mtime(codex, minutes_ago(4), up_to=day)

        project = roots["gemini"] / "9f86d081884c7d65"
        gemini = write_json(project / "chats" / "session-a.json", gemini_session([gemini_message("user", "from gemini")]))
        set_mtime(gemini, minutes_ago(3), up_to=project)

        result = make_orchestrator(config).sync_now(config)

        assert result.files_synced == 3
        assert result.providers == frozenset(ProviderType)
        assert vault_files(roots["vault"]) == sorted([
            CLAUDE_OUTPUT,
            f"{TODAY}-codex-widget-2aeb6098ae0e.md",
            f"{TODAY}-gemini-9f86d081-7d1e4f2a.md",
        ])

    def test_subfolder_layout(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("hello")])
        subfolder_config = config.model_copy(update={"layout": OutputLayout.SUBFOLDER})

        make_orchestrator(subfolder_config).sync_now(subfolder_config)

        assert vault_files(roots["vault"]) == [f"claude/{TODAY}-widget-0f3c2a9e.md"]

    def test_second_cycle_without_changes_writes_nothing(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("hello"), claude_assistant("world")])
        orchestrator = make_orchestrator(config)
        orchestrator.sync_now(config)
        before = (roots["vault"] / CLAUDE_OUTPUT).read_text(encoding="utf-8")
        state_before = config.cursor_store_path.read_bytes()

        result = orchestrator.sync_now(config)

        assert result.outcome is SyncOutcome.SKIPPED
        assert (roots["vault"] / CLAUDE_OUTPUT).read_text(encoding="utf-8") == before
        # lastSyncedAt records the file mtime, so an unchanged file leaves identical bytes
        assert config.cursor_store_path.read_bytes() == state_before

    def test_appended_records_are_mirrored_once(self, roots, config, make_orchestrator):
        path = write_claude_session(roots["claude"], [claude_user("hello"), claude_assistant("world")])
        orchestrator = make_orchestrator(config)
        orchestrator.sync_now(config)

        write_claude_session(
            roots["claude"],
            [claude_user("again", moment=minutes_ago(2))],
            modified=minutes_ago(1),
            append=True,
        )
        result = orchestrator.sync_now(config)

        assert result.files_synced == 1
        text = (roots["vault"] / CLAUDE_OUTPUT).read_text(encoding="utf-8")
        assert text.count("hello") == 1
        assert text.count("world") == 1
        assert text.endswith("**User**:\nagain\n\n")
        assert orchestrator.cursor_store.get(str(path)) == 3

    def test_injected_content_only_advances_cursor(self, roots, config, make_orchestrator):
        path = write_claude_session(roots["claude"], [
            claude_user("<system-reminder>\nThe user opened a file\n</system-reminder>"),
            claude_user("<command-name>/clear</command-name>"),
        ])
        orchestrator = make_orchestrator(config)

        result = orchestrator.sync_now(config)

        assert result.outcome is SyncOutcome.SKIPPED
        assert vault_files(roots["vault"]) == []
        assert orchestrator.cursor_store.get(str(path)) == 2

    def test_small_sessions_are_ignored(self, roots, config, make_orchestrator):
        path = write_claude_session(roots["claude"], [claude_user("hi")])
        strict = config.model_copy(update={"min_session_bytes": 10_000})
        orchestrator = make_orchestrator(strict)

        orchestrator.sync_now(strict)

        assert vault_files(roots["vault"]) == []
        assert str(path) not in orchestrator.cursor_store

    def test_cursors_are_persisted(self, roots, config, make_orchestrator):
        path = write_claude_session(roots["claude"], [claude_user("hello")])

        make_orchestrator(config).sync_now(config)

        data = json.loads(config.cursor_store_path.read_text(encoding="utf-8"))
        assert data["sessions"][str(path)]["cursor"] == 1


class TestLookbackWindow:

    def test_cold_start_covers_the_whole_day(self, roots, config, make_orchestrator):
        morning = FIXED_NOW.replace(hour=8)
        write_claude_session(roots["claude"], [claude_user("early bird", moment=morning)], modified=morning)

        result = make_orchestrator(config).sync_now(config)

        assert result.files_synced == 1

    def test_warm_cycles_use_lookback(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("recent")])
        orchestrator = make_orchestrator(config)
        orchestrator.sync_now(config)

        earlier = minutes_ago(180)
        write_claude_session(
            roots["claude"], [claude_user("late arrival", moment=earlier)], modified=earlier, name="bbbbbbbb-older"
        )
        # Keep the project folder itself fresh so only the file mtime decides
        set_mtime(roots["claude"] / "-home-dev-widget", minutes_ago(1))

        assert orchestrator.sync_now(config).outcome is SyncOutcome.SKIPPED

        restarted = make_orchestrator(config)
        assert restarted.sync_now(config).files_synced == 1

    def test_lookback_start(self, config, make_orchestrator):
        orchestrator = make_orchestrator(config)
        today_start = FIXED_NOW.replace(hour=0)

        assert orchestrator.lookback_start(config, FIXED_NOW) == today_start

        orchestrator.cursor_store.advance("/tracked.jsonl", 1, FIXED_NOW)
        orchestrator._first_cycle = False
        assert orchestrator.lookback_start(config, FIXED_NOW) == FIXED_NOW - timedelta(minutes=60)

        just_after_midnight = FIXED_NOW.replace(hour=0, minute=10)
        orchestrator._first_cycle = True
        assert orchestrator.lookback_start(config, just_after_midnight) == just_after_midnight - timedelta(minutes=60)


class TestOrphanReclamation:

    def test_deleted_files_are_forgotten(self, roots, config, make_orchestrator):
        path = write_claude_session(roots["claude"], [claude_user("hello")])
        orchestrator = make_orchestrator(config)
        orchestrator.sync_now(config)
        assert str(path) in orchestrator.cursor_store

        path.unlink()
        orchestrator.sync_now(config)

        assert str(path) not in orchestrator.cursor_store

    def test_tracked_files_outside_window_are_kept(self, roots, config, make_orchestrator):
        path = write_claude_session(roots["claude"], [claude_user("hello")])
        orchestrator = make_orchestrator(config)
        orchestrator.sync_now(config)

        set_mtime(path, minutes_ago(300), up_to=path.parent)
        orchestrator.sync_now(config)

        assert orchestrator.cursor_store.get(str(path)) == 1


class TestFailureHandling:

    def test_disabled_sync_records_skip(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("hello")])
        disabled = config.model_copy(update={"sync_enabled": False})
        orchestrator = make_orchestrator(disabled)

        result = orchestrator.sync_now(disabled)

        assert result.outcome is SyncOutcome.SKIPPED
        assert orchestrator.history.last_entry.outcome is SyncOutcome.SKIPPED
        assert vault_files(roots["vault"]) == []

    def test_unsafe_destination_fails_cycle(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("hello")])
        unsafe = config.model_copy(update={"destination": "notes/../vault"})
        orchestrator = make_orchestrator(unsafe)

        result = orchestrator.sync_now(unsafe)

        assert result.outcome is SyncOutcome.FAILURE
        assert orchestrator.status.state is SyncState.FAILED
        assert "Destination" in orchestrator.status.last_error
        assert orchestrator.history.last_entry.error == result.error

    def test_invalid_provider_root_is_skipped(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("hello")])
        day = roots["codex"] / "2025" / "01" / "15"
        codex = write_jsonl(day / "rollout-x.jsonl", [codex_meta(), codex_message("user", "still here")])
        set_mtime(codex, minutes_ago(2), up_to=day)
        partial = SyncConfig(
            destination=config.destination,
            state_dir=config.state_dir,
            min_session_bytes=0,
            providers={
                "claude": {"enabled": True, "root": "relative/projects"},
                "codex": {"enabled": True, "root": str(roots["codex"])},
            },
        )

        result = make_orchestrator(partial).sync_now(partial)

        assert result.outcome is SyncOutcome.SUCCESS
        assert result.providers == frozenset({ProviderType.CODEX})

    def test_one_provider_failing_does_not_stop_others(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("hello")])
        registry = ProviderRegistry([ClaudeProvider(), FailingDiscovery(), CodexProvider()])

        result = make_orchestrator(config, registry=registry).sync_now(config)

        assert result.outcome is SyncOutcome.SUCCESS
        assert result.providers == frozenset({ProviderType.CLAUDE})

    def test_undecodable_session_index_does_not_stop_provider(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("hello")])
        index = roots["claude"] / "-home-dev-widget" / "sessions-index.json"
        index.write_bytes(b"\xff\xfe garbage")
        set_mtime(index, minutes_ago(5), up_to=index.parent)

        result = make_orchestrator(config).sync_now(config)

        assert result.outcome is SyncOutcome.SUCCESS
        assert vault_files(roots["vault"]) == [CLAUDE_OUTPUT]

    def test_write_failure_is_retried_next_cycle(self, roots, config, make_orchestrator):
        path = write_claude_session(roots["claude"], [claude_user("hello")])
        orchestrator = make_orchestrator(config)
        orchestrator.appender = FlakyAppender(failures=1)

        first = orchestrator.sync_now(config)
        assert first.files_synced == 0
        assert orchestrator.cursor_store.get(str(path)) is None

        second = orchestrator.sync_now(config)
        assert second.files_synced == 1
        assert (roots["vault"] / CLAUDE_OUTPUT).read_text(encoding="utf-8").count("hello") == 1


class TestOrchestratorState:

    def test_overlapping_trigger_is_ignored(self, config, make_orchestrator):
        orchestrator = make_orchestrator(config)
        orchestrator._cycle_lock.acquire()
        try:
            assert orchestrator.is_running
            assert orchestrator.sync_now(config) is None
        finally:
            orchestrator._cycle_lock.release()

    def test_concurrent_triggers_run_one_cycle_at_a_time(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("hello")])
        orchestrator = make_orchestrator(config)
        results = []

        threads = [threading.Thread(target=lambda: results.append(orchestrator.sync_now(config))) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert (roots["vault"] / CLAUDE_OUTPUT).read_text(encoding="utf-8").count("hello") == 1
        assert sum(1 for r in results if r is not None and r.files_synced) == 1

    def test_caches_cleared_every_cycle(self, config, make_orchestrator):
        claude = CountingClaudeProvider()
        orchestrator = make_orchestrator(config, registry=ProviderRegistry([claude]))

        orchestrator.sync_now(config)
        orchestrator.sync_now(config)

        assert claude.cache_clears == 2

    def test_status_after_success(self, roots, config, make_orchestrator):
        write_claude_session(roots["claude"], [claude_user("hello")])
        orchestrator = make_orchestrator(config)

        orchestrator.sync_now(config)

        status = orchestrator.status
        assert status.state is SyncState.IDLE
        assert status.last_error is None
        assert status.last_success_at == FIXED_NOW
        assert status.tracked_files == 1
        assert status.recent_history[-1].outcome is SyncOutcome.SUCCESS

    def test_status_is_seeded_from_history(self, config, make_orchestrator):
        unsafe = config.model_copy(update={"destination": "vault"})
        make_orchestrator(unsafe).sync_now(unsafe)

        restarted = make_orchestrator(config)

        assert restarted.status.last_error is not None
        assert restarted.status.last_success_at is None

    def test_reset_state_resyncs_from_scratch(self, roots, config, make_orchestrator):
        path = write_claude_session(roots["claude"], [claude_user("hello")])
        orchestrator = make_orchestrator(config)
        orchestrator.sync_now(config)
        orchestrator.sync_now(config)

        result = orchestrator.reset_state(config)

        assert result.files_synced == 1
        assert len(orchestrator.history.entries) == 1
        assert orchestrator.cursor_store.get(str(path)) == 1
        # Mirrored documents are append-only, so a reset mirrors the session again
        assert (roots["vault"] / CLAUDE_OUTPUT).read_text(encoding="utf-8").count("hello") == 2
