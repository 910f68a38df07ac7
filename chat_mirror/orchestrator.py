"""
Sync orchestrator: runs one mirror cycle across all enabled providers.

Each cycle discovers recently modified session files, parses only the part
past each file's stored cursor, appends new messages to markdown and then
advances the cursor. Cursors are committed to disk once, at the end of the
cycle, together with orphan reclamation.
"""

import logging
import os
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, FrozenSet, Optional, Set, Tuple

from chat_mirror.config import SyncConfig
from chat_mirror.cursor_store import SessionCursorStore
from chat_mirror.history import HistoryEntry, SyncHistory, SyncOutcome
from chat_mirror.markdown_writer import OutputAppender, SessionBatch
from chat_mirror.models import SessionFile
from chat_mirror.providers.base import Provider, ProviderType, local_now
from chat_mirror.providers.registry import ProviderRegistry

logger = logging.getLogger(__name__)


class SyncConfigurationError(ValueError):
    """The configuration cannot be used for a cycle (e.g. unsafe destination)."""


class SyncState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


@dataclass(frozen=True)
class SyncStatus:
    """Immutable snapshot published for observers."""
    state: SyncState = SyncState.IDLE
    last_error: Optional[str] = None
    last_success_at: Optional[datetime] = None
    tracked_files: int = 0
    recent_history: Tuple[HistoryEntry, ...] = ()


@dataclass(frozen=True)
class CycleResult:
    outcome: SyncOutcome
    files_synced: int = 0
    providers: FrozenSet[ProviderType] = field(default_factory=frozenset)
    error: Optional[str] = None


class SyncOrchestrator:
    """
    Drives sync cycles; at most one runs at a time.

    The cursor store and history are owned by the orchestrator and only
    mutated from inside a cycle.
    """

    def __init__(
        self,
        cursor_store: SessionCursorStore,
        history: SyncHistory,
        registry: Optional[ProviderRegistry] = None,
        appender: Optional[OutputAppender] = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.cursor_store = cursor_store
        self.history = history
        self.registry = registry or ProviderRegistry()
        self.appender = appender or OutputAppender()
        self.clock = clock

        self._cycle_lock = threading.Lock()
        self._status_lock = threading.Lock()
        self._first_cycle = True

        # Seed the published status from the persisted history
        completed = [e for e in history.entries if e.outcome is not SyncOutcome.FAILURE]
        last_entry = history.last_entry
        self._status = SyncStatus(
            last_error=last_entry.error if last_entry and last_entry.outcome is SyncOutcome.FAILURE else None,
            last_success_at=completed[-1].timestamp if completed else None,
            tracked_files=len(cursor_store),
            recent_history=tuple(history.entries),
        )

    @classmethod
    def from_config(
        cls,
        config: SyncConfig,
        registry: Optional[ProviderRegistry] = None,
        clock: Callable[[], datetime] = local_now,
    ) -> "SyncOrchestrator":
        """Build an orchestrator whose state files live under config.state_dir."""
        cursor_store = SessionCursorStore(config.cursor_store_path)
        cursor_store.load()
        history = SyncHistory(config.history_path)
        history.load()
        return cls(cursor_store, history, registry=registry, clock=clock)

    @property
    def status(self) -> SyncStatus:
        with self._status_lock:
            return self._status

    @property
    def is_running(self) -> bool:
        return self._cycle_lock.locked()

    def _publish(self, **changes) -> None:
        with self._status_lock:
            self._status = replace(
                self._status,
                tracked_files=len(self.cursor_store),
                recent_history=tuple(self.history.entries),
                **changes,
            )

    def sync_now(self, config: SyncConfig) -> Optional[CycleResult]:
        """Run one cycle; returns None if another cycle is already in flight."""
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Sync already in progress, ignoring trigger")
            return None
        try:
            return self._run_cycle(config)
        finally:
            self._cycle_lock.release()

    def reset_state(self, config: SyncConfig) -> Optional[CycleResult]:
        """Forget all cursors and history, then run a cold cycle."""
        with self._cycle_lock:
            logger.info("Resetting sync state")
            self.cursor_store.reset()
            self.cursor_store.persist()
            self.history.clear()
            self._publish(last_error=None)
        return self.sync_now(config)

    def _run_cycle(self, config: SyncConfig) -> CycleResult:
        if not config.sync_enabled:
            logger.debug("Sync disabled, recording skipped cycle")
            self.history.add_skipped()
            self._publish()
            return CycleResult(SyncOutcome.SKIPPED)

        self._publish(state=SyncState.RUNNING)
        try:
            synced_count, synced_providers = self._sync_all_sessions(config)
        except (SyncConfigurationError, OSError) as e:
            return self._fail(str(e))
        except Exception as e:
            logger.exception("Unexpected error during sync cycle")
            return self._fail(f"Unexpected error: {e}")

        if synced_count:
            self.history.add_success(synced_count, synced_providers)
            outcome = SyncOutcome.SUCCESS
        else:
            self.history.add_skipped()
            outcome = SyncOutcome.SKIPPED

        self._publish(state=SyncState.IDLE, last_error=None, last_success_at=self.clock())
        logger.info(f"Sync cycle finished: {synced_count} files synced, {len(self.cursor_store)} tracked")
        return CycleResult(outcome, files_synced=synced_count, providers=frozenset(synced_providers))

    def _fail(self, message: str) -> CycleResult:
        logger.error(f"Sync cycle failed: {message}")
        self.history.add_failure(message)
        self._publish(state=SyncState.FAILED, last_error=message)
        return CycleResult(SyncOutcome.FAILURE, error=message)

    def lookback_start(self, config: SyncConfig, now: datetime) -> datetime:
        """
        Lower bound of the discovery window.

        Cold (empty store or first cycle of this process): start of the
        current day, or the lookback window if that reaches further back.
        Warm: the configured lookback window.
        """
        warm_start = now - timedelta(minutes=config.lookback_minutes)
        if self._first_cycle or self.cursor_store.is_empty:
            today_start = now.replace(hour=0, minute=0, second=0, microsecond=0)
            return min(today_start, warm_start)
        return warm_start

    def _sync_all_sessions(self, config: SyncConfig) -> Tuple[int, Set[ProviderType]]:
        if not config.destination_valid:
            raise SyncConfigurationError(
                "Destination path must be absolute and may not contain '..' segments"
            )

        providers = self.registry.enabled_providers(config)
        for provider in providers:
            provider.clear_cache()

        now = self.clock()
        window_start = self.lookback_start(config, now)
        self._first_cycle = False

        synced_count = 0
        synced_providers: Set[ProviderType] = set()
        live_paths: Set[str] = set()

        for provider in providers:
            if not config.provider_root_valid(provider.type):
                logger.debug(f"Skipping {provider.display_name}: invalid root path")
                continue
            root = config.provider_root(provider.type)
            try:
                session_files = provider.discover(root, now - window_start, now=now)
                live_paths.update(f.key for f in session_files)
                for session_file in session_files:
                    if self._sync_file(provider, session_file, config, window_start, now):
                        synced_count += 1
                        synced_providers.add(provider.type)
            except Exception as e:
                logger.warning(f"{provider.display_name} sync failed, continuing: {e}")
                continue

        # Tracked files that fell out of the window are still alive
        live_paths.update(p for p in self.cursor_store.paths() if p not in live_paths and os.path.exists(p))
        self.cursor_store.reclaim_orphans(live_paths)
        self.cursor_store.persist()
        return synced_count, synced_providers

    def _sync_file(
        self,
        provider: Provider,
        session_file: SessionFile,
        config: SyncConfig,
        since: datetime,
        now: datetime,
    ) -> bool:
        """Mirror the unread tail of one file; True when output was written."""
        key = session_file.key
        if session_file.size < config.min_session_bytes:
            logger.debug(f"Skipping small session {session_file.path.name} ({session_file.size} bytes)")
            return False

        last_synced = self.cursor_store.get_last_synced_at(key)
        if last_synced is not None and last_synced >= session_file.modified_at:
            return False

        cursor = self.cursor_store.get(key) or 0
        result = provider.parse_new(session_file, cursor, since)

        if not result.messages:
            # Content was present but entirely filtered; don't rescan it
            if result.cursor > cursor:
                self.cursor_store.advance(key, result.cursor, session_file.modified_at)
            return False

        batch = SessionBatch(
            provider=provider.type,
            project_name=provider.resolve_project_name(session_file),
            metadata=provider.resolve_metadata(session_file),
            messages=result.messages,
        )
        try:
            self.appender.append(batch, config.destination_path, config.layout, now.date())
        except (OSError, ValueError) as e:
            logger.error(f"Failed to write output for {session_file.path}: {e}")
            return False

        self.cursor_store.advance(key, result.cursor, session_file.modified_at)
        logger.info(f"Synced {len(result.messages)} messages from {session_file.path.name}")
        return True
