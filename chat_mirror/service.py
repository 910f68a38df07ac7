"""
Sync service for chat-mirror.

Owns the periodic trigger around the orchestrator: a timer task that runs
one cycle per tick on a worker thread, plus an optional watchdog observer
that requests an extra cycle when a session file changes.
"""

import asyncio
import concurrent.futures
import logging
import time
from typing import Callable, Optional

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from chat_mirror.config import SyncConfig
from chat_mirror.orchestrator import CycleResult, SyncOrchestrator

logger = logging.getLogger(__name__)

SESSION_SUFFIXES = ('.jsonl', '.json')


class SessionChangeHandler(FileSystemEventHandler):
    """Requests a sync when a session file is written, at most once per cooldown."""

    def __init__(self, on_change: Callable[[], None], cooldown: float = 2.0):
        self.on_change = on_change
        self.cooldown = cooldown
        self.last_trigger = 0.0

    def on_modified(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def on_created(self, event: FileSystemEvent) -> None:
        self._handle(event)

    def _handle(self, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        path = event.src_path if isinstance(event.src_path, str) else event.src_path.decode()
        if not path.endswith(SESSION_SUFFIXES):
            return
        current_time = time.monotonic()
        if current_time - self.last_trigger < self.cooldown:
            return
        self.last_trigger = current_time
        logger.debug(f"Session file changed: {path}")
        self.on_change()


class SyncService:
    """Periodic scheduler for sync cycles."""

    def __init__(self, orchestrator: SyncOrchestrator, config_loader: Callable[[], SyncConfig]):
        self.orchestrator = orchestrator
        self.config_loader = config_loader
        self.timer_task: Optional[asyncio.Task] = None
        self.observer: Optional[Observer] = None
        self.is_running = False
        self._config: Optional[SyncConfig] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def current_config(self) -> SyncConfig:
        """Fresh snapshot per cycle; a broken config file keeps the last good one."""
        try:
            self._config = self.config_loader()
        except Exception as e:
            if self._config is None:
                raise
            logger.error(f"Failed to reload config, keeping previous settings: {e}")
        return self._config

    async def start(self, watch: bool = False) -> None:
        if self.is_running:
            logger.warning("Sync service already running")
            return

        logger.info("Starting chat-mirror sync service")
        self.is_running = True
        self._loop = asyncio.get_running_loop()
        self.timer_task = asyncio.create_task(self._periodic_sync())
        if watch:
            self._start_observer(self.current_config())

    async def stop(self) -> None:
        if not self.is_running:
            return

        logger.info("Stopping chat-mirror sync service")
        self.is_running = False

        if self.observer:
            self.observer.stop()
            self.observer.join()
            self.observer = None

        if self.timer_task:
            self.timer_task.cancel()
            try:
                await self.timer_task
            except asyncio.CancelledError:
                pass
            self.timer_task = None

    async def sync_now(self) -> Optional[CycleResult]:
        """Run one cycle on a worker thread."""
        config = self.current_config()
        return await asyncio.to_thread(self.orchestrator.sync_now, config)

    async def _periodic_sync(self) -> None:
        try:
            while True:
                try:
                    await self.sync_now()
                except Exception as e:
                    logger.error(f"Error in periodic sync: {e}")
                interval = self._config.sync_interval_seconds if self._config else 5
                await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("Periodic sync cancelled")
            raise

    def _start_observer(self, config: SyncConfig) -> None:
        handler = SessionChangeHandler(self._request_sync)
        observer = Observer()
        watched = 0
        for provider in self.orchestrator.registry.enabled_providers(config):
            if not config.provider_root_valid(provider.type):
                continue
            root = config.provider_root(provider.type)
            if root.is_dir():
                observer.schedule(handler, str(root), recursive=True)
                watched += 1
                logger.info(f"Watching {provider.display_name} sessions at {root}")
        if not watched:
            logger.info("No provider roots to watch")
            return
        observer.start()
        self.observer = observer

    def _request_sync(self) -> None:
        # Called from the watchdog thread
        if self._loop is None or not self.is_running:
            return
        future = asyncio.run_coroutine_threadsafe(self.sync_now(), self._loop)
        future.add_done_callback(self._log_triggered_sync)

    @staticmethod
    def _log_triggered_sync(future: concurrent.futures.Future) -> None:
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error(f"File-triggered sync failed: {error}")

    def get_status(self) -> dict:
        status = self.orchestrator.status
        return {
            'running': self.is_running,
            'timer_active': self.timer_task is not None and not self.timer_task.done(),
            'watching': self.observer is not None,
            'state': status.state.value,
            'tracked_files': status.tracked_files,
            'last_error': status.last_error,
        }
