"""
Terminal monitor for chat-mirror.

Runs the periodic sync service and displays the published status; the
only action it can take on the engine is requesting an immediate cycle.
"""

from __future__ import annotations

from textual import log, work
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.widgets import Footer, Header

from chat_mirror.service import SyncService
from chat_mirror.widgets.status_panel import SyncStatusPanel


class MirrorMonitor(App[None]):
    TITLE = "chat-mirror"
    BINDINGS = [
        Binding("q", "app.quit", "Quit"),
        Binding("s", "sync_now", "Sync now"),
    ]

    def __init__(self, service: SyncService, watch: bool = False):
        self.service = service
        self.watch_sessions = watch
        super().__init__()

    def compose(self) -> ComposeResult:
        config = self.service.current_config()
        providers = [p.type for p in self.service.orchestrator.registry.enabled_providers(config)]
        yield Header()
        yield SyncStatusPanel(providers)
        yield Footer()

    async def on_mount(self) -> None:
        await self.service.start(watch=self.watch_sessions)
        self.set_interval(1.0, self.refresh_status)
        self.refresh_status()

    async def on_unmount(self) -> None:
        await self.service.stop()

    def refresh_status(self) -> None:
        self.query_one(SyncStatusPanel).status = self.service.orchestrator.status

    def action_sync_now(self) -> None:
        self.run_sync()

    @work(exclusive=True)
    async def run_sync(self) -> None:
        result = await self.service.sync_now()
        log.debug(f"Manual sync finished: {result}")
        self.refresh_status()
