"""
chat-mirror command line.

    chat-mirror sync       run one cycle now
    chat-mirror run        keep syncing on a timer (optionally on file changes)
    chat-mirror status     show the last published status
    chat-mirror history    show recent cycle outcomes
    chat-mirror reset      forget all cursors and history, then sync cold
    chat-mirror monitor    terminal UI with live status
"""

import argparse
import asyncio
import logging
import sys
import tomllib
from pathlib import Path
from typing import List, Optional

from pydantic import ValidationError
from rich.logging import RichHandler

from chat_mirror.config import DEFAULT_CONFIG_PATH, SyncConfig, load_config
from chat_mirror.orchestrator import SyncOrchestrator
from chat_mirror.history import SyncOutcome
from chat_mirror.progress import ProgressReporter
from chat_mirror.service import SyncService

logger = logging.getLogger("chat_mirror")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="chat-mirror",
        description="Mirror AI CLI transcripts into markdown, incrementally.",
    )
    parser.add_argument("--config", type=Path, default=DEFAULT_CONFIG_PATH, help="path to config.toml")
    parser.add_argument("-v", "--verbose", action="store_true", help="debug logging")

    commands = parser.add_subparsers(dest="command", required=True)
    commands.add_parser("sync", help="run one sync cycle")
    run = commands.add_parser("run", help="sync periodically until interrupted")
    run.add_argument("--watch", action="store_true", help="also sync when session files change")
    commands.add_parser("status", help="show sync status")
    commands.add_parser("history", help="show recent sync outcomes")
    commands.add_parser("reset", help="clear sync state and run a cold sync")
    monitor = commands.add_parser("monitor", help="live terminal monitor")
    monitor.add_argument("--watch", action="store_true", help="also sync when session files change")
    return parser


def setup_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=verbose)],
    )


async def run_forever(service: SyncService, watch: bool) -> None:
    await service.start(watch=watch)
    try:
        while True:
            await asyncio.sleep(3600)
    finally:
        await service.stop()


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(args.verbose)
    reporter = ProgressReporter()

    def config_loader() -> SyncConfig:
        return load_config(args.config)

    try:
        config = config_loader()
    except (tomllib.TOMLDecodeError, ValidationError, OSError) as e:
        reporter.print_config_error(e)
        return 2

    orchestrator = SyncOrchestrator.from_config(config)

    if args.command == "sync":
        reporter.print_cycle_start(config)
        result = orchestrator.sync_now(config)
        reporter.print_cycle_result(result)
        return 1 if result and result.outcome is SyncOutcome.FAILURE else 0

    if args.command == "reset":
        result = orchestrator.reset_state(config)
        reporter.print_cycle_result(result)
        return 1 if result and result.outcome is SyncOutcome.FAILURE else 0

    if args.command == "status":
        reporter.print_status(orchestrator.status, config)
        return 0

    if args.command == "history":
        reporter.print_history(orchestrator.history.entries)
        return 0

    service = SyncService(orchestrator, config_loader)

    if args.command == "monitor":
        from chat_mirror.app import MirrorMonitor

        MirrorMonitor(service, watch=args.watch).run()
        return 0

    try:
        asyncio.run(run_forever(service, watch=args.watch))
    except KeyboardInterrupt:
        logger.info("Stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
