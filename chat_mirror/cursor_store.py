"""
Persistent per-file read cursors.

Tracks how far into every session file the mirror has read, so each cycle
parses only new content. The whole store is loaded once and rewritten as a
single snapshot at the end of every cycle.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from chat_mirror.fileio import atomic_write_text
from chat_mirror.providers.base import local_now, parse_timestamp

logger = logging.getLogger(__name__)

STORE_VERSION = 1


@dataclass
class CursorEntry:
    """Progress marker for one session file."""
    cursor: int
    last_synced_at: datetime

    def to_json(self) -> Dict[str, Any]:
        return {"cursor": self.cursor, "lastSyncedAt": self.last_synced_at.isoformat()}

    @classmethod
    def from_json(cls, data: Any) -> Optional["CursorEntry"]:
        if not isinstance(data, dict):
            return None
        cursor = data.get("cursor")
        synced_at = parse_timestamp(data.get("lastSyncedAt"))
        if not isinstance(cursor, int) or isinstance(cursor, bool) or cursor < 0 or synced_at is None:
            return None
        return cls(cursor=cursor, last_synced_at=synced_at)


class SessionCursorStore:
    """Mapping of session file path to cursor, persisted as one JSON document."""

    def __init__(self, path: Path):
        self.path = path
        self._entries: Dict[str, CursorEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, path: str) -> bool:
        return path in self._entries

    @property
    def is_empty(self) -> bool:
        return not self._entries

    def paths(self) -> List[str]:
        return list(self._entries)

    def get(self, path: str) -> Optional[int]:
        entry = self._entries.get(path)
        return entry.cursor if entry else None

    def get_last_synced_at(self, path: str) -> Optional[datetime]:
        entry = self._entries.get(path)
        return entry.last_synced_at if entry else None

    def advance(self, path: str, cursor: int, synced_at: Optional[datetime] = None) -> None:
        """Upsert the cursor for path; a cursor never moves backwards."""
        synced_at = synced_at or local_now()
        entry = self._entries.get(path)
        if entry is None:
            self._entries[path] = CursorEntry(cursor=max(cursor, 0), last_synced_at=synced_at)
            return
        if cursor < entry.cursor:
            logger.debug(f"Ignoring cursor regression for {path}: {entry.cursor} -> {cursor}")
            return
        entry.cursor = cursor
        entry.last_synced_at = synced_at

    def reclaim_orphans(self, live_paths: Iterable[str]) -> List[str]:
        """Drop entries whose path is not in live_paths; returns the dropped paths."""
        live = set(live_paths)
        orphans = [path for path in self._entries if path not in live]
        for path in orphans:
            del self._entries[path]
        if orphans:
            logger.info(f"Reclaimed {len(orphans)} orphaned cursor entries")
        return orphans

    def reset(self) -> None:
        self._entries.clear()

    def load(self) -> None:
        """Load the snapshot from disk; a missing or corrupt file yields an empty store."""
        self._entries = {}
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            return
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load cursor store {self.path}, starting cold: {e}")
            return

        sessions = data.get("sessions") if isinstance(data, dict) else None
        if not isinstance(sessions, dict):
            logger.warning(f"Cursor store {self.path} has unexpected shape, starting cold")
            return

        for path, raw_entry in sessions.items():
            entry = CursorEntry.from_json(raw_entry)
            if entry is None:
                logger.debug(f"Dropping invalid cursor entry for {path}")
                continue
            self._entries[path] = entry
        logger.info(f"Loaded cursors for {len(self._entries)} session files")

    def persist(self) -> None:
        """Write the full snapshot atomically."""
        snapshot = {
            "version": STORE_VERSION,
            "sessions": {path: entry.to_json() for path, entry in sorted(self._entries.items())},
        }
        atomic_write_text(self.path, json.dumps(snapshot, indent=2) + "\n")
