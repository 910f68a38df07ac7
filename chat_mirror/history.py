"""
Bounded log of sync cycle outcomes.

One entry is recorded per cycle. The log is only displayed to observers;
the engine never reads it back for decisions.
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from chat_mirror.fileio import atomic_write_text
from chat_mirror.providers.base import ProviderType, local_now, parse_timestamp

logger = logging.getLogger(__name__)

MAX_HISTORY_ENTRIES = 48


class SyncOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class HistoryEntry:
    """Outcome of one sync cycle."""
    outcome: SyncOutcome
    files_processed: int = 0
    error: Optional[str] = None
    providers: Tuple[ProviderType, ...] = ()
    timestamp: datetime = field(default_factory=local_now)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_json(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "status": self.outcome.value,
            "filesProcessed": self.files_processed,
            "errorMessage": self.error,
            "providers": [p.value for p in self.providers],
        }

    @classmethod
    def from_json(cls, data: Any) -> "HistoryEntry":
        if not isinstance(data, dict):
            raise ValueError(f"history entry must be an object, got {type(data).__name__}")
        timestamp = parse_timestamp(data.get("timestamp"))
        if timestamp is None:
            raise ValueError(f"invalid timestamp {data.get('timestamp')!r}")
        providers = []
        for name in data.get("providers") or []:
            try:
                providers.append(ProviderType(name))
            except ValueError:
                continue
        return cls(
            outcome=SyncOutcome(data["status"]),
            files_processed=int(data.get("filesProcessed", 0)),
            error=data.get("errorMessage"),
            providers=tuple(providers),
            timestamp=timestamp,
            id=str(data.get("id") or uuid.uuid4()),
        )


class SyncHistory:
    """Ring-bounded history persisted after every recorded entry."""

    def __init__(self, path: Optional[Path], max_entries: int = MAX_HISTORY_ENTRIES):
        self.path = path
        self.max_entries = max_entries
        self._entries: List[HistoryEntry] = []

    @property
    def entries(self) -> List[HistoryEntry]:
        return list(self._entries)

    @property
    def last_entry(self) -> Optional[HistoryEntry]:
        return self._entries[-1] if self._entries else None

    def add(self, entry: HistoryEntry) -> HistoryEntry:
        self._entries.append(entry)
        if len(self._entries) > self.max_entries:
            del self._entries[: len(self._entries) - self.max_entries]
        self.save()
        return entry

    def add_success(self, files_processed: int, providers: Iterable[ProviderType] = ()) -> HistoryEntry:
        ordered = tuple(t for t in ProviderType if t in set(providers))
        return self.add(HistoryEntry(SyncOutcome.SUCCESS, files_processed=files_processed, providers=ordered))

    def add_failure(self, error: str) -> HistoryEntry:
        return self.add(HistoryEntry(SyncOutcome.FAILURE, error=error))

    def add_skipped(self) -> HistoryEntry:
        return self.add(HistoryEntry(SyncOutcome.SKIPPED))

    def clear(self) -> None:
        self._entries = []
        self.save()

    def load(self) -> None:
        self._entries = []
        if self.path is None:
            return
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
            raw_entries = data["entries"]
            self._entries = [HistoryEntry.from_json(item) for item in raw_entries][-self.max_entries:]
        except FileNotFoundError:
            return
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Failed to load sync history {self.path}: {e}")
            self._entries = []

    def save(self) -> None:
        if self.path is None:
            return
        try:
            payload = {"entries": [entry.to_json() for entry in self._entries]}
            atomic_write_text(self.path, json.dumps(payload, indent=2) + "\n")
        except OSError as e:
            logger.error(f"Failed to save sync history: {e}")
