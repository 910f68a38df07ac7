"""
Provider contract shared by every session-file format.

A provider knows where one AI CLI keeps its transcripts, how to find the
ones touched recently, and how to read only the part of a file that has
not been mirrored yet. The orchestrator talks to providers exclusively
through the `Provider` interface defined here.
"""

import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from chat_mirror.models import (
    ConversationMessage,
    ParseResult,
    Role,
    SessionFile,
    SessionMetadata,
)

logger = logging.getLogger(__name__)


class ProviderType(str, Enum):
    """Identifier of a supported AI CLI."""
    CLAUDE = "claude"
    GEMINI = "gemini"
    CODEX = "codex"

    @property
    def display_name(self) -> str:
        return {
            ProviderType.CLAUDE: "Claude Code",
            ProviderType.GEMINI: "Gemini CLI",
            ProviderType.CODEX: "Codex CLI",
        }[self]

    @property
    def default_root(self) -> str:
        return {
            ProviderType.CLAUDE: "~/.claude/projects",
            ProviderType.GEMINI: "~/.gemini/tmp",
            ProviderType.CODEX: "~/.codex/sessions",
        }[self]


class SkipReason(str, Enum):
    """Why a single record produced no message."""
    MALFORMED = "malformed"
    NOT_CONVERSATIONAL = "not_conversational"
    INJECTED = "injected"
    BEFORE_WINDOW = "before_window"
    EMPTY = "empty"


@dataclass(frozen=True)
class RecordResult:
    """Outcome of parsing one record: its messages, or the reason it was skipped."""
    messages: Tuple[ConversationMessage, ...] = ()
    skipped: Optional[SkipReason] = None

    @classmethod
    def ok(cls, messages: Iterable[ConversationMessage]) -> "RecordResult":
        messages = tuple(messages)
        if not messages:
            return cls(skipped=SkipReason.EMPTY)
        return cls(messages=messages)

    @classmethod
    def skip(cls, reason: SkipReason) -> "RecordResult":
        return cls(skipped=reason)


@dataclass
class SkipCounts:
    """Tally of skipped records for one parse call, for debug logging."""
    counts: Dict[SkipReason, int] = field(default_factory=dict)

    def add(self, reason: SkipReason) -> None:
        self.counts[reason] = self.counts.get(reason, 0) + 1

    def __bool__(self) -> bool:
        return bool(self.counts)

    def __str__(self) -> str:
        return ", ".join(f"{reason.value}={count}" for reason, count in self.counts.items())


def parse_timestamp(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into an aware datetime, or None."""
    if not isinstance(value, str) or not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def local_now() -> datetime:
    return datetime.now().astimezone()


def stat_session_file(path: Path) -> Optional[SessionFile]:
    """Build a SessionFile from the file's current stat, or None if it vanished."""
    try:
        stat = path.stat()
    except OSError:
        return None
    return SessionFile(
        path=path,
        modified_at=datetime.fromtimestamp(stat.st_mtime).astimezone(),
        size=stat.st_size,
    )


def modified_before(path: Path, cutoff: datetime) -> bool:
    """True when the path's own mtime predates the cutoff (missing paths count as old)."""
    try:
        return path.stat().st_mtime < cutoff.timestamp()
    except OSError:
        return True


class Provider(ABC):
    """
    Format-specific adapter for one AI CLI's session files.

    Implementations are stateless between calls except for a lookup cache
    they own; `clear_cache` is called once at the start of every cycle.
    """

    type: ProviderType

    # Literal markers identifying injected system/tool content.
    INJECTION_PREFIXES: Tuple[str, ...] = ("<system-reminder>",)
    INJECTION_MARKERS: Tuple[str, ...] = ()

    @property
    def display_name(self) -> str:
        return self.type.display_name

    @abstractmethod
    def discover(
        self, root: Path, max_age: timedelta, now: Optional[datetime] = None
    ) -> List[SessionFile]:
        """Return session files under root modified within max_age of now."""

    @abstractmethod
    def parse_new(
        self, file: SessionFile, cursor: int, since: Optional[datetime] = None
    ) -> ParseResult:
        """Return messages past cursor and the new cursor (never below cursor)."""

    @abstractmethod
    def resolve_project_name(self, file: SessionFile) -> str:
        """Human readable project label; never raises."""

    @abstractmethod
    def resolve_metadata(self, file: SessionFile) -> SessionMetadata:
        """Header metadata for the session; never raises."""

    @abstractmethod
    def clear_cache(self) -> None:
        """Drop memoized side-channel lookups."""

    def is_injected(self, text: str) -> bool:
        stripped = text.lstrip()
        if any(stripped.startswith(prefix) for prefix in self.INJECTION_PREFIXES):
            return True
        return any(marker in text for marker in self.INJECTION_MARKERS)

    def filter_text(self, role: Role, text: Optional[str]) -> Optional[SkipReason]:
        """
        Skip reason for a candidate message text, or None to keep it.

        The base rules ignore role; providers with role-specific rules
        override this.
        """
        if not text or not text.strip():
            return SkipReason.EMPTY
        if self.is_injected(text):
            return SkipReason.INJECTED
        return None

    @staticmethod
    def before_window(timestamp: Optional[datetime], since: Optional[datetime]) -> bool:
        return since is not None and timestamp is not None and timestamp < since

    def collect(self, file: SessionFile, results: Iterable[RecordResult]) -> List[ConversationMessage]:
        """Aggregate the successful records, tallying skips."""
        messages: List[ConversationMessage] = []
        skipped = SkipCounts()
        for result in results:
            if result.skipped is not None:
                skipped.add(result.skipped)
                continue
            messages.extend(result.messages)
        if skipped:
            logger.debug(f"{self.type.value}: skipped records in {file.path.name} ({skipped})")
        return messages


class LineDelimitedProvider(Provider):
    """
    Base for JSONL formats where the cursor is the file's newline count.

    The total reported is the number of line-feed bytes in the file, so it
    may exceed the number of valid records; a trailing partial line is left
    for the next cycle.
    """

    def parse_new(
        self, file: SessionFile, cursor: int, since: Optional[datetime] = None
    ) -> ParseResult:
        try:
            raw = file.path.read_bytes()
        except OSError as e:
            logger.debug(f"Could not read {file.path}: {e}")
            return ParseResult(messages=[], cursor=cursor)

        total_lines = raw.count(b'\n')
        if total_lines <= cursor:
            return ParseResult(messages=[], cursor=cursor)

        lines = raw.decode('utf-8', errors='replace').split('\n')[cursor:total_lines]
        messages = self.collect(file, (self.parse_line(line, since) for line in lines))
        return ParseResult(messages=messages, cursor=total_lines)

    def parse_line(self, line: str, since: Optional[datetime]) -> RecordResult:
        line = line.strip()
        if not line:
            return RecordResult.skip(SkipReason.EMPTY)
        try:
            data = json.loads(line)
        except json.JSONDecodeError:
            return RecordResult.skip(SkipReason.MALFORMED)
        if not isinstance(data, dict):
            return RecordResult.skip(SkipReason.MALFORMED)
        return self.parse_record(data, since)

    @abstractmethod
    def parse_record(self, data: Dict[str, Any], since: Optional[datetime]) -> RecordResult:
        """Turn one decoded JSON record into messages or a skip reason."""

    @staticmethod
    def read_first_record(path: Path) -> Optional[Dict[str, Any]]:
        """Decode the first line of a JSONL file, or None."""
        try:
            with open(path, 'r', encoding='utf-8', errors='replace') as f:
                first_line = f.readline()
        except OSError:
            return None
        try:
            data = json.loads(first_line)
        except json.JSONDecodeError:
            return None
        return data if isinstance(data, dict) else None
