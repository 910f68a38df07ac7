"""
Gemini CLI session provider.

Layout: <root>/<project-hash>/chats/session-*.json (one JSON document per
session with an explicit message list) and the legacy
<root>/<project-hash>/logs.json (a bare array of role/parts records shared
by the whole project). The cursor is the number of array elements seen.
"""

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from chat_mirror.models import ConversationMessage, ParseResult, Role, SessionFile, SessionMetadata
from chat_mirror.providers.base import (
    Provider,
    ProviderType,
    RecordResult,
    SkipReason,
    local_now,
    modified_before,
    parse_timestamp,
    stat_session_file,
)

logger = logging.getLogger(__name__)

CHATS_DIR = "chats"
LEGACY_LOG_NAME = "logs.json"

EntryParser = Callable[[Any, Optional[datetime]], RecordResult]


class GeminiProvider(Provider):
    """Reads ~/.gemini/tmp JSON session documents."""

    type = ProviderType.GEMINI

    def __init__(self):
        # session file path -> sessionId declared inside the document
        self._session_id_cache: Dict[str, Optional[str]] = {}

    def discover(
        self, root: Path, max_age: timedelta, now: Optional[datetime] = None
    ) -> List[SessionFile]:
        cutoff = (now or local_now()) - max_age
        if not root.is_dir():
            return []

        candidates: List[Path] = []
        for hash_dir in sorted(root.iterdir()):
            if not hash_dir.is_dir():
                continue
            # Approximation: rewriting a session in place does not always
            # bump the project folder mtime.
            if modified_before(hash_dir, cutoff):
                continue
            chats_dir = hash_dir / CHATS_DIR
            if chats_dir.is_dir():
                candidates.extend(sorted(chats_dir.glob("*.json")))
            legacy_log = hash_dir / LEGACY_LOG_NAME
            if legacy_log.is_file():
                candidates.append(legacy_log)

        session_files = []
        for path in candidates:
            session = stat_session_file(path)
            if session is None or session.modified_at < cutoff:
                continue
            session_files.append(session)
        return session_files

    def parse_new(
        self, file: SessionFile, cursor: int, since: Optional[datetime] = None
    ) -> ParseResult:
        data = self._load_document(file.path)

        if isinstance(data, dict) and isinstance(data.get('messages'), list):
            session_id = data.get('sessionId')
            self._session_id_cache[file.key] = session_id if isinstance(session_id, str) else None
            return self._parse_entries(file, data['messages'], cursor, since, self._parse_chat_message)

        if isinstance(data, list):
            # Legacy logs carry no timestamps, so the window does not apply
            return self._parse_entries(file, data, cursor, None, self._parse_log_message)

        return ParseResult(messages=[], cursor=cursor)

    def _parse_entries(
        self,
        file: SessionFile,
        entries: List[Any],
        cursor: int,
        since: Optional[datetime],
        parse_entry: EntryParser,
    ) -> ParseResult:
        total = len(entries)
        if total <= cursor:
            return ParseResult(messages=[], cursor=cursor)
        messages = self.collect(file, (parse_entry(entry, since) for entry in entries[cursor:]))
        return ParseResult(messages=messages, cursor=total)

    def _parse_chat_message(self, entry: Any, since: Optional[datetime]) -> RecordResult:
        if not isinstance(entry, dict):
            return RecordResult.skip(SkipReason.MALFORMED)

        entry_type = entry.get('type')
        if entry_type == 'user':
            role = Role.USER
        elif entry_type == 'gemini':
            role = Role.ASSISTANT
        else:
            return RecordResult.skip(SkipReason.NOT_CONVERSATIONAL)

        text = self._text_content(entry.get('content'))
        reason = self.filter_text(role, text)
        if reason is not None:
            return RecordResult.skip(reason)

        timestamp = parse_timestamp(entry.get('timestamp'))
        if self.before_window(timestamp, since):
            return RecordResult.skip(SkipReason.BEFORE_WINDOW)

        return RecordResult.ok([ConversationMessage(role=role, content=text, timestamp=timestamp)])

    def _parse_log_message(self, entry: Any, since: Optional[datetime]) -> RecordResult:
        if not isinstance(entry, dict):
            return RecordResult.skip(SkipReason.MALFORMED)

        role_name = entry.get('role')
        if role_name == 'user':
            role = Role.USER
        elif role_name == 'model':
            role = Role.ASSISTANT
        else:
            return RecordResult.skip(SkipReason.NOT_CONVERSATIONAL)

        text = self._text_content(entry.get('parts'))
        reason = self.filter_text(role, text)
        if reason is not None:
            return RecordResult.skip(reason)
        return RecordResult.ok([ConversationMessage(role=role, content=text)])

    @staticmethod
    def _text_content(content: Any) -> str:
        if isinstance(content, str):
            return content
        if isinstance(content, list):
            return "\n".join(
                part['text']
                for part in content
                if isinstance(part, dict) and isinstance(part.get('text'), str)
            )
        return ""

    def resolve_project_name(self, file: SessionFile) -> str:
        # Gemini stores a hash of the project path, not the path itself
        return self._project_hash(file.path)[:8] or "gemini"

    def resolve_metadata(self, file: SessionFile) -> SessionMetadata:
        session_id = self._session_id(file)
        if session_id:
            return SessionMetadata(session_id=session_id[:8])
        return SessionMetadata(session_id=self._project_hash(file.path)[:8] or file.path.stem[:8])

    def clear_cache(self) -> None:
        self._session_id_cache.clear()

    def _session_id(self, file: SessionFile) -> Optional[str]:
        if file.key not in self._session_id_cache:
            data = self._load_document(file.path)
            session_id = data.get('sessionId') if isinstance(data, dict) else None
            self._session_id_cache[file.key] = session_id if isinstance(session_id, str) else None
        return self._session_id_cache[file.key]

    @staticmethod
    def _project_hash(path: Path) -> str:
        if path.parent.name == CHATS_DIR:
            return path.parent.parent.name
        return path.parent.name

    @staticmethod
    def _load_document(path: Path) -> Any:
        try:
            return json.loads(path.read_bytes())
        except (OSError, ValueError) as e:
            logger.debug(f"Could not decode Gemini session {path}: {e}")
            return None
