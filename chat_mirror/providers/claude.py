"""
Claude Code session provider.

Layout: <root>/<encoded-project-folder>/<session-id>.jsonl, optionally nested
deeper. Each project folder may carry a sessions-index.json mapping session
ids to the originating working directory. Sub-agent transcripts live in
`subagents/` folders and are not mirrored.
"""

import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from chat_mirror.models import ConversationMessage, Role, SessionFile, SessionMetadata
from chat_mirror.providers.base import (
    LineDelimitedProvider,
    ProviderType,
    RecordResult,
    SkipReason,
    local_now,
    modified_before,
    parse_timestamp,
    stat_session_file,
)

logger = logging.getLogger(__name__)

SESSION_INDEX_NAME = "sessions-index.json"
SUBAGENTS_DIR = "subagents"


class ClaudeProvider(LineDelimitedProvider):
    """Reads ~/.claude/projects JSONL transcripts."""

    type = ProviderType.CLAUDE

    INJECTION_MARKERS = (
        "<local-command",
        "<command-name>",
        "<system-reminder>",
        "<task-notification>",
        "<bash-stdout>",
        "<bash-stderr>",
        "<local-command-caveat>",
    )

    def __init__(self):
        # index file path -> {session id: project path}
        self._index_cache: Dict[str, Dict[str, Optional[str]]] = {}

    def discover(
        self, root: Path, max_age: timedelta, now: Optional[datetime] = None
    ) -> List[SessionFile]:
        cutoff = (now or local_now()) - max_age
        if not root.is_dir():
            return []

        session_files = []
        for project_dir in sorted(root.iterdir()):
            if not project_dir.is_dir():
                continue
            # Approximation: appending to an existing session does not bump the
            # folder mtime on every filesystem, so such a folder can be skipped.
            if modified_before(project_dir, cutoff):
                continue
            for path in self._find_jsonl_files(project_dir):
                session = stat_session_file(path)
                if session is None or session.modified_at < cutoff:
                    continue
                session_files.append(session)
        return session_files

    def _find_jsonl_files(self, directory: Path) -> List[Path]:
        found = []
        for item in sorted(directory.iterdir()):
            if item.is_dir():
                if item.name == SUBAGENTS_DIR:
                    continue
                found.extend(self._find_jsonl_files(item))
            elif item.suffix == ".jsonl":
                found.append(item)
        return found

    def parse_record(self, data: Dict[str, Any], since: Optional[datetime]) -> RecordResult:
        record_type = data.get('type')
        if record_type not in ('user', 'assistant'):
            return RecordResult.skip(SkipReason.NOT_CONVERSATIONAL)

        message = data.get('message')
        if not isinstance(message, dict):
            return RecordResult.skip(SkipReason.MALFORMED)

        timestamp = parse_timestamp(data.get('timestamp'))
        if self.before_window(timestamp, since):
            return RecordResult.skip(SkipReason.BEFORE_WINDOW)

        role = Role.USER if record_type == 'user' else Role.ASSISTANT
        messages = []
        last_reason = SkipReason.EMPTY
        # Every text block becomes its own message
        for text in self._text_blocks(message.get('content')):
            reason = self.filter_text(role, text)
            if reason is not None:
                last_reason = reason
                continue
            messages.append(ConversationMessage(role=role, content=text, timestamp=timestamp))

        if not messages:
            return RecordResult.skip(last_reason)
        return RecordResult.ok(messages)

    def filter_text(self, role: Role, text: Optional[str]) -> Optional[SkipReason]:
        reason = super().filter_text(role, text)
        if reason is None and role is Role.ASSISTANT and text.lower().startswith("no response requested"):
            return SkipReason.NOT_CONVERSATIONAL
        return reason

    @staticmethod
    def _text_blocks(content: Any) -> List[str]:
        if isinstance(content, str):
            return [content]
        if not isinstance(content, list):
            return []
        return [
            item['text']
            for item in content
            if isinstance(item, dict) and item.get('type') == 'text' and isinstance(item.get('text'), str)
        ]

    def resolve_project_name(self, file: SessionFile) -> str:
        project_path = self._lookup_project_path(file)
        if project_path:
            name = Path(project_path).name
            if name:
                return name

        folder_name = file.path.parent.name
        # Folder names encode the working directory with '/' replaced by '-'
        return folder_name.replace('-', '/').rstrip('/').rsplit('/', 1)[-1] or folder_name or "unknown"

    def resolve_metadata(self, file: SessionFile) -> SessionMetadata:
        return SessionMetadata(
            session_id=file.path.stem[:8],
            working_directory=self._lookup_project_path(file),
        )

    def clear_cache(self) -> None:
        self._index_cache.clear()

    def _lookup_project_path(self, file: SessionFile) -> Optional[str]:
        index = self._load_session_index(file.path.parent / SESSION_INDEX_NAME)
        return index.get(file.path.stem)

    def _load_session_index(self, index_path: Path) -> Dict[str, Optional[str]]:
        key = str(index_path)
        if key in self._index_cache:
            return self._index_cache[key]

        index: Dict[str, Optional[str]] = {}
        try:
            with open(index_path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except FileNotFoundError:
            data = None
        except (OSError, ValueError) as e:
            logger.debug(f"Ignoring unreadable session index {index_path}: {e}")
            data = None

        entries = data.get('entries') if isinstance(data, dict) else None
        for entry in entries if isinstance(entries, list) else []:
            if isinstance(entry, dict) and isinstance(entry.get('sessionId'), str):
                project_path = entry.get('projectPath')
                index[entry['sessionId']] = project_path if isinstance(project_path, str) else None

        self._index_cache[key] = index
        return index
