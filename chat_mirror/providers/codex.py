"""
Codex CLI session provider.

Layout: <root>/YYYY/MM/DD/rollout-<timestamp>-<uuid>.jsonl. The first record
of every file is a `session_meta` header carrying the working directory;
conversation records are `response_item` entries with a role and typed
content blocks.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict, List, Optional

from chat_mirror.models import ConversationMessage, Role, SessionFile, SessionMetadata
from chat_mirror.providers.base import (
    LineDelimitedProvider,
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

TEXT_BLOCK_TYPES = {'input_text', 'output_text'}


class CodexProvider(LineDelimitedProvider):
    """Reads ~/.codex/sessions date-partitioned JSONL transcripts."""

    type = ProviderType.CODEX

    INJECTION_PREFIXES = Provider.INJECTION_PREFIXES + (
        "<permissions",
        "<environment_context>",
        "# AGENTS.md",
        "<INSTRUCTIONS>",
    )

    def __init__(self):
        # session file path -> cwd from its session_meta header
        self._cwd_cache: Dict[str, Optional[str]] = {}

    def discover(
        self, root: Path, max_age: timedelta, now: Optional[datetime] = None
    ) -> List[SessionFile]:
        cutoff = (now or local_now()) - max_age
        if not root.is_dir():
            return []

        session_files = []
        for path in self._find_jsonl_files(root, cutoff):
            session = stat_session_file(path)
            if session is None or session.modified_at < cutoff:
                continue
            session_files.append(session)
        return session_files

    def _find_jsonl_files(self, folder: Path, cutoff: datetime) -> List[Path]:
        contents = sorted(folder.iterdir())

        # Only leaf (day) folders get their mtime bumped by new sessions;
        # year and month folders are always descended into.
        if any(item.suffix == '.jsonl' for item in contents) and modified_before(folder, cutoff):
            return []

        found = []
        for item in contents:
            if item.is_dir():
                found.extend(self._find_jsonl_files(item, cutoff))
            elif item.suffix == '.jsonl':
                found.append(item)
        return found

    def parse_record(self, data: Dict[str, Any], since: Optional[datetime]) -> RecordResult:
        if data.get('type') != 'response_item':
            return RecordResult.skip(SkipReason.NOT_CONVERSATIONAL)

        payload = data.get('payload')
        if not isinstance(payload, dict):
            return RecordResult.skip(SkipReason.MALFORMED)

        role_name = payload.get('role')
        if role_name not in ('user', 'assistant'):
            return RecordResult.skip(SkipReason.NOT_CONVERSATIONAL)
        role = Role(role_name)

        timestamp = parse_timestamp(data.get('timestamp'))
        if self.before_window(timestamp, since):
            return RecordResult.skip(SkipReason.BEFORE_WINDOW)

        text = self._text_content(payload.get('content'))
        reason = self.filter_text(role, text)
        if reason is not None:
            return RecordResult.skip(reason)
        return RecordResult.ok([ConversationMessage(role=role, content=text, timestamp=timestamp)])

    @staticmethod
    def _text_content(content: Any) -> str:
        if not isinstance(content, list):
            return ""
        return "\n".join(
            block['text']
            for block in content
            if isinstance(block, dict)
            and block.get('type') in TEXT_BLOCK_TYPES
            and isinstance(block.get('text'), str)
        )

    def resolve_project_name(self, file: SessionFile) -> str:
        cwd = self._session_cwd(file)
        if cwd and Path(cwd).name:
            return f"codex-{Path(cwd).name}"
        return f"codex-{file.path.stem[-12:]}"

    def resolve_metadata(self, file: SessionFile) -> SessionMetadata:
        return SessionMetadata(
            session_id=file.path.stem[-12:],
            working_directory=self._session_cwd(file),
        )

    def clear_cache(self) -> None:
        self._cwd_cache.clear()

    def _session_cwd(self, file: SessionFile) -> Optional[str]:
        key = file.key
        if key not in self._cwd_cache:
            cwd = None
            header = self.read_first_record(file.path)
            if header and header.get('type') == 'session_meta':
                payload = header.get('payload')
                if isinstance(payload, dict) and isinstance(payload.get('cwd'), str):
                    cwd = payload['cwd']
            self._cwd_cache[key] = cwd
        return self._cwd_cache[key]
