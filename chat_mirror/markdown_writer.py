"""
Markdown output for mirrored sessions.

A session's document is created with a front-matter header on first write
and only ever appended to afterwards. Duplicate-free output relies on the
orchestrator's cursor discipline, not on inspecting existing content.
"""

import logging
import os
import re
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import List, Optional

from chat_mirror.config import OutputLayout
from chat_mirror.fileio import atomic_write_text
from chat_mirror.models import ConversationMessage, Role, SessionMetadata
from chat_mirror.providers.base import ProviderType

logger = logging.getLogger(__name__)

UNSAFE_FILENAME_CHARS = re.compile(r"[^A-Za-z0-9._-]")
PROVIDER_NAME_PREFIXES = tuple(f"{t.value}-" for t in ProviderType)


def sanitize_filename(name: str) -> str:
    """Replace everything outside [A-Za-z0-9._-] and strip leading dots."""
    cleaned = UNSAFE_FILENAME_CHARS.sub("-", name).lstrip(".")
    return cleaned or "untitled"


def _header_value(value: str) -> str:
    return " ".join(value.splitlines())


@dataclass(frozen=True)
class SessionBatch:
    """New messages for one session plus the routing information for them."""
    provider: ProviderType
    project_name: str
    metadata: SessionMetadata
    messages: List[ConversationMessage]


class MarkdownConverter:
    """Renders headers, message blocks and filenames."""

    def generate_frontmatter(
        self, provider: ProviderType, project_name: str, metadata: SessionMetadata, created: date
    ) -> str:
        lines = [
            "---",
            f'date: "[[{created.isoformat()}]]"',
            f"provider: {provider.value}",
            f"project: {_header_value(project_name)}",
            f"session: {_header_value(metadata.session_id)}",
        ]
        if metadata.working_directory:
            lines.append(f"cwd: {_header_value(metadata.working_directory)}")
        lines.append("---")
        return "\n".join(lines) + "\n\n"

    def convert_for_append(self, messages: List[ConversationMessage], assistant_name: str = "Claude") -> str:
        blocks = []
        for message in messages:
            prefix = "**User**:" if message.role is Role.USER else f"**{assistant_name}**:"
            # Tables need a blank line after the label to render
            separator = "\n" if message.content.startswith("|") else ""
            blocks.append(f"{prefix}\n{separator}{message.content}\n\n")
        return "".join(blocks)

    def generate_filename(
        self,
        project_name: str,
        session_id: str,
        created: date,
        provider: ProviderType,
        use_prefix: bool = True,
    ) -> str:
        clean_project = project_name
        for prefix in PROVIDER_NAME_PREFIXES:
            if clean_project.startswith(prefix):
                clean_project = clean_project[len(prefix):]
                break

        project = sanitize_filename(clean_project)
        session = sanitize_filename(session_id)
        if use_prefix:
            return f"{created.isoformat()}-{provider.value}-{project}-{session}.md"
        return f"{created.isoformat()}-{project}-{session}.md"


class OutputAppender:
    """Writes session batches into the destination folder."""

    def __init__(self, converter: Optional[MarkdownConverter] = None):
        self.converter = converter or MarkdownConverter()

    def destination_for(
        self, batch: SessionBatch, destination_root: Path, layout: OutputLayout, created: date
    ) -> Path:
        if layout is OutputLayout.SUBFOLDER:
            directory = destination_root / batch.provider.value
            filename = self.converter.generate_filename(
                batch.project_name, batch.metadata.session_id, created, batch.provider, use_prefix=False
            )
        else:
            directory = destination_root
            filename = self.converter.generate_filename(
                batch.project_name, batch.metadata.session_id, created, batch.provider, use_prefix=True
            )

        target = directory / filename
        root = Path(os.path.abspath(destination_root))
        if root not in Path(os.path.abspath(target)).parents:
            raise ValueError(f"Refusing to write outside destination: {target}")
        return target

    def append(
        self, batch: SessionBatch, destination_root: Path, layout: OutputLayout, created: date
    ) -> Path:
        """
        Durably add the batch to the session's document.

        Raises OSError when the directory or file cannot be written; the
        caller must then leave the session's cursor where it was.
        """
        target = self.destination_for(batch, destination_root, layout, created)
        target.parent.mkdir(parents=True, exist_ok=True)

        content = self.converter.convert_for_append(batch.messages, assistant_name=batch.provider.display_name)

        if not target.exists():
            header = self.converter.generate_frontmatter(
                batch.provider, batch.project_name, batch.metadata, created
            )
            atomic_write_text(target, header + content)
            logger.info(f"Created {target.name} with {len(batch.messages)} messages")
        else:
            with open(target, 'a', encoding='utf-8') as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            logger.info(f"Appended {len(batch.messages)} messages to {target.name}")
        return target
