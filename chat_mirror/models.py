"""
Value types shared by providers, the orchestrator and the markdown writer.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import List, Optional


class Role(str, Enum):
    """Author of a conversation message."""
    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class SessionFile:
    """A session file seen during one discovery pass."""
    path: Path
    modified_at: datetime
    size: int

    @property
    def key(self) -> str:
        """Identity used by the cursor store."""
        return str(self.path)


@dataclass(frozen=True)
class ConversationMessage:
    """A single user or assistant message ready to be rendered."""
    role: Role
    content: str
    timestamp: Optional[datetime] = None


@dataclass(frozen=True)
class ParseResult:
    """
    Messages found past the supplied cursor plus the cursor reached.

    The cursor unit is provider defined: newline count for line-delimited
    formats, array length for JSON document formats.
    """
    messages: List[ConversationMessage] = field(default_factory=list)
    cursor: int = 0


@dataclass(frozen=True)
class SessionMetadata:
    """Header information for a mirrored session."""
    session_id: str
    working_directory: Optional[str] = None
