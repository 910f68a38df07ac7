"""Format adapters for the supported AI CLIs."""

from chat_mirror.providers.base import Provider, ProviderType, RecordResult, SkipReason
from chat_mirror.providers.claude import ClaudeProvider
from chat_mirror.providers.codex import CodexProvider
from chat_mirror.providers.gemini import GeminiProvider
from chat_mirror.providers.registry import ProviderRegistry

__all__ = [
    "Provider",
    "ProviderType",
    "RecordResult",
    "SkipReason",
    "ClaudeProvider",
    "CodexProvider",
    "GeminiProvider",
    "ProviderRegistry",
]
