"""Registry of the built-in providers, one instance per provider type."""

from __future__ import annotations

from typing import TYPE_CHECKING, Dict, List, Optional

from chat_mirror.providers.base import Provider, ProviderType
from chat_mirror.providers.claude import ClaudeProvider
from chat_mirror.providers.codex import CodexProvider
from chat_mirror.providers.gemini import GeminiProvider

if TYPE_CHECKING:
    from chat_mirror.config import SyncConfig


class ProviderRegistry:
    """Holds provider instances so their caches live across cycles."""

    def __init__(self, providers: Optional[List[Provider]] = None):
        self._providers: Dict[ProviderType, Provider] = {}
        for provider in providers if providers is not None else [ClaudeProvider(), GeminiProvider(), CodexProvider()]:
            self.register(provider)

    def register(self, provider: Provider) -> None:
        self._providers[provider.type] = provider

    def get(self, provider_type: ProviderType) -> Optional[Provider]:
        return self._providers.get(provider_type)

    def all_providers(self) -> List[Provider]:
        return [self._providers[t] for t in ProviderType if t in self._providers]

    def enabled_providers(self, config: SyncConfig) -> List[Provider]:
        return [p for p in self.all_providers() if config.provider_enabled(p.type)]
