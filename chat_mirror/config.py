"""
Configuration snapshot consumed by the sync engine.

The engine never mutates configuration: the caller loads a `SyncConfig`
once per cycle and hands it to the orchestrator.
"""

import logging
import os
import tomllib
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from chat_mirror.providers.base import ProviderType

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "chat-mirror" / "config.toml"


class OutputLayout(str, Enum):
    """How mirrored documents are arranged under the destination."""
    FLAT = "flat"
    SUBFOLDER = "subfolder"


class ProviderSettings(BaseModel):
    model_config = ConfigDict(frozen=True)

    enabled: bool = False
    root: str = ""


def default_provider_settings() -> Dict[ProviderType, ProviderSettings]:
    return {
        ProviderType.CLAUDE: ProviderSettings(enabled=True, root=ProviderType.CLAUDE.default_root),
        ProviderType.GEMINI: ProviderSettings(enabled=False, root=ProviderType.GEMINI.default_root),
        ProviderType.CODEX: ProviderSettings(enabled=False, root=ProviderType.CODEX.default_root),
    }


def expand(path: str) -> Path:
    return Path(os.path.expanduser(path))


def is_path_safe(path: str) -> bool:
    """Absolute after tilde expansion and free of '..' segments."""
    if not path:
        return False
    expanded = expand(path)
    return expanded.is_absolute() and '..' not in expanded.parts


class SyncConfig(BaseModel):
    """Immutable settings for one sync cycle."""

    model_config = ConfigDict(frozen=True)

    sync_enabled: bool = True
    sync_interval_seconds: int = Field(default=5, ge=1)
    lookback_minutes: int = Field(default=60, ge=1)
    min_session_bytes: int = Field(default=1000, ge=0)
    destination: str = "~/Documents/chat-mirror"
    layout: OutputLayout = OutputLayout.FLAT
    state_dir: str = "~/.local/share/chat-mirror"
    providers: Dict[ProviderType, ProviderSettings] = Field(default_factory=default_provider_settings)

    @field_validator('layout', mode='before')
    @classmethod
    def _accept_layout_alias(cls, value: Any) -> Any:
        if value == "per-provider-subfolder":
            return OutputLayout.SUBFOLDER
        return value

    @field_validator('providers', mode='before')
    @classmethod
    def _merge_provider_defaults(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        merged: Dict[str, Dict[str, Any]] = {
            t.value: settings.model_dump() for t, settings in default_provider_settings().items()
        }
        for key, settings in value.items():
            name = key.value if isinstance(key, ProviderType) else str(key)
            if isinstance(settings, ProviderSettings):
                settings = settings.model_dump()
            if not isinstance(settings, dict):
                # Let pydantic report the type error
                merged[name] = settings
                continue
            current = dict(merged.get(name, {}))
            current.update({k: v for k, v in settings.items() if v is not None and v != ""})
            merged[name] = current
        return merged

    @property
    def destination_path(self) -> Path:
        return expand(self.destination)

    @property
    def destination_valid(self) -> bool:
        return is_path_safe(self.destination)

    @property
    def cursor_store_path(self) -> Path:
        return expand(self.state_dir) / "sync_state.json"

    @property
    def history_path(self) -> Path:
        return expand(self.state_dir) / "history.json"

    def provider_enabled(self, provider_type: ProviderType) -> bool:
        settings = self.providers.get(provider_type)
        return bool(settings and settings.enabled)

    def provider_root(self, provider_type: ProviderType) -> Path:
        settings = self.providers.get(provider_type)
        return expand(settings.root if settings and settings.root else provider_type.default_root)

    def provider_root_valid(self, provider_type: ProviderType) -> bool:
        settings = self.providers.get(provider_type)
        return is_path_safe(settings.root if settings and settings.root else provider_type.default_root)


def load_config(path: Optional[Path] = None) -> SyncConfig:
    """
    Load configuration from a TOML file.

    A missing file yields the defaults. Parse and validation errors
    propagate so the caller can report them.
    """
    config_path = path or DEFAULT_CONFIG_PATH
    if not config_path.exists():
        logger.debug(f"No config file at {config_path}, using defaults")
        return SyncConfig()

    with open(config_path, 'rb') as f:
        data = tomllib.load(f)
    logger.debug(f"Loaded config from {config_path}")
    return SyncConfig.model_validate(data)
