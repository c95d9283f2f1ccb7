"""Application configuration loader.

Loads centralized configuration from data/config/app_config_v1.yaml,
falling back to built-in defaults when the file is absent.

Usage:
    from worksheets.config.app_config import load_app_config, get_provider_config

    config = load_app_config()
    period = config.autosave.period_seconds
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

from worksheets.core.tools import ToolDefaults

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/app_config_v1.yaml")
CONFIG_ENV = "WORKSHEETS_CONFIG"


@dataclass
class ProviderConfig:
    """Configuration for a single LLM provider."""

    base_url: str | None
    default_model: str
    api_key_env: str | None = None

    def get_api_key(self) -> str | None:
        """Get API key from environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class AutosaveConfig:
    """Worksheet autosave settings."""

    enabled: bool = True
    period_seconds: float = 10.0


@dataclass
class ChatConfig:
    """Conversation service settings."""

    default_provider: str = "lmstudio"
    temperature: float = 0.7
    max_tokens: int = 1024


@dataclass
class StorageConfig:
    """Where documents and assets live."""

    db_path: str = "db/worksheets.db"
    api_base_url: str = "http://localhost:8000"


@dataclass
class AppConfig:
    """Application-wide configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    autosave: AutosaveConfig = field(default_factory=AutosaveConfig)
    chat: ChatConfig = field(default_factory=ChatConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    tool_defaults: ToolDefaults = field(default_factory=ToolDefaults)


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "providers": {
            "lmstudio": {
                "base_url": "http://localhost:1234/v1",
                "default_model": "llama-3.2-3b-instruct",
                "api_key_env": None,
            },
            "openai": {
                "base_url": None,
                "default_model": "gpt-4o-mini",
                "api_key_env": "OPENAI_API_KEY",
            },
        },
        "autosave": {"enabled": True, "period_seconds": 10.0},
        "chat": {"default_provider": "lmstudio", "temperature": 0.7, "max_tokens": 1024},
        "storage": {"db_path": "db/worksheets.db", "api_base_url": "http://localhost:8000"},
        "tool_defaults": {
            "placeholder_text": "Enter your response here...",
            "chat_bot_instructions": "Ask me anything about this topic...",
            "mcq_options": ["Option 1", "Option 2"],
        },
    }


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    defaults = _get_defaults()

    providers = {}
    for name, pconfig in (data.get("providers") or defaults["providers"]).items():
        providers[name] = ProviderConfig(
            base_url=pconfig.get("base_url"),
            default_model=pconfig.get("default_model", "default"),
            api_key_env=pconfig.get("api_key_env"),
        )

    autosave_data = {**defaults["autosave"], **(data.get("autosave") or {})}
    period = float(autosave_data["period_seconds"])
    if period <= 0:
        logger.warning("invalid_autosave_period", period=period)
        period = defaults["autosave"]["period_seconds"]
    autosave = AutosaveConfig(enabled=bool(autosave_data["enabled"]), period_seconds=period)

    chat_data = {**defaults["chat"], **(data.get("chat") or {})}
    chat = ChatConfig(
        default_provider=chat_data["default_provider"],
        temperature=float(chat_data["temperature"]),
        max_tokens=int(chat_data["max_tokens"]),
    )

    storage_data = {**defaults["storage"], **(data.get("storage") or {})}
    storage = StorageConfig(
        db_path=storage_data["db_path"],
        api_base_url=storage_data["api_base_url"],
    )

    tool_data = {**defaults["tool_defaults"], **(data.get("tool_defaults") or {})}
    tool_defaults = ToolDefaults(
        placeholder_text=tool_data["placeholder_text"],
        chat_bot_instructions=tool_data["chat_bot_instructions"],
        mcq_options=tuple(tool_data["mcq_options"]),
    )

    return AppConfig(
        providers=providers,
        autosave=autosave,
        chat=chat,
        storage=storage,
        tool_defaults=tool_defaults,
    )


def load_app_config(force_reload: bool = False) -> AppConfig:
    """Load application config, falling back to defaults.

    The ``WORKSHEETS_CONFIG`` environment variable overrides the file path.

    Args:
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    config_path = Path(os.environ.get(CONFIG_ENV, CONFIG_FILE))

    data: dict[str, Any]
    if config_path.exists():
        logger.debug("loading_app_config", source=str(config_path))
        data = yaml.safe_load(config_path.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = _get_defaults()

    _cached_config = _parse_config(data)
    return _cached_config


def get_provider_config(provider: str) -> ProviderConfig | None:
    """Get configuration for a specific provider.

    Args:
        provider: Provider name (e.g., "lmstudio", "openai")

    Returns:
        ProviderConfig or None if provider not found.
    """
    config = load_app_config()
    return config.providers.get(provider)


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
