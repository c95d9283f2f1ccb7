"""Configuration package for the worksheets system."""

from worksheets.config.app_config import (
    AppConfig,
    AutosaveConfig,
    ChatConfig,
    ProviderConfig,
    StorageConfig,
    clear_config_cache,
    get_provider_config,
    load_app_config,
)

__all__ = [
    "AppConfig",
    "AutosaveConfig",
    "ChatConfig",
    "ProviderConfig",
    "StorageConfig",
    "clear_config_cache",
    "get_provider_config",
    "load_app_config",
]
