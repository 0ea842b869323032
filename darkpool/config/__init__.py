"""
Dark Pool Configuration

Loads all sections of config.toml at startup.
Environment variables override TOML values.
"""

from .loader import (
    DarkPoolConfig,
    EngineSectionConfig,
    IntakeConfig,
    ChannelsConfig,
    ApiConfig,
    LoggingConfig,
    load_config,
)

__all__ = [
    "DarkPoolConfig",
    "EngineSectionConfig",
    "IntakeConfig",
    "ChannelsConfig",
    "ApiConfig",
    "LoggingConfig",
    "load_config",
]
