"""
Shoal - Configuration Package

Plugin configuration loading and validation.
"""

from .loader import fetch_config, load_config, parse_config, render_env
from .plugins import (
    ConfigError,
    PluginConfig,
    ShoalConfig,
    build_config,
    parse_command,
    parse_dimension_set,
    parse_duration,
)

__all__ = [
    "ConfigError",
    "PluginConfig",
    "ShoalConfig",
    "build_config",
    "fetch_config",
    "load_config",
    "parse_command",
    "parse_config",
    "parse_dimension_set",
    "parse_duration",
    "render_env",
]
