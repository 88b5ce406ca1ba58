"""
Core utilities for receipty.

This package groups non-printer helpers used across the app:
- config: Settings loading, XDG paths, ConfigError
- logging: Request ID aware logging filters/formatters and root logger config
- text: sanitation, hashing and previews for submitted text
- db: SQLite job store

Exports are explicit to keep static analyzers happy.
"""

from .config import (
    ConfigError,
    Settings,
    default_config_path,
    default_db_path,
    get_config_path,
    load_config,
    load_settings,
)
from .logging import (
    JsonFormatter,
    RequestIdFilter,
    configure_logging,
)
from .text import hash_bytes, hash_text, preview_text, sanitize_text

__all__ = [
    # config
    "ConfigError",
    "Settings",
    "default_config_path",
    "default_db_path",
    "get_config_path",
    "load_config",
    "load_settings",
    # logging
    "configure_logging",
    "RequestIdFilter",
    "JsonFormatter",
    # text
    "hash_bytes",
    "hash_text",
    "preview_text",
    "sanitize_text",
]
