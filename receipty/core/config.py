"""
Config utilities for receipty.

Responsibilities:
- Resolve config/data paths with environment and XDG support
- Load the optional JSON config file
- Merge RECEIPTY_* environment variables over it and validate the result into
  an immutable Settings object

Settings are read once at startup. Any invalid value raises ConfigError, which
is fatal: the app factory lets it propagate.
"""

from __future__ import annotations

import json
import os
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

ENV_PREFIX = "RECEIPTY_"
PRINTER_MODES = ("usb", "ethernet")
CUT_MODES = ("none", "partial", "full")
LOOPBACK_HOSTS = ("127.0.0.1", "::1", "localhost")


class ConfigError(ValueError):
    """Raised when the configuration is missing or invalid."""


def default_config_path() -> str:
    """
    Resolve the default config path using:
    1) $XDG_CONFIG_HOME/receipty/config.json
    2) ~/.config/receipty/config.json
    """
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return str(Path(xdg) / "receipty" / "config.json")
    return str(Path.home() / ".config" / "receipty" / "config.json")


def default_db_path() -> str:
    """
    Resolve the default database path using:
    1) $XDG_DATA_HOME/receipty/receipty.sqlite3
    2) ~/.local/share/receipty/receipty.sqlite3
    """
    xdg = os.environ.get("XDG_DATA_HOME")
    if xdg:
        return str(Path(xdg) / "receipty" / "receipty.sqlite3")
    return str(Path.home() / ".local" / "share" / "receipty" / "receipty.sqlite3")


def get_config_path() -> str:
    """
    Return the config path honoring RECEIPTY_CONFIG_PATH override.
    """
    return os.environ.get("RECEIPTY_CONFIG_PATH", default_config_path())


def load_config(path: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """
    Load the JSON config if it exists; return None if missing.

    Raises:
        ConfigError if the file exists but is not a JSON object.
    """
    cfg_path = Path(path or get_config_path())
    if not cfg_path.exists():
        return None
    try:
        with cfg_path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigError(f"Failed to parse config file at {cfg_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Config file at {cfg_path} must contain a JSON object")
    return data


@dataclass(frozen=True)
class Settings:
    printer_mode: str
    app_host: str = "127.0.0.1"
    app_port: int = 3000
    api_key: Optional[str] = None
    max_chars: int = 1000
    feed_lines: int = 3
    cut_mode: str = "partial"
    connect_timeout_ms: int = 2000
    write_timeout_ms: int = 2000
    read_timeout_ms: int = 2000
    usb_vendor_id: Optional[int] = None
    usb_product_id: Optional[int] = None
    usb_device_path: Optional[str] = None
    printer_host: Optional[str] = None
    printer_port: int = 9100
    db_path: str = ""
    image_width: int = 384
    image_threshold: int = 128
    max_image_bytes: int = 5 * 1024 * 1024
    retry_count: int = 2
    retry_base_ms: int = 150
    retry_jitter_ms: int = 200
    retry_step_ms: int = 150
    status_cache_ttl_ms: int = 2000
    rate_limit_per_minute: int = 60
    secret_key: str = "receipty_dev_secret_key"

    def redacted(self) -> Dict[str, Any]:
        """Settings as a dict safe to log."""
        data = asdict(self)
        data["api_key"] = "redacted" if self.api_key else None
        data["secret_key"] = "redacted"
        return data


# ----- Parsing helpers -------------------------------------------------------


def _to_value(value: Any) -> Optional[str]:
    if value is None:
        return None
    s = str(value).strip()
    return s or None


def _parse_int(raw: Optional[str], name: str, default: Optional[int] = None, *, minimum: int = 0) -> int:
    if raw is None:
        if default is None:
            raise ConfigError(f"{name} is required")
        return default
    try:
        value = int(raw, 10)
    except ValueError:
        raise ConfigError(f"{name} must be an integer") from None
    if value < minimum:
        kind = "positive" if minimum > 0 else "non-negative"
        raise ConfigError(f"{name} must be a {kind} integer")
    return value


def _parse_hex_or_int(raw: Optional[str], name: str) -> int:
    if raw is None:
        raise ConfigError(f"{name} is required")
    s = raw.lower()
    try:
        value = int(s, 16) if s.startswith("0x") else int(s, 10)
    except ValueError:
        raise ConfigError(f"{name} must be a valid hex or integer") from None
    if not 0 <= value <= 0xFFFF:
        raise ConfigError(f"{name} must fit in 16 bits")
    return value


def _resolve_path(raw: str) -> str:
    if raw == ":memory:":
        return raw
    return str(Path(raw).expanduser().resolve())


def load_settings(
    env: Optional[Mapping[str, str]] = None,
    config_path: Optional[str] = None,
    overrides: Optional[Mapping[str, Any]] = None,
) -> Settings:
    """
    Build Settings from the JSON config file, the environment and explicit overrides
    (highest precedence last).
    """
    env = os.environ if env is None else env
    path = config_path or env.get("RECEIPTY_CONFIG_PATH") or default_config_path()
    file_cfg = load_config(path) or {}
    overrides = overrides or {}

    def get(key: str) -> Optional[str]:
        if key in overrides:
            return _to_value(overrides[key])
        env_val = _to_value(env.get(ENV_PREFIX + key.upper()))
        if env_val is not None:
            return env_val
        return _to_value(file_cfg.get(key))

    printer_mode = (get("printer_mode") or "").lower()
    if printer_mode not in PRINTER_MODES:
        raise ConfigError("printer_mode must be usb or ethernet")

    cut_mode = (get("cut_mode") or "partial").lower()
    if cut_mode not in CUT_MODES:
        raise ConfigError("cut_mode must be none, partial, or full")

    app_host = get("app_host") or "127.0.0.1"
    api_key = get("api_key")
    if app_host not in LOOPBACK_HOSTS and not api_key:
        raise ConfigError("api_key is required when app_host is not localhost")

    write_timeout_ms = _parse_int(get("write_timeout_ms"), "write_timeout_ms", 2000, minimum=1)

    usb_vendor_id = usb_product_id = None
    usb_device_path = printer_host = None
    printer_port = 9100
    if printer_mode == "usb":
        usb_vendor_id = _parse_hex_or_int(get("usb_vendor_id"), "usb_vendor_id")
        usb_product_id = _parse_hex_or_int(get("usb_product_id"), "usb_product_id")
        raw_path = get("usb_device_path")
        usb_device_path = _resolve_path(raw_path) if raw_path else None
    else:
        printer_host = get("printer_host")
        if not printer_host:
            raise ConfigError("printer_host is required in ethernet mode")
        printer_port = _parse_int(get("printer_port"), "printer_port", 9100, minimum=1)
        if printer_port > 65535:
            raise ConfigError("printer_port must be <= 65535")

    image_threshold = _parse_int(get("image_threshold"), "image_threshold", 128)
    if image_threshold > 255:
        raise ConfigError("image_threshold must be within 0..255")

    raw_db = get("db_path")
    return Settings(
        printer_mode=printer_mode,
        app_host=app_host,
        app_port=_parse_int(get("app_port"), "app_port", 3000, minimum=1),
        api_key=api_key,
        max_chars=_parse_int(get("max_chars"), "max_chars", 1000, minimum=1),
        feed_lines=_parse_int(get("feed_lines"), "feed_lines", 3),
        cut_mode=cut_mode,
        connect_timeout_ms=_parse_int(get("connect_timeout_ms"), "connect_timeout_ms", 2000, minimum=1),
        write_timeout_ms=write_timeout_ms,
        read_timeout_ms=_parse_int(get("read_timeout_ms"), "read_timeout_ms", write_timeout_ms, minimum=1),
        usb_vendor_id=usb_vendor_id,
        usb_product_id=usb_product_id,
        usb_device_path=usb_device_path,
        printer_host=printer_host,
        printer_port=printer_port,
        db_path=_resolve_path(raw_db) if raw_db else default_db_path(),
        image_width=_parse_int(get("image_width"), "image_width", 384, minimum=1),
        image_threshold=image_threshold,
        max_image_bytes=_parse_int(get("max_image_bytes"), "max_image_bytes", 5 * 1024 * 1024, minimum=1),
        retry_count=_parse_int(get("retry_count"), "retry_count", 2),
        retry_base_ms=_parse_int(get("retry_base_ms"), "retry_base_ms", 150),
        retry_jitter_ms=_parse_int(get("retry_jitter_ms"), "retry_jitter_ms", 200),
        retry_step_ms=_parse_int(get("retry_step_ms"), "retry_step_ms", 150),
        status_cache_ttl_ms=_parse_int(get("status_cache_ttl_ms"), "status_cache_ttl_ms", 2000),
        rate_limit_per_minute=_parse_int(get("rate_limit_per_minute"), "rate_limit_per_minute", 60, minimum=1),
        secret_key=get("secret_key") or "receipty_dev_secret_key",
    )


__all__ = [
    "CUT_MODES",
    "ConfigError",
    "PRINTER_MODES",
    "Settings",
    "default_config_path",
    "default_db_path",
    "get_config_path",
    "load_config",
    "load_settings",
]
