from __future__ import annotations

import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv

from shared.protocol import LOOPBACK_HOST

DEFAULT_CONFIG: Dict[str, Any] = {
    "server_host": LOOPBACK_HOST,
    "server_port": 0,  # 0 = scan the streamer's port range
    "connect_timeout": 2.0,
    "read_timeout": 5.0,
    "log_level": "INFO",
}

CLIENT_CONFIG: Dict[str, Any] = DEFAULT_CONFIG.copy()


class ConfigError(Exception):
    """Raised when configuration values are invalid."""

    pass


def load_config(env_path: str = ".env") -> Dict[str, Any]:
    """Load client configuration from env file/environment variables."""
    if os.path.exists(env_path):
        load_dotenv(env_path)

    for key, default_value in DEFAULT_CONFIG.items():
        env_key = f"TRACE_CLIENT_{key.upper()}"
        value = os.getenv(env_key, default_value)
        CLIENT_CONFIG[key] = _coerce_type(value, type(default_value))

    _validate_config()
    logging.getLogger().setLevel(CLIENT_CONFIG["log_level"])
    return CLIENT_CONFIG


def _coerce_type(value: Any, target_type: type) -> Any:
    if isinstance(value, target_type):
        return value
    try:
        return target_type(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Cannot convert {value} to {target_type}") from exc


def _validate_config() -> None:
    port = int(CLIENT_CONFIG["server_port"])
    if port and not (1 <= port <= 65535):
        raise ConfigError("server_port must be 0 or between 1 and 65535")
    if CLIENT_CONFIG["connect_timeout"] <= 0:
        raise ConfigError("connect_timeout must be positive")
    if CLIENT_CONFIG["read_timeout"] <= 0:
        raise ConfigError("read_timeout must be positive")


__all__ = ["CLIENT_CONFIG", "DEFAULT_CONFIG", "ConfigError", "load_config"]
