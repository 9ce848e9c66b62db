from __future__ import annotations

import logging
import os
from typing import Any, Dict

from dotenv import load_dotenv

DEFAULT_STREAMER_CONFIG: Dict[str, Any] = {
    "enabled": True,
    "poll_interval_ms": 1,
    "recv_attempts": 32,
    "recv_chunk_size": 4096,
    "listen_backlog": 10,
    "log_level": "INFO",
}

STREAMER_CONFIG: Dict[str, Any] = DEFAULT_STREAMER_CONFIG.copy()


class ConfigError(Exception):
    """Raised when configuration values are invalid."""

    pass


def load_streamer_config(env_path: str = ".env") -> Dict[str, Any]:
    """Load streamer configuration from env file/environment variables."""
    if os.path.exists(env_path):
        load_dotenv(env_path)

    for key, default_value in DEFAULT_STREAMER_CONFIG.items():
        env_key = f"TRACE_STREAMER_{key.upper()}"
        value = os.getenv(env_key, default_value)
        STREAMER_CONFIG[key] = _coerce_type(value, type(default_value))

    _validate_config()
    logging.getLogger("server").setLevel(STREAMER_CONFIG["log_level"])
    return STREAMER_CONFIG


def _coerce_type(value: Any, target_type: type) -> Any:
    if isinstance(value, target_type):
        return value
    try:
        if target_type is bool:
            return str(value).lower() in ("1", "true", "yes", "on")
        return target_type(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"Cannot convert {value} to {target_type}") from exc


def _validate_config() -> None:
    if STREAMER_CONFIG["poll_interval_ms"] < 0:
        raise ConfigError("poll_interval_ms must not be negative")
    if STREAMER_CONFIG["recv_attempts"] <= 0:
        raise ConfigError("recv_attempts must be positive")
    if STREAMER_CONFIG["recv_chunk_size"] <= 0:
        raise ConfigError("recv_chunk_size must be positive")
    if STREAMER_CONFIG["listen_backlog"] <= 0:
        raise ConfigError("listen_backlog must be positive")
    if not isinstance(logging.getLevelName(str(STREAMER_CONFIG["log_level"]).upper()), int):
        raise ConfigError(f"Unknown log_level {STREAMER_CONFIG['log_level']}")
    STREAMER_CONFIG["log_level"] = str(STREAMER_CONFIG["log_level"]).upper()


__all__ = ["STREAMER_CONFIG", "DEFAULT_STREAMER_CONFIG", "ConfigError", "load_streamer_config"]
